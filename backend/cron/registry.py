import hashlib
import inspect
from datetime import datetime
from typing import Optional

from core.base_database import BaseDatabase
from core.logger import Logger

logger = Logger(__name__)

JOBS_COLLECTION = "cron_jobs"


def job_id_for(job_class) -> str:
    return f"{job_class.__module__}.{job_class.__name__}"


def job_hash(job_class, params: dict) -> Optional[str]:
    """Fingerprint of a job's source and settings, used to detect changed definitions."""
    try:
        text = (
            inspect.getsource(job_class)
            + str(getattr(job_class, "name", ""))
            + str(getattr(job_class, "schedule", ""))
            + str(getattr(job_class, "active", ""))
            + str(params)
            + str(getattr(job_class, "max_runtime_sec", ""))
        )
    except OSError:
        return None
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class CronRegistry(BaseDatabase):
    """
    In-memory registry of cron job classes, mirrored into ``cron_jobs``
    once the database is available.
    """

    _registry = {}

    @classmethod
    def add(cls, job_class, params: Optional[dict] = None):
        params = params or {}
        cls._registry[job_id_for(job_class)] = {
            "class": job_class,
            "params": params,
            "hash": job_hash(job_class, params),
        }

    @classmethod
    def list_registered_jobs(cls):
        return list(cls._registry.keys())

    @classmethod
    async def sync_all_to_db(cls):
        for job_id, job_info in cls._registry.items():
            await cls._sync_to_db(job_info["class"], job_info["params"], job_id, job_info["hash"])

    @classmethod
    async def _sync_to_db(cls, job_class, params, job_id, fingerprint):
        collection = cls.mongodb.get_collection(JOBS_COLLECTION)

        now = datetime.utcnow()
        job_data = {
            "_id": job_id,
            "name": getattr(job_class, "name", None) or job_class.__name__,
            "file": job_class.__module__,
            "class": job_class.__name__,
            "schedule": job_class.schedule,
            "active": job_class.active,
            "params": params,
            "job_hash": fingerprint,
            "max_runtime_sec": job_class.max_runtime_sec,
            "updated_at": now,
        }

        existing = await collection.find_one({"_id": job_id})
        if not existing:
            job_data.update({"created_at": now, "last_run": None, "next_run": now, "running": False})
            await collection.insert_one(job_data)
            logger.info(f"Registered new cron job: {job_id}")
        elif existing.get("job_hash") != fingerprint:
            await collection.update_one({"_id": job_id}, {"$set": job_data})
            logger.info(f"Updated cron job: {job_id}")
        else:
            logger.debug(f"Cron job already up-to-date: {job_id}")


def cron_job(cls):
    """Class decorator registering a cron job; the DB sync happens at startup."""
    CronRegistry.add(cls)
    return cls
