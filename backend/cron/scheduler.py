import asyncio
import os
from datetime import datetime, timedelta
from typing import Optional

from croniter import croniter
from pymongo import ReturnDocument

from core.base_database import BaseDatabase
from core.loader import dynamic_import
from core.logger import Logger
from cron.registry import JOBS_COLLECTION

logger = Logger(__name__)

LOCK_NAME = "cron_scheduler"
LOCK_COLLECTION = "startup_locks"


def convert_schedule_hrf_to_cron(hrf: str, reference: Optional[datetime] = None) -> str:
    """
    Convert a human readable schedule (``15m``, ``2h``, ``1d``, ``1w``, ``1M``)
    into a cron expression anchored at the minute/hour of ``reference``.
    """
    reference = reference or datetime.utcnow()
    cron_parts = ["*", "*", "*", "*", "*"]  # minute, hour, day of month, month, day of week

    for part in hrf.split(","):
        part = part.strip()
        value, unit = part[:-1], part[-1:]
        if not value.isdigit():
            continue
        value = int(value)

        if unit == "m":
            cron_parts[0] = f"*/{value}"
            continue
        cron_parts[0] = str(reference.minute)
        if unit == "h":
            cron_parts[1] = f"*/{value}"
            continue
        cron_parts[1] = str(reference.hour)
        if unit == "d":
            cron_parts[2] = f"*/{value}"
        elif unit == "w":
            cron_parts[2] = f"*/{value * 7}"
        elif unit == "M":
            cron_parts[3] = f"*/{value}"

    return " ".join(cron_parts)


def next_run_after(schedule: str, now: datetime) -> datetime:
    return croniter(convert_schedule_hrf_to_cron(schedule, now), now).get_next(datetime)


async def execute_job(job: dict):
    """Run one due job, bounded by its ``max_runtime_sec``."""
    collection = BaseDatabase.mongodb.get_collection(JOBS_COLLECTION)
    job_id = job["_id"]
    start_time = datetime.utcnow()
    logger.info(f"Starting job: {job['name']}")

    await collection.update_one({"_id": job_id}, {"$set": {"running": True, "last_heartbeat": start_time}})
    try:
        job_class = dynamic_import(str(job["file"]), job["class"])
        instance = job_class(job.get("params") or {})
        await instance.before_run()
        await asyncio.wait_for(instance.run(), timeout=job.get("max_runtime_sec", 600))
        await instance.after_run()
    except Exception as e:
        logger.error(f"Job {job['name']} failed: {e}")
        await collection.update_one(
            {"_id": job_id},
            {"$set": {"running": False, "last_error": str(e), "next_run": next_run_after(job["schedule"], start_time)}},
        )
        return

    now = datetime.utcnow()
    next_run = next_run_after(job["schedule"], now)
    await collection.update_one(
        {"_id": job_id},
        {"$set": {"last_run": now, "next_run": next_run, "running": False, "last_heartbeat": now, "last_error": None}},
    )
    logger.info(f"Completed job: {job['name']} (next run: {next_run})")


async def recover_stale_jobs(max_runtime_sec: int = 600):
    """Reset jobs left ``running`` past their runtime, e.g. after a crash."""
    collection = BaseDatabase.mongodb.get_collection(JOBS_COLLECTION)
    cutoff = datetime.utcnow() - timedelta(seconds=max_runtime_sec)
    stale_jobs = await collection.find({"running": True, "last_heartbeat": {"$lt": cutoff}}).to_list(length=None)
    for job in stale_jobs:
        logger.warning(f"Resetting stale job: {job['name']}")
        await collection.update_one({"_id": job["_id"]}, {"$set": {"running": False}})


async def run_cron_jobs():
    collection = BaseDatabase.mongodb.get_collection(JOBS_COLLECTION)
    await recover_stale_jobs()

    due_jobs = await collection.find(
        {"active": True, "next_run": {"$lte": datetime.utcnow()}, "running": False}
    ).to_list(length=None)
    if not due_jobs:
        logger.debug("No cron jobs ready to run.")
        return

    logger.info(f"{len(due_jobs)} cron jobs ready to execute.")
    await asyncio.gather(*(execute_job(job) for job in due_jobs))


async def acquire_scheduler_lock() -> bool:
    now = datetime.utcnow()
    locks = BaseDatabase.mongodb.get_collection(LOCK_COLLECTION)
    await locks.create_index("expiresAt", expireAfterSeconds=10)

    result = await locks.find_one_and_update(
        {"_id": LOCK_NAME},
        {
            "$setOnInsert": {
                "_id": LOCK_NAME,
                "owner": os.getpid(),
                "expiresAt": now + timedelta(seconds=2),
                "acquiredAt": now,
            }
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return result["owner"] == os.getpid()


async def start_scheduler(interval_seconds: int = 60):
    logger.info(f"Starting cron scheduler (interval={interval_seconds}s)")
    if not await acquire_scheduler_lock():
        logger.warning("Cron scheduler lock not acquired. Another instance may be running. Exiting scheduler.")
        return
    while True:
        try:
            await run_cron_jobs()
        except Exception as e:
            logger.error(f"Scheduler loop error: {e}")
        await asyncio.sleep(interval_seconds)
