from typing import Optional
from core.db.mongodb import MongoDBClient

from core.logger import Logger
logger = Logger(__name__)


class BaseDatabase:
    mongodb: Optional[MongoDBClient] = None

    @classmethod
    def init_databases(cls, mongodb: MongoDBClient):
        logger.info("Initializing databases..")
        cls.mongodb = mongodb

    @classmethod
    def has_database(cls) -> bool:
        return cls.mongodb is not None
