import os
from urllib.parse import quote_plus
from motor.motor_asyncio import AsyncIOMotorClient

from core.logger import Logger
logger = Logger(__name__)

MONGO_URI = os.getenv("MONGO_URI", "")
MONGO_USER = os.getenv("MONGO_USER", "")
MONGO_PASSWORD = os.getenv("MONGO_PASSWORD", "")
MONGO_HOST = os.getenv("MONGO_HOST", "localhost")
MONGO_PORT = os.getenv("MONGO_PORT", "27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "crossval")


def build_mongo_uri() -> str:
    if MONGO_URI:
        return MONGO_URI
    if MONGO_USER:
        return (
            f"mongodb://{quote_plus(MONGO_USER)}:{quote_plus(MONGO_PASSWORD)}"
            f"@{MONGO_HOST}:{MONGO_PORT}/{MONGO_DB_NAME}?authSource={MONGO_DB_NAME}"
        )
    return f"mongodb://{MONGO_HOST}:{MONGO_PORT}/{MONGO_DB_NAME}"


class MongoDBClient:
    def __init__(self):
        self.client = AsyncIOMotorClient(build_mongo_uri())
        self.db = self.client[MONGO_DB_NAME]
        logger.info("MongoDB client initialized (async).")

    async def init(self):
        """Initialize async connection and verify database access."""
        try:
            await self.client.admin.command("ping")
            logger.info("MongoDB connection established successfully.")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def get_collection(self, name: str):
        return self.db[name]

    async def find_one(self, collection_name: str, query: dict):
        collection = self.get_collection(collection_name)
        return await collection.find_one(query)

    async def upsert_one(self, collection_name: str, query: dict, values: dict):
        collection = self.get_collection(collection_name)
        result = await collection.update_one(query, {"$set": values}, upsert=True)
        logger.debug(f"Upserted into {collection_name}", query=query, modified=result.modified_count)
        return result.upserted_id or result.modified_count
