from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.base_database import BaseDatabase
from core.config import ENABLE_CRON
from core.db.mongodb import MongoDBClient
from core.loader import auto_load_all
from core.logger import Logger, setup_logging
from core.registry import ServiceRegistry
from cron.registry import CronRegistry
from cron.runner import init_cron_background

# Initialize logger before anything else
setup_logging()

app_logger = Logger(__name__)
app_logger.info("Logger initialized successfully.")

mongodb = MongoDBClient()
BaseDatabase.init_databases(mongodb)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting up application...")
    await mongodb.init()
    auto_load_all()

    # routers are registered as a side effect of auto_load_all()
    for router in ServiceRegistry.get_all_apis():
        app.include_router(router)

    scheduler = None
    if ENABLE_CRON:
        await CronRegistry.sync_all_to_db()
        scheduler = init_cron_background()
        app_logger.info(f"Cron scheduler started with jobs: {CronRegistry.list_registered_jobs()}")
    else:
        app_logger.debug("Cron scheduler disabled in this service.")

    yield
    app_logger.info("Shutting down application...")
    if scheduler:
        scheduler.cancel()


app = FastAPI(title="CrossVal", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}
