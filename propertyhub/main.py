# propertyhub/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware

import logging

from propertyhub.configs import configs
from propertyhub.routes import hierarchy, selection
from propertyhub.schemas.misc import Message
from propertyhub.services.db import (
    close_database_client,
    init_memory_stores,
    init_mongo_stores,
)
from propertyhub.services.hierarchy_repository import HierarchyRepository

app_config = configs.get("app", {})

# Configure logging
logging.basicConfig(
    level=app_config.get("log_level", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles startup and shutdown events for the application.
    Builds the configured store backend and attaches the repository.
    """
    logger.info("Application startup initiated...")
    backend = configs.get("store", {}).get("backend", "mongo")
    if getattr(app.state, "repository", None) is None:
        if backend == "memory":
            stores = init_memory_stores()
            logger.info("Using the in-memory location store.")
        else:
            try:
                stores = await init_mongo_stores()
            except Exception as e:
                logger.error(f"Failed to connect to MongoDB or initialize Beanie: {e}")
                raise
        app.state.repository = HierarchyRepository(stores)

    yield

    logger.info("Application shutdown initiated...")
    if backend != "memory":
        await close_database_client()


app = FastAPI(
    title=app_config.get("project_name", "PropertyHub Locations"),
    debug=app_config.get("debug_mode", False),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=configs.get("api", {}).get("cors_origins", []),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    hierarchy.router, prefix="/hierarchy", tags=["Location Hierarchy"]
)
app.include_router(selection.router, prefix="/selection", tags=["Selection Sessions"])


@app.get("/", response_model=Message)
async def read_index():
    return Message(message=f"{app.title} is running")
