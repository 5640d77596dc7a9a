# propertyhub/services/db.py
# Builds the per-entity stores behind the hierarchy repository.
import logging
from typing import Dict, Optional, Type

from beanie import init_beanie
from pymongo import AsyncMongoClient

from propertyhub.configs import env
from propertyhub.models.hierarchy import (
    BlockDocument,
    CityDocument,
    CountryDocument,
    FlatDocument,
    SocietyDocument,
    StateDocument,
    TowerDocument,
)
from propertyhub.schemas.hierarchy import (
    Block,
    City,
    Country,
    Flat,
    Society,
    State,
    Tower,
)
from propertyhub.services.mongo_store import MongoEntityStore
from propertyhub.services.store import EntityStore, InMemoryEntityStore

logger = logging.getLogger(__name__)

DOCUMENTS_BY_ENTITY = {
    Country: CountryDocument,
    State: StateDocument,
    City: CityDocument,
    Society: SocietyDocument,
    Block: BlockDocument,
    Tower: TowerDocument,
    Flat: FlatDocument,
}

StoreMap = Dict[Type, EntityStore]

db_client: Optional[AsyncMongoClient] = None


async def get_database_client() -> AsyncMongoClient:
    """Returns the MongoDB async client."""
    global db_client
    if db_client is None:
        db_client = AsyncMongoClient(env.get("MONGO_URI"))
    return db_client


async def close_database_client() -> None:
    global db_client
    if db_client is not None:
        await db_client.close()
        db_client = None
        logger.info("MongoDB connection closed.")


async def init_mongo_stores() -> StoreMap:
    """Connects to MongoDB, initialises Beanie and wraps every document model."""
    client = await get_database_client()
    await init_beanie(
        database=client[env.get("MONGO_DB") or "propertyhub"],
        document_models=list(DOCUMENTS_BY_ENTITY.values()),
    )
    logger.info("MongoDB connection and Beanie initialization successful.")
    return {
        entity_cls: MongoEntityStore(entity_cls, document_cls)
        for entity_cls, document_cls in DOCUMENTS_BY_ENTITY.items()
    }


def init_memory_stores() -> StoreMap:
    return {entity_cls: InMemoryEntityStore(entity_cls) for entity_cls in DOCUMENTS_BY_ENTITY}
