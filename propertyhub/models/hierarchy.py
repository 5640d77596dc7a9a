from typing import Optional
from pydantic import Field
from beanie import Document

from propertyhub.configs import configs
from propertyhub.schemas.hierarchy import (
    BlockBase,
    CityBase,
    CountryBase,
    FlatBase,
    SocietyBase,
    StateBase,
    TowerBase,
)

_collections = configs.get("store", {}).get("collections", {})


class CountryDocument(CountryBase, Document):
    """Root of the location hierarchy."""

    class Settings:
        name = _collections.get("countries", "countries")


class StateDocument(StateBase, Document):
    country_id: Optional[str] = Field(default=None, index=True)

    class Settings:
        name = _collections.get("states", "states")


class CityDocument(CityBase, Document):
    state_id: Optional[str] = Field(default=None, index=True)

    class Settings:
        name = _collections.get("cities", "cities")


class SocietyDocument(SocietyBase, Document):
    city_id: Optional[str] = Field(default=None, index=True)

    class Settings:
        name = _collections.get("societies", "societies")


class BlockDocument(BlockBase, Document):
    society_id: Optional[str] = Field(default=None, index=True)

    class Settings:
        name = _collections.get("blocks", "blocks")


class TowerDocument(TowerBase, Document):
    society_id: Optional[str] = Field(default=None, index=True)
    block_id: Optional[str] = Field(default=None, index=True)

    class Settings:
        name = _collections.get("towers", "towers")


class FlatDocument(FlatBase, Document):
    # Parent exclusivity is decided by the placement resolver, not here.
    society_id: Optional[str] = Field(default=None, index=True)
    block_id: Optional[str] = Field(default=None, index=True)
    tower_id: Optional[str] = Field(default=None, index=True)

    class Settings:
        name = _collections.get("flats", "flats")
