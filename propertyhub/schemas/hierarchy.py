from typing import Optional
from pydantic import BaseModel, ConfigDict


# Countries
# └── States
#     └── Cities
#         └── Societies
#             ├── Blocks
#             │   ├── Towers (optional block_id)
#             │   └── Flats (block selected)
#             ├── Towers
#             │   └── Flats (tower selected)
#             └── Flats (directly under the society)


class CountryBase(BaseModel):
    name: str = ""
    iso2: str = ""
    iso3: str = ""
    numeric_code: str = ""
    phone_code: str = ""
    capital: str = ""
    currency: str = ""
    currency_name: str = ""
    currency_symbol: str = ""
    region: str = ""
    subregion: str = ""
    latitude: str = ""
    longitude: str = ""
    emoji: str = ""


class StateBase(BaseModel):
    country_id: Optional[str] = None
    name: str = ""
    state_code: str = ""
    type: str = ""
    latitude: str = ""
    longitude: str = ""


class CityBase(BaseModel):
    country_id: Optional[str] = None
    state_id: Optional[str] = None
    name: str = ""
    latitude: str = ""
    longitude: str = ""


class SocietyBase(BaseModel):
    country_id: Optional[str] = None
    state_id: Optional[str] = None
    city_id: Optional[str] = None
    name: str = ""
    latitude: str = ""
    longitude: str = ""


class BlockBase(BaseModel):
    society_id: Optional[str] = None
    name: str = ""  # e.g. "Block A", "Community Hall"
    type: str = ""  # e.g. "residential", "amenity"


class TowerBase(BaseModel):
    society_id: Optional[str] = None
    block_id: Optional[str] = None  # None when the tower is not inside a block
    name: str = ""


class FlatBase(BaseModel):
    society_id: Optional[str] = None
    block_id: Optional[str] = None
    tower_id: Optional[str] = None
    number: str = ""  # e.g. "1A"
    floor: int = 0
    type: str = ""  # e.g. "2BHK"
    area: float = 0.0
    status: str = ""  # e.g. "occupied", "vacant"


# --- Entities as seen above the store boundary ---
# id is None until the store has assigned one.


class Country(CountryBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class State(StateBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class City(CityBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class Society(SocietyBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class Block(BlockBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class Tower(TowerBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class Flat(FlatBase):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None


class Placement(BaseModel):
    """Parent-pointer triple of a Flat."""

    model_config = ConfigDict(frozen=True)

    society_id: str
    block_id: Optional[str] = None
    tower_id: Optional[str] = None
