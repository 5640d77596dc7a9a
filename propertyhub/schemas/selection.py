from typing import Annotated, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from propertyhub.schemas.hierarchy import (
    Block,
    City,
    Country,
    Flat,
    Society,
    State,
    Tower,
)
from propertyhub.services.errors import StoreError


class ErrorInfo(BaseModel):
    """Latest failure surfaced by a selection session."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    source: str  # slot name or event kind that failed

    @classmethod
    def from_error(cls, error: StoreError, source: str) -> "ErrorInfo":
        return cls(code=error.code, message=error.message, source=source)


class HierarchySnapshot(BaseModel):
    """Immutable view of a selection session handed to consumers."""

    model_config = ConfigDict(frozen=True)

    countries: Tuple[Country, ...] = ()
    states: Tuple[State, ...] = ()
    cities: Tuple[City, ...] = ()
    societies: Tuple[Society, ...] = ()
    blocks: Tuple[Block, ...] = ()
    towers: Tuple[Tower, ...] = ()
    flats: Tuple[Flat, ...] = ()

    selected_country: Optional[Country] = None
    selected_state: Optional[State] = None
    selected_city: Optional[City] = None
    selected_society: Optional[Society] = None
    selected_block: Optional[Block] = None
    selected_tower: Optional[Tower] = None
    selected_flat: Optional[Flat] = None

    # Slots still waiting for their first snapshot; empty lists are transient.
    loading: Tuple[str, ...] = ()
    last_error: Optional[ErrorInfo] = None


# --- Selection events ---


class SelectCountry(BaseModel):
    kind: Literal["select_country"] = "select_country"
    country: Country


class SelectState(BaseModel):
    kind: Literal["select_state"] = "select_state"
    state: State


class SelectCity(BaseModel):
    kind: Literal["select_city"] = "select_city"
    city: City


class SelectSociety(BaseModel):
    kind: Literal["select_society"] = "select_society"
    society: Society


class SelectBlock(BaseModel):
    kind: Literal["select_block"] = "select_block"
    block: Block


class SelectTower(BaseModel):
    kind: Literal["select_tower"] = "select_tower"
    tower: Tower


class SelectFlat(BaseModel):
    kind: Literal["select_flat"] = "select_flat"
    flat: Flat


class ClearError(BaseModel):
    kind: Literal["clear_error"] = "clear_error"


class Reload(BaseModel):
    """Reopens every subscription the current selection implies."""

    kind: Literal["reload"] = "reload"


# --- Mutation events ---
# Parent ids left as None are taken from the current selection.


class AddCountry(BaseModel):
    kind: Literal["add_country"] = "add_country"
    country: Country


class UpdateCountry(BaseModel):
    kind: Literal["update_country"] = "update_country"
    country: Country


class DeleteCountry(BaseModel):
    kind: Literal["delete_country"] = "delete_country"
    country_id: str
    cascade: bool = False


class AddState(BaseModel):
    kind: Literal["add_state"] = "add_state"
    state: State
    country_id: Optional[str] = None


class UpdateState(BaseModel):
    kind: Literal["update_state"] = "update_state"
    state: State


class DeleteState(BaseModel):
    kind: Literal["delete_state"] = "delete_state"
    state_id: str
    cascade: bool = False


class AddCity(BaseModel):
    kind: Literal["add_city"] = "add_city"
    city: City
    country_id: Optional[str] = None
    state_id: Optional[str] = None


class UpdateCity(BaseModel):
    kind: Literal["update_city"] = "update_city"
    city: City


class DeleteCity(BaseModel):
    kind: Literal["delete_city"] = "delete_city"
    city_id: str
    cascade: bool = False


class AddSociety(BaseModel):
    kind: Literal["add_society"] = "add_society"
    society: Society
    country_id: Optional[str] = None
    state_id: Optional[str] = None
    city_id: Optional[str] = None


class UpdateSociety(BaseModel):
    kind: Literal["update_society"] = "update_society"
    society: Society


class DeleteSociety(BaseModel):
    kind: Literal["delete_society"] = "delete_society"
    society_id: str
    cascade: bool = False


class AddBlock(BaseModel):
    kind: Literal["add_block"] = "add_block"
    block: Block
    society_id: Optional[str] = None


class UpdateBlock(BaseModel):
    kind: Literal["update_block"] = "update_block"
    block: Block


class DeleteBlock(BaseModel):
    kind: Literal["delete_block"] = "delete_block"
    block_id: str
    cascade: bool = False


class AddTower(BaseModel):
    kind: Literal["add_tower"] = "add_tower"
    tower: Tower
    society_id: Optional[str] = None
    block_id: Optional[str] = None  # explicit only; never taken from selection


class UpdateTower(BaseModel):
    kind: Literal["update_tower"] = "update_tower"
    tower: Tower


class DeleteTower(BaseModel):
    kind: Literal["delete_tower"] = "delete_tower"
    tower_id: str
    cascade: bool = False


class AddFlat(BaseModel):
    """Placement always comes from the current society/block/tower selection."""

    kind: Literal["add_flat"] = "add_flat"
    flat: Flat


class UpdateFlat(BaseModel):
    kind: Literal["update_flat"] = "update_flat"
    flat: Flat
    # Re-place the flat under the current selection instead of keeping its parents.
    move: bool = False


class DeleteFlat(BaseModel):
    kind: Literal["delete_flat"] = "delete_flat"
    flat_id: str


SelectionEvent = Union[
    SelectCountry,
    SelectState,
    SelectCity,
    SelectSociety,
    SelectBlock,
    SelectTower,
    SelectFlat,
    ClearError,
    Reload,
]

MutationEvent = Union[
    AddCountry,
    UpdateCountry,
    DeleteCountry,
    AddState,
    UpdateState,
    DeleteState,
    AddCity,
    UpdateCity,
    DeleteCity,
    AddSociety,
    UpdateSociety,
    DeleteSociety,
    AddBlock,
    UpdateBlock,
    DeleteBlock,
    AddTower,
    UpdateTower,
    DeleteTower,
    AddFlat,
    UpdateFlat,
    DeleteFlat,
]

Event = Annotated[Union[SelectionEvent, MutationEvent], Field(discriminator="kind")]

event_adapter = TypeAdapter(Event)

SELECTION_KINDS = frozenset(
    cls.model_fields["kind"].default for cls in SelectionEvent.__args__
)
