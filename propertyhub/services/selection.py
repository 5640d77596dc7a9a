# propertyhub/services/selection.py
"""
Selection session: the drilled-into path through the location hierarchy and
the live candidate lists at every level.

Levels are ordered; selecting at level L clears every selection and list
below L, cancels their subscriptions, then opens the subscriptions for the
level beneath L. Only this class writes the snapshot; consumers read it or
submit events.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from propertyhub.configs import configs
from propertyhub.schemas.hierarchy import Block, City, Country, Flat, Society, State, Tower
from propertyhub.schemas.selection import (
    SELECTION_KINDS,
    ErrorInfo,
    HierarchySnapshot,
    event_adapter,
)
from propertyhub.services.errors import Result, StoreError, ValidationFailure
from propertyhub.services.hierarchy_repository import HierarchyRepository
from propertyhub.services.placement import resolve_parent
from propertyhub.services.subscriptions import SlotSubscription, SubscriptionManager

logger = logging.getLogger(__name__)


class Level(IntEnum):
    COUNTRY = 0
    STATE = 1
    CITY = 2
    SOCIETY = 3
    UNIT = 4  # block or tower
    FLAT = 5


@dataclass(frozen=True)
class LevelFields:
    selections: Tuple[str, ...]
    collections: Tuple[str, ...]


LEVELS: Dict[Level, LevelFields] = {
    Level.COUNTRY: LevelFields(("selected_country",), ("countries",)),
    Level.STATE: LevelFields(("selected_state",), ("states",)),
    Level.CITY: LevelFields(("selected_city",), ("cities",)),
    Level.SOCIETY: LevelFields(("selected_society",), ("societies",)),
    Level.UNIT: LevelFields(("selected_block", "selected_tower"), ("blocks", "towers")),
    Level.FLAT: LevelFields(("selected_flat",), ("flats",)),
}

# Slots opened underneath a selection at each level.
CHILD_SLOTS: Dict[Level, Tuple[str, ...]] = {
    Level.COUNTRY: ("states",),
    Level.STATE: ("cities",),
    Level.CITY: ("societies",),
    Level.SOCIETY: ("blocks", "towers", "flats"),
    Level.UNIT: ("flats",),
    Level.FLAT: (),
}

SLOTS = ("countries", "states", "cities", "societies", "blocks", "towers", "flats")

# entity noun used in event kinds -> (slot, level)
NOUNS: Dict[str, Tuple[str, Level]] = {
    "country": ("countries", Level.COUNTRY),
    "state": ("states", Level.STATE),
    "city": ("cities", Level.CITY),
    "society": ("societies", Level.SOCIETY),
    "block": ("blocks", Level.UNIT),
    "tower": ("towers", Level.UNIT),
    "flat": ("flats", Level.FLAT),
}
SELECTION_FOR_SLOT = {slot: f"selected_{noun}" for noun, (slot, _) in NOUNS.items()}

Listener = Callable[[HierarchySnapshot], None]


async def _resolved(result: Result) -> Result:
    return result


class SelectionStateMachine:
    """
    One consumer session over the hierarchy.

    Use as ``async with SelectionStateMachine(repository) as session``; entering
    opens the root country subscription, leaving cancels every subscription
    and pending mutation. Selection events apply synchronously; mutation
    events run as tasks and report failures through ``last_error``.
    """

    def __init__(
        self,
        repository: HierarchyRepository,
        clear_on_delete: Optional[bool] = None,
    ):
        self._repository = repository
        if clear_on_delete is None:
            clear_on_delete = bool(configs.get("selection", {}).get("clear_on_delete", False))
        self.clear_on_delete = clear_on_delete
        self._snapshot = HierarchySnapshot()
        self._subscriptions = SubscriptionManager(self._deliver)
        self._listeners: List[Listener] = []
        self._pending: Set[asyncio.Task] = set()
        self._started = False
        self._closed = False

    async def __aenter__(self) -> "SelectionStateMachine":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._open_slots(("countries",))
        logger.info("Selection session started")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await self._subscriptions.aclose()
        self._listeners.clear()
        logger.info("Selection session closed")

    # --- Read side ---

    @property
    def snapshot(self) -> HierarchySnapshot:
        return self._snapshot

    def current_snapshot(self) -> HierarchySnapshot:
        return self._snapshot

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Calls ``listener`` with every new snapshot; returns the remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- Write side ---

    def submit(self, event: Union[Any, Dict[str, Any]]) -> Optional[asyncio.Task]:
        """
        Applies one event. Selection events return None once applied;
        mutation events return the task that resolves to their ``Result``.
        """
        if self._closed:
            raise RuntimeError("Selection session is closed")
        if isinstance(event, dict):
            event = event_adapter.validate_python(event)
        handler = getattr(self, f"_on_{event.kind}")
        if event.kind in SELECTION_KINDS:
            handler(event)
            return None
        try:
            call = handler(event)
        except ValidationFailure as exc:
            call = _resolved(Result.failure(exc))
        task = asyncio.get_running_loop().create_task(
            self._complete(event, call), name=f"mutation:{event.kind}"
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def select_country(self, country: Country) -> None:
        self._select(Level.COUNTRY, selected_country=country)

    def select_state(self, state: State) -> None:
        self._select(Level.STATE, selected_state=state)

    def select_city(self, city: City) -> None:
        self._select(Level.CITY, selected_city=city)

    def select_society(self, society: Society) -> None:
        self._select(Level.SOCIETY, selected_society=society)

    def select_block(self, block: Block) -> None:
        self._select(Level.UNIT, selected_block=block, selected_tower=None)

    def select_tower(self, tower: Tower) -> None:
        self._select(Level.UNIT, selected_tower=tower, selected_block=None)

    def select_flat(self, flat: Flat) -> None:
        self._select(Level.FLAT, selected_flat=flat)

    # --- Cascade ---

    def _select(self, level: Level, **selection) -> None:
        changes = self._clear_below(level)
        changes.update(selection)
        self._open_slots(CHILD_SLOTS[level], **changes)

    def _clear_below(self, level: Level) -> Dict[str, Any]:
        """Cancels and empties every level under ``level``; returns the field updates."""
        changes: Dict[str, Any] = {}
        cleared: List[str] = []
        for lower in Level:
            if lower <= level:
                continue
            for name in LEVELS[lower].selections:
                changes[name] = None
            for name in LEVELS[lower].collections:
                changes[name] = ()
                cleared.append(name)
        self._subscriptions.cancel_many(cleared)
        changes["loading"] = tuple(
            slot for slot in self._snapshot.loading if slot not in cleared
        )
        return changes

    def _open_slots(self, slots: Iterable[str], **changes) -> None:
        """Applies ``changes`` and opens ``slots`` for the result in one commit."""
        pending = self._snapshot.model_copy(update=changes)
        loading = list(pending.loading)
        for slot in slots:
            target = self._query_for(slot, pending)
            if target is None:
                continue
            parent_id, query = target
            self._subscriptions.open(slot, parent_id, query)
            if slot not in loading:
                loading.append(slot)
        changes["loading"] = tuple(loading)
        self._commit(**changes)

    def _query_for(self, slot: str, snapshot: HierarchySnapshot):
        """(parent id, live query) the selection in ``snapshot`` implies for ``slot``."""
        repository = self._repository
        if slot == "countries":
            return None, repository.countries()
        if slot == "states":
            return _scoped(snapshot.selected_country, repository.states_of)
        if slot == "cities":
            return _scoped(snapshot.selected_state, repository.cities_of)
        if slot == "societies":
            return _scoped(snapshot.selected_city, repository.societies_of)
        if slot == "blocks":
            return _scoped(snapshot.selected_society, repository.blocks_of)
        if slot == "towers":
            return _scoped(snapshot.selected_society, repository.towers_of)
        if slot == "flats":
            if snapshot.selected_tower is not None:
                return _scoped(snapshot.selected_tower, repository.flats_of_tower)
            if snapshot.selected_block is not None:
                return _scoped(snapshot.selected_block, repository.flats_of_block)
            return _scoped(snapshot.selected_society, repository.flats_of)
        raise ValueError(f"Unknown slot '{slot}'")

    def _deliver(self, subscription: SlotSubscription, emission: Any) -> None:
        if not self._subscriptions.is_current(subscription):
            return
        slot = subscription.slot
        loading = tuple(name for name in self._snapshot.loading if name != slot)
        if isinstance(emission, StoreError):
            logger.warning(f"Subscription {slot} ended with {emission.code}: {emission.message}")
            self._commit(loading=loading, last_error=ErrorInfo.from_error(emission, slot))
            return
        items = tuple(emission)
        changes: Dict[str, Any] = {slot: items, "loading": loading}
        field = SELECTION_FOR_SLOT[slot]
        selected = getattr(self._snapshot, field)
        if selected is not None:
            fresh = next((item for item in items if item.id == selected.id), None)
            if fresh is not None and fresh != selected:
                changes[field] = fresh
        self._commit(**changes)

    def _commit(self, **changes) -> None:
        snapshot = self._snapshot.model_copy(update=changes)
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    # --- Event handlers: selection ---

    def _on_select_country(self, event) -> None:
        self.select_country(event.country)

    def _on_select_state(self, event) -> None:
        self.select_state(event.state)

    def _on_select_city(self, event) -> None:
        self.select_city(event.city)

    def _on_select_society(self, event) -> None:
        self.select_society(event.society)

    def _on_select_block(self, event) -> None:
        self.select_block(event.block)

    def _on_select_tower(self, event) -> None:
        self.select_tower(event.tower)

    def _on_select_flat(self, event) -> None:
        self.select_flat(event.flat)

    def _on_clear_error(self, event) -> None:
        self._commit(last_error=None)

    def _on_reload(self, event) -> None:
        self._open_slots(SLOTS, last_error=None)

    # --- Event handlers: mutations ---
    # Each handler captures its inputs from the current snapshot synchronously
    # and returns the repository call to await.

    def _on_add_country(self, event) -> Awaitable[Result]:
        return self._repository.add_country(event.country)

    def _on_update_country(self, event) -> Awaitable[Result]:
        return self._repository.update_country(_require_id(event.country, "country"), event.country)

    def _on_delete_country(self, event) -> Awaitable[Result]:
        return self._repository.delete_country(event.country_id, cascade=event.cascade)

    def _on_add_state(self, event) -> Awaitable[Result]:
        country_id = self._parent(event.country_id, "country")
        return self._repository.add_state(country_id, event.state)

    def _on_update_state(self, event) -> Awaitable[Result]:
        return self._repository.update_state(_require_id(event.state, "state"), event.state)

    def _on_delete_state(self, event) -> Awaitable[Result]:
        return self._repository.delete_state(event.state_id, cascade=event.cascade)

    def _on_add_city(self, event) -> Awaitable[Result]:
        country_id = self._parent(event.country_id, "country")
        state_id = self._parent(event.state_id, "state")
        return self._repository.add_city(country_id, state_id, event.city)

    def _on_update_city(self, event) -> Awaitable[Result]:
        return self._repository.update_city(_require_id(event.city, "city"), event.city)

    def _on_delete_city(self, event) -> Awaitable[Result]:
        return self._repository.delete_city(event.city_id, cascade=event.cascade)

    def _on_add_society(self, event) -> Awaitable[Result]:
        country_id = self._parent(event.country_id, "country")
        state_id = self._parent(event.state_id, "state")
        city_id = self._parent(event.city_id, "city")
        return self._repository.add_society(country_id, state_id, city_id, event.society)

    def _on_update_society(self, event) -> Awaitable[Result]:
        return self._repository.update_society(
            _require_id(event.society, "society"), event.society
        )

    def _on_delete_society(self, event) -> Awaitable[Result]:
        return self._repository.delete_society(event.society_id, cascade=event.cascade)

    def _on_add_block(self, event) -> Awaitable[Result]:
        society_id = self._parent(event.society_id, "society")
        return self._repository.add_block(society_id, event.block)

    def _on_update_block(self, event) -> Awaitable[Result]:
        return self._repository.update_block(_require_id(event.block, "block"), event.block)

    def _on_delete_block(self, event) -> Awaitable[Result]:
        return self._repository.delete_block(event.block_id, cascade=event.cascade)

    def _on_add_tower(self, event) -> Awaitable[Result]:
        society_id = self._parent(event.society_id, "society")
        return self._repository.add_tower(society_id, event.tower, block_id=event.block_id)

    def _on_update_tower(self, event) -> Awaitable[Result]:
        return self._repository.update_tower(_require_id(event.tower, "tower"), event.tower)

    def _on_delete_tower(self, event) -> Awaitable[Result]:
        return self._repository.delete_tower(event.tower_id, cascade=event.cascade)

    def _on_add_flat(self, event) -> Awaitable[Result]:
        placement = self._placement()
        return self._repository.add_flat(placement, event.flat)

    def _on_update_flat(self, event) -> Awaitable[Result]:
        flat_id = _require_id(event.flat, "flat")
        placement = self._placement() if event.move else None
        return self._repository.update_flat(flat_id, event.flat, placement)

    def _on_delete_flat(self, event) -> Awaitable[Result]:
        return self._repository.delete_flat(event.flat_id)

    def _placement(self):
        snapshot = self._snapshot
        return resolve_parent(
            society=snapshot.selected_society,
            block=snapshot.selected_block,
            tower=snapshot.selected_tower,
        )

    def _parent(self, explicit_id: Optional[str], noun: str) -> str:
        if explicit_id:
            return explicit_id
        selected = getattr(self._snapshot, f"selected_{noun}")
        if selected is None or not selected.id:
            raise ValidationFailure(f"Select a {noun} first")
        return selected.id

    async def _complete(self, event, call: Awaitable[Result]) -> Result:
        result = await call
        if not result.ok:
            logger.warning(f"{event.kind} failed: {result.error.code}: {result.error.message}")
            self._commit(last_error=ErrorInfo.from_error(result.error, event.kind))
            return result
        verb, _, noun = event.kind.partition("_")
        slot, level = NOUNS[noun]
        # Live subscriptions push the confirmed change; a vacant slot is reopened.
        if self._subscriptions.active(slot) is None:
            self._open_slots((slot,))
        if verb == "delete" and self.clear_on_delete:
            self._forget(noun, level, getattr(event, f"{noun}_id"))
        return result

    def _forget(self, noun: str, level: Level, entity_id: str) -> None:
        field = f"selected_{noun}"
        selected = getattr(self._snapshot, field)
        if selected is None or selected.id != entity_id:
            return
        changes = self._clear_below(level)
        changes[field] = None
        # Back to the flats that hang directly off the society.
        self._open_slots(("flats",) if level is Level.UNIT else (), **changes)


def _scoped(parent, factory):
    if parent is None or not parent.id:
        return None
    return parent.id, factory(parent.id)


def _require_id(entity, noun: str) -> str:
    if not entity.id:
        raise ValidationFailure(f"Cannot update a {noun} that has no id")
    return entity.id
