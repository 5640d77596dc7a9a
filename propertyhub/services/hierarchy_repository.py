# propertyhub/services/hierarchy_repository.py
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Set, Tuple, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from propertyhub.schemas.hierarchy import (
    Block,
    City,
    Country,
    Flat,
    Placement,
    Society,
    State,
    Tower,
)
from propertyhub.services.db import StoreMap, init_memory_stores
from propertyhub.services.errors import NotFound, Result, StoreError, ValidationFailure
from propertyhub.services.store import EntityStore, LiveQuery, QueryDescriptor

logger = logging.getLogger(__name__)

FLAT_PARENT_FIELDS = ("society_id", "block_id", "tower_id")


@dataclass(frozen=True)
class EntityRules:
    """Containment rules for one entity type."""

    label: str
    title_field: str = "name"
    # Parent pointers that must be set and must exist.
    parents: Tuple[Tuple[str, Type[BaseModel]], ...] = ()
    # Parent pointers that may be None but must exist when set.
    optional_parents: Tuple[Tuple[str, Type[BaseModel]], ...] = ()
    # (child type, child field pointing here), used by cascade delete.
    children: Tuple[Tuple[Type[BaseModel], str], ...] = ()


RULES: Dict[Type[BaseModel], EntityRules] = {
    Country: EntityRules("country", children=((State, "country_id"),)),
    State: EntityRules(
        "state",
        parents=(("country_id", Country),),
        children=((City, "state_id"),),
    ),
    City: EntityRules(
        "city",
        parents=(("country_id", Country), ("state_id", State)),
        children=((Society, "city_id"),),
    ),
    Society: EntityRules(
        "society",
        parents=(("country_id", Country), ("state_id", State), ("city_id", City)),
        children=((Block, "society_id"), (Tower, "society_id"), (Flat, "society_id")),
    ),
    Block: EntityRules(
        "block",
        parents=(("society_id", Society),),
        children=((Tower, "block_id"), (Flat, "block_id")),
    ),
    Tower: EntityRules(
        "tower",
        parents=(("society_id", Society),),
        optional_parents=(("block_id", Block),),
        children=((Flat, "tower_id"),),
    ),
    Flat: EntityRules(
        "flat",
        title_field="number",
        parents=(("society_id", Society),),
        optional_parents=(("block_id", Block), ("tower_id", Tower)),
    ),
}


class HierarchyRepository:
    """
    Typed, stateless facade over the per-entity stores.

    Every query is scoped to a parent. Every mutation returns a ``Result``;
    store failures never escape as exceptions.
    """

    def __init__(self, stores: StoreMap):
        missing = [cls.__name__ for cls in RULES if cls not in stores]
        if missing:
            raise ValueError(f"No store configured for: {', '.join(missing)}")
        self._stores = stores

    @classmethod
    def in_memory(cls) -> "HierarchyRepository":
        return cls(init_memory_stores())

    def store(self, entity_cls: Type[BaseModel]) -> EntityStore:
        return self._stores[entity_cls]

    # --- Live queries ---

    def countries(self) -> LiveQuery[Country]:
        return self._stores[Country].subscribe(QueryDescriptor.where())

    def states_of(self, country_id: str) -> LiveQuery[State]:
        return self._stores[State].subscribe(QueryDescriptor.where(country_id=country_id))

    def cities_of(self, state_id: str) -> LiveQuery[City]:
        return self._stores[City].subscribe(QueryDescriptor.where(state_id=state_id))

    def societies_of(self, city_id: str) -> LiveQuery[Society]:
        return self._stores[Society].subscribe(QueryDescriptor.where(city_id=city_id))

    def blocks_of(self, society_id: str) -> LiveQuery[Block]:
        return self._stores[Block].subscribe(QueryDescriptor.where(society_id=society_id))

    def towers_of(self, society_id: str) -> LiveQuery[Tower]:
        return self._stores[Tower].subscribe(QueryDescriptor.where(society_id=society_id))

    def towers_of_block(self, block_id: str) -> LiveQuery[Tower]:
        return self._stores[Tower].subscribe(QueryDescriptor.where(block_id=block_id))

    def flats_of(self, society_id: str) -> LiveQuery[Flat]:
        """Flats attached directly to the society, outside any block or tower."""
        return self._stores[Flat].subscribe(
            QueryDescriptor.where(
                order_by="number", society_id=society_id, block_id=None, tower_id=None
            )
        )

    def flats_of_block(self, block_id: str) -> LiveQuery[Flat]:
        return self._stores[Flat].subscribe(
            QueryDescriptor.where(order_by="number", block_id=block_id)
        )

    def flats_of_tower(self, tower_id: str) -> LiveQuery[Flat]:
        return self._stores[Flat].subscribe(
            QueryDescriptor.where(order_by="number", tower_id=tower_id)
        )

    # --- Point lookups ---

    async def get_country(self, country_id: str) -> Result[Optional[Country]]:
        return await self._stores[Country].get_by_id(country_id)

    async def get_state(self, state_id: str) -> Result[Optional[State]]:
        return await self._stores[State].get_by_id(state_id)

    async def get_city(self, city_id: str) -> Result[Optional[City]]:
        return await self._stores[City].get_by_id(city_id)

    async def get_society(self, society_id: str) -> Result[Optional[Society]]:
        return await self._stores[Society].get_by_id(society_id)

    async def get_block(self, block_id: str) -> Result[Optional[Block]]:
        return await self._stores[Block].get_by_id(block_id)

    async def get_tower(self, tower_id: str) -> Result[Optional[Tower]]:
        return await self._stores[Tower].get_by_id(tower_id)

    async def get_flat(self, flat_id: str) -> Result[Optional[Flat]]:
        return await self._stores[Flat].get_by_id(flat_id)

    # --- Country ---

    async def add_country(self, country: Country) -> Result[str]:
        return await self._run("add_country", self._add(country))

    async def update_country(self, country_id: str, changes) -> Result[None]:
        return await self._run("update_country", self._update(Country, country_id, changes))

    async def delete_country(self, country_id: str, cascade: bool = False) -> Result[None]:
        return await self._run("delete_country", self._delete(Country, country_id, cascade))

    # --- State ---

    async def add_state(self, country_id: str, state: State) -> Result[str]:
        state = state.model_copy(update={"country_id": country_id})
        return await self._run("add_state", self._add(state))

    async def update_state(self, state_id: str, changes) -> Result[None]:
        return await self._run("update_state", self._update(State, state_id, changes))

    async def delete_state(self, state_id: str, cascade: bool = False) -> Result[None]:
        return await self._run("delete_state", self._delete(State, state_id, cascade))

    # --- City ---

    async def add_city(self, country_id: str, state_id: str, city: City) -> Result[str]:
        city = city.model_copy(update={"country_id": country_id, "state_id": state_id})
        return await self._run("add_city", self._add(city))

    async def update_city(self, city_id: str, changes) -> Result[None]:
        return await self._run("update_city", self._update(City, city_id, changes))

    async def delete_city(self, city_id: str, cascade: bool = False) -> Result[None]:
        return await self._run("delete_city", self._delete(City, city_id, cascade))

    # --- Society ---

    async def add_society(
        self, country_id: str, state_id: str, city_id: str, society: Society
    ) -> Result[str]:
        society = society.model_copy(
            update={"country_id": country_id, "state_id": state_id, "city_id": city_id}
        )
        return await self._run("add_society", self._add(society))

    async def update_society(self, society_id: str, changes) -> Result[None]:
        return await self._run("update_society", self._update(Society, society_id, changes))

    async def delete_society(self, society_id: str, cascade: bool = False) -> Result[None]:
        return await self._run("delete_society", self._delete(Society, society_id, cascade))

    # --- Block ---

    async def add_block(self, society_id: str, block: Block) -> Result[str]:
        block = block.model_copy(update={"society_id": society_id})
        return await self._run("add_block", self._add(block))

    async def update_block(self, block_id: str, changes) -> Result[None]:
        return await self._run("update_block", self._update(Block, block_id, changes))

    async def delete_block(self, block_id: str, cascade: bool = False) -> Result[None]:
        return await self._run("delete_block", self._delete(Block, block_id, cascade))

    # --- Tower ---

    async def add_tower(
        self, society_id: str, tower: Tower, block_id: Optional[str] = None
    ) -> Result[str]:
        tower = tower.model_copy(update={"society_id": society_id, "block_id": block_id})
        return await self._run("add_tower", self._add(tower))

    async def update_tower(self, tower_id: str, changes) -> Result[None]:
        return await self._run("update_tower", self._update(Tower, tower_id, changes))

    async def delete_tower(self, tower_id: str, cascade: bool = False) -> Result[None]:
        return await self._run("delete_tower", self._delete(Tower, tower_id, cascade))

    # --- Flat ---

    async def add_flat(self, placement: Placement, flat: Flat) -> Result[str]:
        """Creates a flat under a placement produced by the placement resolver."""
        flat = flat.model_copy(update=placement.model_dump())
        return await self._run("add_flat", self._add(flat))

    async def update_flat(
        self,
        flat_id: str,
        changes: Union[Flat, Dict[str, Any]],
        placement: Optional[Placement] = None,
    ) -> Result[None]:
        """
        Updates a flat's own fields and, when a placement is given, moves it.
        Parent pointers only change through a resolved placement.
        """
        if isinstance(changes, dict) and any(key in changes for key in FLAT_PARENT_FIELDS):
            return Result.failure(
                ValidationFailure("Flat parents can only change through a placement")
            )
        fields = _changed_fields(changes)
        for key in FLAT_PARENT_FIELDS:
            fields.pop(key, None)
        if placement is not None:
            fields.update(placement.model_dump())
        return await self._run("update_flat", self._update(Flat, flat_id, fields))

    async def delete_flat(self, flat_id: str) -> Result[None]:
        return await self._run("delete_flat", self._delete(Flat, flat_id, cascade=False))

    # --- Internals ---

    async def _run(self, operation: str, call: Awaitable[Any]) -> Result:
        try:
            return Result.success(await call)
        except StoreError as exc:
            logger.warning(f"{operation} failed: {exc.code}: {exc.message}")
            return Result.failure(exc)

    async def _add(self, entity: BaseModel) -> str:
        entity_cls = type(entity)
        await self._validate(entity)
        entity_id = (await self._stores[entity_cls].create(entity)).unwrap()
        logger.info(f"Created {RULES[entity_cls].label} {entity_id}")
        return entity_id

    async def _update(self, entity_cls: Type[BaseModel], entity_id: str, changes) -> None:
        store = self._stores[entity_cls]
        current = (await store.get_by_id(entity_id)).unwrap()
        if current is None:
            raise NotFound(f"{RULES[entity_cls].label} {entity_id} not found")
        fields = _changed_fields(changes)
        try:
            merged = entity_cls.model_validate(
                {**current.model_dump(), **fields, "id": entity_id}
            )
        except PydanticValidationError as exc:
            raise ValidationFailure(
                f"Invalid {RULES[entity_cls].label} fields: {exc}", cause=exc
            )
        await self._validate(merged)
        await self._check_reparent(current, merged)
        (await store.update(entity_id, fields)).unwrap()

    async def _check_reparent(self, current: BaseModel, merged: BaseModel) -> None:
        """An entity with children keeps its parent pointers."""
        rules = RULES[type(current)]
        moved = [
            field
            for field, _ in rules.parents + rules.optional_parents
            if getattr(current, field) != getattr(merged, field)
        ]
        if not moved:
            return
        for child_cls, field in rules.children:
            query = QueryDescriptor.where(
                order_by=RULES[child_cls].title_field, **{field: current.id}
            )
            if (await self._stores[child_cls].find(query)).unwrap():
                raise ValidationFailure(
                    f"Cannot change {', '.join(moved)} of {rules.label} {current.id} "
                    f"while it still has {RULES[child_cls].label} children"
                )

    async def _delete(self, entity_cls: Type[BaseModel], entity_id: str, cascade: bool) -> None:
        store = self._stores[entity_cls]
        if cascade:
            for child_cls, child_id in await self._descendants(entity_cls, entity_id):
                result = await self._stores[child_cls].delete(child_id)
                if not result.ok and not isinstance(result.error, NotFound):
                    raise result.error
        (await store.delete(entity_id)).unwrap()
        logger.info(f"Deleted {RULES[entity_cls].label} {entity_id} (cascade={cascade})")

    async def _descendants(
        self, entity_cls: Type[BaseModel], entity_id: str
    ) -> List[Tuple[Type[BaseModel], str]]:
        """Every descendant, deepest first, each listed once."""
        ordered: List[Tuple[Type[BaseModel], str]] = []
        seen: Set[Tuple[Type[BaseModel], str]] = set()

        async def walk(parent_cls: Type[BaseModel], parent_id: str) -> None:
            for child_cls, field in RULES[parent_cls].children:
                query = QueryDescriptor.where(
                    order_by=RULES[child_cls].title_field, **{field: parent_id}
                )
                for child in (await self._stores[child_cls].find(query)).unwrap():
                    key = (child_cls, child.id)
                    if key in seen:
                        continue
                    seen.add(key)
                    await walk(child_cls, child.id)
                    ordered.append(key)

        await walk(entity_cls, entity_id)
        return ordered

    async def _validate(self, entity: BaseModel) -> None:
        entity_cls = type(entity)
        rules = RULES[entity_cls]
        if not str(getattr(entity, rules.title_field, "")).strip():
            raise ValidationFailure(
                f"{rules.label.capitalize()} {rules.title_field} cannot be empty"
            )
        if entity_cls is Flat and entity.block_id and entity.tower_id:
            raise ValidationFailure("A flat cannot belong to both a block and a tower")

        required = {field for field, _ in rules.parents}
        checks = [(field, cls, True) for field, cls in rules.parents]
        checks += [(field, cls, False) for field, cls in rules.optional_parents]
        for field, parent_cls, mandatory in checks:
            parent_id = getattr(entity, field)
            if parent_id is None:
                if mandatory:
                    raise ValidationFailure(f"{rules.label.capitalize()} requires {field}")
                continue
            parent = (await self._stores[parent_cls].get_by_id(parent_id)).unwrap()
            if parent is None:
                raise NotFound(f"{RULES[parent_cls].label} {parent_id} not found")
            # The parent must agree with the child on every shared ancestor.
            for ancestor_field in required:
                if ancestor_field == field or not hasattr(parent, ancestor_field):
                    continue
                if getattr(parent, ancestor_field) != getattr(entity, ancestor_field):
                    raise ValidationFailure(
                        f"{RULES[parent_cls].label} {parent_id} does not belong to "
                        f"{ancestor_field}={getattr(entity, ancestor_field)}"
                    )


def _changed_fields(changes: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(changes, BaseModel):
        return changes.model_dump(exclude={"id"})
    return {key: value for key, value in changes.items() if key != "id"}
