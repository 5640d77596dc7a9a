# propertyhub/services/store.py
"""
Entity Store Adapter: uniform CRUD + live-subscription contract per entity
type, plus a process-local implementation of it.

Live queries push full-collection snapshots, never deltas. A subscription
that fails emits one terminal ``SubscriptionError`` value and stops; it does
not retry.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from propertyhub.services.errors import (
    NotFound,
    Result,
    StoreError,
    StoreUnavailable,
    SubscriptionError,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Emission = Union[List[T], StoreError]


@dataclass(frozen=True)
class QueryDescriptor:
    """Equality filters plus an ordering field; a None value matches null."""

    filters: Tuple[Tuple[str, Optional[str]], ...] = ()
    order_by: str = "name"

    @classmethod
    def where(cls, order_by: str = "name", **filters: Optional[str]):
        return cls(filters=tuple(sorted(filters.items())), order_by=order_by)

    def matches(self, entity: BaseModel) -> bool:
        return all(getattr(entity, field, None) == value for field, value in self.filters)

    def apply(self, entities: Iterable[T]) -> List[T]:
        selected = [entity for entity in entities if self.matches(entity)]
        return sorted(
            selected,
            key=lambda entity: (getattr(entity, self.order_by, ""), entity.id or ""),
        )

    def to_mongo(self) -> Dict[str, Any]:
        return {field: value for field, value in self.filters}

    def describe(self) -> str:
        if not self.filters:
            return "all"
        return ", ".join(f"{field}={value}" for field, value in self.filters)


class LiveQuery(Generic[T]):
    """
    A cancelable stream of snapshots for one query.

    Iterate with ``async for``; each item is either the full current list or a
    terminal ``SubscriptionError``. ``cancel()`` is synchronous: once it
    returns, the iterator yields nothing more.

    ``connect`` runs before the first fetch, so a change landing between that
    fetch and the start of ``changes`` is still observed.
    """

    def __init__(
        self,
        description: str,
        fetch: Callable[[], Awaitable[List[T]]],
        changes: AsyncIterator[Any],
        release: Optional[Callable[[], None]] = None,
        connect: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.description = description
        self._fetch = fetch
        self._changes = changes
        self._release = release
        self._connect = connect
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._release is not None:
            self._release()

    def __aiter__(self) -> AsyncIterator[Emission]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Emission]:
        last: Optional[List[T]] = None
        try:
            if self.cancelled:
                return
            if self._connect is not None:
                await self._connect()
                if self.cancelled:
                    return
            last = await self._fetch()
            if self.cancelled:
                return
            yield last
            async for _change in self._changes:
                if self.cancelled:
                    return
                snapshot = await self._fetch()
                if self.cancelled:
                    return
                if snapshot != last:
                    last = snapshot
                    yield snapshot
        except StoreError as exc:
            if not self.cancelled:
                logger.warning(f"Live query '{self.description}' failed: {exc.message}")
                yield SubscriptionError(
                    f"{self.description}: {exc.message}", cause=exc
                )
        except Exception as exc:
            if not self.cancelled:
                logger.exception(f"Live query '{self.description}' crashed: {exc}")
                yield SubscriptionError(f"{self.description}: {exc}", cause=exc)
        finally:
            self.cancel()


class EntityStore(ABC, Generic[T]):
    """
    Adapter contract for one entity collection.

    Public methods never raise store failures; they come back inside a
    ``Result``. Concrete stores implement the underscored primitives and list
    their driver exceptions in ``driver_errors``.
    """

    driver_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, entity_cls: Type[T]):
        self.entity_cls = entity_cls
        self.name = entity_cls.__name__

    def translate_error(self, exc: BaseException) -> StoreError:
        return StoreUnavailable(str(exc), cause=exc)

    async def _guard(self, operation: str, call: Awaitable[Any]) -> Result:
        try:
            return Result.success(await call)
        except StoreError as exc:
            logger.warning(f"{self.name}.{operation} failed: {exc.message}")
            return Result.failure(exc)
        except self.driver_errors as exc:
            error = self.translate_error(exc)
            logger.warning(f"{self.name}.{operation} failed: {error.message}")
            return Result.failure(error)
        except PydanticValidationError as exc:
            logger.warning(f"{self.name}.{operation} rejected invalid fields: {exc}")
            return Result.failure(ValidationFailure(str(exc), cause=exc))

    async def create(self, entity: T) -> Result[str]:
        return await self._guard("create", self._create(entity))

    async def update(
        self, entity_id: str, changes: Union[T, Dict[str, Any]]
    ) -> Result[None]:
        if isinstance(changes, BaseModel):
            fields = changes.model_dump(exclude={"id"})
        else:
            fields = {key: value for key, value in changes.items() if key != "id"}
        return await self._guard("update", self._update(entity_id, fields))

    async def delete(self, entity_id: str) -> Result[None]:
        return await self._guard("delete", self._delete(entity_id))

    async def get_by_id(self, entity_id: str) -> Result[Optional[T]]:
        return await self._guard("get_by_id", self._get(entity_id))

    async def find(self, query: QueryDescriptor) -> Result[List[T]]:
        return await self._guard("find", self._find(query))

    @abstractmethod
    def subscribe(self, query: QueryDescriptor) -> LiveQuery[T]: ...

    @abstractmethod
    async def _create(self, entity: T) -> str: ...

    @abstractmethod
    async def _update(self, entity_id: str, fields: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def _delete(self, entity_id: str) -> None: ...

    @abstractmethod
    async def _get(self, entity_id: str) -> Optional[T]: ...

    @abstractmethod
    async def _find(self, query: QueryDescriptor) -> List[T]: ...


_CHANGED = object()
_CLOSED = object()


class InMemoryEntityStore(EntityStore[T]):
    """Dict-backed store; every write wakes all open live queries."""

    def __init__(self, entity_cls: Type[T]):
        super().__init__(entity_cls)
        self._rows: Dict[str, T] = {}
        self._listeners: List[asyncio.Queue] = []
        self.available = True

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailable(f"{self.name} store is offline")

    def _notify(self, item: Any = _CHANGED) -> None:
        for queue in list(self._listeners):
            queue.put_nowait(item)

    async def _create(self, entity: T) -> str:
        self._check_available()
        entity_id = uuid.uuid4().hex
        self._rows[entity_id] = entity.model_copy(update={"id": entity_id})
        self._notify()
        return entity_id

    async def _update(self, entity_id: str, fields: Dict[str, Any]) -> None:
        self._check_available()
        current = self._rows.get(entity_id)
        if current is None:
            raise NotFound(f"{self.name} {entity_id} not found")
        merged = {**current.model_dump(), **fields, "id": entity_id}
        self._rows[entity_id] = self.entity_cls.model_validate(merged)
        self._notify()

    async def _delete(self, entity_id: str) -> None:
        self._check_available()
        if self._rows.pop(entity_id, None) is None:
            raise NotFound(f"{self.name} {entity_id} not found")
        self._notify()

    async def _get(self, entity_id: str) -> Optional[T]:
        self._check_available()
        return self._rows.get(entity_id)

    async def _find(self, query: QueryDescriptor) -> List[T]:
        self._check_available()
        return query.apply(self._rows.values())

    def subscribe(self, query: QueryDescriptor) -> LiveQuery[T]:
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.append(queue)

        def release() -> None:
            if queue in self._listeners:
                self._listeners.remove(queue)
            queue.put_nowait(_CLOSED)

        async def changes() -> AsyncIterator[Any]:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                if isinstance(item, StoreError):
                    raise item
                yield item

        return LiveQuery(
            f"{self.name} where {query.describe()}",
            fetch=lambda: self._find(query),
            changes=changes(),
            release=release,
        )

    def fail_subscriptions(self, error: Optional[StoreError] = None) -> None:
        """Terminates every open live query with an error value."""
        self._notify(error or StoreUnavailable(f"{self.name} stream dropped"))


async def first_snapshot(query: LiveQuery[T]) -> Result[List[T]]:
    """Reads one snapshot from a live query and cancels it."""
    try:
        async with aclosing(aiter(query)) as emissions:
            async for emission in emissions:
                if isinstance(emission, StoreError):
                    return Result.failure(emission)
                return Result.success(emission)
    finally:
        query.cancel()
    return Result.failure(SubscriptionError(f"{query.description} closed without data"))
