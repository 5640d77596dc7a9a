# propertyhub/services/mongo_store.py
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Type

from beanie import Document, PydanticObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from propertyhub.services.errors import NotFound, StoreError, StoreUnavailable
from propertyhub.services.store import EntityStore, LiveQuery, QueryDescriptor, T

logger = logging.getLogger(__name__)

# Change-stream operations that can alter a scoped snapshot.
WATCHED_OPERATIONS = ["insert", "update", "replace", "delete"]


def to_object_id(entity_id: str) -> PydanticObjectId:
    try:
        return PydanticObjectId(entity_id)
    except (InvalidId, TypeError) as exc:
        raise NotFound(f"'{entity_id}' is not a valid document id", cause=exc)


def change_stream_pipeline() -> List[Dict[str, Any]]:
    return [{"$match": {"operationType": {"$in": WATCHED_OPERATIONS}}}]


class MongoEntityStore(EntityStore[T]):
    """
    Entity store over a Beanie document class.

    CRUD goes through Beanie; live queries watch the collection's change
    stream (replica set required) and re-run the scoped find on every change.
    """

    driver_errors = (PyMongoError,)

    def __init__(self, entity_cls: Type[T], document_cls: Type[Document]):
        super().__init__(entity_cls)
        self.document_cls = document_cls

    def translate_error(self, exc: BaseException) -> StoreError:
        if isinstance(exc, ConnectionFailure):
            return StoreUnavailable(f"MongoDB unreachable: {exc}", cause=exc)
        if isinstance(exc, OperationFailure):
            return StoreUnavailable(f"MongoDB rejected the operation: {exc}", cause=exc)
        return StoreUnavailable(str(exc), cause=exc)

    def to_entity(self, document: Document) -> T:
        data = document.model_dump(exclude={"id", "revision_id"})
        data["id"] = str(document.id)
        return self.entity_cls.model_validate(data)

    def to_document(self, entity: T) -> Document:
        return self.document_cls(**entity.model_dump(exclude={"id"}))

    async def _create(self, entity: T) -> str:
        document = self.to_document(entity)
        await document.insert()
        return str(document.id)

    async def _update(self, entity_id: str, fields: Dict[str, Any]) -> None:
        document = await self.document_cls.get(to_object_id(entity_id))
        if document is None:
            raise NotFound(f"{self.name} {entity_id} not found")
        await document.set(fields)

    async def _delete(self, entity_id: str) -> None:
        document = await self.document_cls.get(to_object_id(entity_id))
        if document is None:
            raise NotFound(f"{self.name} {entity_id} not found")
        await document.delete()

    async def _get(self, entity_id: str) -> Optional[T]:
        try:
            object_id = PydanticObjectId(entity_id)
        except (InvalidId, TypeError):
            return None
        document = await self.document_cls.get(object_id)
        return self.to_entity(document) if document else None

    async def _find(self, query: QueryDescriptor) -> List[T]:
        documents = (
            await self.document_cls.find(query.to_mongo())
            .sort([(query.order_by, ASCENDING), ("_id", ASCENDING)])
            .to_list()
        )
        return [self.to_entity(document) for document in documents]

    async def _fetch_for_stream(self, query: QueryDescriptor) -> List[T]:
        try:
            return await self._find(query)
        except PyMongoError as exc:
            raise self.translate_error(exc)

    def collection(self):
        return self.document_cls.get_pymongo_collection()

    def subscribe(self, query: QueryDescriptor) -> LiveQuery[T]:
        feed = ChangeFeed(self.collection, self.translate_error)
        return LiveQuery(
            f"{self.name} where {query.describe()}",
            fetch=lambda: self._fetch_for_stream(query),
            changes=feed.events(),
            release=feed.close,
            connect=feed.open,
        )


# Close tasks scheduled by ChangeFeed.close; kept referenced until done.
_pending_closes: Set["asyncio.Task[None]"] = set()


def _close_finished(task: "asyncio.Task[None]") -> None:
    _pending_closes.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Closing a change stream failed: {task.exception()}")


class ChangeFeed:
    """
    One change stream for one live query.

    ``open`` starts the watch, ``events`` iterates it and ``close`` releases
    the server-side cursor without waiting for the consumer.
    """

    def __init__(
        self,
        collection: Callable[[], Any],
        translate_error: Callable[[BaseException], StoreError],
    ):
        self._collection = collection
        self._translate_error = translate_error
        self._stream = None
        self.closed = False

    async def open(self) -> None:
        try:
            stream = await self._collection().watch(pipeline=change_stream_pipeline())
        except PyMongoError as exc:
            raise self._translate_error(exc)
        if self.closed:
            await stream.close()
            return
        self._stream = stream

    async def events(self) -> AsyncIterator[Any]:
        if self._stream is None and not self.closed:
            await self.open()
        try:
            while self._stream is not None:
                try:
                    change = await self._stream.__anext__()
                except StopAsyncIteration:
                    return
                except PyMongoError as exc:
                    if self.closed:
                        return
                    raise self._translate_error(exc)
                yield change
        finally:
            self.close()

    def close(self) -> None:
        self.closed = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        task = asyncio.get_running_loop().create_task(stream.close())
        _pending_closes.add(task)
        task.add_done_callback(_close_finished)
