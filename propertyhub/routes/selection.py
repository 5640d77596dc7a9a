# propertyhub/routes/selection.py
import asyncio
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from propertyhub.schemas.selection import HierarchySnapshot, event_adapter
from propertyhub.services.selection import SelectionStateMachine

logger = logging.getLogger(__name__)

router = APIRouter()


def snapshot_message(snapshot: HierarchySnapshot) -> dict:
    return {"type": "snapshot", "snapshot": snapshot.model_dump(mode="json")}


async def _forward(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        message = await outbox.get()
        if isinstance(message, HierarchySnapshot):
            message = snapshot_message(message)
        await websocket.send_json(message)


@router.websocket("/ws")
async def selection_session(websocket: WebSocket):
    """
    One selection session per connection. The server pushes a snapshot
    message on every change; the client sends event objects such as
    {"kind": "select_country", "country": {...}}.
    """
    await websocket.accept()
    repository = getattr(websocket.app.state, "repository", None)
    if repository is None:
        logger.error("Selection websocket refused: hierarchy repository is not attached")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    outbox: asyncio.Queue = asyncio.Queue()
    async with SelectionStateMachine(repository) as session:
        outbox.put_nowait(session.current_snapshot())
        session.add_listener(outbox.put_nowait)
        sender = asyncio.create_task(_forward(websocket, outbox))
        logger.info("Selection websocket session opened")
        try:
            while True:
                payload = await websocket.receive_json()
                try:
                    event = event_adapter.validate_python(payload)
                except ValidationError as exc:
                    outbox.put_nowait(
                        {
                            "type": "rejected",
                            "detail": exc.errors(include_url=False, include_context=False),
                        }
                    )
                    continue
                task = session.submit(event)
                if task is not None:
                    await task
        except WebSocketDisconnect:
            logger.info("Selection websocket session closed by client")
        finally:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
