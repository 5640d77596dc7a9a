# propertyhub/services/subscriptions.py
import asyncio
import logging
from contextlib import aclosing
from typing import Any, Callable, Dict, List, Optional

from propertyhub.services.errors import StoreError
from propertyhub.services.store import LiveQuery

logger = logging.getLogger(__name__)


class SlotSubscription:
    """Handle for the live query currently occupying one slot."""

    def __init__(self, slot: str, parent_id: Optional[str], query: LiveQuery):
        self.slot = slot
        self.parent_id = parent_id
        self.query = query
        self.task: Optional[asyncio.Task] = None
        self.cancelled = False
        self.emissions = 0

    @property
    def key(self):
        return (self.slot, self.parent_id)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self.query.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    def __repr__(self) -> str:
        return f"SlotSubscription(slot={self.slot!r}, parent_id={self.parent_id!r})"


Deliver = Callable[[SlotSubscription, Any], None]


class SubscriptionManager:
    """
    Keeps at most one live query per slot.

    ``open`` always cancels the slot's previous occupant before installing
    the new one, and a cancelled handle never delivers again, so a late
    snapshot from an old parent cannot overwrite the new parent's data.
    """

    def __init__(self, deliver: Deliver):
        self._deliver = deliver
        self._slots: Dict[str, SlotSubscription] = {}
        self._retired: List[asyncio.Task] = []

    @property
    def slots(self) -> Dict[str, Optional[str]]:
        """Active slot name -> parent id."""
        return {slot: sub.parent_id for slot, sub in self._slots.items()}

    def active(self, slot: str) -> Optional[SlotSubscription]:
        return self._slots.get(slot)

    def is_current(self, subscription: SlotSubscription) -> bool:
        return not subscription.cancelled and self._slots.get(subscription.slot) is subscription

    def open(self, slot: str, parent_id: Optional[str], query: LiveQuery) -> SlotSubscription:
        self.cancel(slot)
        subscription = SlotSubscription(slot, parent_id, query)
        self._slots[slot] = subscription
        subscription.task = asyncio.get_running_loop().create_task(
            self._pump(subscription), name=f"subscription:{slot}:{parent_id}"
        )
        logger.info(f"Opened subscription {slot} for parent {parent_id}")
        return subscription

    def cancel(self, slot: str) -> None:
        subscription = self._slots.pop(slot, None)
        if subscription is None:
            return
        subscription.cancel()
        self._retired = [task for task in self._retired if not task.done()]
        if subscription.task is not None:
            self._retired.append(subscription.task)
        logger.info(f"Cancelled subscription {slot} for parent {subscription.parent_id}")

    def cancel_many(self, slots) -> None:
        for slot in slots:
            self.cancel(slot)

    def cancel_all(self) -> None:
        self.cancel_many(list(self._slots))

    async def aclose(self) -> None:
        """Cancels every slot and waits for their tasks to unwind."""
        self.cancel_all()
        retired, self._retired = self._retired, []
        if retired:
            await asyncio.gather(*retired, return_exceptions=True)

    async def _pump(self, subscription: SlotSubscription) -> None:
        async with aclosing(aiter(subscription.query)) as emissions:
            async for emission in emissions:
                if not self.is_current(subscription):
                    return
                subscription.emissions += 1
                self._deliver(subscription, emission)
                if isinstance(emission, StoreError):
                    # Terminal: the slot stays vacant until reopened.
                    if self._slots.get(subscription.slot) is subscription:
                        del self._slots[subscription.slot]
                    return
