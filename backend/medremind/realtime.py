# medremind/realtime.py
#
# In-process realtime channel for row inserts. Subscribers register for one
# table filtered by recipient user id and receive each matching insert on an
# asyncio queue. There is no ordering guarantee relative to ordinary reads.

import asyncio
from typing import Any, Dict, List, Optional


class Subscription:
    def __init__(self, channel: "NotificationChannel", table: str, user_id: str):
        self.channel = channel
        self.table = table
        self.user_id = user_id
        self.queue: asyncio.Queue = asyncio.Queue()
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def deliver(self, record: Dict[str, Any]) -> None:
        # Inserts may be published from a worker thread; hand them to the owning loop.
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self.queue.put_nowait, record)
        else:
            self.queue.put_nowait(record)

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()

    def unsubscribe(self) -> None:
        self.channel.unsubscribe(self)


class NotificationChannel:
    """Publish/subscribe hub keyed by (table, user_id)."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, user_id: str) -> Subscription:
        subscription = Subscription(self, table, user_id)
        self._subscriptions.append(subscription)
        print(f"REALTIME: Subscribed to {table} inserts for user {user_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            print(f"REALTIME: Unsubscribed from {subscription.table} for user {subscription.user_id}")

    def publish(self, table: str, record: Dict[str, Any]) -> int:
        """Delivers an inserted row to every matching subscriber; returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.table == table and subscription.user_id == record.get('user_id'):
                subscription.deliver(record)
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


notification_channel = NotificationChannel()
