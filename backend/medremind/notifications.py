# medremind/notifications.py
#
# Notification bell read model: the newest notifications of one user, kept
# current by the realtime channel. Read-state changes are applied locally
# first and sent to the database without waiting for the result.

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from botocore.exceptions import BotoCoreError, ClientError

from . import crud
from .config import NOTIFICATION_FETCH_LIMIT, NOTIFICATIONS_TABLE_NAME
from .models import Notification, NotificationFeed
from .realtime import NotificationChannel, Subscription, notification_channel

ICONS = {
    "store_update": "📦",
    "reminder": "⏰",
    "prescription": "📋",
}
DEFAULT_ICON = "🔔"


def notification_icon(notification_type: str) -> str:
    return ICONS.get(notification_type, DEFAULT_ICON)


def badge_text(unread: int) -> Optional[str]:
    """Badge shown on the bell: nothing at zero, the count up to 9, then "9+"."""
    if unread <= 0:
        return None
    return "9+" if unread > 9 else str(unread)


class LocalNotifier(ABC):
    """
    Platform hook that mirrors notifications outside the application view.
    `permission` is one of default | granted | denied.
    """
    permission = "default"

    @abstractmethod
    def request_permission(self) -> str:
        """Asks the platform for permission and returns the permission known so far."""

    @abstractmethod
    def show(self, title: str, body: str) -> None:
        """Fire-and-forget; only called while permission is granted."""


class NotificationBell:
    def __init__(self, user_id: str, channel: NotificationChannel = notification_channel,
                 notifier: Optional[LocalNotifier] = None):
        self.user_id = user_id
        self.channel = channel
        self.notifier = notifier
        self.notifications: List[Notification] = []
        self._subscription: Optional[Subscription] = None
        self._pending: Set[asyncio.Future] = set()

    def load(self) -> List[Notification]:
        items = crud.db_list_notifications(self.user_id, NOTIFICATION_FETCH_LIMIT)
        self.notifications = [Notification(**item) for item in items]
        return self.notifications

    def start(self) -> None:
        """Initial fetch, realtime subscription, and a one-time permission request."""
        self.load()
        self.listen()

    def listen(self) -> None:
        """
        Subscribes to pushed inserts and asks the notifier for permission once.
        Call it from the event loop that will consume `stream()`.
        """
        if self._subscription is None:
            self._subscription = self.channel.subscribe(NOTIFICATIONS_TABLE_NAME, self.user_id)
        if self.notifier is not None and self.notifier.permission == "default":
            self.notifier.request_permission()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def receive(self, record: Dict[str, Any]) -> Notification:
        # Pushed items are prepended without trimming back to the fetch limit.
        notification = Notification(**record)
        self.notifications.insert(0, notification)
        if self.notifier is not None and self.notifier.permission == "granted":
            self.notifier.show(notification.title, notification.message)
        return notification

    async def stream(self) -> AsyncIterator[Notification]:
        """Yields each pushed notification after it has been added to the list."""
        if self._subscription is None:
            raise RuntimeError("NotificationBell.listen() must be called before stream()")
        while self._subscription is not None:
            record = await self._subscription.get()
            yield self.receive(record)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    @property
    def badge_text(self) -> Optional[str]:
        return badge_text(self.unread_count)

    def feed(self) -> NotificationFeed:
        return NotificationFeed(
            notifications=list(self.notifications),
            unread_count=self.unread_count,
            badge=self.badge_text,
        )

    def mark_as_read(self, notification_id: str) -> None:
        for n in self.notifications:
            if n.id == notification_id:
                n.read = True
        self._dispatch(crud.db_mark_notification_read, notification_id, self.user_id)

    def mark_all_read(self) -> None:
        for n in self.notifications:
            n.read = True
        self._dispatch(crud.db_mark_all_notifications_read, self.user_id)

    def _dispatch(self, fn: Callable, *args: Any) -> None:
        """Sends a remote update without waiting; failures are logged, never reconciled."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                fn(*args)
            except (ClientError, BotoCoreError) as e:
                print(f"REALTIME: Remote read-state update failed: {e}")
            return

        future = loop.run_in_executor(None, fn, *args)
        self._pending.add(future)
        future.add_done_callback(self._on_remote_done)

    def _on_remote_done(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            print(f"REALTIME: Remote read-state update failed: {future.exception()}")

    async def flush(self) -> None:
        """Waits for outstanding remote updates; used on teardown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
