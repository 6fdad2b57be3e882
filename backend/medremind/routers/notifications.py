# medremind/routers/notifications.py
#
# This router serves the notification bell: the latest notifications over
# HTTP and a WebSocket that pushes new ones as they are inserted.

import asyncio
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from .. import crud
from ..flows import REMOTE_ERRORS
from ..models import NotificationFeed
from ..notifications import LocalNotifier, NotificationBell
from ..security import require_session, verify_cognito_token
from ..session import AuthState

router = APIRouter(tags=["Notifications"])


@router.get("/notifications", response_model=NotificationFeed)
def list_notifications(state: AuthState = Depends(require_session)):
    bell = NotificationBell(state.user.id)
    try:
        bell.load()
    except REMOTE_ERRORS as e:
        print(f"Error loading notifications for user {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not load notifications.")
    return bell.feed()


@router.post("/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
def mark_notification_read(notification_id: str, state: AuthState = Depends(require_session)):
    try:
        updated = crud.db_mark_notification_read(notification_id, state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error marking notification {notification_id} read: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update notification.")
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found.")


@router.post("/notifications/read-all", status_code=status.HTTP_204_NO_CONTENT)
def mark_all_notifications_read(state: AuthState = Depends(require_session)):
    try:
        crud.db_mark_all_notifications_read(state.user.id)
    except REMOTE_ERRORS as e:
        print(f"Error marking notifications read for user {state.user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not update notifications.")


PERMISSIONS = ("default", "granted", "denied")


class WebSocketNotifier(LocalNotifier):
    """
    Local notifier for a connected client. The permission prompt and each
    mirrored notification are sent as socket events; the client answers the
    prompt with {"action": "permission", "permission": "granted" | "denied"}.
    """

    def __init__(self, send: Callable[[Dict[str, Any]], None]):
        self.send = send
        self.permission = "default"
        self._requested = False

    def request_permission(self) -> str:
        if not self._requested:
            self._requested = True
            self.send({"event": "permission_request"})
        return self.permission

    def set_permission(self, permission: Optional[str]) -> None:
        if permission in PERMISSIONS:
            self.permission = permission

    def show(self, title: str, body: str) -> None:
        self.send({"event": "local_notification", "title": title, "body": body})


def feed_event(bell: NotificationBell) -> Dict[str, Any]:
    return {"event": "feed", **bell.feed().model_dump()}


@router.websocket("/notifications/ws")
async def notifications_socket(websocket: WebSocket, token: str = Query(...)):
    """
    Sends the current feed, a one-time `permission_request`, then one `insert`
    event per new notification (preceded by `local_notification` once the
    client has granted permission).
    Clients send {"action": "mark_read", "id": ...} or {"action": "mark_all_read"};
    the updated feed is sent back immediately, before the database write completes.
    """
    try:
        claims = await verify_cognito_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    # Single writer: every outgoing event is queued here and sent in order
    outbox: asyncio.Queue = asyncio.Queue()
    notifier = WebSocketNotifier(outbox.put_nowait)
    bell = NotificationBell(claims["sub"], notifier=notifier)
    try:
        await run_in_threadpool(bell.load)
    except REMOTE_ERRORS as e:
        print(f"Error loading notifications for user {bell.user_id}: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    outbox.put_nowait(feed_event(bell))
    bell.listen()

    async def write():
        while True:
            await websocket.send_json(await outbox.get())

    async def push():
        async for notification in bell.stream():
            outbox.put_nowait({
                "event": "insert",
                "notification": notification.model_dump(),
                "badge": bell.badge_text,
            })

    tasks = [asyncio.create_task(write()), asyncio.create_task(push())]
    try:
        while True:
            message = await websocket.receive_json()
            action = message.get("action")
            if action == "permission":
                notifier.set_permission(message.get("permission"))
                outbox.put_nowait({"event": "permission", "permission": notifier.permission})
                continue
            if action == "mark_read" and message.get("id"):
                bell.mark_as_read(message["id"])
            elif action == "mark_all_read":
                bell.mark_all_read()
            outbox.put_nowait(feed_event(bell))
    except WebSocketDisconnect:
        print(f"REALTIME: Notification socket closed for user {bell.user_id}")
    finally:
        for task in tasks:
            task.cancel()
        bell.close()
        await bell.flush()
