"""
Real-time channel hub over WebSockets.

Implements the Publisher protocol used by the notification service. Channels:
- user:<id>        joined automatically on connect
- role:<ROLE>      joined automatically on connect
- complaint:<id>   joined on request ("join-complaint" / "watch-complaint")

Request handlers are synchronous and run in a worker thread, so publish()
schedules the send on the hub's event loop rather than awaiting it.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from citizenconnect.database import get_db
from citizenconnect.models.domain import User
from citizenconnect.services.notifications import complaint_channel, role_channel, user_channel

logger = logging.getLogger(__name__)

JOIN_ACTIONS = ("join-complaint", "watch-complaint")
LEAVE_ACTION = "leave-complaint"


class ChannelHub:
    """Tracks which sockets listen on which channels and pushes frames to them."""

    def __init__(self):
        self.channels: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    async def connect(self, websocket: WebSocket, user: User) -> List[str]:
        await websocket.accept()
        joined = [user_channel(user.id), role_channel(user.role)]
        for channel in joined:
            self.join(websocket, channel)
        logger.info(f"User {user.id} connected to {', '.join(joined)}")
        return joined

    def join(self, websocket: WebSocket, channel: str) -> None:
        self.channels[channel].add(websocket)

    def leave(self, websocket: WebSocket, channel: str) -> None:
        subscribers = self.channels.get(channel)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self.channels[channel]

    def disconnect(self, websocket: WebSocket) -> None:
        for channel in list(self.channels):
            self.leave(websocket, channel)

    def subscribers(self, channel: str) -> int:
        return len(self.channels.get(channel, ()))

    async def send(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        frame = jsonable_encoder({"event": event, "channel": channel, "data": payload})
        for websocket in list(self.channels.get(channel, ())):
            try:
                await websocket.send_json(frame)
            except Exception as e:
                logger.warning(f"Dropping dead socket on {channel}: {e}")
                self.disconnect(websocket)

    def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        """Schedule a push. Channels nobody listens on are skipped."""
        if not self.channels.get(channel):
            return
        if self.loop is None or self.loop.is_closed():
            logger.debug(f"Hub has no running loop, '{event}' for {channel} not sent")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self.loop.create_task(self.send(channel, event, payload))
        else:
            asyncio.run_coroutine_threadsafe(self.send(channel, event, payload), self.loop)


hub = ChannelHub()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    user_id: Optional[int] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
):
    """Subscribe a user to their channels, then follow complaint join/leave requests."""
    user = db.query(User).filter(User.id == user_id).first() if user_id is not None else None
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    # Release the connection; nothing else on this socket touches the database
    db.expunge(user)
    db.close()

    hub.bind_loop(asyncio.get_running_loop())
    await hub.connect(websocket, user)
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.debug(f"Ignoring malformed socket frame from user {user.id}")
                continue
            action = message.get("action") if isinstance(message, dict) else None
            complaint_id = message.get("complaintId") if isinstance(message, dict) else None
            if action not in JOIN_ACTIONS + (LEAVE_ACTION,) or not isinstance(complaint_id, int):
                logger.debug(f"Ignoring socket message from user {user.id}: {message!r}")
                continue

            channel = complaint_channel(complaint_id)
            if action == LEAVE_ACTION:
                hub.leave(websocket, channel)
                await websocket.send_json({"event": "left", "channel": channel})
            else:
                hub.join(websocket, channel)
                await websocket.send_json({"event": "joined", "channel": channel})
    except WebSocketDisconnect:
        logger.info(f"User {user.id} disconnected")
    finally:
        hub.disconnect(websocket)
