"""Realtime publisher - pushes monitor state changes to WebSocket subscribers."""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


def monitor_topic(monitor_id: int) -> str:
    return f"monitor_{monitor_id}"


class RealtimePublisher:
    """Topic-based WebSocket fan-out.

    ``publish`` never blocks and never raises: sends are scheduled as
    background tasks and clients that fail a send are dropped.
    """

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self.topics: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket):
        """Forget a WebSocket and all of its subscriptions."""
        async with self._lock:
            self._drop(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def subscribe(self, websocket: WebSocket, topic: str):
        async with self._lock:
            self.topics.setdefault(topic, set()).add(websocket)

    async def unsubscribe(self, websocket: WebSocket, topic: str):
        async with self._lock:
            subscribers = self.topics.get(topic)
            if subscribers is not None:
                subscribers.discard(websocket)
                if not subscribers:
                    del self.topics[topic]

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        """Schedule delivery of a message to a topic's subscribers."""
        if not self.topics.get(topic):
            return
        try:
            task = asyncio.get_running_loop().create_task(self._send(topic, payload))
        except RuntimeError:
            logger.debug(f"No event loop; dropping realtime event for {topic}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def publish_status_change(
        self,
        monitor,
        previous_status: Optional[str],
        response_time_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Announce a monitor's status transition on its owner and monitor topics."""
        timestamp = timestamp or utcnow()
        self.publish(user_topic(monitor.user_id), {
            "type": "monitor-status-change",
            "monitor_id": monitor.id,
            "monitor_name": monitor.name,
            "status": monitor.status,
            "previous_status": previous_status,
            "response_time_ms": response_time_ms,
            "error_message": error_message,
            "timestamp": timestamp.isoformat(),
        })
        self.publish(monitor_topic(monitor.id), {
            "type": "status-update",
            "status": monitor.status,
            "response_time_ms": response_time_ms,
            "timestamp": timestamp.isoformat(),
        })

    async def flush(self):
        """Wait for scheduled sends to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _send(self, topic: str, payload: Dict[str, Any]):
        message_json = json.dumps(payload, default=str)

        async with self._lock:
            subscribers = list(self.topics.get(topic, ()))

        disconnected = []
        for websocket in subscribers:
            try:
                await websocket.send_text(message_json)
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                disconnected.append(websocket)

        if disconnected:
            async with self._lock:
                for ws in disconnected:
                    self._drop(ws)

    def _drop(self, websocket: WebSocket):
        self.active_connections.discard(websocket)
        for topic in [t for t, subs in self.topics.items() if websocket in subs]:
            self.topics[topic].discard(websocket)
            if not self.topics[topic]:
                del self.topics[topic]

    @property
    def connection_count(self) -> int:
        """Return the number of active connections."""
        return len(self.active_connections)
