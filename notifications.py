"""In-memory notice queues streamed to browsers over Server-Sent Events."""
from __future__ import annotations

import asyncio
import json
from typing import Dict

import structlog
from structlog.contextvars import get_contextvars

from schemas import Notice

logger = structlog.get_logger(__name__)


class ConnectionManager:
    def __init__(self):
        # Dictionary to hold asyncio Queues for each profile id
        self.active_connections: Dict[int, asyncio.Queue] = {}

    async def connect(self, user_id: int) -> asyncio.Queue:
        """Registers a new user connection and returns their queue."""
        queue = asyncio.Queue()
        self.active_connections[user_id] = queue
        logger.info("SSE connection established", user_id=user_id)
        return queue

    def disconnect(self, user_id: int):
        """Removes a user's queue when they disconnect."""
        if user_id in self.active_connections:
            del self.active_connections[user_id]
            logger.info("SSE connection closed", user_id=user_id)

    def is_connected(self, user_id: int) -> bool:
        return user_id in self.active_connections

    async def send_notice(self, notice: Notice, user_id: int, event: str = "notice") -> bool:
        """Queue a notice for ``user_id``. Dropped when the user has no open stream."""
        if user_id not in self.active_connections:
            logger.debug("No open stream for notice", user_id=user_id, title=notice.title)
            return False

        payload = notice.model_dump()
        req_id = get_contextvars().get("request_id")
        if req_id:
            payload["request_id"] = req_id
        await self.active_connections[user_id].put(
            {"event": event, "data": json.dumps(payload)}
        )
        logger.info("Sent SSE event", sse_event=event, user_id=user_id)
        return True
