"""Live update push to every connected browser.

Events are a hint to re-fetch, never a diff: ``file_change`` tells clients
viewing ``path`` to reload the listing, ``dashboard_update`` and
``storage_update`` carry a freshly computed snapshot.
"""
import asyncio
import logging
from typing import Dict, List, Set

from fastapi import WebSocket

from .models import Actor, Stats, StorageUsage

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self):
        self.clients: Dict[WebSocket, Actor] = {}
        self._tasks: Set[asyncio.Task] = set()

    def register(self, websocket: WebSocket, actor: Actor) -> None:
        self.clients[websocket] = actor
        logger.info("Client connected (ip %s), %d online", actor.ip, len(self.clients))

    def unregister(self, websocket: WebSocket) -> None:
        actor = self.clients.pop(websocket, None)
        if actor is not None:
            logger.info("Client disconnected (ip %s), %d online", actor.ip, len(self.clients))

    def publish_change(self, path: str, stats: Stats, storage: StorageUsage) -> asyncio.Task:
        """Queue the change events for ``path``; does not wait for delivery."""
        dashboard = {"event": "dashboard_update", "success": True, **stats.to_json(), "storage": storage.to_json()}
        messages = [
            {"event": "file_change", "path": path, "action": "update"},
            dashboard,
            {"event": "storage_update", **storage.to_json()},
        ]
        task = asyncio.create_task(self._fan_out(messages))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fan_out(self, messages: List[dict]) -> None:
        for ws in list(self.clients):
            try:
                for message in messages:
                    await ws.send_json(message)
            except Exception as exc:
                logger.info("Dropping unreachable client: %s", exc)
                self.unregister(ws)

    async def drain(self) -> None:
        """Wait for queued fan-outs (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
