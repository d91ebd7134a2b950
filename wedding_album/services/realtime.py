"""Gallery change feed.

Every connected gallery gets one frame per album mutation and re-fetches the
list; frames never carry the media itself. ``revision`` lets a client notice
that it missed frames while reconnecting.
"""
import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Literal

from fastapi import WebSocket

logger = logging.getLogger(__name__)

MediaAction = Literal["created", "deleted"]


@dataclass(frozen=True)
class MediaChange:
    action: MediaAction
    media_id: str | None = None


def _frame(frame_type: str, revision: int, **extra) -> str:
    return json.dumps(
        {
            "type": frame_type,
            "revision": revision,
            "ts": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
    )


class RealtimeHub:
    def __init__(self) -> None:
        self._galleries: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self.revision = 0

    @property
    def client_count(self) -> int:
        return len(self._galleries)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._galleries.add(websocket)
        await websocket.send_text(_frame("hello", self.revision))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._galleries.discard(websocket)

    async def media_changed(self, action: MediaAction, media_id: str | None = None) -> int:
        return await self.publish(MediaChange(action, media_id))

    async def publish(self, change: MediaChange) -> int:
        self.revision += 1
        message = _frame("media_changed", self.revision, payload=asdict(change))
        async with self._lock:
            galleries = list(self._galleries)

        gone = []
        for websocket in galleries:
            try:
                await websocket.send_text(message)
            except Exception:
                # Phones drop sockets without a close frame.
                gone.append(websocket)
        if gone:
            logger.debug("Dropping %d disconnected gallery socket(s)", len(gone))
            async with self._lock:
                self._galleries.difference_update(gone)
        return self.revision


hub = RealtimeHub()
