"""Websocket bridge that lets a browser act as the capture device.

The browser owns the camera and the MediaRecorder; the server owns the
capture state machine. The server asks for a stream (``acquire``), tells the
browser when to start and stop recording and when to release the camera, and
receives the recorded chunks as binary frames.
"""
import asyncio
import json
import logging
import os
import time
from typing import Any, Callable

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketDisconnect

from wedding_album.api.media import get_media_host
from wedding_album.db import SessionLocal
from wedding_album.errors import AlbumError, UploadInProgress
from wedding_album.services.capture import (
    TERMINAL_STATES,
    CapturePipeline,
    CaptureState,
    DeviceError,
    RecordedMedia,
)
from wedding_album.services.gallery import to_media_out
from wedding_album.services.media_host import MediaFile, MediaHostClient
from wedding_album.services.realtime import hub
from wedding_album.services.uploader import UploadOrchestrator

router = APIRouter(tags=["capture"])
logger = logging.getLogger(__name__)

ACQUIRE_TIMEOUT_SEC = float(os.getenv("ALBUM_CAPTURE_ACQUIRE_TIMEOUT_SEC", "30"))
RECORDER_STOP_TIMEOUT_SEC = float(os.getenv("ALBUM_CAPTURE_STOP_TIMEOUT_SEC", "10"))

REPLY_KINDS = {
    "acquired": "acquire",
    "acquire_failed": "acquire",
    "recorder_stopped": "stop",
}


class CaptureBridge:
    """Outgoing message queue plus request/reply correlation for one socket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future] = {}
        self.on_data: Callable[[bytes], None] | None = None

    def send(self, message: dict[str, Any]) -> None:
        self.outbox.put_nowait(message)

    async def run_sender(self) -> None:
        while True:
            message = await self.outbox.get()
            await self.websocket.send_text(json.dumps(message))

    def expect(self, kind: str) -> asyncio.Future:
        previous = self._pending.pop(kind, None)
        if previous is not None and not previous.done():
            previous.cancel()
        future = asyncio.get_running_loop().create_future()
        self._pending[kind] = future
        return future

    def resolve(self, message: dict[str, Any]) -> bool:
        kind = REPLY_KINDS.get(message.get("type"))
        if kind is None:
            return False
        future = self._pending.pop(kind, None)
        if future is not None and not future.done():
            future.set_result(message)
        else:
            logger.debug("Unexpected %s reply ignored", message.get("type"))
        return True

    def deliver_chunk(self, data: bytes) -> None:
        if self.on_data is not None:
            self.on_data(data)

    def fail_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    async def get_user_media(self, constraints: dict[str, Any]) -> "RemoteStream":
        reply = self.expect("acquire")
        self.send({"type": "acquire", "constraints": constraints})
        try:
            message = await asyncio.wait_for(reply, ACQUIRE_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            raise DeviceError("no answer from the browser")
        if message.get("type") != "acquired":
            raise DeviceError(message.get("reason") or "permission denied")
        return RemoteStream(self)


class RemoteStream:
    def __init__(self, bridge: CaptureBridge) -> None:
        self.bridge = bridge

    def create_recorder(self, mime_type: str) -> "RemoteRecorder":
        return RemoteRecorder(self.bridge, mime_type)

    def stop(self) -> None:
        self.bridge.send({"type": "release"})


class RemoteRecorder:
    def __init__(self, bridge: CaptureBridge, mime_type: str) -> None:
        self.bridge = bridge
        self.mime_type = mime_type

    def start(self, timeslice_ms: int, on_data: Callable[[bytes], None]) -> None:
        self.bridge.on_data = on_data
        self.bridge.send({"type": "start_recorder", "mime_type": self.mime_type, "timeslice_ms": timeslice_ms})

    async def stop(self) -> None:
        reply = self.bridge.expect("stop")
        self.bridge.send({"type": "stop_recorder"})
        try:
            await asyncio.wait_for(reply, RECORDER_STOP_TIMEOUT_SEC)
        except asyncio.TimeoutError:
            logger.warning("Browser did not confirm the recorder stop; keeping the chunks received so far")
        finally:
            self.bridge.on_data = None


class CaptureConnection:
    def __init__(self, websocket: WebSocket, media_host: MediaHostClient) -> None:
        self.bridge = CaptureBridge(websocket)
        self.media_host = media_host
        self.pipeline = self._new_pipeline()
        self.unsent: RecordedMedia | None = None
        self._uploading = False

    def _new_pipeline(self) -> CapturePipeline:
        return CapturePipeline(self.bridge, on_change=self._push_state)

    def _push_state(self, pipeline: CapturePipeline) -> None:
        self.bridge.send({"type": "state", **pipeline.snapshot()})

    async def handle(self, command: str) -> None:
        try:
            await self._dispatch(command)
        except AlbumError as exc:
            logger.info("Capture command %s failed: %s", command, exc)
            self.bridge.send({"type": "error", "code": exc.code, "message": str(exc)})
        except Exception:
            logger.exception("Capture command %s crashed", command)
            self.bridge.send({"type": "error", "code": "internal_error", "message": "Something went wrong. Please try again."})

    async def _dispatch(self, command: str) -> None:
        pipeline = self.pipeline
        if command == "open":
            if pipeline.state in TERMINAL_STATES:
                self.pipeline = pipeline = self._new_pipeline()
                self.unsent = None
            await pipeline.open()
        elif command == "toggle_facing":
            await pipeline.toggle_facing()
        elif command == "start":
            pipeline.start_recording()
        elif command == "stop":
            await pipeline.stop_recording()
        elif command == "retry":
            await pipeline.retry()
        elif command == "cancel":
            pipeline.cancel()
        elif command == "confirm":
            await self._upload(pipeline)
        else:
            self.bridge.send({"type": "error", "code": "unknown_command", "message": f"Unknown command: {command}"})

    async def _upload(self, pipeline: CapturePipeline) -> None:
        if self._uploading:
            raise UploadInProgress("The story is already being uploaded.")
        # A confirmed story whose upload failed can be sent again with another confirm.
        if pipeline.state is CaptureState.CONFIRMED and self.unsent is not None:
            recorded = self.unsent
        else:
            recorded = self.unsent = pipeline.confirm()
        media_file = MediaFile(
            filename=f"story-{int(time.time() * 1000)}.webm",
            content_type=recorded.mime_type,
            data=recorded.data,
        )
        self._uploading = True
        db = SessionLocal()
        try:
            orchestrator = UploadOrchestrator(self.media_host, db)
            record = await orchestrator.submit(media_file, kind="video", duration=recorded.duration)
            media = to_media_out(record, self.media_host).model_dump(mode="json")
        finally:
            self._uploading = False
            db.close()
        self.unsent = None
        await hub.media_changed("created", media["id"])
        self.bridge.send({"type": "uploaded", "media": media})

    def close(self) -> None:
        self.bridge.fail_pending()
        self.pipeline.close()


@router.websocket("/ws/capture")
async def ws_capture(websocket: WebSocket, media_host: MediaHostClient = Depends(get_media_host)):
    await websocket.accept()
    connection = CaptureConnection(websocket, media_host)
    sender = asyncio.create_task(connection.bridge.run_sender())
    commands: set[asyncio.Task] = set()
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                connection.bridge.deliver_chunk(message["bytes"])
                continue
            try:
                data = json.loads(message.get("text") or "{}")
            except json.JSONDecodeError:
                connection.bridge.send({"type": "error", "code": "bad_message", "message": "Expected JSON"})
                continue
            if connection.bridge.resolve(data):
                continue
            # Commands run as tasks so replies to acquire/stop keep flowing through this loop.
            task = asyncio.create_task(connection.handle(str(data.get("type") or "")))
            commands.add(task)
            task.add_done_callback(commands.discard)
    except WebSocketDisconnect:
        pass
    finally:
        connection.close()
        for task in list(commands):
            task.cancel()
        sender.cancel()
