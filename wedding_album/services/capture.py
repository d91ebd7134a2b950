"""Story capture: camera acquisition and bounded-duration video recording.

The pipeline is device agnostic. Anything that can hand out a stream for a
set of constraints (a browser over a websocket, a fake in tests) satisfies
``MediaDevices``. The pipeline owns the stream exclusively between a
successful acquisition and the next release, and releases it exactly once.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from wedding_album.errors import CameraUnavailable, InvalidTransition

logger = logging.getLogger(__name__)

STORY_MAX_SECONDS = int(os.getenv("ALBUM_STORY_MAX_SECONDS", "60"))
RECORDER_TIMESLICE_MS = int(os.getenv("ALBUM_RECORDER_TIMESLICE_MS", "1000"))
RECORDER_MIME_TYPE = "video/webm;codecs=vp8,opus"
RECORDED_MIME_TYPE = "video/webm"
IDEAL_WIDTH = 1080
IDEAL_HEIGHT = 1920


class DeviceError(Exception):
    """A single acquisition attempt was refused by the device."""


class Recorder(Protocol):
    def start(self, timeslice_ms: int, on_data: Callable[[bytes], None]) -> None: ...

    async def stop(self) -> None:
        """Stop recording. All pending data must be delivered before returning."""


class MediaStream(Protocol):
    def create_recorder(self, mime_type: str) -> Recorder: ...

    def stop(self) -> None:
        """Stop every track and give the camera/microphone back."""


class MediaDevices(Protocol):
    async def get_user_media(self, constraints: dict[str, Any]) -> MediaStream: ...


class CaptureState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    LIVE = "live"
    RECORDING = "recording"
    RECORDED = "recorded"
    RETRYING = "retrying"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


TERMINAL_STATES = {CaptureState.CONFIRMED, CaptureState.CANCELLED}


@dataclass(frozen=True)
class ConstraintTier:
    name: str
    video: dict[str, Any] | bool
    audio: bool = True

    def as_constraints(self) -> dict[str, Any]:
        return {"video": self.video, "audio": self.audio}


def constraint_tiers(facing_mode: str, width: int = IDEAL_WIDTH, height: int = IDEAL_HEIGHT) -> list[ConstraintTier]:
    resolution = {"width": {"ideal": width}, "height": {"ideal": height}}
    return [
        ConstraintTier("preferred", {"facingMode": facing_mode, **resolution}),
        ConstraintTier("any_camera", dict(resolution)),
        ConstraintTier("bare", True),
    ]


@dataclass
class CaptureSession:
    facing_mode: str
    stream: MediaStream | None = None
    recorder: Recorder | None = None
    recording: bool = False
    elapsed: int = 0
    chunks: list[bytes] = field(default_factory=list)


@dataclass(frozen=True)
class RecordedMedia:
    data: bytes
    duration: int
    mime_type: str = RECORDED_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


class CapturePipeline:
    def __init__(
        self,
        devices: MediaDevices,
        max_duration: int = STORY_MAX_SECONDS,
        timeslice_ms: int = RECORDER_TIMESLICE_MS,
        tick_interval: float | None = 1.0,
        facing_mode: str = "environment",
        on_change: Callable[["CapturePipeline"], None] | None = None,
    ) -> None:
        if max_duration <= 0:
            raise ValueError("max_duration must be positive")
        self.devices = devices
        self.max_duration = max_duration
        self.timeslice_ms = timeslice_ms
        self.tick_interval = tick_interval
        self.on_change = on_change
        self.state = CaptureState.IDLE
        self.session = CaptureSession(facing_mode=facing_mode)
        self.recorded: RecordedMedia | None = None
        self.last_tier: ConstraintTier | None = None
        self._timer: asyncio.Task | None = None
        self._stopping = False

    @property
    def facing_mode(self) -> str:
        return self.session.facing_mode

    @property
    def elapsed(self) -> int:
        return self.session.elapsed

    def _set_state(self, state: CaptureState) -> None:
        logger.debug("capture %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _require(self, *states: CaptureState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransition(f"Cannot do that while {self.state.value} (expected {allowed})")

    async def open(self) -> None:
        self._require(CaptureState.IDLE)
        await self._acquire()

    async def toggle_facing(self) -> None:
        self._require(CaptureState.IDLE, CaptureState.LIVE)
        self._release_stream()
        self.session.facing_mode = "user" if self.session.facing_mode == "environment" else "environment"
        await self._acquire()

    async def _acquire(self) -> None:
        self._set_state(CaptureState.REQUESTING)
        for tier in constraint_tiers(self.session.facing_mode):
            try:
                stream = await self.devices.get_user_media(tier.as_constraints())
            except DeviceError as exc:
                if self.state is not CaptureState.REQUESTING:
                    return
                logger.info("Camera tier %s refused: %s", tier.name, exc)
                continue
            if self.state is not CaptureState.REQUESTING:
                # Cancelled while the device was answering.
                stream.stop()
                return
            self.session.stream = stream
            self.last_tier = tier
            self._set_state(CaptureState.LIVE)
            return

        self._set_state(CaptureState.IDLE)
        raise CameraUnavailable("Could not access the camera. Check the browser permissions.")

    def start_recording(self) -> None:
        self._require(CaptureState.LIVE)
        session = self.session
        session.chunks = []
        session.elapsed = 0
        session.recorder = session.stream.create_recorder(RECORDER_MIME_TYPE)
        session.recorder.start(self.timeslice_ms, self._on_data)
        session.recording = True
        self._set_state(CaptureState.RECORDING)
        if self.tick_interval is not None:
            self._timer = asyncio.create_task(self._run_timer())

    def _on_data(self, data: bytes) -> None:
        if data and self.session.recording:
            self.session.chunks.append(data)

    async def _run_timer(self) -> None:
        while self.state is CaptureState.RECORDING:
            await asyncio.sleep(self.tick_interval)
            await self.tick()

    async def tick(self) -> None:
        if self.state is not CaptureState.RECORDING or self._stopping:
            return
        self.session.elapsed += 1
        self._notify()
        if self.session.elapsed >= self.max_duration:
            logger.info("Story reached the %ds limit, stopping", self.max_duration)
            await self.stop_recording()

    async def stop_recording(self) -> RecordedMedia | None:
        self._require(CaptureState.RECORDING)
        if self._stopping:
            raise InvalidTransition("Recording is already stopping")
        self._stopping = True
        session = self.session
        self._cancel_timer()
        recorder, session.recorder = session.recorder, None
        try:
            if recorder is not None:
                await recorder.stop()
        finally:
            self._stopping = False
            session.recording = False
            self._release_stream()
        if self.state is not CaptureState.RECORDING or session is not self.session:
            # Cancelled while the recorder was flushing.
            return None
        self.recorded = RecordedMedia(data=b"".join(session.chunks), duration=session.elapsed)
        session.chunks = []
        self._set_state(CaptureState.RECORDED)
        return self.recorded

    async def retry(self) -> None:
        self._require(CaptureState.RECORDED)
        self.recorded = None
        self.session = CaptureSession(facing_mode=self.session.facing_mode)
        self._set_state(CaptureState.RETRYING)
        await self._acquire()

    def confirm(self) -> RecordedMedia:
        self._require(CaptureState.RECORDED)
        recorded, self.recorded = self.recorded, None
        self.session = CaptureSession(facing_mode=self.session.facing_mode)
        self._set_state(CaptureState.CONFIRMED)
        return recorded

    def cancel(self) -> None:
        self._cancel_timer()
        self.session.recording = False
        self.session.recorder = None
        self._release_stream()
        self.recorded = None
        self.session = CaptureSession(facing_mode=self.session.facing_mode)
        self._set_state(CaptureState.CANCELLED)

    def close(self) -> None:
        if self.state in TERMINAL_STATES:
            self._release_stream()
            return
        self.cancel()

    def _release_stream(self) -> None:
        stream, self.session.stream = self.session.stream, None
        if stream is not None:
            stream.stop()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "elapsed": self.session.elapsed,
            "max_duration": self.max_duration,
            "facing_mode": self.session.facing_mode,
            "recorded_bytes": self.recorded.size if self.recorded else None,
        }
