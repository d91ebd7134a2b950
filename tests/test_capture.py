import asyncio

import pytest

from wedding_album.errors import CameraUnavailable, InvalidTransition
from wedding_album.services.capture import (
    CapturePipeline,
    CaptureState,
    DeviceError,
    constraint_tiers,
)


class FakeRecorder:
    def __init__(self, final_chunk: bytes = b"tail"):
        self.final_chunk = final_chunk
        self.on_data = None
        self.timeslice_ms = None
        self.stopped = False

    def start(self, timeslice_ms, on_data):
        self.timeslice_ms = timeslice_ms
        self.on_data = on_data

    async def stop(self):
        self.stopped = True
        self.on_data(self.final_chunk)


class FakeStream:
    def __init__(self, constraints):
        self.constraints = constraints
        self.stop_calls = 0
        self.recorder = FakeRecorder()

    def create_recorder(self, mime_type):
        self.mime_type = mime_type
        return self.recorder

    def stop(self):
        self.stop_calls += 1


class FakeDevices:
    """Refuses the first ``refusals`` acquisition attempts."""

    def __init__(self, refusals: int = 0):
        self.refusals = refusals
        self.requests: list[dict] = []
        self.streams: list[FakeStream] = []

    async def get_user_media(self, constraints):
        self.requests.append(constraints)
        if len(self.requests) <= self.refusals:
            raise DeviceError("NotReadableError")
        stream = FakeStream(constraints)
        self.streams.append(stream)
        return stream


class HeldDevices(FakeDevices):
    """Holds every answer until released; refuses every tier by default."""

    def __init__(self):
        super().__init__(refusals=10)
        self.release = asyncio.Event()

    async def get_user_media(self, constraints):
        await self.release.wait()
        return await super().get_user_media(constraints)


@pytest.fixture
def devices():
    return FakeDevices()


@pytest.fixture
def pipeline(devices):
    return CapturePipeline(devices, max_duration=3, tick_interval=None)


class TestAcquisition:
    @pytest.mark.asyncio
    async def test_open_uses_preferred_tier(self, pipeline, devices):
        await pipeline.open()

        assert pipeline.state is CaptureState.LIVE
        assert devices.requests[0]["video"]["facingMode"] == "environment"
        assert devices.requests[0]["video"]["height"] == {"ideal": 1920}
        assert devices.requests[0]["audio"] is True
        assert pipeline.last_tier.name == "preferred"

    @pytest.mark.asyncio
    async def test_relaxes_constraints_in_order(self):
        devices = FakeDevices(refusals=2)
        pipeline = CapturePipeline(devices, tick_interval=None)

        await pipeline.open()

        assert pipeline.state is CaptureState.LIVE
        assert [tier.as_constraints() for tier in constraint_tiers("environment")] == devices.requests
        assert devices.requests[1]["video"] == {"width": {"ideal": 1080}, "height": {"ideal": 1920}}
        assert devices.requests[2] == {"video": True, "audio": True}
        assert pipeline.last_tier.name == "bare"

    @pytest.mark.asyncio
    async def test_all_tiers_exhausted(self):
        devices = FakeDevices(refusals=10)
        pipeline = CapturePipeline(devices, tick_interval=None)

        with pytest.raises(CameraUnavailable):
            await pipeline.open()

        assert len(devices.requests) == 3
        assert pipeline.state is CaptureState.IDLE
        assert pipeline.session.stream is None

    @pytest.mark.asyncio
    async def test_toggle_facing_releases_and_reacquires(self, pipeline, devices):
        await pipeline.open()
        first = devices.streams[0]

        await pipeline.toggle_facing()

        assert first.stop_calls == 1
        assert pipeline.facing_mode == "user"
        assert devices.requests[-1]["video"]["facingMode"] == "user"
        assert pipeline.state is CaptureState.LIVE


class TestRecording:
    @pytest.mark.asyncio
    async def test_start_then_cancel_releases_stream_once(self, pipeline, devices):
        await pipeline.open()
        pipeline.start_recording()

        pipeline.cancel()
        pipeline.close()

        assert devices.streams[0].stop_calls == 1
        assert pipeline.state is CaptureState.CANCELLED
        assert pipeline.recorded is None

    @pytest.mark.asyncio
    async def test_stop_concatenates_chunks_and_releases(self, pipeline, devices):
        await pipeline.open()
        pipeline.start_recording()
        recorder = devices.streams[0].recorder
        recorder.on_data(b"one-")
        recorder.on_data(b"")
        recorder.on_data(b"two-")
        await pipeline.tick()

        recorded = await pipeline.stop_recording()

        assert recorder.timeslice_ms == 1000
        assert recorded.data == b"one-two-tail"
        assert recorded.duration == 1
        assert recorded.mime_type == "video/webm"
        assert pipeline.state is CaptureState.RECORDED
        assert devices.streams[0].stop_calls == 1

    @pytest.mark.asyncio
    async def test_auto_stop_at_ceiling(self, pipeline, devices):
        await pipeline.open()
        pipeline.start_recording()

        for _ in range(3):
            await pipeline.tick()

        assert pipeline.state is CaptureState.RECORDED
        assert pipeline.recorded.duration == 3
        assert devices.streams[0].stop_calls == 1

        # Further ticks are ignored once recorded.
        await pipeline.tick()
        assert pipeline.recorded.duration == 3

    @pytest.mark.asyncio
    async def test_timer_task_auto_stops(self, devices):
        pipeline = CapturePipeline(devices, max_duration=2, tick_interval=0.01)
        await pipeline.open()
        pipeline.start_recording()

        for _ in range(200):
            if pipeline.state is CaptureState.RECORDED:
                break
            await asyncio.sleep(0.01)

        assert pipeline.state is CaptureState.RECORDED
        assert pipeline.recorded.duration == 2
        assert devices.streams[0].stop_calls == 1

    @pytest.mark.asyncio
    async def test_retry_discards_and_reacquires(self, pipeline, devices):
        await pipeline.open()
        pipeline.start_recording()
        await pipeline.stop_recording()

        await pipeline.retry()

        assert pipeline.state is CaptureState.LIVE
        assert pipeline.recorded is None
        assert pipeline.elapsed == 0
        assert len(devices.streams) == 2
        assert devices.streams[0].stop_calls == 1
        assert devices.streams[1].stop_calls == 0

    @pytest.mark.asyncio
    async def test_confirm_hands_over_recording(self, pipeline):
        await pipeline.open()
        pipeline.start_recording()
        await pipeline.tick()
        await pipeline.stop_recording()

        recorded = pipeline.confirm()

        assert recorded.duration == 1
        assert pipeline.state is CaptureState.CONFIRMED
        with pytest.raises(InvalidTransition):
            pipeline.confirm()

    @pytest.mark.asyncio
    async def test_cannot_record_without_stream(self, pipeline):
        with pytest.raises(InvalidTransition):
            pipeline.start_recording()

    @pytest.mark.asyncio
    async def test_state_changes_are_reported(self, devices):
        seen = []
        pipeline = CapturePipeline(devices, tick_interval=None, on_change=lambda p: seen.append(p.state.value))

        await pipeline.open()
        pipeline.start_recording()
        await pipeline.stop_recording()

        assert seen == ["requesting", "live", "recording", "recorded"]


def test_max_duration_must_be_positive(devices):
    with pytest.raises(ValueError):
        CapturePipeline(devices, max_duration=0)


@pytest.mark.asyncio
async def test_cancel_during_acquisition_stops_asking():
    devices = HeldDevices()
    pipeline = CapturePipeline(devices, tick_interval=None)

    opening = asyncio.create_task(pipeline.open())
    await asyncio.sleep(0)
    assert pipeline.state is CaptureState.REQUESTING

    pipeline.cancel()
    devices.release.set()
    await opening

    assert len(devices.requests) == 1
    assert pipeline.state is CaptureState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_during_acquisition_drops_late_stream():
    devices = HeldDevices()
    devices.refusals = 0
    pipeline = CapturePipeline(devices, tick_interval=None)

    opening = asyncio.create_task(pipeline.open())
    await asyncio.sleep(0)
    pipeline.cancel()
    devices.release.set()
    await opening

    assert devices.streams[0].stop_calls == 1
    assert pipeline.state is CaptureState.CANCELLED
    assert pipeline.session.stream is None
