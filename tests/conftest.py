import asyncio
from collections.abc import AsyncIterator

import numpy as np
import pytest

from ideaflow.domain.assembler import TranscriptAssembler
from ideaflow.domain.controller import SessionController
from ideaflow.domain.errors import DeviceUnavailable
from ideaflow.domain.events import Closed, TranscriptionEvent
from ideaflow.domain.frame_encoder import EncodedFrame
from ideaflow.domain.loudness import LoudnessGate
from ideaflow.domain.state import SessionStatus
from ideaflow.ports.transcriber import SessionConfig


SAMPLE_RATE = 16000
FRAME_SIZE = 4096
TEST_MODEL = "test-live-model"


def generate_silent_frame(frame_size: int = FRAME_SIZE) -> np.ndarray:
    return np.zeros(frame_size, dtype=np.float32)


def generate_sine_frame(
    frequency: float = 440.0,
    amplitude: float = 0.5,
    frame_size: int = FRAME_SIZE,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    t = np.arange(frame_size) / sample_rate
    return (np.sin(2 * np.pi * frequency * t) * amplitude).astype(np.float32)


def generate_noise_frame(
    amplitude: float = 0.002,
    frame_size: int = FRAME_SIZE,
) -> np.ndarray:
    rng = np.random.default_rng(seed=7)
    return (rng.uniform(-1, 1, frame_size) * amplitude).astype(np.float32)


class FakeAudioCapture:
    def __init__(
        self,
        frames: list[np.ndarray] | None = None,
        fail_on_start: bool = False,
    ) -> None:
        self._frames = frames or []
        self._fail_on_start = fail_on_start
        self._started = False
        self.start_count = 0
        self.stop_count = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def frame_size(self) -> int:
        return FRAME_SIZE

    async def start(self) -> None:
        self.start_count += 1
        if self._fail_on_start:
            raise DeviceUnavailable("Permission denied")
        self._started = True

    async def stop(self) -> None:
        self.stop_count += 1
        self._started = False

    async def read_frames(self) -> AsyncIterator[np.ndarray]:
        for frame in self._frames:
            yield frame


class FakeTranscriptSession:
    def __init__(
        self,
        events: list[TranscriptionEvent] | None = None,
        hold_open: bool = False,
        open_delay: float = 0.0,
        open_error: Exception | None = None,
    ) -> None:
        self._events = events or []
        self._hold_open = hold_open
        self._open_delay = open_delay
        self._open_error = open_error
        self._closed_event = asyncio.Event()
        self.config: SessionConfig | None = None
        self.opened = False
        self.sent: list[EncodedFrame] = []
        self.close_count = 0

    async def open(self, config: SessionConfig) -> None:
        if self._open_delay:
            await asyncio.sleep(self._open_delay)
        if self._open_error:
            raise self._open_error
        self.config = config
        self.opened = True

    def send(self, frame: EncodedFrame) -> None:
        self.sent.append(frame)

    async def events(self) -> AsyncIterator[TranscriptionEvent]:
        for event in self._events:
            yield event
            await asyncio.sleep(0)
        if self._hold_open:
            await self._closed_event.wait()
            yield Closed()

    async def close(self) -> None:
        self.close_count += 1
        self._closed_event.set()

    def queue_events(self, events: list[TranscriptionEvent]) -> None:
        self._events.extend(events)


def make_controller(
    capture: FakeAudioCapture,
    transcriber: FakeTranscriptSession,
    assembler: TranscriptAssembler | None = None,
    connect_timeout_seconds: float = 1.0,
) -> SessionController:
    return SessionController(
        capture_factory=lambda: capture,
        transcriber_factory=lambda: transcriber,
        session_config=SessionConfig(model=TEST_MODEL, sample_rate=SAMPLE_RATE),
        assembler=assembler,
        gate=LoudnessGate(silence_threshold=0.008),
        connect_timeout_seconds=connect_timeout_seconds,
        teardown_timeout_seconds=0.5,
    )


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


async def wait_for_status(
    controller: SessionController, status: SessionStatus, timeout: float = 1.0
) -> None:
    await wait_until(lambda: controller.status == status, timeout=timeout)


@pytest.fixture
def speech_frames():
    return [generate_sine_frame() for _ in range(3)]


@pytest.fixture
def silence_frames():
    return [generate_silent_frame() for _ in range(3)]


@pytest.fixture
def fake_capture():
    return FakeAudioCapture()


@pytest.fixture
def fake_transcriber():
    return FakeTranscriptSession()


@pytest.fixture
def assembler():
    return TranscriptAssembler()
