import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ideaflow.domain.assembler import TranscriptAssembler
from ideaflow.domain.errors import ConnectFailed, ConnectTimeout, IdeaFlowError, TransportError
from ideaflow.domain.events import (
    Closed,
    Delta,
    SessionError,
    Snippet,
    TranscriptionEvent,
    TranscriptionState,
    TurnComplete,
)
from ideaflow.domain.frame_encoder import encode_frame
from ideaflow.domain.loudness import LoudnessGate
from ideaflow.domain.state import SessionStatus, validate_transition
from ideaflow.ports.audio import AudioFrameSource
from ideaflow.ports.transcriber import SessionConfig, TranscriptSessionPort

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_TEARDOWN_TIMEOUT_SECONDS = 2.0

StateListener = Callable[[TranscriptionState], None]


@dataclass
class Session:
    capture: AudioFrameSource
    connection: TranscriptSessionPort
    task: asyncio.Task | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)
    frames_sent: int = 0
    frames_gated: int = 0


class SessionController:
    def __init__(
        self,
        capture_factory: Callable[[], AudioFrameSource],
        transcriber_factory: Callable[[], TranscriptSessionPort],
        session_config: SessionConfig,
        assembler: TranscriptAssembler | None = None,
        gate: LoudnessGate | None = None,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        teardown_timeout_seconds: float = DEFAULT_TEARDOWN_TIMEOUT_SECONDS,
    ) -> None:
        self._capture_factory = capture_factory
        self._transcriber_factory = transcriber_factory
        self._session_config = session_config
        self._assembler = assembler or TranscriptAssembler()
        self._gate = gate or LoudnessGate()
        self._connect_timeout = connect_timeout_seconds
        self._teardown_timeout = teardown_timeout_seconds

        self._status = SessionStatus.IDLE
        self._session: Session | None = None
        self._history: list[Snippet] = []
        self._current_text = ""
        self._loudness_level = 0.0
        self._last_error: Exception | None = None
        self._listeners: list[StateListener] = []

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def history(self) -> list[Snippet]:
        return list(self._history)

    @property
    def current_text(self) -> str:
        return self._current_text

    @property
    def loudness_level(self) -> float:
        return self._loudness_level

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def is_recording(self) -> bool:
        return self._status in (SessionStatus.CONNECTING, SessionStatus.LISTENING)

    def snapshot(self) -> TranscriptionState:
        return TranscriptionState(
            current_text=self._current_text,
            history=tuple(self._history),
            is_recording=self.is_recording,
            status=self._status,
            loudness_level=self._loudness_level,
        )

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        state = self.snapshot()
        for listener in self._listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    def _transition_to(self, target: SessionStatus) -> None:
        validate_transition(self._status, target)
        logger.info("State: %s -> %s", self._status.name, target.name)
        self._status = target
        self._notify()

    async def start(self) -> Session | None:
        if self._status != SessionStatus.IDLE:
            logger.warning("Start ignored while %s", self._status.name)
            return None

        self._assembler.reset()
        self._current_text = ""
        self._last_error = None
        session = Session(
            capture=self._capture_factory(),
            connection=self._transcriber_factory(),
        )
        self._session = session
        self._transition_to(SessionStatus.CONNECTING)
        session.task = asyncio.create_task(self._run_session(session))
        return session

    async def stop(self) -> None:
        session = self._session
        if session is None:
            logger.debug("Stop ignored while %s", self._status.name)
            return

        task = session.task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task}, timeout=self._teardown_timeout)
        await self._finish(session)

    def reset(self) -> None:
        if self._status != SessionStatus.ERROR:
            return
        self._last_error = None
        self._transition_to(SessionStatus.IDLE)

    def clear_history(self) -> None:
        self._history.clear()
        logger.info("History cleared")
        self._notify()

    async def _run_session(self, session: Session) -> None:
        try:
            await self._acquire(session)
            self._transition_to(SessionStatus.LISTENING)
            await self._stream(session)
        except IdeaFlowError as exc:
            logger.error("Session failed: %s: %s", type(exc).__name__, exc)
            await self._finish(session, error=exc)
        except Exception as exc:
            logger.exception("Unexpected session failure")
            await self._finish(session, error=exc)
        else:
            await self._finish(session)

    async def _acquire(self, session: Session) -> None:
        await session.capture.start()
        try:
            await asyncio.wait_for(
                session.connection.open(self._session_config),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ConnectTimeout(
                f"No connection after {self._connect_timeout:.1f}s"
            ) from exc
        except IdeaFlowError:
            raise
        except Exception as exc:
            raise ConnectFailed(str(exc)) from exc

    async def _stream(self, session: Session) -> None:
        audio_task = asyncio.create_task(self._pump_audio(session))
        events_task = asyncio.create_task(self._consume_events(session))
        session.tasks = [audio_task, events_task]
        try:
            done, _ = await asyncio.wait(
                {audio_task, events_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if events_task in done:
                events_task.result()
            else:
                # Capture ending cleanly leaves the transcript stream running.
                audio_task.result()
                await events_task
        finally:
            for task in session.tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*session.tasks, return_exceptions=True)

    async def _pump_audio(self, session: Session) -> None:
        sample_rate = self._session_config.sample_rate
        async for samples in session.capture.read_frames():
            decision = self._gate.evaluate(samples)
            self._loudness_level = decision.level
            self._notify()
            if not decision.forward:
                session.frames_gated += 1
                continue
            session.connection.send(encode_frame(samples, sample_rate))
            session.frames_sent += 1

    async def _consume_events(self, session: Session) -> None:
        async for event in session.connection.events():
            if isinstance(event, Delta):
                self._apply_delta(event.text)
            elif isinstance(event, TurnComplete):
                self._record(self._assembler.on_turn_complete())
                self._current_text = self._assembler.current_text
                self._notify()
            elif isinstance(event, SessionError):
                raise TransportError(event.detail or "transcription session failed")
            elif isinstance(event, Closed):
                logger.info("Transcription session closed")
                return
            else:
                logger.warning("Ignoring unexpected event: %r", event)

    def _apply_delta(self, text: str) -> None:
        transcript = self._assembler.on_delta(text)
        if transcript == self._current_text:
            return
        self._current_text = transcript
        logger.debug("Transcript: %s", transcript)
        self._notify()

    def _record(self, snippet: Snippet | None) -> None:
        if snippet is None:
            return
        self._history.append(snippet)
        logger.info("Snippet: %s", snippet.text)

    async def _finish(self, session: Session, error: Exception | None = None) -> None:
        if self._session is not session:
            return
        self._session = None

        self._record(self._assembler.on_stop())
        self._current_text = ""
        await self._teardown(session)
        self._loudness_level = 0.0
        logger.info(
            "Session ended (frames sent=%d, gated=%d)",
            session.frames_sent,
            session.frames_gated,
        )

        if error is not None:
            self._last_error = error
            self._transition_to(SessionStatus.ERROR)
        else:
            self._transition_to(SessionStatus.IDLE)

    async def _teardown(self, session: Session) -> None:
        for task in session.tasks:
            if not task.done():
                task.cancel()
        await self._close_resource("transcription session", session.connection.close)
        await self._close_resource("audio capture", session.capture.stop)

    async def _close_resource(self, name: str, close: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.wait_for(close(), timeout=self._teardown_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing %s after %.1fs", name, self._teardown_timeout)
        except Exception:
            logger.exception("Error closing %s", name)
