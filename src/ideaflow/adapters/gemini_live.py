import asyncio
import base64
import logging
from collections.abc import AsyncIterator

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosedOK

from ideaflow.domain.errors import ConnectFailed, MalformedEvent
from ideaflow.domain.events import Closed, Delta, SessionError, TranscriptionEvent, TurnComplete
from ideaflow.domain.frame_encoder import EncodedFrame
from ideaflow.ports.transcriber import SessionConfig

logger = logging.getLogger(__name__)


def events_from_message(message) -> list[TranscriptionEvent]:
    """Map one Live API server message to transcription events.

    Messages without ``server_content`` (setup acks, usage metadata) carry no
    transcript and map to nothing. Model audio parts are ignored.
    """
    content = getattr(message, "server_content", None)
    if content is None:
        return []

    events: list[TranscriptionEvent] = []
    transcription = getattr(content, "input_transcription", None)
    if transcription is not None:
        text = getattr(transcription, "text", None)
        if text is not None and not isinstance(text, str):
            raise MalformedEvent(f"transcription text is {type(text).__name__}, not str")
        if text:
            events.append(Delta(text=text))
    if getattr(content, "turn_complete", None) is True:
        events.append(TurnComplete())
    return events


class GeminiLiveSession:
    def __init__(
        self,
        api_key: str = "",
        client: genai.Client | None = None,
        send_queue_size: int = 64,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._send_queue_size = send_queue_size
        self._context_manager = None
        self._session = None
        self._events: asyncio.Queue[TranscriptionEvent] = asyncio.Queue()
        self._outbound: asyncio.Queue[EncodedFrame] | None = None
        self._receiver_task: asyncio.Task | None = None
        self._sender_task: asyncio.Task | None = None
        self._closed = False
        self._terminated = False

    async def open(self, config: SessionConfig) -> None:
        if self._closed:
            raise ConnectFailed("Session already closed")

        try:
            client = self._client or genai.Client(api_key=self._api_key)
            live_config = types.LiveConnectConfig(
                response_modalities=[types.Modality.AUDIO],
                input_audio_transcription=types.AudioTranscriptionConfig(),
                system_instruction=config.system_instruction or None,
            )
            self._context_manager = client.aio.live.connect(
                model=config.model, config=live_config
            )
            self._session = await self._context_manager.__aenter__()
        except asyncio.CancelledError:
            self._context_manager = None
            raise
        except Exception as exc:
            self._context_manager = None
            raise ConnectFailed(str(exc)) from exc

        if self._closed:
            context_manager, self._context_manager = self._context_manager, None
            self._session = None
            await context_manager.__aexit__(None, None, None)
            raise ConnectFailed("Session closed while connecting")

        self._outbound = asyncio.Queue(maxsize=self._send_queue_size)
        self._sender_task = asyncio.create_task(self._send_loop(self._outbound))
        self._receiver_task = asyncio.create_task(self._receive_loop())
        logger.info("Gemini Live session opened (model=%s)", config.model)

    def send(self, frame: EncodedFrame) -> None:
        if self._outbound is None or self._closed:
            return
        try:
            self._outbound.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning("Send queue full, dropping audio frame")

    async def events(self) -> AsyncIterator[TranscriptionEvent]:
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, (Closed, SessionError)):
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for task in (self._sender_task, self._receiver_task):
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except (asyncio.CancelledError, Exception):
                    pass
        self._sender_task = None
        self._receiver_task = None

        if self._context_manager is not None and self._session is not None:
            try:
                await self._context_manager.__aexit__(None, None, None)
            except Exception:
                logger.warning("Error closing Gemini Live connection", exc_info=True)
        self._context_manager = None
        self._session = None
        self._outbound = None
        self._emit_terminal(Closed())
        logger.info("Gemini Live session closed")

    async def _send_loop(self, outbound: asyncio.Queue[EncodedFrame]) -> None:
        while True:
            frame = await outbound.get()
            try:
                await self._session.send_realtime_input(
                    audio=types.Blob(
                        data=base64.b64decode(frame.data),
                        mime_type=frame.mime_type,
                    )
                )
            except Exception as exc:
                logger.error("Failed to send audio to Gemini Live: %s", exc)
                self._emit_terminal(SessionError(detail=f"send failed: {exc}"))
                return

    async def _receive_loop(self) -> None:
        try:
            # receive() stops after each turn_complete, so keep re-entering it.
            while True:
                received = False
                async for message in self._session.receive():
                    received = True
                    self._dispatch(message)
                if not received:
                    break
        except ConnectionClosedOK:
            logger.info("Gemini Live connection closed by server")
        except Exception as exc:
            logger.error("Gemini Live receive failed: %s", exc)
            self._emit_terminal(SessionError(detail=str(exc)))
            return
        self._emit_terminal(Closed())

    def _dispatch(self, message) -> None:
        if self._terminated:
            return
        try:
            events = events_from_message(message)
        except MalformedEvent as exc:
            logger.warning("Dropping malformed message: %s", exc)
            return
        for event in events:
            self._events.put_nowait(event)

    def _emit_terminal(self, event: TranscriptionEvent) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._events.put_nowait(event)
