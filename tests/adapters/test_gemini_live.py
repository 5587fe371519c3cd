import asyncio
import base64
from types import SimpleNamespace

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosedOK

from ideaflow.adapters.gemini_live import GeminiLiveSession, events_from_message
from ideaflow.domain.errors import ConnectFailed, MalformedEvent
from ideaflow.domain.events import Closed, Delta, SessionError, TurnComplete
from ideaflow.domain.frame_encoder import encode_frame
from ideaflow.ports.transcriber import SessionConfig


def transcription_message(text=None, turn_complete=None):
    return SimpleNamespace(
        server_content=SimpleNamespace(
            input_transcription=SimpleNamespace(text=text) if text is not None else None,
            turn_complete=turn_complete,
        )
    )


class FakeLiveSession:
    def __init__(self, messages: list | None = None) -> None:
        self._messages = list(messages or [])
        self.sent: list = []

    async def send_realtime_input(self, *, audio=None, **kwargs) -> None:
        self.sent.append(audio)

    async def receive(self):
        while self._messages:
            message = self._messages.pop(0)
            if isinstance(message, Exception):
                raise message
            yield message
            if message.server_content and message.server_content.turn_complete:
                return


class FakeConnect:
    def __init__(self, session: FakeLiveSession, enter_error: Exception | None = None) -> None:
        self._session = session
        self._enter_error = enter_error
        self.exited = False

    async def __aenter__(self) -> FakeLiveSession:
        if self._enter_error:
            raise self._enter_error
        return self._session

    async def __aexit__(self, *exc_info) -> None:
        self.exited = True


class FakeLive:
    def __init__(self, connect: FakeConnect) -> None:
        self._connect = connect
        self.model: str | None = None
        self.config = None

    def connect(self, *, model, config):
        self.model = model
        self.config = config
        return self._connect


class SlowConnect(FakeConnect):
    def __init__(self, session: FakeLiveSession) -> None:
        super().__init__(session)
        self.entering = asyncio.Event()
        self.release = asyncio.Event()

    async def __aenter__(self) -> FakeLiveSession:
        self.entering.set()
        await self.release.wait()
        return self._session


def make_client(connect: FakeConnect) -> SimpleNamespace:
    return SimpleNamespace(aio=SimpleNamespace(live=FakeLive(connect)))


CONFIG = SessionConfig(model="test-live-model", system_instruction="verbatim only")


async def collect_events(session: GeminiLiveSession) -> list:
    async def _collect():
        return [event async for event in session.events()]

    return await asyncio.wait_for(_collect(), timeout=1.0)


class TestEventsFromMessage:
    def test_transcription_becomes_delta(self):
        assert events_from_message(transcription_message("hello")) == [Delta("hello")]

    def test_turn_complete(self):
        assert events_from_message(transcription_message(turn_complete=True)) == [TurnComplete()]

    def test_delta_precedes_turn_complete(self):
        events = events_from_message(transcription_message("done", turn_complete=True))
        assert events == [Delta("done"), TurnComplete()]

    def test_message_without_content_is_ignored(self):
        assert events_from_message(SimpleNamespace(server_content=None)) == []
        assert events_from_message(SimpleNamespace(setup_complete=True)) == []

    def test_empty_transcription_is_ignored(self):
        assert events_from_message(transcription_message("")) == []

    def test_non_string_text_is_malformed(self):
        with pytest.raises(MalformedEvent):
            events_from_message(transcription_message(42))


class TestGeminiLiveSession:
    @pytest.mark.asyncio
    async def test_open_connects_with_model_and_transcription(self):
        connect = FakeConnect(FakeLiveSession())
        client = make_client(connect)
        session = GeminiLiveSession(client=client)
        await session.open(CONFIG)

        assert client.aio.live.model == "test-live-model"
        assert client.aio.live.config.input_audio_transcription is not None
        await session.close()
        assert connect.exited

    @pytest.mark.asyncio
    async def test_open_failure_raises_connect_failed(self):
        connect = FakeConnect(FakeLiveSession(), enter_error=OSError("handshake rejected"))
        session = GeminiLiveSession(client=make_client(connect))
        with pytest.raises(ConnectFailed):
            await session.open(CONFIG)
        await session.close()
        assert not connect.exited

    @pytest.mark.asyncio
    async def test_send_forwards_pcm_in_order(self):
        live = FakeLiveSession()
        session = GeminiLiveSession(client=make_client(FakeConnect(live)))
        await session.open(CONFIG)

        frames = [encode_frame(np.full(4, value, dtype=np.float32)) for value in (0.1, 0.2, 0.3)]
        for frame in frames:
            session.send(frame)
        for _ in range(20):
            if len(live.sent) == 3:
                break
            await asyncio.sleep(0.005)

        assert [blob.data for blob in live.sent] == [base64.b64decode(f.data) for f in frames]
        assert all(blob.mime_type == "audio/pcm;rate=16000" for blob in live.sent)
        await session.close()

    @pytest.mark.asyncio
    async def test_send_before_open_is_dropped(self):
        session = GeminiLiveSession(client=make_client(FakeConnect(FakeLiveSession())))
        session.send(encode_frame(np.zeros(4, dtype=np.float32)))
        await session.close()

    @pytest.mark.asyncio
    async def test_events_across_turns_then_closed(self):
        live = FakeLiveSession([
            transcription_message("hello"),
            transcription_message("hello world", turn_complete=True),
            transcription_message("next turn"),
        ])
        session = GeminiLiveSession(client=make_client(FakeConnect(live)))
        await session.open(CONFIG)

        events = await collect_events(session)
        assert events == [
            Delta("hello"),
            Delta("hello world"),
            TurnComplete(),
            Delta("next turn"),
            Closed(),
        ]
        await session.close()

    @pytest.mark.asyncio
    async def test_malformed_message_is_dropped(self):
        live = FakeLiveSession([
            transcription_message("before"),
            transcription_message(42),
            transcription_message("after"),
        ])
        session = GeminiLiveSession(client=make_client(FakeConnect(live)))
        await session.open(CONFIG)

        events = await collect_events(session)
        assert events == [Delta("before"), Delta("after"), Closed()]
        await session.close()

    @pytest.mark.asyncio
    async def test_receive_failure_becomes_session_error(self):
        live = FakeLiveSession([transcription_message("partial"), RuntimeError("stream reset")])
        session = GeminiLiveSession(client=make_client(FakeConnect(live)))
        await session.open(CONFIG)

        events = await collect_events(session)
        assert events == [Delta("partial"), SessionError(detail="stream reset")]
        await session.close()

    @pytest.mark.asyncio
    async def test_server_close_is_normal(self):
        live = FakeLiveSession([ConnectionClosedOK(None, None)])
        session = GeminiLiveSession(client=make_client(FakeConnect(live)))
        await session.open(CONFIG)

        events = await collect_events(session)
        assert events == [Closed()]
        await session.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_ends_events(self):
        connect = FakeConnect(FakeLiveSession())
        session = GeminiLiveSession(client=make_client(connect))
        await session.close()
        await session.close()
        assert not connect.exited
        assert await collect_events(session) == [Closed()]

    @pytest.mark.asyncio
    async def test_close_while_connecting_releases_connection(self):
        connect = SlowConnect(FakeLiveSession())
        session = GeminiLiveSession(client=make_client(connect))
        opening = asyncio.create_task(session.open(CONFIG))
        await asyncio.wait_for(connect.entering.wait(), timeout=1.0)

        await session.close()
        connect.release.set()

        with pytest.raises(ConnectFailed):
            await asyncio.wait_for(opening, timeout=1.0)
        assert connect.exited
        session.send(encode_frame(np.zeros(4, dtype=np.float32)))
        assert await collect_events(session) == [Closed()]

    @pytest.mark.asyncio
    async def test_open_after_close_fails(self):
        session = GeminiLiveSession(client=make_client(FakeConnect(FakeLiveSession())))
        await session.close()
        with pytest.raises(ConnectFailed):
            await session.open(CONFIG)
