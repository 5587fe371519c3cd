import uuid
from dataclasses import dataclass, field
from datetime import datetime

from ideaflow.domain.state import SessionStatus


@dataclass(frozen=True)
class TranscriptionEvent:
    pass


@dataclass(frozen=True)
class Delta(TranscriptionEvent):
    text: str = ""


@dataclass(frozen=True)
class TurnComplete(TranscriptionEvent):
    pass


@dataclass(frozen=True)
class SessionError(TranscriptionEvent):
    detail: str = ""


@dataclass(frozen=True)
class Closed(TranscriptionEvent):
    pass


@dataclass(frozen=True)
class Snippet:
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TranscriptionState:
    current_text: str = ""
    history: tuple[Snippet, ...] = ()
    is_recording: bool = False
    status: SessionStatus = SessionStatus.IDLE
    loudness_level: float = 0.0
