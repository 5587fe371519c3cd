from dataclasses import dataclass
from typing import Protocol, AsyncIterator

from ideaflow.domain.events import TranscriptionEvent
from ideaflow.domain.frame_encoder import EncodedFrame, pcm_mime_type


@dataclass(frozen=True)
class SessionConfig:
    model: str
    sample_rate: int = 16000
    system_instruction: str = ""

    @property
    def mime_type(self) -> str:
        return pcm_mime_type(self.sample_rate)


class TranscriptSessionPort(Protocol):
    async def open(self, config: SessionConfig) -> None: ...
    def send(self, frame: EncodedFrame) -> None: ...
    def events(self) -> AsyncIterator[TranscriptionEvent]: ...
    async def close(self) -> None: ...
