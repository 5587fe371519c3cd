import logging
import re
from collections.abc import Callable
from typing import Literal

from ideaflow.domain.events import Snippet

logger = logging.getLogger(__name__)

DEFAULT_OVERLAP_WINDOW = 8
DEFAULT_MIN_SNIPPET_CHARS = 1

TurnMode = Literal["per-turn", "session-log"]
TextFilter = Callable[[str], str]

_NON_ASCII = re.compile(r"[^\x00-\x7f]+")


def ascii_only(text: str) -> str:
    return _NON_ASCII.sub("", text)


class TranscriptAssembler:
    def __init__(
        self,
        overlap_window: int = DEFAULT_OVERLAP_WINDOW,
        turn_mode: TurnMode = "per-turn",
        min_snippet_chars: int = DEFAULT_MIN_SNIPPET_CHARS,
        text_filter: TextFilter | None = ascii_only,
    ) -> None:
        if overlap_window < 1:
            raise ValueError("overlap_window must be at least 1")
        self._overlap_window = overlap_window
        self._turn_mode = turn_mode
        self._min_snippet_chars = max(1, min_snippet_chars)
        self._text_filter = text_filter
        self._committed: list[str] = []
        self._turn_boundaries: list[int] = []

    @property
    def committed(self) -> list[str]:
        return list(self._committed)

    @property
    def turn_boundaries(self) -> list[int]:
        return list(self._turn_boundaries)

    @property
    def current_text(self) -> str:
        return " ".join(self._committed)

    @property
    def turn_mode(self) -> TurnMode:
        return self._turn_mode

    def reset(self) -> None:
        self._committed.clear()
        self._turn_boundaries.clear()

    def on_delta(self, text: str) -> str:
        if self._text_filter is not None:
            text = self._text_filter(text)
        incoming = text.split()
        if not incoming:
            return self.current_text

        if not self._committed:
            self._committed.extend(incoming)
            return self.current_text

        overlap = self._find_overlap(incoming)
        if overlap:
            logger.debug("Delta overlaps %d committed word(s)", overlap)
        self._committed.extend(incoming[overlap:])
        return self.current_text

    def on_turn_complete(self) -> Snippet | None:
        if self._turn_mode == "session-log":
            if self._committed and (
                not self._turn_boundaries or self._turn_boundaries[-1] != len(self._committed)
            ):
                self._turn_boundaries.append(len(self._committed))
            return None

        snippet = self._make_snippet()
        self._committed.clear()
        return snippet

    def on_stop(self) -> Snippet | None:
        snippet = self._make_snippet()
        self.reset()
        return snippet

    def _find_overlap(self, incoming: list[str]) -> int:
        longest = min(self._overlap_window, len(self._committed), len(incoming))
        tail = [word.lower() for word in self._committed[-longest:]]
        head = [word.lower() for word in incoming[:longest]]
        for length in range(longest, 0, -1):
            if tail[-length:] == head[:length]:
                return length
        return 0

    def _make_snippet(self) -> Snippet | None:
        text = self.current_text.strip()
        if len(text) < self._min_snippet_chars:
            return None
        return Snippet(text=text)
