from typing import Protocol, AsyncIterator

import numpy as np


class AudioFrameSource(Protocol):
    @property
    def sample_rate(self) -> int: ...
    @property
    def frame_size(self) -> int: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def read_frames(self) -> AsyncIterator[np.ndarray]: ...
