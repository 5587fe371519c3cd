import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_SILENCE_THRESHOLD = 0.008


@dataclass(frozen=True)
class GateDecision:
    forward: bool
    level: float


def rms_level(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    values = samples.astype(np.float64)
    return float(np.sqrt(np.mean(values * values)))


class LoudnessGate:
    def __init__(self, silence_threshold: float = DEFAULT_SILENCE_THRESHOLD) -> None:
        self._silence_threshold = silence_threshold

    @property
    def silence_threshold(self) -> float:
        return self._silence_threshold

    def evaluate(self, samples: np.ndarray) -> GateDecision:
        level = rms_level(samples)
        return GateDecision(forward=level >= self._silence_threshold, level=level)
