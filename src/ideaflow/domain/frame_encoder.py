import base64
from dataclasses import dataclass

import numpy as np

PCM16_SCALE = 32767


@dataclass(frozen=True)
class EncodedFrame:
    data: str
    mime_type: str

    @property
    def sample_count(self) -> int:
        return len(base64.b64decode(self.data)) // 2


def pcm_mime_type(sample_rate: int) -> str:
    return f"audio/pcm;rate={sample_rate}"


def float_to_pcm16(samples: np.ndarray) -> bytes:
    finite = np.nan_to_num(np.asarray(samples, dtype=np.float32), nan=0.0, posinf=1.0, neginf=-1.0)
    clipped = np.clip(finite, -1.0, 1.0)
    return np.round(clipped * PCM16_SCALE).astype("<i2").tobytes()


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    return np.frombuffer(pcm, dtype="<i2").astype(np.float32) / PCM16_SCALE


def encode_frame(samples: np.ndarray, sample_rate: int = 16000) -> EncodedFrame:
    pcm = float_to_pcm16(samples)
    return EncodedFrame(
        data=base64.b64encode(pcm).decode("ascii"),
        mime_type=pcm_mime_type(sample_rate),
    )


def decode_frame(frame: EncodedFrame) -> np.ndarray:
    return pcm16_to_float(base64.b64decode(frame.data))
