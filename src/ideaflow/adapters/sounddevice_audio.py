import asyncio
import logging
import os
from collections.abc import AsyncIterator

import numpy as np
import sounddevice as sd
import janus

from ideaflow.domain.errors import DeviceUnavailable

logger = logging.getLogger(__name__)

ECHO_CANCEL_SOURCE = "echo-cancel-source"


class SounddeviceCapture:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        frame_size: int = 4096,
        echo_cancellation: bool = True,
        noise_suppression: bool = True,
        auto_gain_control: bool = True,
        queue_size: int = 32,
    ) -> None:
        self._device = device or None
        self._sample_rate = sample_rate
        self._frame_size = frame_size
        self._echo_cancellation = echo_cancellation
        self._noise_suppression = noise_suppression
        self._auto_gain_control = auto_gain_control
        self._queue_size = queue_size
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[np.ndarray] | None = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    async def start(self) -> None:
        self._queue = janus.Queue(maxsize=self._queue_size)

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            try:
                self._queue.sync_q.put_nowait(indata[:, 0].copy())
            except janus.SyncQueueFull:
                pass

        device = self._device
        try:
            device = self._resolve_device()
            self._stream = sd.InputStream(
                device=device,
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._frame_size,
                callback=audio_callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            await self.stop()
            raise DeviceUnavailable(f"Cannot open capture device {device!r}: {exc}") from exc

        logger.info(
            "Audio capture started (device=%s, rate=%d, frame=%d samples)",
            device, self._sample_rate, self._frame_size,
        )

    async def stop(self) -> None:
        if self._stream:
            try:
                self._stream.stop()
            finally:
                self._stream.close()
                self._stream = None
        if self._queue:
            self._queue.close()
            self._queue = None

    async def read_frames(self) -> AsyncIterator[np.ndarray]:
        queue = self._queue
        if not queue:
            return
        while True:
            try:
                frame = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
                yield frame
            except asyncio.TimeoutError:
                continue
            except janus.AsyncQueueShutDown:
                break

    def _resolve_device(self) -> str | int | None:
        if self._noise_suppression or self._auto_gain_control:
            logger.debug(
                "Noise suppression=%s auto gain=%s requested; PortAudio has no switch, "
                "relying on the source's own processing",
                self._noise_suppression, self._auto_gain_control,
            )

        device = self._device
        if device is None:
            if not self._echo_cancellation:
                return None
            device = ECHO_CANCEL_SOURCE
        if isinstance(device, int):
            return device
        try:
            return int(device)
        except ValueError:
            pass
        for i, dev in enumerate(sd.query_devices()):
            if device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", device, i, dev["name"])
                return i
        os.environ["PIPEWIRE_NODE"] = device
        logger.info("Device '%s' not in PortAudio, set PIPEWIRE_NODE for PipeWire routing", device)
        return None
