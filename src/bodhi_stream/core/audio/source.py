from __future__ import annotations

import contextlib
import logging
import queue
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

import janus
import numpy as np

from bodhi_stream.core.audio.format import PcmBuffer, float32_to_pcm16le_bytes, interleave_channels
from bodhi_stream.errors import ConfigError

logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    @property
    def sample_rate_hz(self) -> int: ...

    @property
    def is_live(self) -> bool: ...

    def frames(self) -> AsyncIterator[bytes]: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class BufferAudioSource:
    """A finite, already-decoded recording (file playback)."""

    buffer: PcmBuffer

    @property
    def sample_rate_hz(self) -> int:
        return self.buffer.sample_rate_hz

    @property
    def is_live(self) -> bool:
        return False

    async def frames(self) -> AsyncIterator[bytes]:
        if self.buffer.data:
            yield self.buffer.data

    async def close(self) -> None:
        return


@dataclass(slots=True)
class SoundDeviceAudioSource:
    """Live microphone capture using sounddevice/PortAudio.

    Blocks arrive on the PortAudio thread and are handed to asyncio through a
    janus queue. Stereo capture is interleaved into a single PCM16 stream.
    """

    sample_rate_hz: int = 8000
    channels: int = 1
    device: int | str | None = None
    blocksize: int | None = None
    max_queue_frames: int = 64

    _queue: janus.Queue[bytes | None] = field(init=False, repr=False)
    _stream: object = field(init=False, repr=False, default=None)
    _closed: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ConfigError("sample_rate_hz must be > 0")
        if self.channels not in (1, 2):
            raise ConfigError("channels must be 1 or 2")
        if self.max_queue_frames <= 0:
            raise ConfigError("max_queue_frames must be > 0")
        self._queue = janus.Queue(maxsize=self.max_queue_frames)

    @property
    def is_live(self) -> bool:
        return True

    def start(self) -> None:
        import sounddevice as sd  # type: ignore

        def _callback(indata, _frames, _time, status):  # called from PortAudio thread
            if self._closed:
                return
            if status:
                logger.warning("sounddevice input status: %s", status)
            block = np.asarray(indata, dtype=np.float32).reshape(len(indata), -1)
            samples = interleave_channels([block[:, ch] for ch in range(block.shape[1])])
            pcm = float32_to_pcm16le_bytes(samples)
            try:
                self._queue.sync_q.put_nowait(pcm)
            except queue.Full:
                # drop when the consumer falls behind
                return

        stream = sd.InputStream(
            samplerate=self.sample_rate_hz,
            channels=self.channels,
            dtype="float32",
            callback=_callback,
            device=self.device,
            blocksize=self.blocksize or 0,
        )
        stream.start()
        self._stream = stream
        logger.info("Capturing from input device %s at %d Hz", self.device or "default", self.sample_rate_hz)

    async def frames(self) -> AsyncIterator[bytes]:
        if self._stream is None and not self._closed:
            self.start()
        while True:
            try:
                item = await self._queue.async_q.get()
            except RuntimeError:
                # queue closed underneath us
                return
            if item is None:
                return
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        stream = self._stream
        if stream is not None:
            with contextlib.suppress(Exception):
                stream.stop()
            with contextlib.suppress(Exception):
                stream.close()

        with contextlib.suppress(queue.Full, RuntimeError):
            self._queue.sync_q.put_nowait(None)

        self._queue.close()
        await self._queue.wait_closed()
