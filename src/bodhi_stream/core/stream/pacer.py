"""Turns PCM16 audio into time-paced binary frames.

File playback is paced by an interval ticker so the service sees audio at
roughly real-time speed. Live capture already arrives at that speed, so it is
re-chunked and forwarded without any synthetic delay.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator

from bodhi_stream.core.audio.format import PCM16_SAMPLE_WIDTH
from bodhi_stream.core.audio.source import AudioSource
from bodhi_stream.core.clock import Clock, ImmediateTicker, IntervalTicker, Sleep, SystemClock, Ticker
from bodhi_stream.domain.models import AudioFrame
from bodhi_stream.errors import ConfigError


def chunk_samples(sample_rate_hz: int, chunk_duration_ms: int) -> int:
    return (sample_rate_hz * chunk_duration_ms) // 1000


def chunk_bytes(sample_rate_hz: int, chunk_duration_ms: int) -> int:
    return chunk_samples(sample_rate_hz, chunk_duration_ms) * PCM16_SAMPLE_WIDTH


@dataclass(slots=True)
class FramePacer:
    chunk_duration_ms: int = 100
    clock: Clock = field(default_factory=SystemClock)
    sleep: Sleep | None = None

    def __post_init__(self) -> None:
        if self.chunk_duration_ms <= 0:
            raise ConfigError("chunk_duration_ms must be > 0")

    def _chunk_size(self, sample_rate_hz: int) -> int:
        if sample_rate_hz <= 0:
            raise ConfigError("sample_rate_hz must be > 0")
        size = chunk_bytes(sample_rate_hz, self.chunk_duration_ms)
        if size <= 0:
            raise ConfigError(
                f"chunk of {self.chunk_duration_ms}ms at {sample_rate_hz}Hz holds no samples"
            )
        return size

    def _interval_ticker(self) -> IntervalTicker:
        ticker = IntervalTicker(interval_s=self.chunk_duration_ms / 1000.0, clock=self.clock)
        if self.sleep is not None:
            ticker.sleep = self.sleep
        return ticker

    async def stream(self, samples: bytes, sample_rate_hz: int) -> AsyncIterator[AudioFrame]:
        """Frames from a finite buffer, one chunk duration apart.

        The last frame carries the remainder and may be short. An empty buffer
        yields nothing.
        """
        size = self._chunk_size(sample_rate_hz)
        ticker = self._interval_ticker()
        async for frame in _paced(_split(samples, size), ticker):
            yield frame

    async def stream_live(self, source: AudioSource) -> AsyncIterator[AudioFrame]:
        """Frames from a capture device, emitted as soon as a full chunk is buffered."""
        size = self._chunk_size(source.sample_rate_hz)
        ticker: Ticker = ImmediateTicker() if source.is_live else self._interval_ticker()

        async def _chunks() -> AsyncIterator[bytes]:
            pending = bytearray()
            async for block in source.frames():
                pending += block
                while len(pending) >= size:
                    yield bytes(pending[:size])
                    del pending[:size]
            if pending:
                yield bytes(pending)

        async for frame in _paced(_chunks(), ticker):
            yield frame

    async def stream_source(self, source: AudioSource) -> AsyncIterator[AudioFrame]:
        """Pick live or playback pacing based on the source."""
        if source.is_live:
            async for frame in self.stream_live(source):
                yield frame
            return

        data = b"".join([block async for block in source.frames()])
        async for frame in self.stream(data, source.sample_rate_hz):
            yield frame


async def _split(samples: bytes, size: int) -> AsyncIterator[bytes]:
    view = memoryview(samples)
    for offset in range(0, len(view), size):
        yield bytes(view[offset : offset + size])


async def _paced(chunks: AsyncIterator[bytes], ticker: Ticker) -> AsyncIterator[AudioFrame]:
    index = 0
    async for chunk in chunks:
        if index:
            await ticker.wait()
        yield AudioFrame(index=index, data=chunk)
        index += 1
