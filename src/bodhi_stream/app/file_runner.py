from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from bodhi_stream.app.wiring import create_session
from bodhi_stream.config.settings import AppSettings
from bodhi_stream.core.audio.format import load_wav_file
from bodhi_stream.core.audio.source import BufferAudioSource
from bodhi_stream.core.transport.base import Transport
from bodhi_stream.domain.models import Credentials, TranscriptResult
from bodhi_stream.errors import BodhiStreamError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeadlessFileRunner:
    """Streams a prerecorded WAV file at real-time pace and prints the transcript."""

    settings: AppSettings
    credentials: Credentials
    path: Path
    transport: Transport | None = None

    async def run(self) -> int:
        buffer = load_wav_file(self.path)
        logger.info(
            "Channels = %d, Sample Rate = %d Hz, Sample width = 2 bytes, Duration = %.2fs",
            buffer.channels,
            buffer.sample_rate_hz,
            buffer.duration_s,
        )

        session = create_session(self.settings, credentials=self.credentials, transport=self.transport)
        source = BufferAudioSource(buffer)
        try:
            result = await session.run(source)
        except BodhiStreamError as exc:
            report_partial(exc.result)
            print(f"Error: {exc}", flush=True)
            return 1
        finally:
            await source.close()

        report_result(result)
        return 0


def report_result(result: TranscriptResult) -> None:
    logger.info("Complete transcript: %s", result.text)
    if not result.final:
        logger.warning("Server did not confirm end-of-stream; transcript may be incomplete")
    print(result.text, flush=True)


def report_partial(result: TranscriptResult | None) -> None:
    if result is None or not result.segments:
        return
    logger.warning("Partial transcript before failure: %s", result.text)
