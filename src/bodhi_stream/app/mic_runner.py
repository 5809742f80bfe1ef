from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field

from bodhi_stream.app.file_runner import report_partial, report_result
from bodhi_stream.app.wiring import create_session
from bodhi_stream.config.settings import AppSettings
from bodhi_stream.core.audio.source import AudioSource, SoundDeviceAudioSource
from bodhi_stream.core.session.controller import TranscriptionSession
from bodhi_stream.core.transport.base import Transport
from bodhi_stream.domain.models import Credentials
from bodhi_stream.errors import BodhiStreamError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeadlessMicRunner:
    """Streams live microphone audio until interrupted, then drains the transcript."""

    settings: AppSettings
    credentials: Credentials
    device: int | str | None = None
    transport: Transport | None = None
    source: AudioSource | None = None

    _session: TranscriptionSession | None = field(init=False, default=None, repr=False)
    _stop_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)

    async def run(self) -> int:
        if self.source is None:
            self.source = SoundDeviceAudioSource(
                sample_rate_hz=self.settings.stream.mic_sample_rate_hz,
                device=self.device,
            )
        source = self.source
        self._session = create_session(
            self.settings, credentials=self.credentials, transport=self.transport
        )

        loop = asyncio.get_running_loop()
        installed = False
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGINT, self.stop)
            installed = True

        print("Listening... press Ctrl+C to stop.", flush=True)
        try:
            result = await self._session.run(source)
        except BodhiStreamError as exc:
            report_partial(exc.result)
            print(f"Error: {exc}", flush=True)
            return 1
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)
            await self._finish_stop()
            await source.close()

        report_result(result)
        return 0

    def stop(self) -> asyncio.Task[None] | None:
        """Stop the outbound stream; the session then sends EOF and drains."""
        if self._session is None or self.source is None or self._stop_task is not None:
            return self._stop_task
        logger.info("Stopping capture")
        self._session.request_stop()
        self._stop_task = asyncio.get_running_loop().create_task(self.source.close())
        return self._stop_task

    async def _finish_stop(self) -> None:
        if self._stop_task is None:
            return
        try:
            await self._stop_task
        except Exception:
            logger.exception("Closing the audio source failed")
