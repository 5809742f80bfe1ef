from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable
from uuid import uuid4

from bodhi_stream.core.audio.source import AudioSource
from bodhi_stream.core.stream.aggregator import TranscriptAggregator
from bodhi_stream.core.stream.pacer import FramePacer
from bodhi_stream.core.stream.protocol import EOF_SENTINEL, encode_config
from bodhi_stream.core.transport.base import Connection, TlsOptions, Transport
from bodhi_stream.domain.events import (
    SessionEvent,
    SessionState,
    SessionStateEvent,
    SessionTranscriptEvent,
)
from bodhi_stream.domain.models import (
    ConfigAck,
    Credentials,
    ServiceErrorMessage,
    TranscriptEvent,
    TranscriptResult,
)
from bodhi_stream.errors import (
    AudioSourceError,
    BodhiStreamError,
    ConfigError,
    ConnectError,
    DecodeError,
    ProtocolError,
    TransportError,
)

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]


@dataclass(slots=True)
class TranscriptionSession:
    """One conversation with the recognizer, from connect to close.

    Idle -> Connecting -> Configuring -> Streaming -> Draining -> Closed, with
    Errored reachable from every non-terminal state. A session runs once.
    """

    transport: Transport
    credentials: Credentials
    uri: str
    model: str
    transaction_id: str = field(default_factory=lambda: str(uuid4()))
    tls: TlsOptions = field(default_factory=TlsOptions)
    pacer: FramePacer = field(default_factory=FramePacer)
    drain_timeout_s: float | None = None
    listener: SessionListener | None = None

    _state: SessionState = field(init=False, default=SessionState.IDLE)
    _aggregator: TranscriptAggregator = field(init=False, repr=False)
    _connection: Connection | None = field(init=False, default=None, repr=False)
    _recv_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _stop_requested: asyncio.Event = field(init=False, repr=False, default_factory=asyncio.Event)
    _started: bool = field(init=False, default=False)
    _frames_sent: int = field(init=False, default=0)
    _bytes_sent: int = field(init=False, default=0)
    _eof_sent: bool = field(init=False, default=False)
    _decode_errors: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if not self.uri:
            raise ConfigError("uri must be non-empty")
        if not self.model:
            raise ConfigError("model must be non-empty")
        if not self.transaction_id:
            raise ConfigError("transaction_id must be non-empty")
        if self.drain_timeout_s is not None and self.drain_timeout_s <= 0:
            raise ConfigError("drain_timeout_s must be > 0")
        self._aggregator = TranscriptAggregator(transaction_id=self.transaction_id)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def result(self) -> TranscriptResult:
        return self._aggregator.result

    @property
    def frames_sent(self) -> int:
        return self._frames_sent

    @property
    def eof_sent(self) -> bool:
        return self._eof_sent

    @property
    def decode_errors(self) -> int:
        return self._decode_errors

    def request_stop(self) -> None:
        """End the outbound audio at the next frame boundary. EOF still goes out."""
        self._stop_requested.set()

    async def run(self, source: AudioSource | None) -> TranscriptResult:
        if self._started:
            raise RuntimeError("a TranscriptionSession can only be run once")
        self._started = True

        if source is None:
            raise ConfigError("an audio source is required")
        sample_rate_hz = source.sample_rate_hz
        if not isinstance(sample_rate_hz, int) or sample_rate_hz <= 0:
            raise ConfigError("sample_rate_hz must be a positive integer")

        try:
            await self._connect()
            await self._configure(sample_rate_hz)
            if await self._stream(source):
                await self._send_eof()
                await self._drain()
        except BaseException as exc:
            await self._abort()
            self._set_state(SessionState.ERRORED)
            if isinstance(exc, BodhiStreamError):
                exc.with_result(self.result)
                logger.error("Session %s failed: %s", self.transaction_id, exc)
            raise

        await self._shutdown()
        self._set_state(SessionState.CLOSED)
        return self.result

    async def _connect(self) -> None:
        self._set_state(SessionState.CONNECTING)
        logger.info("Connecting to %s (transaction_id=%s)", self.uri, self.transaction_id)
        try:
            self._connection = await self.transport.open(
                self.uri, self.credentials.headers(), self.tls
            )
        except BodhiStreamError:
            raise
        except Exception as exc:
            raise ConnectError(f"cannot connect to {self.uri}: {exc}") from exc

    async def _configure(self, sample_rate_hz: int) -> None:
        self._set_state(SessionState.CONFIGURING)
        await self._send_text(
            encode_config(
                sample_rate_hz=sample_rate_hz,
                transaction_id=self.transaction_id,
                model=self.model,
            )
        )
        logger.info("Config sent (sample_rate=%d Hz, model=%s)", sample_rate_hz, self.model)

    async def _stream(self, source: AudioSource) -> bool:
        """Run sender and receiver together.

        Returns True once every frame is out, False if the server closed the
        connection first.
        """
        self._set_state(SessionState.STREAMING)
        self._recv_task = asyncio.create_task(self._receive_loop())
        send_task = asyncio.create_task(self._send_loop(source))

        try:
            await asyncio.wait({send_task, self._recv_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            send_task.cancel()
            await asyncio.gather(send_task, return_exceptions=True)
            raise

        if not self._recv_task.done():
            send_task.result()
            return True

        # The receiver ended first. A send failing on the now-closed connection
        # is a consequence of that, not a separate failure.
        if not send_task.done():
            send_task.cancel()
        await asyncio.gather(send_task, return_exceptions=True)
        self._recv_task.result()
        if not send_task.cancelled():
            send_exc = send_task.exception()
            if send_exc is not None and not isinstance(send_exc, TransportError):
                raise send_exc
        logger.warning(
            "Connection closed by server after %d frames; audio stream aborted", self._frames_sent
        )
        return False

    async def _send_loop(self, source: AudioSource) -> None:
        try:
            async with contextlib.aclosing(self.pacer.stream_source(source)) as frames:
                async for frame in frames:
                    await self._send_binary(frame.data)
                    self._frames_sent += 1
                    self._bytes_sent += len(frame)
                    if self._frames_sent == 1:
                        logger.info("First audio frame sent (%d bytes)", len(frame))
                    elif self._frames_sent % 50 == 0:
                        logger.debug("Audio frames sent: %d", self._frames_sent)
                    if self._stop_requested.is_set():
                        logger.info("Stop requested; ending audio stream")
                        break
        except BodhiStreamError:
            raise
        except Exception as exc:
            # _send_binary already wraps its own failures, so anything left
            # came from the source or the pacer.
            raise AudioSourceError(
                f"audio source failed after {self._frames_sent} frames: {exc}"
            ) from exc
        logger.info("Audio stream finished: %d frames, %d bytes", self._frames_sent, self._bytes_sent)

    async def _send_eof(self) -> None:
        self._set_state(SessionState.DRAINING)
        await self._send_text(EOF_SENTINEL)
        self._eof_sent = True
        logger.info("EOF sent; waiting for end-of-stream")

    async def _drain(self) -> None:
        assert self._recv_task is not None
        if self._aggregator.is_final:
            return

        final_wait = asyncio.create_task(self._aggregator.wait_final())
        try:
            done, _ = await asyncio.wait(
                {final_wait, self._recv_task},
                timeout=self.drain_timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not final_wait.done():
                final_wait.cancel()
                await asyncio.gather(final_wait, return_exceptions=True)

        if not done:
            raise ProtocolError(
                f"server did not signal end-of-stream within {self.drain_timeout_s}s"
            )
        if self._recv_task in done:
            self._recv_task.result()
            if not self._aggregator.is_final:
                logger.warning("Connection closed before end-of-stream; transcript may be incomplete")

    async def _receive_loop(self) -> None:
        while True:
            raw = await self._receive()
            if raw is None:
                logger.info("Connection closed")
                return

            try:
                message = self._aggregator.consume(raw)
            except DecodeError as exc:
                self._decode_errors += 1
                logger.warning("Dropping malformed message: %s", exc)
                continue

            if isinstance(message, ServiceErrorMessage):
                raise ProtocolError(f"service error: {message.message}")
            if isinstance(message, ConfigAck):
                logger.debug("Config acknowledged: %s", message.payload)
                continue
            self._on_transcript(message)

    def _on_transcript(self, event: TranscriptEvent) -> None:
        logger.info(
            "Received data: Call_id=%s, Segment_id=%s, EOS=%s, Type=%s, Text=%s",
            event.call_id,
            event.segment_id,
            event.eos,
            event.type,
            event.text,
        )
        self._emit(SessionTranscriptEvent(event))

    async def _send_text(self, text: str) -> None:
        conn = self._require_connection()
        try:
            await conn.send_text(text)
        except BodhiStreamError:
            raise
        except Exception as exc:
            raise TransportError(f"text send failed: {exc}") from exc

    async def _send_binary(self, data: bytes) -> None:
        conn = self._require_connection()
        try:
            await conn.send_binary(data)
        except BodhiStreamError:
            raise
        except Exception as exc:
            raise TransportError(f"binary send failed: {exc}") from exc

    async def _receive(self) -> str | bytes | None:
        conn = self._require_connection()
        try:
            return await conn.receive()
        except BodhiStreamError:
            raise
        except Exception as exc:
            raise TransportError(f"receive failed: {exc}") from exc

    def _require_connection(self) -> Connection:
        if self._connection is None:
            raise TransportError("connection is not open")
        return self._connection

    async def _shutdown(self) -> None:
        await self._close_connection()
        await self._stop_receiver()

    async def _abort(self) -> None:
        await self._stop_receiver()
        await self._close_connection()

    async def _stop_receiver(self) -> None:
        task = self._recv_task
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _close_connection(self) -> None:
        if self._connection is None:
            return
        try:
            await self._connection.close()
        except Exception as exc:
            logger.debug("Best-effort close failed: %s", exc)

    def _set_state(self, state: SessionState) -> None:
        if self._state == state:
            return
        old_state = self._state
        self._state = state
        logger.info("State: %s -> %s", old_state.name, state.name)
        self._emit(SessionStateEvent(state=state, previous=old_state))

    def _emit(self, event: SessionEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception:
            logger.exception("Session listener raised")
