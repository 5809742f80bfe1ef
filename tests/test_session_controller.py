from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

import pytest

from bodhi_stream.core.audio.format import PcmBuffer
from bodhi_stream.core.audio.source import BufferAudioSource
from bodhi_stream.core.clock import FakeClock
from bodhi_stream.core.session.controller import TranscriptionSession
from bodhi_stream.core.stream.pacer import FramePacer
from bodhi_stream.core.stream.protocol import EOF_SENTINEL
from bodhi_stream.core.transport.base import TlsOptions
from bodhi_stream.domain.events import SessionState, SessionStateEvent, SessionTranscriptEvent
from bodhi_stream.domain.models import Credentials
from bodhi_stream.errors import (
    AudioSourceError,
    AuthenticationError,
    ConfigError,
    ConnectError,
    ProtocolError,
    TransportError,
)


def _event(text: str, *, type_: str = "complete", eos: bool = False, segment_id: int = 0) -> str:
    return json.dumps(
        {"call_id": "call-1", "segment_id": segment_id, "type": type_, "text": text, "eos": eos}
    )


class FakeConnection:
    """Scripted server side of one connection."""

    def __init__(
        self,
        *,
        on_eof: list[str] | None = None,
        fail_binary_at: int | None = None,
    ) -> None:
        self.sent: list[str | bytes] = []
        self.on_eof = list(on_eof or [])
        self.fail_binary_at = fail_binary_at
        self.close_calls = 0
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def frames(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]

    @property
    def texts(self) -> list[str]:
        return [m for m in self.sent if isinstance(m, str)]

    def push(self, message: str | bytes | BaseException | None) -> None:
        self._inbound.put_nowait(message)

    async def send_binary(self, data: bytes) -> None:
        if self._closed:
            raise TransportError("connection is closed")
        if self.fail_binary_at is not None and len(self.frames) == self.fail_binary_at:
            raise ConnectionResetError("peer reset")
        self.sent.append(data)

    async def send_text(self, text: str) -> None:
        if self._closed:
            raise TransportError("connection is closed")
        self.sent.append(text)
        if text == EOF_SENTINEL:
            for message in self.on_eof:
                self.push(message)

    async def receive(self) -> str | bytes | None:
        if self._closed:
            return None
        item = await self._inbound.get()
        if item is None:
            self._closed = True
            return None
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.close_calls += 1
        if self._closed:
            return
        self._closed = True
        self._inbound.put_nowait(None)


@dataclass
class FakeTransport:
    connection: FakeConnection | None = None
    error: BaseException | None = None
    opened: list[tuple[str, dict[str, str], TlsOptions]] = field(default_factory=list)

    async def open(self, uri, headers, tls):
        self.opened.append((uri, dict(headers), tls))
        if self.error is not None:
            raise self.error
        assert self.connection is not None
        return self.connection


@dataclass(slots=True)
class QueueLiveSource:
    sample_rate_hz: int = 8000
    is_live: bool = True
    _queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    def feed(self, block: bytes | BaseException | None) -> None:
        self._queue.put_nowait(block)

    async def frames(self):
        while True:
            block = await self._queue.get()
            if block is None:
                return
            if isinstance(block, BaseException):
                raise block
            yield block

    async def close(self) -> None:
        self._queue.put_nowait(None)


CREDS = Credentials(api_key="key-123", customer_id="cust-1")


def _session(transport: FakeTransport, **kwargs) -> TranscriptionSession:
    clock = FakeClock()
    kwargs.setdefault("pacer", FramePacer(chunk_duration_ms=100, clock=clock, sleep=clock.sleep))
    return TranscriptionSession(
        transport=transport,
        credentials=CREDS,
        uri="wss://example.test",
        model="hi-general-v2-8khz",
        **kwargs,
    )


def _source(num_bytes: int, sample_rate_hz: int = 8000) -> BufferAudioSource:
    return BufferAudioSource(PcmBuffer(data=bytes(num_bytes), sample_rate_hz=sample_rate_hz))


@pytest.mark.asyncio
async def test_one_second_buffer_sends_config_ten_frames_then_single_eof():
    conn = FakeConnection(on_eof=[_event("done", eos=True)])
    transport = FakeTransport(connection=conn)
    session = _session(transport, transaction_id="tx-1")

    result = await session.run(_source(16000))

    assert json.loads(conn.sent[0]) == {
        "config": {"sample_rate": 8000, "transaction_id": "tx-1", "model": "hi-general-v2-8khz"}
    }
    assert [len(f) for f in conn.sent[1:-1]] == [1600] * 10
    assert conn.sent[-1] == EOF_SENTINEL
    assert conn.texts.count(EOF_SENTINEL) == 1
    assert session.frames_sent == 10
    assert session.state == SessionState.CLOSED
    assert result.segments == ("done",)


@pytest.mark.asyncio
async def test_hello_world_scenario_reaches_closed():
    conn = FakeConnection(on_eof=[_event("hello"), _event("world", eos=True)])
    states: list[SessionState] = []
    transcripts: list[str] = []

    def listener(event):
        if isinstance(event, SessionStateEvent):
            states.append(event.state)
        elif isinstance(event, SessionTranscriptEvent):
            transcripts.append(event.event.text)

    session = _session(FakeTransport(connection=conn), listener=listener)
    result = await session.run(_source(3200))

    assert list(result) == ["hello", "world"]
    assert result.final is True
    assert transcripts == ["hello", "world"]
    assert states == [
        SessionState.CONNECTING,
        SessionState.CONFIGURING,
        SessionState.STREAMING,
        SessionState.DRAINING,
        SessionState.CLOSED,
    ]
    assert conn.closed
    assert conn.close_calls >= 1


@pytest.mark.asyncio
async def test_connect_sends_auth_headers_and_tls_options():
    conn = FakeConnection(on_eof=[_event("", eos=True)])
    transport = FakeTransport(connection=conn)
    tls = TlsOptions(verify=False)
    session = _session(transport, tls=tls)

    await session.run(_source(0))

    uri, headers, used_tls = transport.opened[0]
    assert uri == "wss://example.test"
    assert headers == {"x-api-key": "key-123", "x-customer-id": "cust-1"}
    assert used_tls is tls


@pytest.mark.asyncio
async def test_empty_buffer_still_sends_exactly_one_eof():
    conn = FakeConnection(on_eof=[_event("", eos=True)])
    session = _session(FakeTransport(connection=conn))

    result = await session.run(_source(0))

    assert len(conn.sent) == 2
    assert conn.sent[1] == EOF_SENTINEL
    assert conn.frames == []
    assert session.eof_sent is True
    assert session.state == SessionState.CLOSED
    assert result.segments == ()


@pytest.mark.asyncio
async def test_malformed_message_does_not_end_session():
    conn = FakeConnection(on_eof=["<html>oops</html>", _event("after"), _event("end", eos=True)])
    conn.push(_event("before"))
    session = _session(FakeTransport(connection=conn))

    result = await session.run(_source(1600))

    assert result.segments == ("before", "after", "end")
    assert session.decode_errors == 1
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_partial_events_are_excluded():
    conn = FakeConnection(
        on_eof=[_event("hel", type_="partial"), _event("hello"), _event("", eos=True)]
    )
    session = _session(FakeTransport(connection=conn))

    result = await session.run(_source(1600))

    assert result.segments == ("hello",)


@pytest.mark.asyncio
async def test_connect_failure_is_errored_without_sends():
    transport = FakeTransport(error=ConnectError("refused"))
    session = _session(transport)

    with pytest.raises(ConnectError) as info:
        await session.run(_source(1600))

    assert session.state == SessionState.ERRORED
    assert info.value.result is not None
    assert info.value.result.segments == ()


@pytest.mark.asyncio
async def test_authentication_failure_surfaces_typed_error():
    session = _session(FakeTransport(error=AuthenticationError("HTTP 401")))

    with pytest.raises(AuthenticationError):
        await session.run(_source(1600))

    assert session.state == SessionState.ERRORED


@pytest.mark.asyncio
async def test_unexpected_open_error_becomes_connect_error():
    session = _session(FakeTransport(error=OSError("dns failure")))

    with pytest.raises(ConnectError):
        await session.run(_source(1600))


@pytest.mark.asyncio
async def test_send_failure_keeps_partial_transcript_and_closes():
    conn = FakeConnection(fail_binary_at=3)
    conn.push(_event("early words"))
    session = _session(FakeTransport(connection=conn))

    with pytest.raises(TransportError) as info:
        await session.run(_source(16000))

    assert session.state == SessionState.ERRORED
    assert info.value.result.segments == ("early words",)
    assert info.value.result.final is False
    assert conn.close_calls >= 1
    assert EOF_SENTINEL not in conn.texts


@pytest.mark.asyncio
async def test_audio_source_failure_is_typed_and_keeps_partial_transcript():
    conn = FakeConnection()
    conn.push(_event("heard so far"))
    source = QueueLiveSource()
    source.feed(bytes(1600))

    def listener(event):
        if isinstance(event, SessionTranscriptEvent):
            source.feed(OSError("PortAudio: device unavailable"))

    session = _session(FakeTransport(connection=conn), listener=listener)

    with pytest.raises(AudioSourceError) as info:
        await session.run(source)

    assert isinstance(info.value.__cause__, OSError)
    assert info.value.result.segments == ("heard so far",)
    assert session.state == SessionState.ERRORED
    assert len(conn.frames) == 1
    assert EOF_SENTINEL not in conn.texts
    assert conn.close_calls >= 1


@pytest.mark.asyncio
async def test_receive_failure_stops_sender():
    conn = FakeConnection()
    conn.push(TransportError("connection lost"))
    session = _session(FakeTransport(connection=conn))

    with pytest.raises(TransportError):
        await session.run(_source(16000))

    assert session.state == SessionState.ERRORED
    assert len(conn.frames) < 10


@pytest.mark.asyncio
async def test_server_close_mid_stream_returns_non_final_result():
    conn = FakeConnection()
    conn.push(_event("partial result"))
    conn.push(None)
    session = _session(FakeTransport(connection=conn))

    result = await session.run(_source(16000))

    assert session.state == SessionState.CLOSED
    assert result.segments == ("partial result",)
    assert result.final is False
    assert session.eof_sent is False


@pytest.mark.asyncio
async def test_server_close_while_draining_is_not_an_error():
    conn = FakeConnection(on_eof=[_event("only"), None])
    session = _session(FakeTransport(connection=conn))

    result = await session.run(_source(1600))

    assert session.state == SessionState.CLOSED
    assert result.segments == ("only",)
    assert result.final is False


@pytest.mark.asyncio
async def test_service_error_message_is_protocol_error():
    conn = FakeConnection(on_eof=[json.dumps({"error": "unknown model"})])
    session = _session(FakeTransport(connection=conn))

    with pytest.raises(ProtocolError, match="unknown model"):
        await session.run(_source(1600))

    assert session.state == SessionState.ERRORED


@pytest.mark.asyncio
async def test_drain_timeout_raises_with_partial_result():
    conn = FakeConnection(on_eof=[_event("heard")])
    session = _session(FakeTransport(connection=conn), drain_timeout_s=0.05)

    with pytest.raises(ProtocolError) as info:
        await session.run(_source(1600))

    assert info.value.result.segments == ("heard",)
    assert session.state == SessionState.ERRORED
    assert conn.closed


@pytest.mark.asyncio
async def test_request_stop_ends_live_stream_and_sends_eof():
    conn = FakeConnection(on_eof=[_event("live", eos=True)])
    session = _session(FakeTransport(connection=conn))
    source = QueueLiveSource()

    run = asyncio.create_task(session.run(source))
    source.feed(bytes(1600))
    for _ in range(50):
        if conn.frames:
            break
        await asyncio.sleep(0)
    session.request_stop()
    source.feed(bytes(1600))

    result = await asyncio.wait_for(run, timeout=1.0)

    assert len(conn.frames) == 2
    assert conn.texts.count(EOF_SENTINEL) == 1
    assert result.segments == ("live",)


@pytest.mark.asyncio
async def test_live_source_end_flushes_remainder_then_eof():
    conn = FakeConnection(on_eof=[_event("", eos=True)])
    session = _session(FakeTransport(connection=conn))
    source = QueueLiveSource()
    source.feed(bytes(2000))
    source.feed(None)

    await asyncio.wait_for(session.run(source), timeout=1.0)

    assert [len(f) for f in conn.frames] == [1600, 400]
    assert conn.sent[-1] == EOF_SENTINEL


@pytest.mark.asyncio
async def test_events_before_eof_are_kept_when_eos_arrives_early():
    conn = FakeConnection()
    conn.push(_event("quick", eos=True))
    session = _session(FakeTransport(connection=conn))

    result = await session.run(_source(3200))

    assert result.segments == ("quick",)
    assert conn.texts.count(EOF_SENTINEL) == 1
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_session_runs_only_once():
    conn = FakeConnection(on_eof=[_event("", eos=True)])
    session = _session(FakeTransport(connection=conn))
    await session.run(_source(0))

    with pytest.raises(RuntimeError):
        await session.run(_source(0))


@pytest.mark.asyncio
async def test_missing_source_fails_before_connecting():
    transport = FakeTransport(connection=FakeConnection())
    session = _session(transport)

    with pytest.raises(ConfigError):
        await session.run(None)

    assert transport.opened == []


def test_invalid_session_parameters():
    transport = FakeTransport()
    with pytest.raises(ConfigError):
        TranscriptionSession(transport=transport, credentials=CREDS, uri="", model="m")
    with pytest.raises(ConfigError):
        TranscriptionSession(transport=transport, credentials=CREDS, uri="wss://x", model="")
    with pytest.raises(ConfigError):
        TranscriptionSession(
            transport=transport, credentials=CREDS, uri="wss://x", model="m", drain_timeout_s=0
        )


def test_transaction_ids_are_unique_per_session():
    transport = FakeTransport()
    a = TranscriptionSession(transport=transport, credentials=CREDS, uri="wss://x", model="m")
    b = TranscriptionSession(transport=transport, credentials=CREDS, uri="wss://x", model="m")
    assert a.transaction_id != b.transaction_id


@pytest.mark.asyncio
async def test_fake_connection_close_is_idempotent():
    conn = FakeConnection()
    await conn.close()
    await conn.close()
    assert conn.closed
    assert await conn.receive() is None
