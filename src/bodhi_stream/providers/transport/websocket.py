"""WebSocket transport built on the ``websockets`` asyncio client."""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass, field
from typing import Any, Mapping

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
)

from bodhi_stream.core.transport.base import TlsOptions
from bodhi_stream.errors import AuthenticationError, ConnectError, TransportError

logger = logging.getLogger(__name__)

_AUTH_STATUS_CODES = (401, 403)


def build_ssl_context(tls: TlsOptions) -> ssl.SSLContext:
    ctx = ssl.create_default_context(cafile=tls.ca_file)
    if not tls.verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


@dataclass(slots=True)
class WebSocketConnection:
    ws: Any
    _closed: bool = field(init=False, default=False)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_binary(self, data: bytes) -> None:
        await self._send(bytes(data))

    async def send_text(self, text: str) -> None:
        await self._send(text)

    async def _send(self, payload: str | bytes) -> None:
        if self._closed:
            raise TransportError("connection is closed")
        try:
            await self.ws.send(payload)
        except ConnectionClosed as exc:
            raise TransportError(f"send failed, connection closed: {exc}") from exc

    async def receive(self) -> str | bytes | None:
        if self._closed:
            return None
        try:
            return await self.ws.recv()
        except ConnectionClosedOK:
            return None
        except ConnectionClosed as exc:
            if self._closed:
                return None
            raise TransportError(f"connection lost: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.ws.close()
        except (ConnectionClosed, OSError) as exc:
            logger.debug("WebSocket close raised: %s", exc)


@dataclass(slots=True)
class WebSocketTransport:
    open_timeout_s: float = 10.0
    ping_interval_s: float | None = 20.0
    max_message_bytes: int | None = 2**20

    async def open(
        self, uri: str, headers: Mapping[str, str], tls: TlsOptions = TlsOptions()
    ) -> WebSocketConnection:
        kwargs: dict[str, Any] = {
            "additional_headers": dict(headers),
            "open_timeout": self.open_timeout_s,
            "ping_interval": self.ping_interval_s,
            "max_size": self.max_message_bytes,
        }
        if uri.startswith("wss://"):
            if not tls.verify:
                logger.warning("TLS certificate verification is DISABLED for %s", uri)
            kwargs["ssl"] = build_ssl_context(tls)

        try:
            ws = await websockets.connect(uri, **kwargs)
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in _AUTH_STATUS_CODES:
                raise AuthenticationError(f"server rejected credentials (HTTP {status})") from exc
            raise ConnectError(f"upgrade refused (HTTP {status})") from exc
        except InvalidURI as exc:
            raise ConnectError(f"invalid URI {uri!r}: {exc}") from exc
        except (InvalidHandshake, OSError, asyncio.TimeoutError) as exc:
            raise ConnectError(f"cannot connect to {uri}: {exc}") from exc

        logger.info("WebSocket connection opened: %s", uri)
        return WebSocketConnection(ws)
