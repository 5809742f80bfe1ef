from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol


@dataclass(frozen=True, slots=True)
class TlsOptions:
    verify: bool = True
    ca_file: str | None = None


class Connection(Protocol):
    """One open duplex connection.

    ``receive`` returns None once the connection has closed cleanly (including
    after our own ``close``) and raises TransportError on abnormal closure.
    ``close`` is idempotent.
    """

    @property
    def closed(self) -> bool: ...

    async def send_binary(self, data: bytes) -> None: ...
    async def send_text(self, text: str) -> None: ...
    async def receive(self) -> str | bytes | None: ...
    async def close(self) -> None: ...


class Transport(Protocol):
    async def open(
        self, uri: str, headers: Mapping[str, str], tls: TlsOptions
    ) -> Connection: ...
