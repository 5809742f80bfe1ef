from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bodhi_stream.domain.models import TranscriptResult


class BodhiStreamError(Exception):
    """Base error. Fatal session errors carry the transcript gathered so far."""

    result: TranscriptResult | None = None

    def with_result(self, result: TranscriptResult) -> "BodhiStreamError":
        self.result = result
        return self


class ConfigError(BodhiStreamError, ValueError):
    """Invalid local configuration, detected before connecting."""


class ConnectError(BodhiStreamError):
    """The connection could not be opened."""


class AuthenticationError(ConnectError):
    """The service rejected the credentials during the upgrade."""


class TransportError(BodhiStreamError):
    """Send or receive failed on an open connection."""


class DecodeError(BodhiStreamError):
    """A single inbound message could not be decoded."""


class ProtocolError(BodhiStreamError):
    """The service broke the conversation rules or reported an error."""


class AudioSourceError(BodhiStreamError):
    """Audio capture or decoding failed while the session was streaming."""
