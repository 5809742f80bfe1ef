from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bodhi_stream.core.storage.secrets import mask_secret
from bodhi_stream.errors import ConfigError

TRANSCRIPT_COMPLETE = "complete"
TRANSCRIPT_PARTIAL = "partial"


@dataclass(frozen=True, slots=True)
class Credentials:
    api_key: str
    customer_id: str

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ConfigError("api_key must be non-empty")
        if not self.customer_id:
            raise ConfigError("customer_id must be non-empty")

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "x-customer-id": self.customer_id}

    def __repr__(self) -> str:
        return f"Credentials(api_key={mask_secret(self.api_key)!r}, customer_id={self.customer_id!r})"


@dataclass(frozen=True, slots=True)
class AudioFrame:
    index: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    type: str
    text: str = ""
    eos: bool = False
    call_id: str | None = None
    segment_id: Any = None

    @property
    def is_complete(self) -> bool:
        return self.type == TRANSCRIPT_COMPLETE

    @property
    def contributes(self) -> bool:
        """Only complete, non-empty segments make it into the final transcript."""
        return self.is_complete and self.text != ""


@dataclass(frozen=True, slots=True)
class ConfigAck:
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ServiceErrorMessage:
    message: str
    payload: dict[str, Any] = field(default_factory=dict)


InboundMessage = TranscriptEvent | ConfigAck | ServiceErrorMessage


@dataclass(frozen=True, slots=True)
class TranscriptResult:
    transaction_id: str
    segments: tuple[str, ...] = ()
    final: bool = False

    @property
    def text(self) -> str:
        return ", ".join(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)
