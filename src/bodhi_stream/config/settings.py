from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from bodhi_stream.errors import ConfigError

DEFAULT_URI = "wss://bodhi.navana.ai"
DEFAULT_MODEL = "hi-general-v2-8khz"


class SecretsBackend(str, Enum):
    KEYRING = "keyring"
    ENV = "env"


@dataclass(slots=True)
class ConnectionSettings:
    uri: str = DEFAULT_URI
    verify_tls: bool = True
    ca_file: str = ""
    open_timeout_s: float = 10.0

    def validate(self) -> None:
        if not self.uri:
            raise ConfigError("uri must be non-empty")
        if not self.uri.startswith(("ws://", "wss://")):
            raise ConfigError("uri must start with ws:// or wss://")
        if self.open_timeout_s <= 0:
            raise ConfigError("open_timeout_s must be > 0")


@dataclass(slots=True)
class StreamSettings:
    model: str = DEFAULT_MODEL
    chunk_duration_ms: int = 100
    mic_sample_rate_hz: int = 8000
    drain_timeout_s: float = 30.0

    def validate(self) -> None:
        if not self.model:
            raise ConfigError("model must be non-empty")
        if self.chunk_duration_ms <= 0:
            raise ConfigError("chunk_duration_ms must be > 0")
        if self.mic_sample_rate_hz <= 0:
            raise ConfigError("mic_sample_rate_hz must be > 0")
        if self.drain_timeout_s <= 0:
            raise ConfigError("drain_timeout_s must be > 0")


@dataclass(slots=True)
class SecretsSettings:
    backend: SecretsBackend = SecretsBackend.ENV

    def validate(self) -> None:
        if not isinstance(self.backend, SecretsBackend):
            raise ConfigError("invalid secrets backend")


@dataclass(slots=True)
class AppSettings:
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    stream: StreamSettings = field(default_factory=StreamSettings)
    secrets: SecretsSettings = field(default_factory=SecretsSettings)

    def validate(self) -> None:
        self.connection.validate()
        self.stream.validate()
        self.secrets.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "connection": {
            "uri": settings.connection.uri,
            "verify_tls": settings.connection.verify_tls,
            "ca_file": settings.connection.ca_file,
            "open_timeout_s": settings.connection.open_timeout_s,
        },
        "stream": {
            "model": settings.stream.model,
            "chunk_duration_ms": settings.stream.chunk_duration_ms,
            "mic_sample_rate_hz": settings.stream.mic_sample_rate_hz,
            "drain_timeout_s": settings.stream.drain_timeout_s,
        },
        "secrets": {"backend": settings.secrets.backend.value},
    }


def from_dict(data: dict[str, Any]) -> AppSettings:
    conn_data = data.get("connection") or {}
    stream_data = data.get("stream") or {}
    secrets_data = data.get("secrets") or {}

    try:
        backend = SecretsBackend(secrets_data.get("backend", SecretsBackend.ENV.value))
    except ValueError as exc:
        raise ConfigError(f"invalid secrets backend: {secrets_data.get('backend')!r}") from exc

    settings = AppSettings(
        connection=ConnectionSettings(
            uri=str(conn_data.get("uri", DEFAULT_URI)),
            verify_tls=bool(conn_data.get("verify_tls", True)),
            ca_file=str(conn_data.get("ca_file") or ""),
            open_timeout_s=float(conn_data.get("open_timeout_s", 10.0)),
        ),
        stream=StreamSettings(
            model=str(stream_data.get("model", DEFAULT_MODEL)),
            chunk_duration_ms=int(stream_data.get("chunk_duration_ms", 100)),
            mic_sample_rate_hz=int(stream_data.get("mic_sample_rate_hz", 8000)),
            drain_timeout_s=float(stream_data.get("drain_timeout_s", 30.0)),
        ),
        secrets=SecretsSettings(backend=backend),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ConfigError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
