from __future__ import annotations

from bodhi_stream.config.settings import AppSettings, SecretsBackend, SecretsSettings
from bodhi_stream.core.clock import SystemClock
from bodhi_stream.core.session.controller import SessionListener, TranscriptionSession
from bodhi_stream.core.storage.secrets import (
    API_KEY_SECRET,
    CUSTOMER_ID_SECRET,
    SECRET_ENV_VARS,
    EnvSecretStore,
    KeyringSecretStore,
    SecretStore,
    WritableSecretStore,
)
from bodhi_stream.core.stream.pacer import FramePacer
from bodhi_stream.core.transport.base import TlsOptions, Transport
from bodhi_stream.domain.models import Credentials
from bodhi_stream.errors import ConfigError
from bodhi_stream.providers.transport.websocket import WebSocketTransport


def create_secret_store(settings: SecretsSettings) -> SecretStore:
    if settings.backend == SecretsBackend.KEYRING:
        return KeyringSecretStore()
    if settings.backend == SecretsBackend.ENV:
        return EnvSecretStore()
    raise ConfigError(f"Unsupported secrets backend: {settings.backend}")


def _get_secret(secrets: SecretStore, *, key: str) -> str | None:
    value = secrets.get(key)
    if value:
        return value
    # Exported variables still work when the keyring entry is missing.
    return EnvSecretStore().get(key)


def require_secret(secrets: SecretStore, *, key: str) -> str:
    value = _get_secret(secrets, key=key)
    if value:
        return value
    raise ConfigError(f"Missing secret `{key}` (or env var {SECRET_ENV_VARS[key]})")


def load_credentials(secrets: SecretStore) -> Credentials:
    return Credentials(
        api_key=require_secret(secrets, key=API_KEY_SECRET),
        customer_id=require_secret(secrets, key=CUSTOMER_ID_SECRET),
    )


def save_credentials(secrets: WritableSecretStore, credentials: Credentials) -> None:
    secrets.set(API_KEY_SECRET, credentials.api_key)
    secrets.set(CUSTOMER_ID_SECRET, credentials.customer_id)


def forget_credentials(secrets: WritableSecretStore) -> None:
    secrets.delete(API_KEY_SECRET)
    secrets.delete(CUSTOMER_ID_SECRET)


def create_transport(settings: AppSettings) -> Transport:
    return WebSocketTransport(open_timeout_s=settings.connection.open_timeout_s)


def create_session(
    settings: AppSettings,
    *,
    credentials: Credentials,
    transport: Transport | None = None,
    listener: SessionListener | None = None,
    pacer: FramePacer | None = None,
) -> TranscriptionSession:
    settings.validate()
    return TranscriptionSession(
        transport=transport or create_transport(settings),
        credentials=credentials,
        uri=settings.connection.uri,
        model=settings.stream.model,
        tls=TlsOptions(
            verify=settings.connection.verify_tls,
            ca_file=settings.connection.ca_file or None,
        ),
        pacer=pacer or FramePacer(
            chunk_duration_ms=settings.stream.chunk_duration_ms, clock=SystemClock()
        ),
        drain_timeout_s=settings.stream.drain_timeout_s,
        listener=listener,
    )
