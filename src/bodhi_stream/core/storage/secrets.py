from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import keyring
from keyring.errors import PasswordDeleteError

API_KEY_SECRET = "api_key"
CUSTOMER_ID_SECRET = "customer_id"

# Environment variables read by the reference clients.
SECRET_ENV_VARS: Mapping[str, str] = {
    API_KEY_SECRET: "API_KEY",
    CUSTOMER_ID_SECRET: "CUSTOMER_ID",
}


class SecretStore(Protocol):
    def get(self, key: str) -> str | None: ...


class WritableSecretStore(SecretStore, Protocol):
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


@dataclass(frozen=True, slots=True)
class EnvSecretStore:
    """Read-only view of the credentials exported in the environment."""

    env_vars: Mapping[str, str] = field(default_factory=lambda: dict(SECRET_ENV_VARS))
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ, repr=False)

    def get(self, key: str) -> str | None:
        name = self.env_vars.get(key)
        if name is None:
            return None
        return self.environ.get(name) or None


@dataclass(frozen=True, slots=True)
class KeyringSecretStore:
    """Credentials kept in the OS keychain, one entry per key under `service_name`."""

    service_name: str = "bodhi-stream-client"

    def get(self, key: str) -> str | None:
        return keyring.get_password(self.service_name, key) or None

    def set(self, key: str, value: str) -> None:
        if not value:
            raise ValueError(f"refusing to store an empty `{key}`")
        keyring.set_password(self.service_name, key, value)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            pass  # already absent


def mask_secret(value: str, *, visible: int = 3) -> str:
    """`sk-123456` -> `sk-****`; values too short to reveal anything are fully starred."""
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}****"
