"""Credential lookup and encrypted credential storage."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Protocol, runtime_checkable

from cryptography.fernet import Fernet, InvalidToken

from .settings import DEFAULT_SETTINGS_DIR

__all__ = [
    "CredentialResolver",
    "EnvCredentialResolver",
    "VaultCredentialStore",
    "ChainedCredentialResolver",
    "SecretVault",
    "FernetSecretProvider",
    "DEFAULT_ENV_VARS",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_VAULT_PATH = DEFAULT_SETTINGS_DIR / "credentials.json"
DEFAULT_ENV_VARS: Mapping[str, str] = {
    "openai_api_key": "OPENAI_API_KEY",
    "openrouter_api_key": "OPENROUTER_API_KEY",
}


@runtime_checkable
class CredentialResolver(Protocol):
    """Looks up a secret by credential kind, e.g. ``openai_api_key``."""

    def get_credential(self, kind: str) -> str | None:
        ...


# ---------------------------------------------------------------------------
# Secret encryption
# ---------------------------------------------------------------------------
class SecretProvider(ABC):
    """Interface for encrypting and decrypting sensitive strings."""

    name: str = "unknown"

    @abstractmethod
    def encrypt(self, secret: str) -> str:
        """Return an encoded representation of ``secret`` suitable for storage."""

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Return the plaintext representation of ``token``."""


class FernetSecretProvider(SecretProvider):
    """Secret provider that uses a symmetric Fernet key stored on disk."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (DEFAULT_SETTINGS_DIR / "credentials.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts secrets as ``<provider>:<token>`` strings."""

    def __init__(
        self,
        *,
        key_path: Path | None = None,
        provider: SecretProvider | None = None,
    ) -> None:
        self._provider = provider or FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: If the token was tampered with or made by another key.
        """
        if not token:
            return ""
        prefix, payload = self._split_token(token)
        if prefix not in (None, self._provider.name):
            LOGGER.warning("Unknown secret token prefix %s; ignoring stored secret.", prefix)
            return ""
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    @staticmethod
    def _split_token(token: str) -> tuple[str | None, str]:
        if ":" not in token:
            return None, token
        prefix, payload = token.split(":", 1)
        return (prefix or None), payload


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------
class EnvCredentialResolver:
    """Reads credentials from environment variables."""

    def __init__(
        self,
        env_vars: Mapping[str, str] | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._env_vars = dict(env_vars or DEFAULT_ENV_VARS)
        self._environ = environ

    def get_credential(self, kind: str) -> str | None:
        env_name = self._env_vars.get(kind)
        if not env_name:
            return None
        environ = self._environ if self._environ is not None else os.environ
        value = (environ.get(env_name) or "").strip()
        return value or None


class VaultCredentialStore:
    """JSON file of encrypted credentials keyed by kind.

    Example:
        store = VaultCredentialStore(Path("~/.switchyard/credentials.json").expanduser())
        store.set_credential("openrouter_api_key", "sk-or-...")
        store.get_credential("openrouter_api_key")
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_VAULT_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    def get_credential(self, kind: str) -> str | None:
        token = self._read_payload().get(kind)
        if not isinstance(token, str) or not token:
            return None
        try:
            value = self._vault.decrypt(token)
        except ValueError as exc:
            LOGGER.warning("Stored credential %s could not be decrypted: %s", kind, exc)
            return None
        return value or None

    def set_credential(self, kind: str, secret: str) -> None:
        payload = self._read_payload()
        if secret:
            payload[kind] = self._vault.encrypt(secret)
        else:
            payload.pop(kind, None)
        self._write_payload(payload)
        LOGGER.debug("Stored credential %s (%s)", kind, redact_secret(secret))

    def delete_credential(self, kind: str) -> bool:
        payload = self._read_payload()
        if kind not in payload:
            return False
        del payload[kind]
        self._write_payload(payload)
        return True

    def kinds(self) -> list[str]:
        return sorted(self._read_payload())

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Credential file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_payload(self, payload: Mapping[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(dict(payload), indent=2, sort_keys=True), encoding="utf-8")
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(self._path)


class ChainedCredentialResolver:
    """Returns the first non-empty credential from ``resolvers``."""

    def __init__(self, resolvers: Iterable[CredentialResolver]) -> None:
        self._resolvers = list(resolvers)

    def get_credential(self, kind: str) -> str | None:
        for resolver in self._resolvers:
            value = resolver.get_credential(kind)
            if value:
                return value
        return None


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
