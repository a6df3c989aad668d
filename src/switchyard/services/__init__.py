"""Configuration and credential services."""

from .credentials import (
    ChainedCredentialResolver,
    CredentialResolver,
    EnvCredentialResolver,
    SecretVault,
    VaultCredentialStore,
    redact_secret,
)
from .settings import RuntimeSettings, SettingsStore

__all__ = [
    "RuntimeSettings",
    "SettingsStore",
    "CredentialResolver",
    "EnvCredentialResolver",
    "VaultCredentialStore",
    "ChainedCredentialResolver",
    "SecretVault",
    "redact_secret",
]
