"""
Secret reference resolution.

Settings carry references such as "env:SCOPEGUARD_TOKEN_SECRET" instead of
raw values, so signing keys never land in settings files, logs or reports.

Reference formats:
- env:VAR_NAME - environment variable
- file:/path/to/secret - first line of a mounted secret file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from .errors import ConfigurationError


class SecretsProvider(Protocol):
    """Protocol for resolving secret references to values."""

    def get(self, ref: str) -> str | None:
        ...

    def supports(self, ref: str) -> bool:
        ...


class EnvSecretsProvider:
    """Resolve "env:VAR_NAME" from the process environment."""

    PREFIX = "env:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        return os.environ.get(ref[len(self.PREFIX) :])


class FileSecretsProvider:
    """Resolve "file:/run/secrets/name" from a Docker/K8s secret mount."""

    PREFIX = "file:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        path = Path(ref[len(self.PREFIX) :])
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8").strip() or None


class CompositeSecretsProvider:
    """Try each provider in order until one returns a value."""

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider(), FileSecretsProvider()]

    def supports(self, ref: str) -> bool:
        return any(p.supports(ref) for p in self.providers)

    def get(self, ref: str) -> str | None:
        for provider in self.providers:
            if provider.supports(ref):
                value = provider.get(ref)
                if value is not None:
                    return value
        return None


def resolve_secret(ref: str, provider: SecretsProvider | None = None) -> str:
    """
    Resolve a single secret reference.

    Raises:
        ConfigurationError: if the reference is unsupported or resolves to nothing.
            The message names the reference, never the value.
    """
    provider = provider or CompositeSecretsProvider()
    if not provider.supports(ref):
        raise ConfigurationError(f"Unsupported secret reference: {ref!r} (use env:NAME or file:/path)")
    value = provider.get(ref)
    if value is None:
        raise ConfigurationError(f"Secret reference {ref!r} did not resolve to a value")
    return value
