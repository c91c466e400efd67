"""Secret stores consulted by the template resolver."""

from __future__ import annotations

import os
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Protocol

from ..constants import DEFAULT_SECRET_ENV_PREFIX, REDACTED


class SecretStore(Protocol):
    """Read-only secret lookup. Implementations must be safe to share."""

    def get(self, name: str) -> Optional[str]:
        """Return the secret value or ``None`` when unknown."""


class StaticSecretStore:
    """Secrets held in an immutable mapping. Handy for tests."""

    def __init__(self, secrets: Optional[Mapping[str, str]] = None) -> None:
        self._secrets = MappingProxyType(dict(secrets or {}))

    def get(self, name: str) -> Optional[str]:
        return self._secrets.get(name)

    def __repr__(self) -> str:
        return f"StaticSecretStore(names={sorted(self._secrets)})"


class EnvSecretStore:
    """Look secrets up in environment variables.

    ``secrets.openai_key`` maps to ``GAGITECK_SECRET_OPENAI_KEY`` with the
    default prefix.
    """

    def __init__(
        self,
        prefix: str = DEFAULT_SECRET_ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> Optional[str]:
        return self._environ.get(f"{self.prefix}{name.upper()}")


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret value in ``text``."""
    for value in sorted({s for s in secrets if s}, key=len, reverse=True):
        text = text.replace(value, REDACTED)
    return text
