"""Secret handling for workflow templates."""

from .secrets import EnvSecretStore, SecretStore, StaticSecretStore, redact

__all__ = ["SecretStore", "StaticSecretStore", "EnvSecretStore", "redact"]
