"""Shared default values."""

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0
DEFAULT_CANCEL_GRACE_SECONDS = 5.0
DEFAULT_TRIGGER_TOPIC = "gagiteck.triggers"
DEFAULT_SECRET_ENV_PREFIX = "GAGITECK_SECRET_"
REDACTED = "***"
