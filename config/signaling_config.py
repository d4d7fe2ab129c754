import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def validate_environment():
    """Validate that every signaling setting in the environment is usable"""
    errors = []
    for name, parser, default in (
        ("SIGNALING_OUTBOX_SIZE", _parse_positive_int, 256),
        ("PORT", _parse_positive_int, 8000),
        ("SIGNALING_CLOSE_SUPERSEDED", _parse_bool, True),
        ("SIGNALING_ANNOUNCE_JOINS", _parse_bool, True),
    ):
        try:
            parser(name, default)
        except ValueError as e:
            errors.append(str(e))
    if errors:
        raise RuntimeError(f"Invalid environment variables: {'; '.join(errors)}")


class SignalingSettings:
    """Runtime options for the relay, read from the environment at creation."""

    def __init__(
        self,
        outbox_size: Optional[int] = None,
        close_superseded: Optional[bool] = None,
        announce_joins: Optional[bool] = None,
    ):
        self.outbox_size = (
            outbox_size if outbox_size is not None
            else _parse_positive_int("SIGNALING_OUTBOX_SIZE", 256)
        )
        self.close_superseded = (
            close_superseded if close_superseded is not None
            else _parse_bool("SIGNALING_CLOSE_SUPERSEDED", True)
        )
        self.announce_joins = (
            announce_joins if announce_joins is not None
            else _parse_bool("SIGNALING_ANNOUNCE_JOINS", True)
        )

    def __repr__(self):
        return (
            f"SignalingSettings(outbox_size={self.outbox_size}, "
            f"close_superseded={self.close_superseded}, "
            f"announce_joins={self.announce_joins})"
        )


def is_production() -> bool:
    return os.getenv("APP_ENVIRONMENT", "development") == "production"


def get_allowed_origins():
    """Get allowed origins based on environment"""
    default_origins = [
        "http://localhost:3000",
        "http://localhost:5173",  # Vite dev server
    ]

    env_origins = os.getenv("ALLOWED_ORIGINS", "").split(",")
    env_origins = [origin.strip() for origin in env_origins if origin.strip()]

    if env_origins:
        return env_origins
    return default_origins
