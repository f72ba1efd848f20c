"""Runtime settings, read from the environment (and ``.env`` via python-dotenv)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_ACCOUNTS_FILE = "mailbridge.json"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def _env_number(name: str, default: float, cast: type = float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Non-positive %s %r; defaulting to %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    """Where the tool server listens and how the bridge reaches it.

    The server is meant for loopback only; nothing here authenticates callers.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    accounts_file: Path = Path(DEFAULT_ACCOUNTS_FILE)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build Settings from ``MAILBRIDGE_*`` environment variables."""
        return cls(
            host=os.environ.get("MAILBRIDGE_HOST", DEFAULT_HOST),
            port=int(_env_number("MAILBRIDGE_PORT", DEFAULT_PORT, int)),
            timeout_seconds=_env_number("MAILBRIDGE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            accounts_file=Path(
                os.environ.get("MAILBRIDGE_ACCOUNTS_FILE", DEFAULT_ACCOUNTS_FILE)
            ).expanduser(),
            log_level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
        )

    @property
    def server_url(self) -> str:
        return f"http://{self.host}:{self.port}/"


def setup_logging(level: str = "WARNING") -> None:
    """Log to stderr; stdout may be carrying the JSON-RPC stream."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
