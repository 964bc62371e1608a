"""Process-wide import configuration, built once at startup.

Components receive the config explicitly; nothing reads the environment
after the lifespan has constructed it.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from promptvault.models import Platform

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class ImportConfig:
    database_path: str = "promptvault.db"
    redis_url: str | None = None
    progress_ttl_seconds: int = 3600
    poll_interval_seconds: float = 1.0
    worker_timeout_seconds: float = 300.0
    fetch_timeout_seconds: float = 60.0
    max_delivery_attempts: int = 3
    batch_size: int = 10
    max_file_bytes: int = 50 * 1024 * 1024
    queue_publish_url: str | None = None
    queue_token: str | None = None
    worker_url: str = "http://localhost:8000/api/import/worker"
    disabled_platforms: frozenset[Platform] = field(default_factory=frozenset)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ImportConfig":
        """Read settings from the environment (call after load_dotenv)."""
        env = os.environ if environ is None else environ
        disabled = frozenset(
            p for p in Platform if _flag(env, f"DISABLE_{p.value.upper()}_IMPORT")
        )
        return cls(
            database_path=env.get("PROMPTVAULT_DB", "promptvault.db"),
            redis_url=env.get("REDIS_URL") or None,
            progress_ttl_seconds=int(env.get("IMPORT_PROGRESS_TTL", "3600")),
            poll_interval_seconds=float(env.get("IMPORT_POLL_INTERVAL", "1.0")),
            worker_timeout_seconds=float(env.get("IMPORT_WORKER_TIMEOUT", "300")),
            fetch_timeout_seconds=float(env.get("IMPORT_FETCH_TIMEOUT", "60")),
            max_delivery_attempts=int(env.get("IMPORT_MAX_ATTEMPTS", "3")),
            batch_size=int(env.get("IMPORT_BATCH_SIZE", "10")),
            max_file_bytes=int(env.get("IMPORT_MAX_FILE_BYTES", str(50 * 1024 * 1024))),
            queue_publish_url=env.get("QUEUE_PUBLISH_URL") or None,
            queue_token=env.get("QUEUE_TOKEN") or None,
            worker_url=env.get("IMPORT_WORKER_URL", cls.worker_url),
            disabled_platforms=disabled,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

    def is_platform_enabled(self, platform: Platform | str) -> bool:
        return Platform(platform) not in self.disabled_platforms
