import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

BACKENDS = ("firebase", "memory")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    backend: str = "firebase"
    firebase_credentials: str = "./firebase.json"
    firebase_database_url: str = ""
    toggle_rollback: bool = True
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    max_sessions: int = 1000

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the environment, loading .env first"""
        load_dotenv()

        backend = os.getenv("BACKEND", cls.backend).strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}")

        database_url = os.getenv("FIREBASE_DATABASE_URL", "").strip()
        if backend == "firebase" and not database_url:
            raise ValueError("Set FIREBASE_DATABASE_URL in .env to use the firebase backend")

        origins = os.getenv("CORS_ORIGINS")
        cors_origins = (
            tuple(origin.strip() for origin in origins.split(",") if origin.strip())
            if origins is not None else cls.cors_origins
        )

        return cls(
            backend=backend,
            firebase_credentials=os.getenv("FIREBASE_CREDENTIALS", cls.firebase_credentials),
            firebase_database_url=database_url,
            toggle_rollback=_env_bool("TOGGLE_ROLLBACK", cls.toggle_rollback),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).strip().upper(),
            cors_origins=cors_origins,
            max_sessions=_env_int("MAX_FEED_SESSIONS", cls.max_sessions, minimum=1),
        )
