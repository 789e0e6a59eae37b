import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    tx_max_attempts: int
    invite_code_attempts: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e
    if value < 1:
        raise RuntimeError(f"{name} must be >= 1 (got {value}).")
    return value


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///gavel.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        tx_max_attempts=_getenv_int("TX_MAX_ATTEMPTS", 5),
        invite_code_attempts=_getenv_int("INVITE_CODE_ATTEMPTS", 10),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "TX_MAX_ATTEMPTS": s.tx_max_attempts,
        "INVITE_CODE_ATTEMPTS": s.invite_code_attempts,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON bodies only; nothing here needs large uploads
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
