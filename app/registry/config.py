import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    import_chunk_size: int
    max_upload_mb: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")
    if value < 1:
        raise RuntimeError(f"{name} must be positive (got {value}).")
    return value


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///registry.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        import_chunk_size=_getenv_int("IMPORT_CHUNK_SIZE", 500),
        max_upload_mb=_getenv_int("MAX_UPLOAD_MB", 10),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "IMPORT_CHUNK_SIZE": s.import_chunk_size,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # spreadsheet upload limit
        "MAX_CONTENT_LENGTH": s.max_upload_mb * 1024 * 1024,
    }
