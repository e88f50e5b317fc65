import logging
from pathlib import Path
from typing import Any
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _is_placeholder(value: str) -> bool:
    """Check if a config value looks like a placeholder."""
    v = (value or "").strip().upper()
    return v.startswith("CHANGE-THIS") or v in {"", "DEFAULT", "SECRET", "PASSWORD"}


def _resolve_sqlite_url(url: str, base_dir: Path) -> str:
    """Anchor relative SQLite file paths at BASE_DIR; in-memory URLs pass through."""
    if not url.startswith("sqlite:///"):
        return url

    rel_path = url.removeprefix("sqlite:///")
    if rel_path == ":memory:" or not rel_path:
        return url

    p = Path(rel_path)
    if p.is_absolute():
        return url
    return f"sqlite:///{(base_dir / p).resolve().as_posix()}"


class Settings(BaseSettings):
    """Application settings with validation."""

    BASE_DIR: Path = Path(__file__).resolve().parents[2]

    DATABASE_URL: str = "sqlite:///vision_history.db"
    AUTO_CREATE_TABLES: bool = True

    SECRET_KEY: str = "CHANGE-THIS-IN-PRODUCTION-USE-SECRETS"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24h

    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    ALLOWED_EXTENSIONS: set[str] = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".gif", ".tiff"}
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    HISTORY_DEFAULT_LIMIT: int = 20
    HISTORY_MAX_LIMIT: int = 100

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Resolve paths and run security checks after loading."""

        if not (self.BASE_DIR / "backend").exists():
            logger.warning("BASE_DIR might be incorrect. Could not find 'backend' folder at %s", self.BASE_DIR)

        if _is_placeholder(self.SECRET_KEY):
            logger.warning("INSECURE: SECRET_KEY looks like a placeholder.")

        if self.HISTORY_MAX_LIMIT < 1:
            raise ValueError("HISTORY_MAX_LIMIT must be at least 1")

        if not 1 <= self.HISTORY_DEFAULT_LIMIT <= self.HISTORY_MAX_LIMIT:
            logger.warning(
                "HISTORY_DEFAULT_LIMIT=%d outside 1..%d, clamping",
                self.HISTORY_DEFAULT_LIMIT, self.HISTORY_MAX_LIMIT,
            )
            self.HISTORY_DEFAULT_LIMIT = max(1, min(self.HISTORY_DEFAULT_LIMIT, self.HISTORY_MAX_LIMIT))

        self.DATABASE_URL = _resolve_sqlite_url(self.DATABASE_URL, self.BASE_DIR)

    def validate_file_extension(self, filename: str) -> bool:
        ext = Path(filename).suffix.lower()
        return ext in self.ALLOWED_EXTENSIONS


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
