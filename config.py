"""Runtime configuration for Photo Vault."""
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    data_dir: Path = APP_DIR / "data"

    # Unset secret means tokens only survive until the process restarts
    token_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    token_ttl_seconds: int = 60 * 60 * 24 * 7

    default_username: str = "admin"
    default_password: str = "changeme"
    password_rounds: int = 210_000

    legacy_users_file: Optional[Path] = None

    app_origins: str = "http://localhost:5173"
    reconcile_on_startup: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="VAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def credentials_db_path(self) -> Path:
        return self.data_dir / "users.db"

    @property
    def users_dir(self) -> Path:
        return self.data_dir / "users"

    @property
    def legacy_users_path(self) -> Path:
        return self.legacy_users_file or self.data_dir / "users.json"

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.app_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
