"""Application configuration from environment variables."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path.cwd()


class Settings(BaseSettings):
    """All config comes from LANSHARE_* env vars or a .env file."""

    storage_root: Path = BASE_DIR / "shared-storage"
    data_dir: Path = BASE_DIR / "data"

    # Credentials
    jwt_secret: str = "change-me-on-your-lan"
    jwt_algorithm: str = "HS256"
    token_ttl_hours: int = 24
    admin_key: str = ""                     # legacy X-Admin-Auth value, empty = disabled

    # Network
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: str = "*"
    trust_forwarded_for: bool = True

    # Uploads
    max_upload_bytes: int = 2 * 1024 * 1024 * 1024      # 2 GiB per request
    upload_chunk_size: int = 1024 * 1024                # 1 MiB

    recent_count: int = 5
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="LANSHARE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def metadata_file(self) -> Path:
        return self.data_dir / "db.json"

    @property
    def users_file(self) -> Path:
        return self.data_dir / "users.json"

    @property
    def staging_dir(self) -> Path:
        """Where upload bytes land until they are complete."""
        return self.data_dir / "incoming"

    def ensure_dirs(self) -> None:
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    return Settings()
