from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod"),
        extra="ignore",
    )

    # External resume scoring service. Scoring is disabled when unset.
    ats_api_url: Optional[str] = None
    ats_timeout_seconds: float = 60.0

    # Resume object storage
    storage_dir: str = "./storage"
    storage_signing_key: str = "local-dev-storage-key"
    signed_url_ttl_seconds: int = 3600
    max_resume_bytes: int = 10 * 1024 * 1024

    # Cognito Settings (Optional for local dev)
    auth_enabled: bool = False
    cognito_user_pool_id: Optional[str] = None
    cognito_app_client_id: Optional[str] = None
    aws_region: Optional[str] = None

    # Application base URL (for constructing signed download links)
    app_base_url: str = "http://localhost:8000"  # Default for local dev


@lru_cache()
def get_settings() -> Settings:
    return Settings()
