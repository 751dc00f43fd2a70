from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field("sqlite:///calcstore.db")
    api_title: str = Field("Calculator Session API")
    session_ttl_seconds: int = Field(60 * 60 * 24, gt=0)
    session_cookie_name: str = Field("calcstore_session")
    session_cookie_secure: bool = Field(False)
    session_cookie_samesite: str = Field("lax")
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    # Demo accounts have well-known passwords; never enable outside local use.
    seed_demo_users: bool = Field(False)
    log_level: str = Field("INFO")
    host: str = Field("127.0.0.1")
    port: int = Field(3000)


settings = Settings()
