"""Settings for the CRUW backend, read from the environment (or a .env file)."""
from functools import lru_cache
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Database
    atlas_uri: str = Field(..., validation_alias=AliasChoices("ATLAS_URI", "MONGO_URI"))
    database_name: str = "cruw_db"

    # Auth
    jwt_secret: str = Field(..., min_length=1)
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # API
    cors_origins: List[str] = ["*"]
    port: int = 3001

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
