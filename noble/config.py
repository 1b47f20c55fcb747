from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration loaded from the environment and `.env`.

    The backend selectors choose between the in-memory implementations used
    for local development and tests and the hosted ones used in production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: str = "development"
    log_level: str = "INFO"

    # Document store
    store_backend: Literal["memory", "neo4j"] = "memory"
    neo4j_uri: str = ""
    neo4j_user: str = ""
    neo4j_password: str = ""
    neo4j_database: str = "neo4j"
    subscription_poll_seconds: float = Field(2.0, gt=0)

    # Photo storage
    storage_backend: Literal["memory", "s3"] = "memory"
    s3_bucket_name: str = ""
    s3_region: str = "us-east-1"
    s3_public_base_url: str = ""

    # Phone verification
    identity_api_key: str = ""
    identity_project_id: str = ""
    identity_base_url: str = "https://identitytoolkit.googleapis.com/v1"
    token_base_url: str = "https://securetoken.googleapis.com/v1"
    jwks_url: str = (
        "https://www.googleapis.com/service_accounts/v1/jwk/"
        "securetoken@system.gserviceaccount.com"
    )
    verification_ttl_seconds: int = Field(300, gt=0)
    http_timeout_seconds: float = Field(10.0, gt=0)

    # Candidate browsing
    candidate_scan_limit: int = Field(1000, ge=1)


@lru_cache
def get_settings() -> Settings:
    return Settings()
