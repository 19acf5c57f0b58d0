"""Application configuration using pydantic-settings."""
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Apigee Edge Management API connection
    apigee_endpoint: str = Field(
        default="https://api.enterprise.apigee.com/v1",
        validation_alias="APIGEE_EDGE_ENDPOINT",
    )
    apigee_organization: str = Field(validation_alias="APIGEE_EDGE_ORGANIZATION")
    apigee_username: str = Field(default="", validation_alias="APIGEE_EDGE_USERNAME")
    apigee_password: str = Field(default="", validation_alias="APIGEE_EDGE_PASSWORD")
    apigee_timeout: float = Field(default=30.0, validation_alias="APIGEE_EDGE_TIMEOUT")

    # Redis - persistent tier of the developer entity cache
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")

    # Developer entity cache. -1 keeps entries until they are invalidated.
    developer_cache_expiration: int = Field(
        default=900, ge=-1, validation_alias="DEVELOPER_CACHE_EXPIRATION",
    )
    developer_persistent_cache: bool = Field(
        default=True, validation_alias="DEVELOPER_PERSISTENT_CACHE",
    )

    @field_validator("apigee_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Require an absolute http(s) endpoint and drop any trailing slash."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            msg = f"Invalid Apigee Edge endpoint: {v!r}"
            raise ValueError(msg)
        return v.rstrip("/")

    @property
    def apigee_credentials(self) -> tuple[str, str] | None:
        """Basic auth credentials, or None when no username is configured."""
        if not self.apigee_username:
            return None
        return (self.apigee_username, self.apigee_password)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
