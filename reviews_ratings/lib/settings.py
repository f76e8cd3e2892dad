"""
Application settings loaded from environment variables.
Uses pydantic-settings for validation and .env file support.
"""
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Storage
    database_url: str = Field(
        default="sqlite:///./reviews.db",
        description="SQLAlchemy connection string for the review store"
    )
    review_store_backend: Literal["sql", "memory"] = Field(
        default="sql",
        description="Review store implementation: sql (durable) or memory (dev/test)"
    )
    store_max_workers: int = Field(
        default=8,
        ge=1,
        description="Worker threads for blocking review store I/O"
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Default deadline for a single store or collaborator call"
    )

    # Review rules
    max_returned_records: int = Field(
        default=999,
        ge=1,
        description="Upper bound on reviews returned by any listing"
    )
    search_case_sensitive: bool = Field(
        default=False,
        description="Match search terms case-sensitively"
    )
    require_approval: bool = Field(
        default=False,
        description="Only approved reviews count towards the average rating"
    )
    auto_approve: Optional[bool] = Field(
        default=None,
        description="Approval state for new reviews (unset: approved unless approval is required)"
    )

    # Order management API (purchase verification)
    order_api_base_url: str = Field(
        default="http://localhost:8081/api/oms/pvt",
        description="Base URL of the order management API"
    )
    order_api_app_key: str = Field(default="", description="Order API app key")
    order_api_app_token: str = Field(default="", description="Order API app token")
    order_api_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="HTTP timeout for order API requests"
    )
    verification_max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Concurrent order lookups while verifying a purchase"
    )

    # JWT
    jwt_secret: str = Field(
        default="change-me-in-prod",
        description="Secret key for JWT token signing"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )

    # Application
    app_name: str = Field(default="Reviews and Ratings", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")


# Global settings instance
settings = Settings()
