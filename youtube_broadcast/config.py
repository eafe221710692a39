"""
YouTube API client configuration.

User-facing YouTube options (OAuth client, polling, reuse) live in the
application settings; this holds the transport-level knobs.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class YouTubeApiConfig(BaseSettings):
    """YouTube Data API transport configuration from environment variables."""

    api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL",
    )

    request_timeout: float = Field(
        default=15.0,
        description="Timeout for a single API request (seconds)",
        gt=0.0,
        le=120.0,
    )

    retry_base_delay: float = Field(
        default=1.0,
        description="First retry delay for retryable errors (seconds)",
        ge=0.0,
        le=30.0,
    )

    broadcast_context: str = Field(
        default="print",
        description="Context key under which reusable broadcasts are stored",
    )

    model_config = ConfigDict(
        env_prefix="YOUTUBE_API_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_config() -> YouTubeApiConfig:
    """
    Get YouTube API configuration from environment variables.

    Returns:
        YouTubeApiConfig: Configuration instance
    """
    return YouTubeApiConfig()
