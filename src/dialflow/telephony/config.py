"""
Telephony provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported call initiation providers."""

    HTTP = "http"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.MOCK)

    # HTTP provider endpoint, e.g. https://voice.example.com/v1/calls
    api_url: str = Field(default="")
    api_token: str = Field(default="")
    default_caller_id: str = Field(default="")

    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
