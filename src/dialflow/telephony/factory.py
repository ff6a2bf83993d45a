"""
Call initiation service factory.
"""

from functools import lru_cache

from dialflow.shared.logging import get_logger
from dialflow.telephony.config import ProviderType, TelephonyConfig, get_telephony_config
from dialflow.telephony.http_adapter import HttpCallInitiationService
from dialflow.telephony.interface import CallInitiationService
from dialflow.telephony.mock_adapter import MockCallInitiationService

logger = get_logger(__name__)


def build_call_service(cfg: TelephonyConfig) -> CallInitiationService:
    """Create the call initiation service described by ``cfg``."""
    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "api_url": cfg.api_url,
        },
    )

    if cfg.provider_type == ProviderType.HTTP:
        if not cfg.api_url:
            raise ValueError("TELEPHONY_API_URL is required for the http provider")
        return HttpCallInitiationService(
            api_url=cfg.api_url,
            api_token=cfg.api_token,
            timeout=cfg.request_timeout_seconds,
        )

    if cfg.provider_type == ProviderType.MOCK:
        return MockCallInitiationService()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_call_service() -> CallInitiationService:
    """Create and cache the configured call initiation service."""
    return build_call_service(get_telephony_config())
