"""
Call initiation service interface.

The engine only cares whether a call could be started; call audio, IVR
logic and outcomes arrive later through the status webhook.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import anyio


@dataclass(frozen=True)
class CallInitiationRequest:
    """Request to start one outbound call for a work item."""

    phone_number: str
    caller_id: str | None
    agent_id: str | None
    work_item_id: UUID
    broadcast_id: UUID
    callback_url: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallInitiationResponse:
    """Provider acknowledgement of a started call."""

    call_id: str
    status: str
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallInitiationError(TelephonyProviderError):
    """The provider refused or could not start the call."""


class CallInitiationService(ABC):
    """Abstract interface for call initiation providers.

    ``create_call`` is the async entrypoint used by the dispatcher. Adapters
    with a blocking client implement ``create_call_sync`` and inherit the
    default, which runs it in a worker thread.
    """

    async def create_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Start an outbound call.

        Args:
            request: Call initiation request.

        Returns:
            Response carrying the provider call id.

        Raises:
            CallInitiationError: If the provider rejects the call.
            TelephonyProviderError: On transport failures.
        """
        return await anyio.to_thread.run_sync(self.create_call_sync, request)

    def create_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        raise NotImplementedError(f"{type(self).__name__} only supports async create_call")

    @abstractmethod
    async def close(self) -> None:
        """Release provider resources."""
        ...
