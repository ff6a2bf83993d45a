"""
Mock call initiation service for tests and local runs.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from dialflow.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    CallInitiationService,
)

logger = logging.getLogger(__name__)


class MockCallInitiationService(CallInitiationService):
    """Records requests and returns synthetic call ids."""

    def __init__(self) -> None:
        self._calls: list[CallInitiationRequest] = []
        self._next_call_id: int = 1
        self._should_fail: bool = False
        self._fail_error: str = "Mock failure"
        self._fail_code: str = "MOCK_ERROR"
        self._fail_numbers: set[str] = set()
        self._on_call: Callable[[CallInitiationRequest], None] | None = None

    def reset(self) -> None:
        self._calls.clear()
        self._next_call_id = 1
        self._should_fail = False
        self._fail_error = "Mock failure"
        self._fail_code = "MOCK_ERROR"
        self._fail_numbers.clear()
        self._on_call = None

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
        phone_numbers: set[str] | None = None,
    ) -> None:
        """Fail every call, or only calls to ``phone_numbers`` when given."""
        self._should_fail = should_fail and not phone_numbers
        self._fail_numbers = set(phone_numbers or ())
        self._fail_error = error_message
        self._fail_code = error_code

    def on_call(self, hook: Callable[[CallInitiationRequest], None] | None) -> None:
        """Register a hook run (in the worker thread) for every accepted request."""
        self._on_call = hook

    @property
    def calls(self) -> list[CallInitiationRequest]:
        return self._calls.copy()

    def get_last_call(self) -> CallInitiationRequest | None:
        return self._calls[-1] if self._calls else None

    def create_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        logger.info(
            "Mock: Initiating call",
            extra={"to": request.phone_number, "work_item_id": str(request.work_item_id)},
        )

        if self._should_fail or request.phone_number in self._fail_numbers:
            raise CallInitiationError(
                message=self._fail_error,
                error_code=self._fail_code,
            )

        self._calls.append(request)
        if self._on_call is not None:
            self._on_call(request)

        call_id = f"MOCK_CALL_{self._next_call_id:06d}"
        self._next_call_id += 1

        return CallInitiationResponse(
            call_id=call_id,
            status="queued",
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "call_id": call_id},
        )

    async def close(self) -> None:
        return None
