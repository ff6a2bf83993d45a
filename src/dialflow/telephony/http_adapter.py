"""
HTTP call initiation adapter.

Posts a JSON call request to a provider endpoint and reads back the call id.
"""

from datetime import datetime, timezone

import httpx

from dialflow.shared.logging import get_logger
from dialflow.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    CallInitiationService,
    TelephonyProviderError,
)

logger = get_logger(__name__)


class HttpCallInitiationService(CallInitiationService):
    """Call initiation over a JSON HTTP API with bearer-token auth."""

    def __init__(
        self,
        api_url: str,
        api_token: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize adapter.

        Args:
            api_url: Endpoint that creates calls.
            api_token: Bearer token sent with every request.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._api_url = api_url
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._api_token}"} if self._api_token else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def create_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Start an outbound call via the HTTP provider.

        Args:
            request: Call initiation request.

        Returns:
            Response with the provider call id.

        Raises:
            CallInitiationError: Provider answered with a 4xx.
            TelephonyProviderError: 5xx or transport failure.
        """
        client = await self._get_client()
        payload = {
            "to": request.phone_number,
            "from": request.caller_id,
            "agent_id": request.agent_id,
            "status_callback": request.callback_url,
            "metadata": {
                "work_item_id": str(request.work_item_id),
                "broadcast_id": str(request.broadcast_id),
                **request.metadata,
            },
        }

        logger.info(
            "Initiating call",
            extra={
                "work_item_id": str(request.work_item_id),
                "broadcast_id": str(request.broadcast_id),
            },
        )

        try:
            response = await client.post(self._api_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            error_data: dict = {}
            try:
                error_data = e.response.json()
            except ValueError:
                error_data = {"body": e.response.text}

            logger.error(
                "Call initiation rejected",
                extra={
                    "work_item_id": str(request.work_item_id),
                    "status_code": e.response.status_code,
                    "error": error_data,
                },
            )
            error_cls = CallInitiationError if e.response.status_code < 500 else TelephonyProviderError
            raise error_cls(
                message=f"Provider API error: {e.response.status_code}",
                error_code=str(error_data.get("code", e.response.status_code)),
                provider_response=error_data,
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "Call initiation request failed",
                extra={"work_item_id": str(request.work_item_id), "error": str(e)},
            )
            raise TelephonyProviderError(message=f"Provider request failed: {e}") from e

        call_id = data.get("call_id") or data.get("id")
        if not call_id:
            raise CallInitiationError(
                message="Provider response missing call id",
                error_code="MISSING_CALL_ID",
                provider_response=data,
            )

        return CallInitiationResponse(
            call_id=str(call_id),
            status=str(data.get("status", "queued")),
            created_at=datetime.now(timezone.utc),
            raw_response=data,
        )
