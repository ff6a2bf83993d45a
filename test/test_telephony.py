"""Tests for the call initiation adapters and the provider factory."""

import json
from uuid import uuid4

import httpx
import pytest

from dialflow.telephony.config import ProviderType, TelephonyConfig
from dialflow.telephony.factory import build_call_service
from dialflow.telephony.http_adapter import HttpCallInitiationService
from dialflow.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    TelephonyProviderError,
)
from dialflow.telephony.mock_adapter import MockCallInitiationService

API_URL = "https://voice.example.com/v1/calls"


@pytest.fixture
def call_request() -> CallInitiationRequest:
    return CallInitiationRequest(
        phone_number="+14155551234",
        caller_id="+14155550000",
        agent_id="agent-7",
        work_item_id=uuid4(),
        broadcast_id=uuid4(),
        callback_url="https://example.com/webhooks/calls/status",
        metadata={"attempt": 1},
    )


def _adapter(handler) -> HttpCallInitiationService:
    return HttpCallInitiationService(
        api_url=API_URL,
        api_token="secret-token",
        transport=httpx.MockTransport(handler),
    )


class TestHttpAdapter:
    @pytest.mark.asyncio
    async def test_success_posts_payload_and_returns_call_id(
        self, call_request: CallInitiationRequest
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"call_id": "CALL-123", "status": "queued"})

        adapter = _adapter(handler)
        response = await adapter.create_call(call_request)
        await adapter.close()

        assert response.call_id == "CALL-123"
        assert response.status == "queued"

        sent = seen[0]
        assert str(sent.url) == API_URL
        assert sent.headers["Authorization"] == "Bearer secret-token"
        body = json.loads(sent.content)
        assert body["to"] == "+14155551234"
        assert body["from"] == "+14155550000"
        assert body["status_callback"] == call_request.callback_url
        assert body["metadata"]["work_item_id"] == str(call_request.work_item_id)
        assert body["metadata"]["attempt"] == 1

    @pytest.mark.asyncio
    async def test_client_error_is_initiation_error(
        self, call_request: CallInitiationRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"code": "INVALID_NUMBER", "message": "bad to"})

        adapter = _adapter(handler)
        with pytest.raises(CallInitiationError) as exc_info:
            await adapter.create_call(call_request)

        assert exc_info.value.error_code == "INVALID_NUMBER"
        assert exc_info.value.provider_response["message"] == "bad to"

    @pytest.mark.asyncio
    async def test_server_error_is_provider_error(
        self, call_request: CallInitiationRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream unavailable")

        adapter = _adapter(handler)
        with pytest.raises(TelephonyProviderError) as exc_info:
            await adapter.create_call(call_request)

        assert not isinstance(exc_info.value, CallInitiationError)
        assert exc_info.value.error_code == "503"

    @pytest.mark.asyncio
    async def test_transport_failure_is_provider_error(
        self, call_request: CallInitiationRequest
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        adapter = _adapter(handler)
        with pytest.raises(TelephonyProviderError, match="Provider request failed"):
            await adapter.create_call(call_request)

    @pytest.mark.asyncio
    async def test_missing_call_id_rejected(self, call_request: CallInitiationRequest) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "queued"})

        adapter = _adapter(handler)
        with pytest.raises(CallInitiationError) as exc_info:
            await adapter.create_call(call_request)

        assert exc_info.value.error_code == "MISSING_CALL_ID"


class TestMockAdapter:
    @pytest.mark.asyncio
    async def test_records_requests_with_sequential_ids(
        self, call_request: CallInitiationRequest
    ) -> None:
        service = MockCallInitiationService()

        first = await service.create_call(call_request)
        second = await service.create_call(call_request)

        assert first.call_id == "MOCK_CALL_000001"
        assert second.call_id == "MOCK_CALL_000002"
        assert len(service.calls) == 2

    @pytest.mark.asyncio
    async def test_configured_failure(self, call_request: CallInitiationRequest) -> None:
        service = MockCallInitiationService()
        service.configure_failure(error_message="Number unreachable", error_code="UNREACHABLE")

        with pytest.raises(CallInitiationError) as exc_info:
            await service.create_call(call_request)

        assert exc_info.value.error_code == "UNREACHABLE"
        assert service.calls == []

        service.reset()
        assert (await service.create_call(call_request)).call_id == "MOCK_CALL_000001"


class TestFactory:
    def test_mock_provider(self) -> None:
        service = build_call_service(TelephonyConfig(provider_type=ProviderType.MOCK))
        assert isinstance(service, MockCallInitiationService)

    def test_http_provider(self) -> None:
        service = build_call_service(
            TelephonyConfig(provider_type=ProviderType.HTTP, api_url=API_URL)
        )
        assert isinstance(service, HttpCallInitiationService)

    def test_http_provider_requires_url(self) -> None:
        with pytest.raises(ValueError, match="TELEPHONY_API_URL"):
            build_call_service(TelephonyConfig(provider_type=ProviderType.HTTP, api_url=""))
