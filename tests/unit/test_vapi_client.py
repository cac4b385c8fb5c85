"""
Unit tests for Vapi client
Tests request shape and response parsing over a mocked HTTP transport
"""
import json

import httpx
import pytest

from app.domain.interfaces.voice_provider import OutboundCallRequest
from app.infrastructure.telephony.vapi_client import VapiClient, VapiError


def make_client(handler) -> VapiClient:
    http = httpx.AsyncClient(base_url="https://api.vapi.test", transport=httpx.MockTransport(handler))
    return VapiClient(api_key="test-key", client=http)


@pytest.fixture
def outbound_request():
    return OutboundCallRequest(
        assistant_id="asst-1",
        phone_number_id="vphone-1",
        customer_number="+15557654321",
        first_message="Hi, this is Sarah calling from Acme Dental.",
        system_prompt="You are Sarah.",
        model_provider="openai",
        model="gpt-4o-mini",
        metadata={"call_id": "call-1", "organization_id": "org-1"},
    )


class TestVapiClientInit:
    """Test client construction"""

    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="VAPI_API_KEY"):
            VapiClient(api_key="")

    def test_name(self):
        assert make_client(lambda request: httpx.Response(200, json={})).name == "vapi"


class TestCreateCall:
    """Test POST /call"""

    @pytest.mark.asyncio
    async def test_request_body(self, outbound_request):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "vapi-1", "status": "queued"})

        client = make_client(handler)
        await client.create_call(outbound_request)

        assert captured["method"] == "POST"
        assert captured["path"] == "/call"
        assert captured["auth"] == "Bearer test-key"
        body = captured["body"]
        assert body["assistantId"] == "asst-1"
        assert body["phoneNumberId"] == "vphone-1"
        assert body["customer"] == {"number": "+15557654321"}
        assert body["metadata"] == {"call_id": "call-1", "organization_id": "org-1"}
        assert body["assistantOverrides"]["firstMessage"].startswith("Hi, this is Sarah")
        assert body["assistantOverrides"]["model"] == {
            "provider": "openai",
            "model": "gpt-4o-mini",
            "messages": [{"role": "system", "content": "You are Sarah."}],
        }

    @pytest.mark.asyncio
    async def test_model_override_needs_provider_and_model(self, outbound_request):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "vapi-1", "status": "queued"})

        request = outbound_request.model_copy(update={"model_provider": None, "model": None})
        await make_client(handler).create_call(request)

        assert "model" not in captured["body"]["assistantOverrides"]
        assert "firstMessage" in captured["body"]["assistantOverrides"]

    @pytest.mark.asyncio
    async def test_returns_provider_call(self, outbound_request):
        client = make_client(lambda request: httpx.Response(201, json={
            "id": "vapi-1",
            "status": "queued",
            "assistantId": "asst-1",
            "extraField": {"ignored": True},
        }))

        call = await client.create_call(outbound_request)

        assert call.id == "vapi-1"
        assert call.status == "queued"

    @pytest.mark.asyncio
    async def test_error_response_raises(self, outbound_request):
        client = make_client(lambda request: httpx.Response(400, json={"message": "Invalid number"}))

        with pytest.raises(VapiError) as exc_info:
            await client.create_call(outbound_request)

        assert exc_info.value.status_code == 400
        assert "Invalid number" in exc_info.value.body


class TestGetCall:
    """Test GET /call/{id}"""

    @pytest.mark.asyncio
    async def test_ended_call_is_normalized(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/call/vapi-1"
            return httpx.Response(200, json={
                "id": "vapi-1",
                "status": "ended",
                "endedReason": "customer-did-not-answer",
                "startedAt": "2026-03-02T15:00:00.000Z",
                "endedAt": "2026-03-02T15:00:20.000Z",
            })

        call = await make_client(handler).get_call("vapi-1")

        assert call.status == "no-answer"
        assert call.ended_reason == "customer-did-not-answer"
        assert call.started_at is not None
        assert call.ended_at is not None

    @pytest.mark.asyncio
    async def test_artifacts_are_read(self):
        client = make_client(lambda request: httpx.Response(200, json={
            "id": "vapi-1",
            "status": "ended",
            "endedReason": "customer-ended-call",
            "artifact": {"transcript": "AI: Hello", "recordingUrl": "https://storage.vapi.ai/rec.wav"},
            "analysis": {"summary": "Short call"},
        }))

        call = await client.get_call("vapi-1")

        assert call.status == "completed"
        assert call.transcript == "AI: Hello"
        assert call.recording_url == "https://storage.vapi.ai/rec.wav"
        assert call.summary == "Short call"

    @pytest.mark.asyncio
    async def test_not_found_raises(self):
        client = make_client(lambda request: httpx.Response(404, text="Not Found"))

        with pytest.raises(VapiError) as exc_info:
            await client.get_call("missing")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        client = VapiClient(api_key="k", client=http)

        await client.close()

        assert not http.is_closed
        await http.aclose()
