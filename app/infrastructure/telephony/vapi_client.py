"""
Vapi Voice Provider
REST client for placing and inspecting calls on the Vapi platform
"""
import logging
from typing import Any, Dict, Optional

import httpx

from app.domain.interfaces.voice_provider import OutboundCallRequest, ProviderCall, VoiceProvider
from app.infrastructure.telephony.vapi_events import VapiStatusMapper

logger = logging.getLogger(__name__)


class VapiError(Exception):
    """Vapi API returned a non-success response"""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Vapi API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


class VapiClient(VoiceProvider):
    """
    Vapi REST API client.

    Setup Required:
    - Set VAPI_API_KEY (private key from the Vapi dashboard)
    - Point the Vapi server URL at /api/v1/webhooks/vapi
    """

    DEFAULT_BASE_URL = "https://api.vapi.ai"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        status_mapper: Optional[VapiStatusMapper] = None
    ):
        if not api_key:
            raise ValueError("Vapi API key not configured. Set VAPI_API_KEY environment variable.")

        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self.status_mapper = status_mapper or VapiStatusMapper()

    @property
    def name(self) -> str:
        return "vapi"

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._client.request(method, path, json=body, headers=self._headers)

        if response.is_error:
            logger.error(f"Vapi {method} {path} failed: {response.status_code} {response.text}")
            raise VapiError(response.status_code, response.text)

        return response.json()

    async def create_call(self, request: OutboundCallRequest) -> ProviderCall:
        body: Dict[str, Any] = {
            "assistantId": request.assistant_id,
            "phoneNumberId": request.phone_number_id,
            "customer": {"number": request.customer_number},
            "metadata": request.metadata,
        }

        overrides: Dict[str, Any] = {}
        if request.first_message:
            overrides["firstMessage"] = request.first_message
        if request.system_prompt and request.model_provider and request.model:
            overrides["model"] = {
                "provider": request.model_provider,
                "model": request.model,
                "messages": [{"role": "system", "content": request.system_prompt}],
            }
        if overrides:
            body["assistantOverrides"] = overrides

        data = await self._request("POST", "/call", body)
        logger.info(f"Vapi call created: {data.get('id')} -> {request.customer_number}")
        return self._to_provider_call(data)

    async def get_call(self, vendor_call_id: str) -> ProviderCall:
        data = await self._request("GET", f"/call/{vendor_call_id}")
        return self._to_provider_call(data)

    def _to_provider_call(self, data: Dict[str, Any]) -> ProviderCall:
        artifact = data.get("artifact") or {}
        analysis = data.get("analysis") or {}
        ended_reason = data.get("endedReason")

        return ProviderCall(
            id=data["id"],
            status=self.status_mapper.normalize(data.get("status") or "queued", ended_reason),
            transcript=data.get("transcript") or artifact.get("transcript"),
            recording_url=data.get("recordingUrl") or artifact.get("recordingUrl"),
            summary=data.get("summary") or analysis.get("summary"),
            started_at=data.get("startedAt"),
            ended_at=data.get("endedAt"),
            ended_reason=ended_reason,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
