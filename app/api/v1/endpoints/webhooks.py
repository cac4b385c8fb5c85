"""
Webhooks API Endpoints
Handles call status events pushed by the Vapi voice platform
"""
import hashlib
import hmac
import json
import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.v1.dependencies import get_call_service
from app.core.config import ConfigManager, Settings, get_settings
from app.domain.services.call_service import CallService
from app.infrastructure.telephony.vapi_events import VapiStatusMapper, parse_vapi_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "x-vapi-signature"


@lru_cache
def get_status_mapper() -> VapiStatusMapper:
    return VapiStatusMapper.from_config(ConfigManager())


def verify_vapi_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Hex HMAC-SHA256 of the raw request body, compared in constant time"""
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


@router.post("/vapi")
async def vapi_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    call_service: CallService = Depends(get_call_service),
    mapper: VapiStatusMapper = Depends(get_status_mapper)
):
    """
    Handle Vapi server messages.

    Processes status-update and end-of-call-report messages (plus the
    legacy call.started / call.ended envelopes). Everything else is
    acknowledged and ignored so Vapi does not retry it.
    """
    body = await request.body()

    if settings.vapi_webhook_secret:
        if not verify_vapi_signature(body, request.headers.get(SIGNATURE_HEADER), settings.vapi_webhook_secret):
            logger.warning("Rejected Vapi webhook with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
    else:
        logger.warning("VAPI_WEBHOOK_SECRET not set, skipping webhook signature verification")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = parse_vapi_event(payload, mapper)
    if event is None:
        return {"received": True, "processed": False}

    logger.info(f"Vapi webhook: call={event.call_id}, status={event.status}")

    try:
        call = await call_service.handle_call_webhook(event)
    except Exception as e:
        logger.error(f"Error processing Vapi webhook for {event.call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process webhook")

    return {
        "received": True,
        "processed": call is not None,
        "call_id": call.id if call else None,
    }
