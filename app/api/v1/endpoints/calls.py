"""
Call Endpoints
Initiate, list, inspect, retry and sync outbound calls
"""
import logging
from datetime import date, datetime, time, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from app.api.v1.dependencies import (
    enforce_call_rate_limit,
    get_call_service,
    get_organization_id,
)
from app.core.errors import CallError
from app.domain.models.call import Call, CallDetails, CallPage, CallStats, InitiateCallRequest
from app.domain.services.call_service import CallService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


class InitiateCallBody(BaseModel):
    """Request body for placing an outbound call"""
    agent_id: str
    phone_number: str = Field(..., min_length=3, description="Destination number, E.164")
    contact_id: Optional[str] = None
    campaign_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class TestCallBody(BaseModel):
    """Request body for a one-off test call"""
    agent_id: str
    phone_number: str = Field(..., min_length=3)


class SyncResponse(BaseModel):
    call_id: str
    synced: bool


@router.post("/", response_model=Call, status_code=201, dependencies=[Depends(enforce_call_rate_limit)])
async def initiate_call(
    body: InitiateCallBody,
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """
    Place an outbound call through the voice platform.

    Returns the call record, queued with its Vapi call ID.
    """
    try:
        return await call_service.initiate_call(InitiateCallRequest(
            organization_id=organization_id,
            agent_id=body.agent_id,
            phone_number=body.phone_number,
            contact_id=body.contact_id,
            campaign_id=body.campaign_id,
            metadata=body.metadata,
        ))
    except (CallError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Failed to initiate call: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to initiate call")


@router.post("/test", response_model=Call, status_code=201, dependencies=[Depends(enforce_call_rate_limit)])
async def make_test_call(
    body: TestCallBody,
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """Place a test call to verify an agent end to end"""
    try:
        return await call_service.make_test_call(body.agent_id, body.phone_number, organization_id)
    except (CallError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Failed to place test call: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to initiate call")


@router.get("/", response_model=CallPage)
async def list_calls(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status: Optional[str] = Query(None, description="Filter by status"),
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """Get paginated list of calls, newest first"""
    try:
        return await call_service.list_calls(organization_id, page=page, page_size=page_size, status=status)
    except Exception as e:
        logger.error(f"Failed to fetch calls: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch calls")


@router.get("/stats", response_model=CallStats)
async def get_call_stats(
    from_date: Optional[date] = Query(None, alias="from", description="Start date (YYYY-MM-DD)"),
    to_date: Optional[date] = Query(None, alias="to", description="End date (YYYY-MM-DD)"),
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """
    Aggregated call statistics.

    Defaults to the last 30 days when no range is given.
    """
    start = datetime.combine(from_date, time.min, tzinfo=timezone.utc) if from_date else None
    end = datetime.combine(to_date, time.max, tzinfo=timezone.utc) if to_date else None

    try:
        return await call_service.get_call_stats(organization_id, start=start, end=end)
    except Exception as e:
        logger.error(f"Failed to compute call stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch call stats")


@router.get("/{call_id}", response_model=CallDetails)
async def get_call(
    call_id: str,
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """Get a call with its agent, campaign and contact"""
    try:
        return await call_service.get_call_details(call_id, organization_id)
    except (CallError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Failed to fetch call {call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch call")


@router.post(
    "/{call_id}/retry",
    response_model=Call,
    status_code=201,
    dependencies=[Depends(enforce_call_rate_limit)],
)
async def retry_call(
    call_id: str,
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """
    Retry a failed or unanswered call.

    Creates a new call record; the original stays as it is.
    """
    try:
        return await call_service.retry_call(call_id, organization_id)
    except (CallError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Failed to retry call {call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to retry call")


@router.post("/{call_id}/sync", response_model=SyncResponse)
async def sync_call(
    call_id: str,
    organization_id: str = Depends(get_organization_id),
    call_service: CallService = Depends(get_call_service)
):
    """Pull the latest status, transcript and recording from Vapi"""
    try:
        # Ownership check; raises NOT_FOUND for other organizations' calls
        await call_service.get_call_details(call_id, organization_id)
        synced = await call_service.sync_call_from_vapi(call_id)
        return SyncResponse(call_id=call_id, synced=synced)
    except (CallError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"Failed to sync call {call_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to sync call")
