"""
Call Service
Outbound call lifecycle: initiation, webhook reconciliation, polling sync and retry
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from app.core.errors import CallError, ErrorCode
from app.domain.interfaces.call_store import CallStore, TenantRepository
from app.domain.interfaces.voice_provider import OutboundCallRequest, VoiceProvider
from app.domain.models.call import (
    Call,
    CallDetails,
    CallDirection,
    CallPage,
    CallStats,
    CallStatus,
    CallUpdate,
    CallWebhookData,
    InitiateCallRequest,
    NewCall,
    RETRYABLE_STATUSES,
)
from app.domain.services.billing_service import BillingService
from app.domain.services.guardrails import (
    DEFAULT_MINUTES_LIMIT_MESSAGE,
    agent_is_dispatchable,
    phone_number_is_available,
)
from app.domain.services.prompt_manager import PromptManager

logger = logging.getLogger(__name__)

# Contact status written after a call reaches one of these statuses
CONTACT_STATUS_BY_CALL_STATUS: Dict[str, str] = {
    CallStatus.COMPLETED.value: "completed",
    CallStatus.FAILED.value: "failed",
    CallStatus.NO_ANSWER.value: "failed",
}

DEFAULT_STATS_WINDOW_DAYS = 30
DEFAULT_BUSINESS_NAME = "our team"


class CallService:
    """
    Orchestrates an outbound call from guardrails to final status.

    Call records are written from three uncoordinated sources: initiation,
    vendor webhooks and polling sync. Every write is last-write-wins per
    field; a late webhook can overwrite a fresher polled status.
    """

    def __init__(
        self,
        calls: CallStore,
        tenants: TenantRepository,
        voice: VoiceProvider,
        billing: BillingService,
        prompts: Optional[PromptManager] = None
    ):
        self.calls = calls
        self.tenants = tenants
        self.voice = voice
        self.billing = billing
        self.prompts = prompts or PromptManager()

    async def initiate_call(self, request: InitiateCallRequest) -> Call:
        """
        Place an outbound call.

        Guardrail and prerequisite failures raise before anything is written.
        Once the record exists it ends up either queued with a vendor call ID
        or failed.

        Raises:
            CallError: FORBIDDEN (trial or minutes), BAD_REQUEST (agent or
                phone number not ready), INTERNAL_SERVER_ERROR (dispatch failed)
        """
        organization_id = request.organization_id

        await self.billing.ensure_trial_expiry(organization_id)

        limit = await self.billing.check_minutes_limit(organization_id)
        if not limit.allowed:
            raise CallError(ErrorCode.FORBIDDEN, limit.reason or DEFAULT_MINUTES_LIMIT_MESSAGE)

        agent = await self.tenants.get_agent(request.agent_id, organization_id)
        if not agent_is_dispatchable(agent):
            raise CallError(ErrorCode.BAD_REQUEST, "Agent not found or not connected to voice system")

        knowledge_content = None
        try:
            documents = await self.tenants.list_knowledge_documents(agent.id)
            knowledge_content = self.prompts.build_knowledge_block(documents)
        except Exception as e:
            logger.warning(f"Knowledge documents unavailable for agent {agent.id}: {e}")

        phone_number = await self.tenants.find_active_phone_number(organization_id)
        if not phone_number_is_available(phone_number):
            raise CallError(ErrorCode.BAD_REQUEST, "No active phone number available")

        call = await self.calls.create(NewCall(
            organization_id=organization_id,
            agent_id=agent.id,
            contact_id=request.contact_id,
            campaign_id=request.campaign_id,
            direction=CallDirection.OUTBOUND.value,
            status=CallStatus.QUEUED.value,
            to_number=request.phone_number,
            from_number=phone_number.number,
        ))

        try:
            campaign_context = None
            if request.campaign_id:
                campaign = await self.tenants.get_campaign(request.campaign_id, organization_id)
                campaign_context = self.prompts.build_campaign_context(campaign)

            provider_call = await self.voice.create_call(OutboundCallRequest(
                assistant_id=agent.vapi_assistant_id,
                phone_number_id=phone_number.vapi_phone_id,
                customer_number=request.phone_number,
                first_message=self.prompts.get_outbound_first_message(
                    agent.name,
                    agent.organization_name or DEFAULT_BUSINESS_NAME,
                ),
                system_prompt=self.prompts.get_outbound_call_prompt(
                    agent.system_prompt,
                    campaign_context=campaign_context,
                    knowledge_content=knowledge_content,
                ),
                model_provider=agent.model_provider,
                model=agent.model,
                metadata={
                    **request.metadata,
                    "call_id": call.id,
                    "organization_id": organization_id,
                },
            ))

            call = await self.calls.update(call.id, CallUpdate(
                vapi_call_id=provider_call.id,
                status=provider_call.status or CallStatus.QUEUED.value,
            ))
            logger.info(f"Call {call.id} dispatched to {self.voice.name} as {provider_call.id}")
            return call

        except Exception as e:
            logger.error(f"Failed to dispatch call {call.id}: {e}", exc_info=True)
            try:
                await self.calls.update(call.id, CallUpdate(status=CallStatus.FAILED.value))
            except Exception as store_error:
                logger.error(f"Could not mark call {call.id} as failed: {store_error}", exc_info=True)
            raise CallError(ErrorCode.INTERNAL_SERVER_ERROR, "Failed to initiate call") from e

    async def handle_call_webhook(self, data: CallWebhookData) -> Optional[Call]:
        """
        Apply a vendor status event to the matching call.

        Returns None when no call carries the vendor ID. Only store and
        billing failures propagate.
        """
        call = await self.calls.find_by_vapi_call_id(data.call_id)
        if call is None:
            logger.warning(f"Webhook for unknown Vapi call {data.call_id} ignored")
            return None

        updated = await self.calls.update(call.id, CallUpdate.from_provided(
            status=data.status,
            transcript=data.transcript,
            recording_url=data.recording_url,
            summary=data.summary,
            sentiment=data.sentiment,
            duration_seconds=data.duration_seconds,
            started_at=data.started_at,
            ended_at=data.ended_at,
        ))
        logger.info(f"Call {call.id} status -> {data.status}")

        if data.status == CallStatus.COMPLETED.value and data.duration_seconds is not None:
            await self.billing.record_call_usage(call.organization_id, data.duration_seconds, call.id)

        contact_status = CONTACT_STATUS_BY_CALL_STATUS.get(data.status)
        if call.contact_id and contact_status:
            await self.tenants.update_contact_status(
                call.contact_id,
                contact_status,
                called_at=datetime.now(timezone.utc),
            )

        return updated

    async def sync_call_from_vapi(self, call_id: str) -> bool:
        """
        Refresh a call from the vendor's current view of it.

        Returns False when the call has no vendor ID yet or when the vendor
        fetch or the refresh write fails.
        """
        call = await self.calls.get(call_id)
        if call is None or not call.vapi_call_id:
            return False

        try:
            provider_call = await self.voice.get_call(call.vapi_call_id)
            await self.calls.update(call.id, CallUpdate.from_provided(
                status=provider_call.status,
                transcript=provider_call.transcript,
                recording_url=provider_call.recording_url,
                started_at=provider_call.started_at,
                ended_at=provider_call.ended_at,
            ))
            return True
        except Exception as e:
            logger.error(f"Failed to sync call {call_id} from {self.voice.name}: {e}")
            return False

    async def get_call_details(self, call_id: str, organization_id: str) -> CallDetails:
        details = await self.calls.get_details(call_id, organization_id)
        if details is None:
            raise CallError(ErrorCode.NOT_FOUND, "Call not found")
        return details

    async def retry_call(self, call_id: str, organization_id: str) -> Call:
        """
        Place a new call with the same agent, number, contact and campaign as
        a failed or unanswered one. The original record is left as is.
        """
        original = await self.calls.find_in_statuses(call_id, organization_id, RETRYABLE_STATUSES)
        if original is None:
            raise CallError(ErrorCode.NOT_FOUND, "Call not found or cannot be retried")

        if not original.agent_id or not original.to_number:
            raise CallError(ErrorCode.BAD_REQUEST, "Call missing required data for retry")

        return await self.initiate_call(InitiateCallRequest(
            organization_id=organization_id,
            agent_id=original.agent_id,
            phone_number=original.to_number,
            contact_id=original.contact_id,
            campaign_id=original.campaign_id,
            metadata={"retry_of": call_id},
        ))

    async def make_test_call(self, agent_id: str, phone_number: str, organization_id: str) -> Call:
        return await self.initiate_call(InitiateCallRequest(
            organization_id=organization_id,
            agent_id=agent_id,
            phone_number=phone_number,
            metadata={"type": "test_call"},
        ))

    async def list_calls(
        self,
        organization_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None
    ) -> CallPage:
        return await self.calls.list_calls(organization_id, page=page, page_size=page_size, status=status)

    async def get_call_stats(
        self,
        organization_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> CallStats:
        """Aggregate an organization's calls created in [start, end] (default: last 30 days)"""
        end = end or datetime.now(timezone.utc)
        start = start or end - timedelta(days=DEFAULT_STATS_WINDOW_DAYS)

        calls = await self.calls.list_between(organization_id, start, end)
        stats = CallStats(total_calls=len(calls))

        total_seconds = 0
        timed_calls = 0
        for call in calls:
            stats.status_breakdown[call.status] = stats.status_breakdown.get(call.status, 0) + 1
            if call.sentiment:
                stats.sentiment_breakdown[call.sentiment] = stats.sentiment_breakdown.get(call.sentiment, 0) + 1
            if call.duration_seconds is not None:
                total_seconds += call.duration_seconds
                timed_calls += 1

        stats.completed = stats.status_breakdown.get(CallStatus.COMPLETED.value, 0)
        stats.failed = (
            stats.status_breakdown.get(CallStatus.FAILED.value, 0)
            + stats.status_breakdown.get(CallStatus.NO_ANSWER.value, 0)
        )
        if stats.total_calls:
            stats.success_rate = round(stats.completed / stats.total_calls * 100)
        stats.total_minutes = round(total_seconds / 60)
        if timed_calls:
            stats.avg_duration = round(total_seconds / timed_calls)

        return stats
