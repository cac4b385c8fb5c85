"""
Billing Service
Minutes guardrails, trial enforcement and per-call usage recording
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from app.core.errors import CallError, ErrorCode
from app.domain.interfaces.call_store import CallStore, TenantRepository
from app.domain.models.call import CallUpdate
from app.domain.models.tenant import LimitCheckResult, Plan, UsageRecord
from app.domain.services.guardrails import (
    evaluate_minutes_limit,
    get_plan,
    is_trial_expired,
    load_plans,
    minutes_from_seconds,
    overage_cost_cents,
    start_of_month,
)

logger = logging.getLogger(__name__)

TRIAL_EXPIRED_MESSAGE = "Your free trial has ended. Please upgrade to continue making calls."


class BillingService:
    """
    Usage guardrails and usage recording for call billing.

    check_minutes_limit and ensure_trial_expiry are read-only. record_call_usage
    is idempotent per call: a call that already has a usage record is never
    billed again, so duplicate "completed" webhooks are harmless. The store's
    insert-if-absent settles duplicates that arrive at the same time.
    """

    def __init__(
        self,
        calls: CallStore,
        tenants: TenantRepository,
        plans: Optional[Dict[str, Plan]] = None
    ):
        self.calls = calls
        self.tenants = tenants
        self.plans = plans or load_plans()

    async def _minutes_used(
        self,
        organization_id: str,
        exclude_call_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> int:
        seconds = await self.calls.sum_duration_seconds(
            organization_id,
            since=start_of_month(now),
            exclude_call_id=exclude_call_id,
        )
        return minutes_from_seconds(seconds)

    async def check_minutes_limit(
        self,
        organization_id: str,
        estimated_minutes: int = 1
    ) -> LimitCheckResult:
        """Check if the organization has minutes remaining this month"""
        organization = await self.tenants.get_organization(organization_id)
        if organization is None:
            return LimitCheckResult(allowed=False, reason="Organization not found")

        plan = get_plan(organization.plan_id, self.plans)
        minutes_used = await self._minutes_used(organization_id)

        return evaluate_minutes_limit(plan, minutes_used, estimated_minutes)

    async def ensure_trial_expiry(self, organization_id: str) -> None:
        """
        Block call placement for organizations whose free trial has lapsed.

        Raises:
            CallError: NOT_FOUND for unknown organizations, FORBIDDEN for an
                expired trial
        """
        organization = await self.tenants.get_organization(organization_id)
        if organization is None:
            raise CallError(ErrorCode.NOT_FOUND, "Organization not found")

        if is_trial_expired(organization):
            logger.info(f"Blocked call for organization {organization_id}: trial expired")
            raise CallError(ErrorCode.FORBIDDEN, TRIAL_EXPIRED_MESSAGE)

    async def record_call_usage(
        self,
        organization_id: str,
        duration_seconds: int,
        call_id: str
    ) -> None:
        """
        Record the minutes of a completed call and price any overage.

        Args:
            organization_id: Organization that placed the call
            duration_seconds: Call length reported by the vendor
            call_id: Internal call ID
        """
        if await self.tenants.get_usage_record(call_id) is not None:
            logger.info(f"Usage already recorded for call {call_id}, skipping")
            return

        organization = await self.tenants.get_organization(organization_id)
        if organization is None:
            logger.warning(f"Cannot record usage for call {call_id}: organization {organization_id} not found")
            return

        plan = get_plan(organization.plan_id, self.plans)
        call_minutes = minutes_from_seconds(duration_seconds)

        inserted = await self.tenants.add_usage_record(UsageRecord(
            organization_id=organization_id,
            call_id=call_id,
            quantity=call_minutes,
            recorded_at=datetime.now(timezone.utc),
        ))
        if not inserted:
            # A concurrent duplicate webhook recorded it first
            logger.info(f"Usage already recorded for call {call_id}, skipping")
            return

        previous_minutes = await self._minutes_used(organization_id, exclude_call_id=call_id)
        overage_minutes, cost_cents = overage_cost_cents(plan, previous_minutes, call_minutes)

        if overage_minutes > 0:
            await self.calls.update(call_id, CallUpdate(cost_cents=cost_cents))
            logger.info(
                f"Call {call_id} billed as overage: {overage_minutes} min, "
                f"{cost_cents} cents (plan={plan.id})"
            )
        else:
            logger.info(f"Recorded {call_minutes} min for call {call_id} (organization={organization_id})")
