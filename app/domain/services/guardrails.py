"""
Call Guardrails
Pure predicates deciding whether an organization may place a call right now
and whether an agent or phone number is ready for dispatch.

Apart from loading the plan catalogue nothing here performs I/O; the billing
service gathers usage and feeds it in.
"""
import math
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from app.core.config import ConfigManager
from app.domain.models.tenant import Agent, LimitCheckResult, Organization, PhoneNumber, Plan

DEFAULT_PLAN_ID = "free-trial"
TRIAL_PLAN_ID = "free-trial"
DEFAULT_MINUTES_LIMIT_MESSAGE = "Minutes limit reached"


def load_plans(config: Optional[ConfigManager] = None) -> Dict[str, Plan]:
    """
    Build the plan catalogue from the "plans" key of config/*.yaml.

    Raises:
        ValueError: If the catalogue lacks the fallback plan
    """
    config = config or ConfigManager()
    configured = config.get("plans", {}) or {}

    plans = {plan_id: Plan(id=plan_id, **(values or {})) for plan_id, values in configured.items()}
    if DEFAULT_PLAN_ID not in plans:
        raise ValueError(f"Plan catalogue must define the '{DEFAULT_PLAN_ID}' plan")
    return plans


def get_plan(plan_id: Optional[str], plans: Dict[str, Plan]) -> Plan:
    """Look up a plan, falling back to the free trial for unknown IDs"""
    return plans.get(plan_id or DEFAULT_PLAN_ID) or plans[DEFAULT_PLAN_ID]


def minutes_from_seconds(seconds: int) -> int:
    """Billable minutes: partial minutes round up"""
    return math.ceil((seconds or 0) / 60)


def start_of_month(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def evaluate_minutes_limit(
    plan: Plan,
    minutes_used: int,
    estimated_minutes: int = 1
) -> LimitCheckResult:
    """
    Decide whether an organization has minutes left for another call.

    Args:
        plan: The organization's plan
        minutes_used: Minutes consumed this billing period
        estimated_minutes: Minutes the next call is expected to need
    """
    if plan.unlimited_minutes:
        return LimitCheckResult(allowed=True)

    remaining = max(0, plan.minutes_per_month - minutes_used)
    if remaining < estimated_minutes:
        return LimitCheckResult(
            allowed=False,
            reason=(
                f"You have {remaining} minutes remaining this month. "
                "Please upgrade for more minutes."
            ),
            upgrade_required=True,
            current_usage=minutes_used,
            limit=plan.minutes_per_month,
        )

    return LimitCheckResult(allowed=True)


def is_trial_expired(organization: Organization, now: Optional[datetime] = None) -> bool:
    """A trial organization whose trial end date has passed"""
    if organization.plan_id != TRIAL_PLAN_ID or organization.trial_ends_at is None:
        return False

    now = now or datetime.now(timezone.utc)
    trial_ends_at = organization.trial_ends_at
    if trial_ends_at.tzinfo is None:
        trial_ends_at = trial_ends_at.replace(tzinfo=timezone.utc)
    return trial_ends_at <= now


def agent_is_dispatchable(agent: Optional[Agent]) -> bool:
    """The agent exists and is connected to the voice platform"""
    return agent is not None and bool(agent.vapi_assistant_id)


def phone_number_is_available(phone_number: Optional[PhoneNumber]) -> bool:
    """The number is active and provisioned on the voice platform"""
    return (
        phone_number is not None
        and phone_number.is_active
        and bool(phone_number.vapi_phone_id)
    )


def overage_cost_cents(plan: Plan, previous_minutes: int, call_minutes: int) -> Tuple[int, int]:
    """
    Minutes of one call that fall above the plan allowance, and their cost.

    Minutes already billed as overage by earlier calls are not counted again.

    Returns:
        (overage_minutes, cost_cents); (0, 0) for unlimited plans
    """
    if plan.unlimited_minutes:
        return 0, 0

    allowance = plan.minutes_per_month
    overage_before = max(0, previous_minutes - allowance)
    overage_after = max(0, previous_minutes + call_minutes - allowance)
    overage_minutes = overage_after - overage_before
    return overage_minutes, overage_minutes * plan.overage_rate_cents
