"""
Tenant Resource Models
Organization, agent, phone number, contact and campaign records read by the call services
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class Organization(BaseModel):
    """Tenant organization"""
    id: str
    name: str
    plan_id: str = "free-trial"
    trial_ends_at: Optional[datetime] = None


class Agent(BaseModel):
    """Voice agent configuration"""
    id: str
    organization_id: str
    name: str
    system_prompt: str = ""
    vapi_assistant_id: Optional[str] = None
    model_provider: Optional[str] = None
    model: Optional[str] = None
    organization_name: Optional[str] = None  # joined from organizations


class KnowledgeDocument(BaseModel):
    """Knowledge base document attached to an agent"""
    id: Optional[str] = None
    agent_id: Optional[str] = None
    name: str
    content: str = ""


class PhoneNumber(BaseModel):
    """Provisioned phone number"""
    id: str
    organization_id: str
    number: str
    vapi_phone_id: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class Contact(BaseModel):
    """Contact (lead) that campaign calls are placed to"""
    id: str
    organization_id: str
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    status: str = "pending"  # pending, called, completed, failed, dnc
    last_called_at: Optional[datetime] = None
    call_attempts: int = 0


class Campaign(BaseModel):
    """Outbound calling campaign"""
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    goal: Optional[str] = None


class Plan(BaseModel):
    """Billing plan limits"""
    id: str
    name: str
    minutes_per_month: int = Field(..., description="-1 for unlimited")
    overage_rate_cents: int = 0
    trial_days: Optional[int] = None

    @property
    def unlimited_minutes(self) -> bool:
        return self.minutes_per_month == -1


class LimitCheckResult(BaseModel):
    """Outcome of a usage guardrail check"""
    allowed: bool
    reason: Optional[str] = None
    upgrade_required: bool = False
    current_usage: Optional[int] = None
    limit: Optional[int] = None


class UsageRecord(BaseModel):
    """Minutes consumed by one completed call"""
    organization_id: str
    call_id: str
    quantity: int
    usage_type: str = "minutes"
    recorded_at: Optional[datetime] = None
