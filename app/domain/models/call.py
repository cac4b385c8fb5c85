"""
Call Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class CallStatus(str, Enum):
    """
    Known call statuses.

    Vendor intermediate values (e.g. "in-progress", "forwarding") are stored
    verbatim, so Call.status is a plain string rather than this enum.
    """
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    ANSWERED = "answered"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no-answer"


class CallDirection(str, Enum):
    """Call direction"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


# Statuses a call can be retried from
RETRYABLE_STATUSES = (CallStatus.FAILED.value, CallStatus.NO_ANSWER.value)

# Statuses after which the vendor will not report further progress
TERMINAL_STATUSES = (
    CallStatus.COMPLETED.value,
    CallStatus.FAILED.value,
    CallStatus.NO_ANSWER.value,
)


class Call(BaseModel):
    """Call record"""
    id: str
    organization_id: str
    agent_id: Optional[str] = None
    contact_id: Optional[str] = None
    campaign_id: Optional[str] = None
    direction: str = CallDirection.OUTBOUND.value
    status: str = CallStatus.QUEUED.value
    to_number: Optional[str] = None
    from_number: Optional[str] = None
    vapi_call_id: Optional[str] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    duration_seconds: Optional[int] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    cost_cents: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class NewCall(BaseModel):
    """Fields captured when a call record is first created"""
    organization_id: str
    agent_id: Optional[str] = None
    contact_id: Optional[str] = None
    campaign_id: Optional[str] = None
    direction: str = CallDirection.OUTBOUND.value
    status: str = CallStatus.QUEUED.value
    to_number: str
    from_number: Optional[str] = None


class CallUpdate(BaseModel):
    """
    Partial update applied to a stored call.

    Only fields explicitly set on the instance are written; everything else
    on the stored record is left as is. Writes are last-write-wins per field.
    """
    status: Optional[str] = None
    vapi_call_id: Optional[str] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    duration_seconds: Optional[int] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    cost_cents: Optional[int] = None

    @classmethod
    def from_provided(cls, **fields: Any) -> "CallUpdate":
        """Build a patch from keyword arguments, dropping the ones that are None"""
        return cls(**{key: value for key, value in fields.items() if value is not None})

    def changes(self) -> Dict[str, Any]:
        """Fields to write, keyed by column name"""
        return self.model_dump(exclude_unset=True)

    def is_empty(self) -> bool:
        return not self.model_fields_set


class CallWebhookData(BaseModel):
    """Vendor-pushed status event, keyed by the vendor call ID"""
    call_id: str = Field(..., description="Vendor (Vapi) call ID")
    status: str
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    duration_seconds: Optional[int] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class InitiateCallRequest(BaseModel):
    """Input to the call initiator"""
    organization_id: str
    agent_id: str
    phone_number: str
    contact_id: Optional[str] = None
    campaign_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class AgentSummary(BaseModel):
    id: str
    name: Optional[str] = None


class CampaignSummary(BaseModel):
    id: str
    name: Optional[str] = None


class ContactSummary(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None


class CallDetails(Call):
    """Call record with summaries of its related agent, campaign and contact"""
    agent: Optional[AgentSummary] = None
    campaign: Optional[CampaignSummary] = None
    contact: Optional[ContactSummary] = None


class CallPage(BaseModel):
    """Page of calls, newest first"""
    items: List[Call]
    page: int
    page_size: int
    total: int


class CallStats(BaseModel):
    """Aggregated call statistics for a period"""
    total_calls: int = 0
    completed: int = 0
    failed: int = 0
    success_rate: int = 0
    total_minutes: int = 0
    avg_duration: int = 0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    sentiment_breakdown: Dict[str, int] = Field(
        default_factory=lambda: {"positive": 0, "neutral": 0, "negative": 0}
    )
