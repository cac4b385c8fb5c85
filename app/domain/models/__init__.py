"""Domain models"""

# Call models
from .call import (
    CallStatus,
    CallDirection,
    Call,
    NewCall,
    CallUpdate,
    CallWebhookData,
    InitiateCallRequest,
    CallDetails,
    CallPage,
    CallStats,
)

# Tenant resources
from .tenant import (
    Organization,
    Agent,
    KnowledgeDocument,
    PhoneNumber,
    Contact,
    Campaign,
    Plan,
    LimitCheckResult,
    UsageRecord,
)

__all__ = [
    "CallStatus",
    "CallDirection",
    "Call",
    "NewCall",
    "CallUpdate",
    "CallWebhookData",
    "InitiateCallRequest",
    "CallDetails",
    "CallPage",
    "CallStats",
    "Organization",
    "Agent",
    "KnowledgeDocument",
    "PhoneNumber",
    "Contact",
    "Campaign",
    "Plan",
    "LimitCheckResult",
    "UsageRecord",
]
