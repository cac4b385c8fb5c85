"""
Supabase Storage
Call store and tenant repository backed by Supabase (PostgreSQL via PostgREST)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from app.domain.interfaces.call_store import CallStore, TenantRepository
from app.domain.models.call import (
    AgentSummary,
    Call,
    CallDetails,
    CallPage,
    CallUpdate,
    CampaignSummary,
    ContactSummary,
    NewCall,
    TERMINAL_STATUSES,
)
from app.domain.models.tenant import (
    Agent,
    Campaign,
    KnowledgeDocument,
    Organization,
    PhoneNumber,
    UsageRecord,
)
from app.utils.tenant_filter import apply_tenant_filter, first_row

logger = logging.getLogger(__name__)

CALL_DETAIL_SELECT = (
    "*, agents(id, name), campaigns(id, name), "
    "contacts(id, first_name, last_name, company)"
)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseCallStore(CallStore):
    """Rows of the calls table"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def create(self, new_call: NewCall) -> Call:
        response = self.supabase.table("calls").insert(new_call.model_dump(mode="json")).execute()
        row = first_row(response)
        if row is None:
            raise RuntimeError("Insert into calls returned no row")
        return Call(**row)

    async def get(self, call_id: str) -> Optional[Call]:
        response = self.supabase.table("calls").select("*").eq("id", call_id).limit(1).execute()
        row = first_row(response)
        return Call(**row) if row else None

    async def get_details(self, call_id: str, organization_id: str) -> Optional[CallDetails]:
        query = self.supabase.table("calls").select(CALL_DETAIL_SELECT).eq("id", call_id)
        query = apply_tenant_filter(query, organization_id)
        row = first_row(query.limit(1).execute())
        if row is None:
            return None

        agent = row.pop("agents", None)
        campaign = row.pop("campaigns", None)
        contact = row.pop("contacts", None)

        return CallDetails(
            **row,
            agent=AgentSummary(**agent) if agent else None,
            campaign=CampaignSummary(**campaign) if campaign else None,
            contact=ContactSummary(**contact) if contact else None,
        )

    async def find_by_vapi_call_id(self, vapi_call_id: str) -> Optional[Call]:
        response = self.supabase.table("calls").select("*").eq("vapi_call_id", vapi_call_id).limit(1).execute()
        row = first_row(response)
        return Call(**row) if row else None

    async def find_in_statuses(
        self,
        call_id: str,
        organization_id: str,
        statuses: tuple[str, ...]
    ) -> Optional[Call]:
        query = self.supabase.table("calls").select("*").eq("id", call_id)
        query = apply_tenant_filter(query, organization_id)
        row = first_row(query.in_("status", list(statuses)).limit(1).execute())
        return Call(**row) if row else None

    async def update(self, call_id: str, patch: CallUpdate) -> Call:
        payload: Dict[str, Any] = patch.model_dump(exclude_unset=True, mode="json")
        payload["updated_at"] = _utcnow_iso()

        response = self.supabase.table("calls").update(payload).eq("id", call_id).execute()
        row = first_row(response)
        if row is None:
            raise LookupError(f"Call {call_id} not found")
        return Call(**row)

    async def list_calls(
        self,
        organization_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None
    ) -> CallPage:
        query = self.supabase.table("calls").select("*", count="exact")
        query = apply_tenant_filter(query, organization_id)

        if status:
            query = query.eq("status", status)

        offset = (page - 1) * page_size
        response = query.order("created_at", desc=True).range(offset, offset + page_size - 1).execute()

        return CallPage(
            items=[Call(**row) for row in response.data or []],
            page=page,
            page_size=page_size,
            total=response.count or 0,
        )

    async def list_between(self, organization_id: str, start: datetime, end: datetime) -> List[Call]:
        query = self.supabase.table("calls").select("*")
        query = apply_tenant_filter(query, organization_id)
        response = query.gte("created_at", start.isoformat()).lte("created_at", end.isoformat()).execute()
        return [Call(**row) for row in response.data or []]

    async def list_unsettled(self, updated_before: datetime, limit: int = 50) -> List[Call]:
        response = (
            self.supabase.table("calls")
            .select("*")
            .not_.is_("vapi_call_id", "null")
            .not_.in_("status", list(TERMINAL_STATUSES))
            .lt("updated_at", updated_before.isoformat())
            .order("updated_at")
            .limit(limit)
            .execute()
        )
        return [Call(**row) for row in response.data or []]

    async def touch(self, call_id: str, at: datetime) -> None:
        self.supabase.table("calls").update({"updated_at": at.isoformat()}).eq("id", call_id).execute()

    async def sum_duration_seconds(
        self,
        organization_id: str,
        since: datetime,
        exclude_call_id: Optional[str] = None
    ) -> int:
        query = self.supabase.table("calls").select("id, duration_seconds")
        query = apply_tenant_filter(query, organization_id)
        response = query.gte("created_at", since.isoformat()).not_.is_("duration_seconds", "null").execute()

        return sum(
            row.get("duration_seconds") or 0
            for row in response.data or []
            if row.get("id") != exclude_call_id
        )


class SupabaseTenantRepository(TenantRepository):
    """Organizations, agents, numbers, contacts, campaigns and usage records"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        response = self.supabase.table("organizations").select(
            "id, name, plan_id, trial_ends_at"
        ).eq("id", organization_id).limit(1).execute()
        row = first_row(response)
        return Organization(**row) if row else None

    async def get_agent(self, agent_id: str, organization_id: str) -> Optional[Agent]:
        query = self.supabase.table("agents").select("*, organizations(name)").eq("id", agent_id)
        query = apply_tenant_filter(query, organization_id)
        row = first_row(query.limit(1).execute())
        if row is None:
            return None

        organization = row.pop("organizations", None) or {}
        return Agent(**row, organization_name=organization.get("name"))

    async def list_knowledge_documents(self, agent_id: str) -> List[KnowledgeDocument]:
        response = self.supabase.table("knowledge_documents").select(
            "id, agent_id, name, content"
        ).eq("agent_id", agent_id).execute()
        return [KnowledgeDocument(**row) for row in response.data or []]

    async def find_active_phone_number(self, organization_id: str) -> Optional[PhoneNumber]:
        query = self.supabase.table("phone_numbers").select("*")
        query = apply_tenant_filter(query, organization_id)
        response = (
            query.eq("is_active", True)
            .not_.is_("vapi_phone_id", "null")
            .order("created_at")
            .limit(1)
            .execute()
        )
        row = first_row(response)
        return PhoneNumber(**row) if row else None

    async def get_campaign(self, campaign_id: str, organization_id: str) -> Optional[Campaign]:
        query = self.supabase.table("campaigns").select("id, organization_id, name, description, goal")
        query = apply_tenant_filter(query.eq("id", campaign_id), organization_id)
        row = first_row(query.limit(1).execute())
        return Campaign(**row) if row else None

    async def update_contact_status(self, contact_id: str, status: str, called_at: datetime) -> None:
        # call_attempts is incremented in SQL so concurrent webhooks cannot lose a count
        response = self.supabase.rpc("record_contact_call", {
            "p_contact_id": contact_id,
            "p_status": status,
            "p_called_at": called_at.isoformat(),
        }).execute()

        if not response.data:
            logger.warning(f"Contact {contact_id} not found, status '{status}' not written")

    async def get_usage_record(self, call_id: str) -> Optional[UsageRecord]:
        response = self.supabase.table("usage_records").select("*").eq("call_id", call_id).limit(1).execute()
        row = first_row(response)
        return UsageRecord(**row) if row else None

    async def add_usage_record(self, record: UsageRecord) -> bool:
        # ON CONFLICT (call_id) DO NOTHING: a losing concurrent insert comes back empty
        response = self.supabase.table("usage_records").upsert(
            record.model_dump(mode="json", exclude_none=True),
            on_conflict="call_id",
            ignore_duplicates=True,
        ).execute()
        return bool(response.data)
