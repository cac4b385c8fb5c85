"""
In-Memory Storage
Process-local call store and tenant repository for development and tests
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

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
    Contact,
    KnowledgeDocument,
    Organization,
    PhoneNumber,
    UsageRecord,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryTenantRepository(TenantRepository):
    """
    Tenant resources held in dictionaries.

    Populate with the add_* helpers; nothing is persisted across restarts.
    """

    def __init__(self):
        self.organizations: Dict[str, Organization] = {}
        self.agents: Dict[str, Agent] = {}
        self.documents: Dict[str, List[KnowledgeDocument]] = {}
        self.phone_numbers: Dict[str, PhoneNumber] = {}
        self.campaigns: Dict[str, Campaign] = {}
        self.contacts: Dict[str, Contact] = {}
        self.usage_records: Dict[str, UsageRecord] = {}

    def add_organization(self, organization: Organization) -> Organization:
        self.organizations[organization.id] = organization
        return organization

    def add_agent(self, agent: Agent) -> Agent:
        self.agents[agent.id] = agent
        return agent

    def add_knowledge_document(self, agent_id: str, document: KnowledgeDocument) -> KnowledgeDocument:
        document = document.model_copy(update={"agent_id": agent_id})
        self.documents.setdefault(agent_id, []).append(document)
        return document

    def add_phone_number(self, phone_number: PhoneNumber) -> PhoneNumber:
        if phone_number.created_at is None:
            phone_number = phone_number.model_copy(update={"created_at": _utcnow()})
        self.phone_numbers[phone_number.id] = phone_number
        return phone_number

    def add_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.id] = campaign
        return campaign

    def add_contact(self, contact: Contact) -> Contact:
        self.contacts[contact.id] = contact
        return contact

    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        return self.organizations.get(organization_id)

    async def get_agent(self, agent_id: str, organization_id: str) -> Optional[Agent]:
        agent = self.agents.get(agent_id)
        if agent is None or agent.organization_id != organization_id:
            return None

        if agent.organization_name is None:
            organization = self.organizations.get(organization_id)
            if organization:
                agent = agent.model_copy(update={"organization_name": organization.name})
        return agent

    async def list_knowledge_documents(self, agent_id: str) -> List[KnowledgeDocument]:
        return list(self.documents.get(agent_id, []))

    async def find_active_phone_number(self, organization_id: str) -> Optional[PhoneNumber]:
        candidates = [
            pn for pn in self.phone_numbers.values()
            if pn.organization_id == organization_id and pn.is_active and pn.vapi_phone_id
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda pn: pn.created_at or datetime.min.replace(tzinfo=timezone.utc))

    async def get_campaign(self, campaign_id: str, organization_id: str) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or campaign.organization_id != organization_id:
            return None
        return campaign

    async def update_contact_status(self, contact_id: str, status: str, called_at: datetime) -> None:
        contact = self.contacts.get(contact_id)
        if contact is None:
            logger.warning(f"Contact {contact_id} not found, status '{status}' not written")
            return

        self.contacts[contact_id] = contact.model_copy(update={
            "status": status,
            "last_called_at": called_at,
            "call_attempts": contact.call_attempts + 1,
        })

    async def get_usage_record(self, call_id: str) -> Optional[UsageRecord]:
        return self.usage_records.get(call_id)

    async def add_usage_record(self, record: UsageRecord) -> bool:
        if record.call_id in self.usage_records:
            return False
        self.usage_records[record.call_id] = record
        return True


class InMemoryCallStore(CallStore):
    """
    Call records held in a dictionary with a secondary index on vapi_call_id.

    The tenant repository is optional and only used to resolve the agent,
    campaign and contact summaries of get_details.
    """

    def __init__(self, tenants: Optional[InMemoryTenantRepository] = None):
        self.tenants = tenants
        self._calls: Dict[str, Call] = {}
        self._by_vapi_call_id: Dict[str, str] = {}

    def add(self, call: Call) -> Call:
        """Insert a fully formed record (fixtures)"""
        self._calls[call.id] = call
        if call.vapi_call_id:
            self._by_vapi_call_id[call.vapi_call_id] = call.id
        return call

    async def create(self, new_call: NewCall) -> Call:
        now = _utcnow()
        call = Call(id=str(uuid.uuid4()), created_at=now, updated_at=now, **new_call.model_dump())
        self._calls[call.id] = call
        return call

    async def get(self, call_id: str) -> Optional[Call]:
        return self._calls.get(call_id)

    async def get_details(self, call_id: str, organization_id: str) -> Optional[CallDetails]:
        call = self._calls.get(call_id)
        if call is None or call.organization_id != organization_id:
            return None

        details = CallDetails(**call.model_dump())
        if self.tenants is None:
            return details

        agent = self.tenants.agents.get(call.agent_id) if call.agent_id else None
        campaign = self.tenants.campaigns.get(call.campaign_id) if call.campaign_id else None
        contact = self.tenants.contacts.get(call.contact_id) if call.contact_id else None

        if agent:
            details.agent = AgentSummary(id=agent.id, name=agent.name)
        if campaign:
            details.campaign = CampaignSummary(id=campaign.id, name=campaign.name)
        if contact:
            details.contact = ContactSummary(
                id=contact.id,
                first_name=contact.first_name,
                last_name=contact.last_name,
                company=contact.company,
            )
        return details

    async def find_by_vapi_call_id(self, vapi_call_id: str) -> Optional[Call]:
        call_id = self._by_vapi_call_id.get(vapi_call_id)
        return self._calls.get(call_id) if call_id else None

    async def find_in_statuses(
        self,
        call_id: str,
        organization_id: str,
        statuses: tuple[str, ...]
    ) -> Optional[Call]:
        call = self._calls.get(call_id)
        if call is None or call.organization_id != organization_id or call.status not in statuses:
            return None
        return call

    async def update(self, call_id: str, patch: CallUpdate) -> Call:
        call = self._calls.get(call_id)
        if call is None:
            raise LookupError(f"Call {call_id} not found")

        changes = patch.changes()
        vapi_call_id = changes.get("vapi_call_id")
        if vapi_call_id:
            owner = self._by_vapi_call_id.get(vapi_call_id)
            if owner is not None and owner != call_id:
                raise ValueError(f"vapi_call_id {vapi_call_id} already belongs to call {owner}")
            if call.vapi_call_id and call.vapi_call_id != vapi_call_id:
                self._by_vapi_call_id.pop(call.vapi_call_id, None)
            self._by_vapi_call_id[vapi_call_id] = call_id

        updated = call.model_copy(update={**changes, "updated_at": _utcnow()})
        self._calls[call_id] = updated
        return updated

    async def list_calls(
        self,
        organization_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None
    ) -> CallPage:
        calls = [
            c for c in self._calls.values()
            if c.organization_id == organization_id and (status is None or c.status == status)
        ]
        calls.sort(key=lambda c: c.created_at or _utcnow(), reverse=True)

        offset = (page - 1) * page_size
        return CallPage(
            items=calls[offset:offset + page_size],
            page=page,
            page_size=page_size,
            total=len(calls),
        )

    async def list_between(self, organization_id: str, start: datetime, end: datetime) -> List[Call]:
        return [
            c for c in self._calls.values()
            if c.organization_id == organization_id
            and c.created_at is not None
            and start <= c.created_at <= end
        ]

    async def list_unsettled(self, updated_before: datetime, limit: int = 50) -> List[Call]:
        calls = [
            c for c in self._calls.values()
            if c.vapi_call_id
            and c.status not in TERMINAL_STATUSES
            and c.updated_at is not None
            and c.updated_at < updated_before
        ]
        calls.sort(key=lambda c: c.updated_at)
        return calls[:limit]

    async def touch(self, call_id: str, at: datetime) -> None:
        call = self._calls.get(call_id)
        if call is not None:
            self._calls[call_id] = call.model_copy(update={"updated_at": at})

    async def sum_duration_seconds(
        self,
        organization_id: str,
        since: datetime,
        exclude_call_id: Optional[str] = None
    ) -> int:
        return sum(
            c.duration_seconds
            for c in self._calls.values()
            if c.organization_id == organization_id
            and c.id != exclude_call_id
            and c.duration_seconds is not None
            and c.created_at is not None
            and c.created_at >= since
        )
