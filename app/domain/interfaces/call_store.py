"""
Call Record Store Interface
Abstract base classes for call persistence and tenant resource lookups
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from app.domain.models.call import Call, CallDetails, CallPage, CallUpdate, NewCall
from app.domain.models.tenant import (
    Agent,
    Campaign,
    KnowledgeDocument,
    Organization,
    PhoneNumber,
    UsageRecord,
)


class CallStore(ABC):
    """
    Persisted call records, keyed by internal ID with a unique secondary
    index on the vendor call ID.

    Every write is a field-level, unconditional overwrite. No locking and no
    version checks: concurrent writers race and the last one wins per field.
    """

    @abstractmethod
    async def create(self, new_call: NewCall) -> Call:
        """Insert a call record and return it with its generated ID"""
        pass

    @abstractmethod
    async def get(self, call_id: str) -> Optional[Call]:
        """Get a call by internal ID, not scoped to an organization"""
        pass

    @abstractmethod
    async def get_details(self, call_id: str, organization_id: str) -> Optional[CallDetails]:
        """
        Get a call with its agent, campaign and contact summaries.

        Returns None both when the call does not exist and when it belongs
        to another organization.
        """
        pass

    @abstractmethod
    async def find_by_vapi_call_id(self, vapi_call_id: str) -> Optional[Call]:
        """Get a call by its vendor call ID"""
        pass

    @abstractmethod
    async def find_in_statuses(
        self,
        call_id: str,
        organization_id: str,
        statuses: tuple[str, ...]
    ) -> Optional[Call]:
        """Get a call of the organization only if its status is one of statuses"""
        pass

    @abstractmethod
    async def update(self, call_id: str, patch: CallUpdate) -> Call:
        """
        Apply a partial update.

        Args:
            call_id: Internal call ID
            patch: Fields to overwrite; unset fields are left untouched

        Returns:
            The call as stored after the update
        """
        pass

    @abstractmethod
    async def list_calls(
        self,
        organization_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None
    ) -> CallPage:
        """List an organization's calls, newest first"""
        pass

    @abstractmethod
    async def list_between(
        self,
        organization_id: str,
        start: datetime,
        end: datetime
    ) -> List[Call]:
        """Calls of the organization created within [start, end]"""
        pass

    @abstractmethod
    async def list_unsettled(self, updated_before: datetime, limit: int = 50) -> List[Call]:
        """
        Calls that have a vendor ID but no terminal status and have not been
        touched since updated_before. Candidates for a poll-based sync.
        """
        pass

    @abstractmethod
    async def touch(self, call_id: str, at: datetime) -> None:
        """
        Set updated_at without changing anything else.

        Moves a call whose sync attempt failed to the back of the
        list_unsettled queue. Unknown IDs are ignored.
        """
        pass

    @abstractmethod
    async def sum_duration_seconds(
        self,
        organization_id: str,
        since: datetime,
        exclude_call_id: Optional[str] = None
    ) -> int:
        """Total call seconds of the organization created since the given time"""
        pass


class TenantRepository(ABC):
    """Read access to tenant resources plus the few writes the call flow owns"""

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[Organization]:
        pass

    @abstractmethod
    async def get_agent(self, agent_id: str, organization_id: str) -> Optional[Agent]:
        """Get an agent scoped to the organization"""
        pass

    @abstractmethod
    async def list_knowledge_documents(self, agent_id: str) -> List[KnowledgeDocument]:
        pass

    @abstractmethod
    async def find_active_phone_number(self, organization_id: str) -> Optional[PhoneNumber]:
        """First active, vendor-provisioned number of the organization (oldest first)"""
        pass

    @abstractmethod
    async def get_campaign(self, campaign_id: str, organization_id: str) -> Optional[Campaign]:
        pass

    @abstractmethod
    async def update_contact_status(
        self,
        contact_id: str,
        status: str,
        called_at: datetime
    ) -> None:
        """Set contact status, stamp last_called_at and count the attempt"""
        pass

    @abstractmethod
    async def get_usage_record(self, call_id: str) -> Optional[UsageRecord]:
        pass

    @abstractmethod
    async def add_usage_record(self, record: UsageRecord) -> bool:
        """
        Insert a usage record unless the call already has one.

        Returns:
            True if the record was written, False if one already existed
        """
        pass
