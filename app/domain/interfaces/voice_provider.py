"""
Voice Provider Interface
Abstract base class for the voice-AI platform that places and runs calls
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class OutboundCallRequest(BaseModel):
    """Everything the vendor needs to place one outbound call"""
    assistant_id: str
    phone_number_id: str
    customer_number: str
    first_message: Optional[str] = None
    system_prompt: Optional[str] = None
    model_provider: Optional[str] = None
    model: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class ProviderCall(BaseModel):
    """Vendor view of a call, with status already normalized"""
    id: str
    status: str
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    summary: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    ended_reason: Optional[str] = None


class VoiceProvider(ABC):
    """Abstract base class for voice-AI call platforms"""

    @abstractmethod
    async def create_call(self, request: OutboundCallRequest) -> ProviderCall:
        """
        Place an outbound call.

        Returns:
            The vendor call, carrying its ID and immediate status

        Raises:
            Any error when the vendor rejects the call or cannot be reached
        """
        pass

    @abstractmethod
    async def get_call(self, vendor_call_id: str) -> ProviderCall:
        """Fetch the current state of a call from the vendor"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
