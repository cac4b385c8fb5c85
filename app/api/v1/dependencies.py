"""
API Dependencies
Shared dependencies for authentication, Supabase access and call service wiring
"""
import logging
import os
from functools import lru_cache
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv
from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel
from supabase import Client, create_client

from app.core.config import ConfigManager, Settings, get_settings
from app.domain.interfaces.call_store import CallStore, TenantRepository
from app.domain.interfaces.voice_provider import VoiceProvider
from app.domain.models.tenant import Plan
from app.domain.services.billing_service import BillingService
from app.domain.services.call_service import CallService
from app.domain.services.guardrails import load_plans
from app.domain.services.prompt_manager import PromptManager
from app.domain.services.rate_limiter import (
    InMemoryCounterStore,
    RateLimiter,
    RateLimitResult,
    RedisCounterStore,
)
from app.infrastructure.storage.memory_store import InMemoryCallStore, InMemoryTenantRepository
from app.infrastructure.storage.supabase_store import SupabaseCallStore, SupabaseTenantRepository
from app.infrastructure.telephony.vapi_client import VapiClient
from app.infrastructure.telephony.vapi_events import VapiStatusMapper

load_dotenv()

logger = logging.getLogger(__name__)


class CurrentUser(BaseModel):
    """Current authenticated user model"""
    id: str
    email: str
    name: Optional[str] = None
    business_name: Optional[str] = None
    organization_id: Optional[str] = None
    role: str = "user"


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    supabase: Client = Depends(get_supabase)
) -> CurrentUser:
    """
    Dependency to get the current authenticated user from JWT token.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Extract token from "Bearer <token>"
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Use: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = parts[1]

    try:
        user_response = supabase.auth.get_user(token)

        if not user_response or not user_response.user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        auth_user = user_response.user

        profile_response = supabase.table("user_profiles").select(
            "*, organizations(name)"
        ).eq("id", auth_user.id).limit(1).execute()

        if profile_response.data:
            profile = profile_response.data[0]
            organization = profile.get("organizations", {}) or {}

            return CurrentUser(
                id=str(auth_user.id),
                email=auth_user.email,
                name=profile.get("name"),
                business_name=organization.get("name"),
                organization_id=profile.get("organization_id"),
                role=profile.get("role", "user"),
            )

        # User exists in auth but no profile yet
        return CurrentUser(id=str(auth_user.id), email=auth_user.email)

    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"Token validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token validation failed",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_organization_id(current_user: CurrentUser = Depends(get_current_user)) -> str:
    """Organization the caller acts for; users without one cannot touch calls"""
    if not current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No organization associated with this user",
        )
    return current_user.organization_id


# ============================================
# Call service wiring
# ============================================

@lru_cache
def get_memory_stores() -> Tuple[InMemoryCallStore, InMemoryTenantRepository]:
    """Process-wide in-memory stores (STORAGE_BACKEND=memory)"""
    tenants = InMemoryTenantRepository()
    return InMemoryCallStore(tenants), tenants


@lru_cache
def get_plans() -> Dict[str, Plan]:
    return load_plans(ConfigManager())


def get_call_store(settings: Settings = Depends(get_settings)) -> CallStore:
    if settings.storage_backend == "memory":
        return get_memory_stores()[0]
    return SupabaseCallStore(get_supabase())


def get_tenant_repository(settings: Settings = Depends(get_settings)) -> TenantRepository:
    if settings.storage_backend == "memory":
        return get_memory_stores()[1]
    return SupabaseTenantRepository(get_supabase())


_voice_provider: Optional[VoiceProvider] = None


def get_voice_provider(settings: Settings = Depends(get_settings)) -> VoiceProvider:
    """Shared Vapi client; one HTTP connection pool per process"""
    global _voice_provider
    if _voice_provider is None:
        _voice_provider = VapiClient(
            api_key=settings.vapi_api_key,
            base_url=settings.vapi_base_url,
            timeout=settings.vapi_timeout_seconds,
            status_mapper=VapiStatusMapper.from_config(ConfigManager()),
        )
    return _voice_provider


async def close_voice_provider() -> None:
    global _voice_provider
    if _voice_provider is not None:
        await _voice_provider.close()
        _voice_provider = None


def get_billing_service(
    calls: CallStore = Depends(get_call_store),
    tenants: TenantRepository = Depends(get_tenant_repository)
) -> BillingService:
    return BillingService(calls, tenants, plans=get_plans())


def get_call_service(
    calls: CallStore = Depends(get_call_store),
    tenants: TenantRepository = Depends(get_tenant_repository),
    voice: VoiceProvider = Depends(get_voice_provider),
    billing: BillingService = Depends(get_billing_service)
) -> CallService:
    return CallService(calls, tenants, voice, billing, PromptManager())


# ============================================
# Rate limiting
# ============================================

_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter(settings: Settings = Depends(get_settings)) -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        if settings.rate_limit_backend == "redis":
            store = await RedisCounterStore.from_url(settings.redis_url)
        else:
            store = InMemoryCounterStore()
        _rate_limiter = RateLimiter(store)
        logger.info(f"Rate limiter initialized ({settings.rate_limit_backend} backend)")
    return _rate_limiter


async def close_rate_limiter() -> None:
    global _rate_limiter
    if _rate_limiter is not None:
        await _rate_limiter.store.close()
        _rate_limiter = None


async def enforce_call_rate_limit(
    organization_id: str = Depends(get_organization_id),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings)
) -> RateLimitResult:
    """
    Count one call initiation against the organization's window.

    Raises:
        HTTPException: 429 with Retry-After when the window is exhausted
    """
    result = await limiter.check(
        f"calls:{organization_id}",
        limit=settings.call_rate_limit,
        window_ms=settings.call_rate_window_ms,
    )
    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many call requests. Please try again later.",
            headers={"Retry-After": str(result.retry_after_seconds())},
        )
    return result
