"""
Tenant Filter Utility
Shared helpers for organization-scoped Supabase queries
"""
from typing import Any, Dict, Optional


def apply_tenant_filter(query: Any, organization_id: Optional[str], column: str = "organization_id") -> Any:
    """
    Apply organization filtering to a Supabase query.

    Args:
        query: Supabase query builder object (from supabase.table(...).select(...))
        organization_id: Organization the caller acts for (None for internal jobs)
        column: Name of the organization column (default: "organization_id")

    Returns:
        Modified query with the filter applied, or the original query if
        organization_id is None

    Usage:
        query = supabase.table("calls").select("*").eq("id", call_id)
        query = apply_tenant_filter(query, organization_id)
        response = query.execute()

    Note:
        Webhook handling and the sync worker look calls up by vendor ID and
        run without an organization; those paths pass None.
    """
    if organization_id:
        return query.eq(column, organization_id)
    return query


def first_row(response: Any) -> Optional[Dict[str, Any]]:
    """First row of a Supabase response, or None when it returned nothing"""
    if response.data:
        return response.data[0]
    return None
