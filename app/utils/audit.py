from supabase import AsyncClient
from postgrest.exceptions import APIError
from typing import Optional
from decimal import Decimal
from fastapi import Request

from app.config.logging import logger


def _client_details(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    if not request:
        return None, None
    ip_address = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    return ip_address, request.headers.get("user-agent")


async def log_audit_event(
    supabase: AsyncClient,
    entity_type: str,
    entity_id: str,
    action: str,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
    change_amount: Optional[Decimal] = None,
    actor_id: Optional[str] = None,
    actor_type: str = "SYSTEM",
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> bool:
    """
    Append a row to ``audit_logs``.

    Runs after the audited change has been written, so a failure here is
    logged and reported through the return value instead of raised.
    """
    ip_address, user_agent = _client_details(request)

    try:
        await (
            supabase.table("audit_logs")
            .insert(
                {
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "action": action,
                    "old_value": old_value,
                    "new_value": new_value,
                    "change_amount": float(change_amount)
                    if change_amount is not None
                    else None,
                    "actor_id": actor_id,
                    "actor_type": actor_type,
                    "notes": notes,
                    "ip_address": ip_address,
                    "user_agent": user_agent,
                }
            )
            .execute()
        )
    except APIError as e:
        logger.error(
            "audit_log_write_failed",
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            error=e.message,
        )
        return False
    return True
