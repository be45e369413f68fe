from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from typing import Optional
from uuid import UUID
from app.database.supabase import get_supabase_admin_client, get_supabase_client
from app.schemas.user_schemas import AppRole
from supabase import AsyncClient
from app.config.logging import logger

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/token", auto_error=False
)


async def _resolve_user(token: str, supabase_client: AsyncClient):
    try:
        response = await supabase_client.auth.get_user(token)
    except Exception as e:
        logger.error("authentication_error", error=str(e), exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    if not response or not response.user:
        logger.warning("authentication_failed", reason="invalid_or_expired_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    logger.debug("user_authenticated", user_id=response.user.id)
    return response.user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    supabase_client: AsyncClient = Depends(get_supabase_client),
):
    return await _resolve_user(token, supabase_client)


async def get_optional_user(
    token: Optional[str] = Depends(optional_oauth2_scheme),
    supabase_client: AsyncClient = Depends(get_supabase_client),
):
    """Like get_current_user, but anonymous callers get None."""
    if not token:
        return None
    return await _resolve_user(token, supabase_client)


async def has_role(user_id: str, role: AppRole, supabase: AsyncClient) -> bool:
    resp = await supabase.rpc(
        "has_role", {"_user_id": str(user_id), "_role": role.value}
    ).execute()
    return bool(resp.data)


async def is_admin_user(user_id: str, supabase: AsyncClient) -> bool:
    return await has_role(user_id, AppRole.ADMIN, supabase)


async def require_admin(
    current_user=Depends(get_current_user),
    supabase_client: AsyncClient = Depends(get_supabase_admin_client),
):
    if not await is_admin_user(current_user.id, supabase_client):
        logger.warning("access_denied", user_id=current_user.id, required_role="admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access restricted to admin",
        )
    return current_user


async def get_rider_for_user(user_id: str, supabase: AsyncClient) -> Optional[dict]:
    resp = (
        await supabase.table("riders")
        .select("id, user_id, name, is_active, is_blocked")
        .eq("user_id", str(user_id))
        .maybe_single()
        .execute()
    )
    return resp.data if resp else None


async def get_current_rider(
    current_user=Depends(get_current_user),
    supabase_client: AsyncClient = Depends(get_supabase_admin_client),
) -> dict:
    rider = await get_rider_for_user(current_user.id, supabase_client)
    if not rider:
        logger.warning("rider_profile_not_found", user_id=current_user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access restricted to riders",
        )
    return rider


async def require_rider_access(
    rider_id: UUID,
    current_user=Depends(get_current_user),
    supabase_client: AsyncClient = Depends(get_supabase_admin_client),
) -> UUID:
    """Riders may read their own ledger, admins may read any."""
    rider = await get_rider_for_user(current_user.id, supabase_client)
    if rider and rider["id"] == str(rider_id):
        return rider_id
    if await is_admin_user(current_user.id, supabase_client):
        return rider_id

    logger.warning(
        "access_denied", user_id=current_user.id, rider_id=str(rider_id)
    )
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not allowed to view this rider's wallet",
    )
