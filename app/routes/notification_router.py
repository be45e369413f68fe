from fastapi import APIRouter, Depends
from supabase import AsyncClient

from app.schemas.notification_schemas import (
    DeliveryPushRequest,
    DeliveryPushResponse,
    DeviceTokenRegister,
    DeviceTokenResponse,
    NotifyRiderRequest,
    NotifyRiderResponse,
)
from app.services.notification_service import (
    get_my_device_tokens,
    notify_delivery_event,
    notify_rider,
    register_device_token,
)
from app.dependencies.auth import get_current_user, require_admin
from app.database.supabase import get_supabase_admin_client
from app.config.logging import logger

router = APIRouter(tags=["notifications"])


@router.post("/send-delivery-push")
async def send_delivery_push(
    data: DeliveryPushRequest,
    current_user=Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> DeliveryPushResponse:
    """
    Notify a customer about a delivery event.

    Only the customer, the assigned rider or the business owner may send it.
    An in-app notification is always stored; the push itself is skipped when
    the provider is not configured or the customer has no devices.
    """
    return await notify_delivery_event(data, current_user.id, supabase)


@router.post("/notify-rider")
async def notify_rider_endpoint(
    data: NotifyRiderRequest,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> NotifyRiderResponse:
    """Send a high priority job notification to a rider's devices."""
    logger.info(
        "notify_rider_endpoint",
        admin_id=current_user.id,
        rider_id=str(data.rider_id),
        notification_type=data.notification_type.value,
    )
    return await notify_rider(data, supabase)


@router.post("/api/v1/notifications/register-token")
async def register_push_token(
    data: DeviceTokenRegister,
    current_user=Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> DeviceTokenResponse:
    """
    Register or refresh a device push token.
    Called on app start or token refresh.
    """
    return await register_device_token(data, current_user.id, supabase)


@router.get("/api/v1/notifications/register-token")
async def get_push_tokens(
    current_user=Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> list[DeviceTokenResponse]:
    """Devices registered for the current user."""
    return await get_my_device_tokens(current_user.id, supabase)
