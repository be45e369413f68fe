from uuid import UUID
from typing import Optional
from datetime import datetime, timezone

import httpx
from supabase import AsyncClient
from postgrest.exceptions import APIError

from app.config.config import settings
from app.config.logging import logger
from app.schemas.notification_schemas import (
    DeliveryEventType,
    DeliveryPushRequest,
    DeliveryPushResponse,
    DeviceTokenRegister,
    DeviceTokenResponse,
    NotifyRiderRequest,
    NotifyRiderResponse,
    RiderNotificationType,
)
from app.utils.errors import (
    CustomerMismatch,
    DeliveryNotFound,
    RiderNotFound,
    Unauthorized,
)


DELIVERY_EVENT_TEMPLATES = {
    DeliveryEventType.RIDER_ASSIGNED: (
        "🏍️ Rider Assigned!",
        lambda rider_name: f"{rider_name or 'A rider'} has been assigned to your order.",
    ),
    DeliveryEventType.ON_WAY: (
        "🚀 Order On The Way!",
        lambda _: "Your rider has picked up the order and is heading to you.",
    ),
    DeliveryEventType.NEARBY: (
        "🏍️ Rider is nearby!",
        lambda _: "Your rider is less than 500m away. Get ready!",
    ),
    DeliveryEventType.DELIVERED: (
        "✅ Order Delivered!",
        lambda _: "Your order has been delivered. Enjoy!",
    ),
}


def _rider_message(data: NotifyRiderRequest) -> tuple[str, str]:
    if data.notification_type == RiderNotificationType.ORDER_UPDATE:
        return "📦 Order Update", "There has been an update to your assigned order"

    if data.notification_type == RiderNotificationType.URGENT:
        at = f" at {data.pickup_address}" if data.pickup_address else ""
        return "🔴 URGENT: New Order!", f"Immediate pickup required{at}!"

    body = "You have received a new delivery order"
    if data.pickup_address:
        body += f" from {data.pickup_address}"
    if data.order_total:
        body += f" - Rs {data.order_total:g}"
    return "🚀 New Delivery Request!", body


def push_configured() -> bool:
    return bool(settings.ONESIGNAL_APP_ID and settings.ONESIGNAL_REST_API_KEY)


# ───────────────────────────────────────────────
# Sending Notifications
# ───────────────────────────────────────────────
async def send_push_notification(
    player_ids: list[str],
    title: str,
    body: str,
    data: dict = None,
    options: dict = None,
) -> dict:
    """
    Sends one push covering all device tokens through OneSignal.

    Returns ``{"pushed": bool, "recipients": int, "reason": str | None}``.
    Provider failures are logged and reported, never raised.
    """
    if not push_configured():
        logger.info("push_notification_not_configured")
        return {"pushed": False, "recipients": 0, "reason": "not configured"}

    payload = {
        "app_id": settings.ONESIGNAL_APP_ID,
        "include_player_ids": player_ids,
        "headings": {"en": title},
        "contents": {"en": body},
        "data": data or {},
        **(options or {}),
    }
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Basic {settings.ONESIGNAL_REST_API_KEY}",
    }

    try:
        async with httpx.AsyncClient(timeout=settings.PUSH_TIMEOUT_SECONDS) as client:
            response = await client.post(
                settings.ONESIGNAL_API_URL, json=payload, headers=headers
            )
        result = response.json()
    except httpx.HTTPError as exc:
        logger.error("push_notification_connection_error", exc=str(exc))
        return {"pushed": False, "recipients": 0, "reason": "provider unavailable"}
    except ValueError as exc:
        logger.error("push_notification_malformed_response", exc=str(exc))
        return {"pushed": False, "recipients": 0, "reason": "provider error"}

    if not isinstance(result, dict) or not result.get("id"):
        logger.error(
            "push_notification_rejected",
            status_code=response.status_code,
            errors=result.get("errors") if isinstance(result, dict) else result,
        )
        return {"pushed": False, "recipients": 0, "reason": "provider error"}

    recipients = int(result.get("recipients") or 0)
    logger.info("push_notification_sent", title=title, recipients=recipients)
    return {"pushed": True, "recipients": recipients, "reason": None}


async def get_device_tokens(user_id: UUID, supabase: AsyncClient) -> list[str]:
    resp = (
        await supabase.table("push_device_tokens")
        .select("device_token")
        .eq("user_id", str(user_id))
        .execute()
    )
    return [row["device_token"] for row in resp.data or [] if row.get("device_token")]


async def create_in_app_notification(
    user_id: UUID,
    title: str,
    message: str,
    supabase: AsyncClient,
    notification_type: str = "delivery",
    order_id: Optional[UUID] = None,
    rider_request_id: Optional[UUID] = None,
) -> None:
    await (
        supabase.table("notifications")
        .insert(
            {
                "user_id": str(user_id),
                "title": title,
                "message": message,
                "type": notification_type,
                "order_id": str(order_id) if order_id else None,
                "rider_request_id": str(rider_request_id) if rider_request_id else None,
            }
        )
        .execute()
    )


async def send_customer_push(
    customer_id: UUID,
    event_type: DeliveryEventType,
    supabase: AsyncClient,
    order_id: Optional[UUID] = None,
    rider_request_id: Optional[UUID] = None,
    rider_name: Optional[str] = None,
    sent_by: Optional[str] = None,
) -> DeliveryPushResponse:
    """
    Deliver a lifecycle event to a customer: in-app record plus push.
    Callers are expected to have authorized the sender already.
    """
    title, render = DELIVERY_EVENT_TEMPLATES[event_type]
    message = render(rider_name)

    await create_in_app_notification(
        customer_id,
        title,
        message,
        supabase,
        order_id=order_id,
        rider_request_id=rider_request_id,
    )

    if not push_configured():
        logger.info("delivery_push_skipped", reason="not configured")
        return DeliveryPushResponse(pushed=False, reason="not configured")

    player_ids = await get_device_tokens(customer_id, supabase)
    if not player_ids:
        logger.info("delivery_push_skipped", customer_id=str(customer_id), reason="no device tokens")
        return DeliveryPushResponse(pushed=False, reason="no device tokens")

    target_id = order_id or rider_request_id
    action_route = f"/orders?highlight={target_id}"
    result = await send_push_notification(
        player_ids,
        title,
        message,
        data={
            "route": action_route,
            "eventType": event_type.value,
            "orderId": str(order_id) if order_id else None,
            "riderRequestId": str(rider_request_id) if rider_request_id else None,
        },
    )

    try:
        await (
            supabase.table("push_notifications")
            .insert(
                {
                    "title": title,
                    "message": message,
                    "target_user_id": str(customer_id),
                    "action_route": action_route,
                    "sent_by": sent_by,
                    "success_count": result["recipients"] if result["pushed"] else 0,
                    "failure_count": 0 if result["pushed"] else len(player_ids),
                }
            )
            .execute()
        )
    except APIError as e:
        # The push already went out
        logger.error(
            "push_log_write_failed",
            customer_id=str(customer_id),
            error=e.message,
        )

    logger.info(
        "delivery_push_processed",
        customer_id=str(customer_id),
        event_type=event_type.value,
        pushed=result["pushed"],
        recipients=result["recipients"],
    )
    return DeliveryPushResponse(
        pushed=result["pushed"],
        recipients=result["recipients"],
        reason=result["reason"],
    )


# ───────────────────────────────────────────────
# Customer delivery events
# ───────────────────────────────────────────────
async def _is_assigned_rider(
    caller_id: str, rider_id: Optional[str], supabase: AsyncClient
) -> bool:
    if not rider_id:
        return False
    resp = (
        await supabase.table("riders")
        .select("id")
        .eq("id", rider_id)
        .eq("user_id", caller_id)
        .maybe_single()
        .execute()
    )
    return bool(resp and resp.data)


async def _is_business_owner(
    caller_id: str, business_id: Optional[str], supabase: AsyncClient
) -> bool:
    if not business_id:
        return False
    resp = (
        await supabase.table("businesses")
        .select("owner_user_id")
        .eq("id", business_id)
        .maybe_single()
        .execute()
    )
    return bool(resp and resp.data and resp.data.get("owner_user_id") == caller_id)


async def authorize_delivery_push(
    data: DeliveryPushRequest, caller_id: str, supabase: AsyncClient
) -> None:
    """
    The caller must be the delivery's assigned rider, its business owner
    (orders only) or the customer. The stored customer must match the target.
    """
    if data.order_id:
        resp = (
            await supabase.table("orders")
            .select("customer_id, rider_id, business_id")
            .eq("id", str(data.order_id))
            .maybe_single()
            .execute()
        )
        if not resp or not resp.data:
            raise DeliveryNotFound("Order not found")
    else:
        resp = (
            await supabase.table("rider_requests")
            .select("customer_id, rider_id")
            .eq("id", str(data.rider_request_id))
            .maybe_single()
            .execute()
        )
        if not resp or not resp.data:
            raise DeliveryNotFound("Request not found")

    delivery = resp.data
    if delivery.get("customer_id") != str(data.customer_id):
        raise CustomerMismatch("Customer ID mismatch")

    caller_id = str(caller_id)
    if delivery.get("customer_id") == caller_id:
        return
    if await _is_assigned_rider(caller_id, delivery.get("rider_id"), supabase):
        return
    if data.order_id and await _is_business_owner(
        caller_id, delivery.get("business_id"), supabase
    ):
        return

    logger.warning(
        "delivery_push_unauthorized",
        caller_id=caller_id,
        order_id=str(data.order_id) if data.order_id else None,
        rider_request_id=str(data.rider_request_id) if data.rider_request_id else None,
    )
    raise Unauthorized("Not authorized to send notifications for this order")


async def notify_delivery_event(
    data: DeliveryPushRequest, caller_id: str, supabase: AsyncClient
) -> DeliveryPushResponse:
    logger.info(
        "delivery_push_requested",
        customer_id=str(data.customer_id),
        event_type=data.event_type.value,
        caller_id=str(caller_id),
    )
    await authorize_delivery_push(data, caller_id, supabase)

    return await send_customer_push(
        data.customer_id,
        data.event_type,
        supabase,
        order_id=data.order_id,
        rider_request_id=data.rider_request_id,
        rider_name=data.rider_name,
        sent_by=str(caller_id),
    )


# ───────────────────────────────────────────────
# Rider notifications
# ───────────────────────────────────────────────
async def notify_rider(
    data: NotifyRiderRequest, supabase: AsyncClient
) -> NotifyRiderResponse:
    """Push a job notification to every device of a rider."""
    resp = (
        await supabase.table("riders")
        .select("id, user_id, name")
        .eq("id", str(data.rider_id))
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        raise RiderNotFound(f"Rider not found: {data.rider_id}")

    rider = resp.data
    if not rider.get("user_id"):
        logger.warning("rider_without_user", rider_id=str(data.rider_id))
        return NotifyRiderResponse(
            success=False, error="Rider has no linked user account"
        )

    if not push_configured():
        return NotifyRiderResponse(
            success=False, error="Push notifications not configured"
        )

    player_ids = await get_device_tokens(rider["user_id"], supabase)
    if not player_ids:
        logger.warning("rider_has_no_devices", rider_id=str(data.rider_id))
        return NotifyRiderResponse(
            success=False,
            error="No registered devices for this rider",
            details={"user_id": rider["user_id"]},
        )

    title, body = _rider_message(data)
    route = (
        f"/orders/{data.order_id}"
        if data.order_id
        else f"/rider-requests/{data.rider_request_id}"
    )
    result = await send_push_notification(
        player_ids,
        data.custom_title or title,
        data.custom_body or body,
        data={
            "type": data.notification_type.value,
            "order_id": str(data.order_id) if data.order_id else None,
            "rider_request_id": str(data.rider_request_id) if data.rider_request_id else None,
            "rider_id": str(data.rider_id),
            "route": route,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        # Wake the device and ring even when locked
        options={
            "priority": 10,
            "android_visibility": 1,
            "android_sound": "default",
            "ios_sound": "default",
            "ios_interruption_level": "time_sensitive",
            "ttl": 3600,
        },
    )

    return NotifyRiderResponse(
        success=result["pushed"],
        pushed=result["pushed"],
        recipients=result["recipients"],
        error=result["reason"],
    )


# ───────────────────────────────────────────────
# Token Management
# ───────────────────────────────────────────────
async def register_device_token(
    data: DeviceTokenRegister, user_id: UUID, supabase: AsyncClient
) -> DeviceTokenResponse:
    # One row per (user, device); refreshing a token only bumps updated_at
    await (
        supabase.table("push_device_tokens")
        .upsert(
            {
                "user_id": str(user_id),
                "device_token": data.token,
                "platform": data.platform,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="user_id,device_token",
        )
        .execute()
    )
    logger.info("device_token_registered", user_id=str(user_id), platform=data.platform)
    return DeviceTokenResponse(token=data.token, platform=data.platform)


async def get_my_device_tokens(
    user_id: UUID, supabase: AsyncClient
) -> list[DeviceTokenResponse]:
    resp = (
        await supabase.table("push_device_tokens")
        .select("device_token, platform")
        .eq("user_id", str(user_id))
        .execute()
    )
    return [
        DeviceTokenResponse(token=row["device_token"], platform=row.get("platform"))
        for row in resp.data or []
    ]
