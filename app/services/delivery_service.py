from fastapi import HTTPException, status
from typing import Optional
from uuid import UUID
from decimal import Decimal
from supabase import AsyncClient

from app.schemas.delivery_schemas import (
    AssignRiderRequest,
    AssignRiderResponse,
    AssignmentInfo,
    AssignedRider,
    BUSINESS_TYPE_CATEGORY,
    CreateOrderRequest,
    CreateOrderResponse,
    CreatedOrder,
    DeliveryCategory,
    DeliveryKind,
    DeliveryStatus,
    TERMINAL_STATUSES,
)
from app.schemas.notification_schemas import DeliveryEventType, NotifyRiderRequest
from app.config.logging import logger
from app.services.distance_service import resolve_distance
from app.services.notification_service import (
    create_in_app_notification,
    notify_rider as send_rider_notification,
    send_customer_push,
)
from app.services.pricing_service import (
    calculate_payment_breakdown,
    get_category_pricing,
    get_payment_settings,
)
from app.utils.errors import (
    AlreadyAssigned,
    DeliveryNotFound,
    DeliveryTerminal,
    NotFound,
    InvalidInput,
    RiderBlocked,
    RiderInactive,
    RiderNotFound,
    ServiceError,
)

# The bind is retried when the row changes between read and conditional write
MAX_BIND_ATTEMPTS = 3
DEFAULT_ETA = "25-35 min"


def delivery_category(delivery: dict, kind: DeliveryKind, business: Optional[dict] = None) -> str:
    """Pricing category of a delivery record."""
    if kind == DeliveryKind.ORDER:
        business_type = (business or {}).get("type")
        return BUSINESS_TYPE_CATEGORY.get(business_type, DeliveryCategory.FOOD).value
    return delivery.get("category") or DeliveryCategory.PARCEL.value


async def _get_rider(rider_id: UUID, supabase: AsyncClient) -> dict:
    resp = (
        await supabase.table("riders")
        .select("id, user_id, name, is_online, is_active, is_blocked")
        .eq("id", str(rider_id))
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        raise RiderNotFound("Rider not found")

    rider = resp.data
    if rider.get("is_blocked"):
        raise RiderBlocked("Rider is blocked and cannot accept orders")
    if not rider.get("is_active"):
        raise RiderInactive("Rider account is not active")
    return rider


async def _bind_rider(data: AssignRiderRequest, supabase: AsyncClient) -> dict:
    """
    Set rider_id on the delivery row with a compare-and-set update.

    The update only matches while the row still has the status we read and no
    rider, so two concurrent assignments cannot both succeed. Returns the
    resulting row; re-assigning the same rider returns the row untouched.
    """
    label = "Order" if data.kind == DeliveryKind.ORDER else "Rider request"
    rider_id = str(data.rider_id)

    for attempt in range(1, MAX_BIND_ATTEMPTS + 1):
        resp = (
            await supabase.table(data.table)
            .select("*")
            .eq("id", data.id)
            .maybe_single()
            .execute()
        )
        if not resp or not resp.data:
            raise DeliveryNotFound(f"{label} not found")

        delivery = resp.data
        current_rider = delivery.get("rider_id")
        current_status = delivery.get("status")

        if current_rider and current_rider != rider_id:
            raise AlreadyAssigned(f"{label} is already assigned to another rider")
        if current_status in TERMINAL_STATUSES:
            raise DeliveryTerminal(
                f"Cannot assign rider to {current_status} {label.lower()}"
            )
        if current_rider == rider_id:
            logger.info("rider_already_bound", delivery_id=data.id, rider_id=rider_id)
            return delivery

        new_status = (
            DeliveryStatus.PREPARING.value
            if current_status == DeliveryStatus.PLACED.value
            else current_status
        )
        update_resp = await (
            supabase.table(data.table)
            .update({"rider_id": rider_id, "status": new_status})
            .eq("id", data.id)
            .eq("status", current_status)
            .is_("rider_id", "null")
            .execute()
        )
        if update_resp.data:
            return update_resp.data[0]

        logger.warning(
            "rider_bind_conflict",
            delivery_id=data.id,
            rider_id=rider_id,
            attempt=attempt,
        )

    raise HTTPException(
        status.HTTP_409_CONFLICT, f"{label} changed during assignment, please retry"
    )


# ───────────────────────────────────────────────
# Assign Rider
# ───────────────────────────────────────────────
async def assign_rider(
    data: AssignRiderRequest, supabase: AsyncClient
) -> AssignRiderResponse:
    logger.info(
        "assign_rider_requested",
        delivery_type=data.kind.value,
        delivery_id=data.id,
        rider_id=str(data.rider_id),
    )
    try:
        rider = await _get_rider(data.rider_id, supabase)
        delivery = await _bind_rider(data, supabase)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "assign_rider_error",
            delivery_id=data.id,
            rider_id=str(data.rider_id),
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to assign rider"
        )

    order_id = data.order_id
    rider_request_id = data.rider_request_id

    # Notifications never undo the assignment
    notification = None
    if data.notify_rider:
        try:
            result = await send_rider_notification(
                NotifyRiderRequest(
                    rider_id=data.rider_id,
                    order_id=order_id,
                    rider_request_id=rider_request_id,
                    pickup_address=delivery.get("pickup_address"),
                    dropoff_address=delivery.get("delivery_address")
                    or delivery.get("dropoff_address"),
                    order_total=delivery.get("total"),
                ),
                supabase,
            )
            notification = result.model_dump(mode="json")
        except Exception as e:
            logger.error(
                "rider_notification_failed",
                rider_id=str(data.rider_id),
                error=str(e),
                exc_info=True,
            )
            notification = {"error": "Failed to send push notification"}

    customer_id = delivery.get("customer_id")
    if customer_id:
        try:
            await send_customer_push(
                customer_id,
                DeliveryEventType.RIDER_ASSIGNED,
                supabase,
                order_id=order_id,
                rider_request_id=rider_request_id,
                rider_name=rider.get("name"),
            )
        except Exception as e:
            logger.error(
                "customer_notification_failed",
                customer_id=customer_id,
                error=str(e),
                exc_info=True,
            )

    logger.info(
        "rider_assigned",
        delivery_type=data.kind.value,
        delivery_id=data.id,
        rider_id=str(data.rider_id),
        status=delivery.get("status"),
    )
    return AssignRiderResponse(
        assignment=AssignmentInfo(
            type=data.kind, id=data.id, status=delivery["status"]
        ),
        rider=AssignedRider(
            id=rider["id"],
            name=rider.get("name"),
            is_online=bool(rider.get("is_online")),
        ),
        notification=notification,
        message=f"Successfully assigned {rider.get('name')} to the {data.kind.value}",
    )


async def find_available_rider(supabase: AsyncClient) -> Optional[str]:
    resp = (
        await supabase.table("riders")
        .select("id")
        .eq("is_online", True)
        .eq("is_active", True)
        .eq("is_blocked", False)
        .limit(1)
        .execute()
    )
    return resp.data[0]["id"] if resp.data else None


# ───────────────────────────────────────────────
# Create Order
# ───────────────────────────────────────────────
async def _quote_delivery_fee(
    data: CreateOrderRequest, business: dict, supabase: AsyncClient
) -> Decimal:
    coords = (data.pickup_lat, data.pickup_lng, data.delivery_lat, data.delivery_lng)
    if any(value is None for value in coords):
        return Decimal("0")

    distance = await resolve_distance(*coords)
    settings = await get_payment_settings(supabase)
    category = delivery_category({}, DeliveryKind.ORDER, business)
    category_pricing = await get_category_pricing(category, supabase)
    fare = calculate_payment_breakdown(distance.distance_km, settings, category_pricing)
    logger.info(
        "delivery_fee_quoted",
        business_id=str(data.business_id),
        distance_km=distance.distance_km,
        method=distance.method.value,
        delivery_fee=float(fare.customer_charge),
    )
    return fare.customer_charge


async def create_order(
    data: CreateOrderRequest,
    caller_id: Optional[str],
    supabase: AsyncClient,
) -> CreateOrderResponse:
    customer_id = str(data.customer_id) if data.customer_id else caller_id
    if not customer_id and not data.customer_phone:
        raise InvalidInput("Either customer_id or customer_phone is required")

    logger.info(
        "create_order_requested",
        business_id=str(data.business_id),
        customer_id=customer_id,
        items=len(data.items),
    )

    try:
        biz_resp = (
            await supabase.table("businesses")
            .select("id, name, type, owner_user_id")
            .eq("id", str(data.business_id))
            .maybe_single()
            .execute()
        )
        if not biz_resp or not biz_resp.data:
            raise NotFound("Business not found")
        business = biz_resp.data

        subtotal = (
            data.subtotal
            if data.subtotal is not None
            else sum((item.price * item.quantity for item in data.items), Decimal("0"))
        )
        delivery_fee = (
            data.delivery_fee
            if data.delivery_fee is not None
            else await _quote_delivery_fee(data, business, supabase)
        )
        total = data.total if data.total is not None else subtotal + delivery_fee

        items = [
            {**item.model_dump(mode="json"), "price": float(item.price)}
            for item in data.items
        ]
        order_resp = await (
            supabase.table("orders")
            .insert(
                {
                    "customer_id": customer_id,
                    "customer_phone": data.customer_phone,
                    "business_id": str(data.business_id),
                    "items": items,
                    "subtotal": float(subtotal),
                    "delivery_fee": float(delivery_fee),
                    "total": float(total),
                    "delivery_address": data.delivery_address,
                    "delivery_lat": data.delivery_lat,
                    "delivery_lng": data.delivery_lng,
                    "pickup_address": data.pickup_address or business.get("name"),
                    "pickup_lat": data.pickup_lat,
                    "pickup_lng": data.pickup_lng,
                    "notes": data.notes,
                    "status": DeliveryStatus.PLACED.value,
                    "eta": DEFAULT_ETA,
                }
            )
            .execute()
        )
        order = order_resp.data[0]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(
            "create_order_error",
            business_id=str(data.business_id),
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to create order: {str(e)}"
        )

    logger.info("order_created", order_id=order["id"], total=order["total"])

    try:
        if customer_id:
            await create_in_app_notification(
                customer_id,
                "🛒 Order Placed!",
                f"Your order from {business.get('name')} has been placed successfully",
                supabase,
                notification_type="order",
                order_id=order["id"],
            )
        if business.get("owner_user_id"):
            await create_in_app_notification(
                business["owner_user_id"],
                "🍽️ New Order!",
                f"You have a new order worth Rs {order['total']:g}",
                supabase,
                notification_type="order",
                order_id=order["id"],
            )
    except Exception as e:
        logger.error("order_notification_failed", order_id=order["id"], error=str(e))

    assigned_rider = None
    assignment_error = None
    if data.auto_assign_rider or data.preferred_rider_id:
        rider_id = str(data.preferred_rider_id) if data.preferred_rider_id else None
        try:
            if rider_id is None:
                rider_id = await find_available_rider(supabase)
            if rider_id:
                assignment = await assign_rider(
                    AssignRiderRequest(order_id=order["id"], rider_id=rider_id),
                    supabase,
                )
                assigned_rider = assignment.rider
                order["status"] = assignment.assignment.status.value
            else:
                assignment_error = "No rider is available right now"
        except ServiceError as e:
            logger.warning(
                "auto_assign_failed",
                order_id=order["id"],
                rider_id=rider_id,
                reason=e.code,
            )
            assignment_error = e.message
        except HTTPException as e:
            # The order row already exists, so the response still succeeds
            logger.warning(
                "auto_assign_failed",
                order_id=order["id"],
                rider_id=rider_id,
                reason=e.status_code,
            )
            assignment_error = e.detail
        except Exception as e:
            logger.error(
                "auto_assign_error",
                order_id=order["id"],
                rider_id=rider_id,
                error=str(e),
                exc_info=True,
            )
            assignment_error = "Failed to assign rider"

    if assigned_rider:
        message = f"Order created and assigned to rider {assigned_rider.name}"
    elif assignment_error:
        message = f"Order created successfully. Rider not assigned: {assignment_error}"
    else:
        message = "Order created successfully. Awaiting rider assignment."

    return CreateOrderResponse(
        order=CreatedOrder(
            id=order["id"],
            status=order["status"],
            total=Decimal(str(order["total"])),
            eta=order.get("eta"),
            created_at=order.get("created_at"),
        ),
        assigned_rider=assigned_rider,
        message=message,
    )
