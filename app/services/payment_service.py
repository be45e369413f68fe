from fastapi import Request
from postgrest.exceptions import APIError
from supabase import AsyncClient
from app.config.logging import logger
from app.utils.audit import log_audit_event
from app.utils.errors import (
    DeliveryNotFound,
    InvalidInput,
    InvalidTransition,
    NotFound,
    PreconditionFailed,
)
from app.schemas.delivery_schemas import DeliveryKind, DeliveryRef, DeliveryStatus
from app.schemas.payment_schemas import (
    EarningsSummary,
    PaymentAdjustmentUpdate,
    PaymentStatus,
    RiderPayment,
)
from app.services.delivery_service import delivery_category
from app.services.distance_service import resolve_distance
from app.services.pricing_service import (
    calculate_payment_breakdown,
    get_category_pricing,
    get_payment_settings,
)
from typing import Optional
from uuid import UUID
from decimal import Decimal
from datetime import datetime, timezone

UNIQUE_VIOLATION = "23505"

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.PAID},
    PaymentStatus.COMPLETED: {PaymentStatus.PAID},
}


def _money(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


async def _existing_payment(ref: DeliveryRef, supabase: AsyncClient) -> Optional[dict]:
    column = "order_id" if ref.kind == DeliveryKind.ORDER else "rider_request_id"
    resp = (
        await supabase.table("rider_payments")
        .select("id")
        .eq(column, ref.id)
        .maybe_single()
        .execute()
    )
    return resp.data if resp else None


async def _load_delivery(ref: DeliveryRef, supabase: AsyncClient) -> dict:
    resp = (
        await supabase.table(ref.table)
        .select("*")
        .eq("id", ref.id)
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        label = "Order" if ref.kind == DeliveryKind.ORDER else "Rider request"
        raise DeliveryNotFound(f"{label} not found")
    return resp.data


async def _pricing_category(
    ref: DeliveryRef, delivery: dict, supabase: AsyncClient
) -> str:
    business = None
    if ref.kind == DeliveryKind.ORDER and delivery.get("business_id"):
        resp = (
            await supabase.table("businesses")
            .select("id, type")
            .eq("id", delivery["business_id"])
            .maybe_single()
            .execute()
        )
        business = resp.data if resp else None
    return delivery_category(delivery, ref.kind, business)


def _trip_endpoints(ref: DeliveryRef, delivery: dict, rider: dict):
    """Origin and destination of the paid trip.

    The rider's live location is the origin when known, otherwise the pickup.
    """
    prefix = "delivery" if ref.kind == DeliveryKind.ORDER else "dropoff"
    dest = (delivery.get(f"{prefix}_lat"), delivery.get(f"{prefix}_lng"))
    if None in dest:
        raise InvalidInput("Delivery location is missing")

    origin = (rider.get("current_location_lat"), rider.get("current_location_lng"))
    if None in origin:
        origin = (delivery.get("pickup_lat"), delivery.get("pickup_lng"))
    if None in origin:
        raise InvalidInput("Pickup location is missing")
    return origin, dest


async def create_payment_for_delivery(
    ref: DeliveryRef, supabase: AsyncClient
) -> Optional[RiderPayment]:
    """
    Record the rider earning for a delivery.

    Returns None when the delivery already has a payment, including when a
    concurrent call inserted it first.
    """
    if await _existing_payment(ref, supabase):
        logger.info("rider_payment_exists", delivery_type=ref.kind.value, delivery_id=ref.id)
        return None

    delivery = await _load_delivery(ref, supabase)
    if not delivery.get("rider_id"):
        raise PreconditionFailed("No rider assigned to this delivery")
    if delivery.get("status") == DeliveryStatus.CANCELLED.value:
        raise PreconditionFailed("Cannot create a payment for a cancelled delivery")

    rider_resp = (
        await supabase.table("riders")
        .select("id, current_location_lat, current_location_lng")
        .eq("id", delivery["rider_id"])
        .maybe_single()
        .execute()
    )
    rider = rider_resp.data if rider_resp and rider_resp.data else {}

    (origin_lat, origin_lng), (dest_lat, dest_lng) = _trip_endpoints(ref, delivery, rider)
    distance = await resolve_distance(origin_lat, origin_lng, dest_lat, dest_lng)

    settings = await get_payment_settings(supabase)
    category_pricing = await get_category_pricing(
        await _pricing_category(ref, delivery, supabase), supabase
    )
    fare = calculate_payment_breakdown(distance.distance_km, settings, category_pricing)
    rider_pricing = category_pricing.pricing() if category_pricing else settings.rider_pricing()

    payment = {
        "rider_id": delivery["rider_id"],
        "order_id": ref.id if ref.kind == DeliveryKind.ORDER else None,
        "rider_request_id": ref.id if ref.kind == DeliveryKind.RIDER_REQUEST else None,
        "distance_km": distance.distance_km,
        "base_fee": float(rider_pricing.base_fee),
        "per_km_rate": float(rider_pricing.per_km_rate),
        "calculated_amount": float(fare.rider_earning),
        "bonus": 0,
        "penalty": 0,
        "final_amount": float(fare.rider_earning),
        "status": PaymentStatus.PENDING.value,
        "rider_lat": origin_lat,
        "rider_lng": origin_lng,
        "customer_lat": dest_lat,
        "customer_lng": dest_lng,
    }

    try:
        resp = await supabase.table("rider_payments").insert(payment).execute()
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            logger.info(
                "rider_payment_insert_race", delivery_type=ref.kind.value, delivery_id=ref.id
            )
            return None
        raise

    logger.info(
        "rider_payment_created",
        delivery_type=ref.kind.value,
        delivery_id=ref.id,
        rider_id=delivery["rider_id"],
        distance_km=distance.distance_km,
        method=distance.method.value,
        amount=float(fare.rider_earning),
    )
    return RiderPayment(**resp.data[0])


async def _get_payment(payment_id: UUID, supabase: AsyncClient) -> dict:
    resp = (
        await supabase.table("rider_payments")
        .select("*")
        .eq("id", str(payment_id))
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        raise NotFound("Rider payment not found")
    return resp.data


async def update_payment_adjustment(
    payment_id: UUID,
    data: PaymentAdjustmentUpdate,
    admin_id: str,
    supabase: AsyncClient,
    request: Optional[Request] = None,
) -> RiderPayment:
    payment = await _get_payment(payment_id, supabase)
    final_amount = max(
        Decimal("0"), _money(payment["calculated_amount"]) + data.bonus - data.penalty
    )

    resp = await (
        supabase.table("rider_payments")
        .update(
            {
                "bonus": float(data.bonus),
                "penalty": float(data.penalty),
                "final_amount": float(final_amount),
            }
        )
        .eq("id", str(payment_id))
        .execute()
    )

    await log_audit_event(
        supabase,
        entity_type="RIDER_PAYMENT",
        entity_id=str(payment_id),
        action="PAYMENT_ADJUSTED",
        old_value={
            "bonus": float(_money(payment.get("bonus"))),
            "penalty": float(_money(payment.get("penalty"))),
            "final_amount": float(_money(payment.get("final_amount"))),
        },
        new_value={
            "bonus": float(data.bonus),
            "penalty": float(data.penalty),
            "final_amount": float(final_amount),
        },
        change_amount=final_amount - _money(payment.get("final_amount")),
        actor_id=str(admin_id),
        actor_type="ADMIN",
        request=request,
    )
    logger.info(
        "rider_payment_adjusted",
        payment_id=str(payment_id),
        bonus=float(data.bonus),
        penalty=float(data.penalty),
        final_amount=float(final_amount),
    )
    return RiderPayment(**resp.data[0])


async def update_payment_status(
    payment_id: UUID,
    new_status: PaymentStatus,
    admin_id: str,
    supabase: AsyncClient,
    request: Optional[Request] = None,
) -> RiderPayment:
    payment = await _get_payment(payment_id, supabase)
    current = PaymentStatus(payment["status"])
    if new_status not in PAYMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(
            f"Cannot move payment from {current.value} to {new_status.value}"
        )

    resp = await (
        supabase.table("rider_payments")
        .update({"status": new_status.value})
        .eq("id", str(payment_id))
        .eq("status", current.value)
        .execute()
    )
    if not resp.data:
        raise InvalidTransition("Rider payment was updated by someone else")

    await log_audit_event(
        supabase,
        entity_type="RIDER_PAYMENT",
        entity_id=str(payment_id),
        action=f"PAYMENT_{new_status.value.upper()}",
        old_value={"status": current.value},
        new_value={"status": new_status.value},
        change_amount=_money(payment.get("final_amount")),
        actor_id=str(admin_id),
        actor_type="ADMIN",
        request=request,
    )
    logger.info(
        "rider_payment_status_updated",
        payment_id=str(payment_id),
        from_status=current.value,
        to_status=new_status.value,
    )
    return RiderPayment(**resp.data[0])


async def list_rider_payments(
    rider_id: UUID,
    supabase: AsyncClient,
    status_filter: Optional[PaymentStatus] = None,
    limit: int = 50,
) -> list[RiderPayment]:
    query = supabase.table("rider_payments").select("*").eq("rider_id", str(rider_id))
    if status_filter:
        query = query.eq("status", status_filter.value)
    resp = await query.order("created_at", desc=True).limit(limit).execute()
    return [RiderPayment(**row) for row in resp.data or []]


async def get_earnings_summary(rider_id: UUID, supabase: AsyncClient) -> EarningsSummary:
    resp = (
        await supabase.table("rider_payments")
        .select("final_amount, status, distance_km, created_at")
        .eq("rider_id", str(rider_id))
        .execute()
    )
    payments = resp.data or []
    today = datetime.now(timezone.utc).date()

    def total(rows) -> Decimal:
        return sum((_money(p.get("final_amount")) for p in rows), Decimal("0"))

    def created_today(payment: dict) -> bool:
        created_at = payment.get("created_at")
        if not created_at:
            return False
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        return created_at.astimezone(timezone.utc).date() == today

    earned = [
        p
        for p in payments
        if p.get("status") in (PaymentStatus.COMPLETED.value, PaymentStatus.PAID.value)
    ]
    return EarningsSummary(
        total_earnings=total(earned),
        today_earnings=total(p for p in earned if created_today(p)),
        paid_earnings=total(p for p in payments if p.get("status") == PaymentStatus.PAID.value),
        pending_earnings=total(
            p for p in payments if p.get("status") == PaymentStatus.PENDING.value
        ),
        total_distance_km=round(sum(float(p.get("distance_km") or 0) for p in payments), 1),
        total_deliveries=len(payments),
    )
