from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Mapping, Optional, Union
from uuid import UUID

from fastapi import HTTPException, status
from pydantic import ValidationError
from supabase import AsyncClient

from app.config.logging import logger
from app.schemas.payment_schemas import (
    CategoryPricing,
    CategoryPricingUpdate,
    FareBreakdown,
    PaymentSettings,
    PaymentSettingsUpdate,
    PricingConfig,
)
from app.utils.errors import InvalidInput, NotFound


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _as_pricing(pricing: Union[PricingConfig, Mapping]) -> PricingConfig:
    if isinstance(pricing, PricingConfig):
        fields = (pricing.base_fee, pricing.per_km_rate, pricing.min_payment)
        if any(value < 0 for value in fields):
            raise InvalidInput("Pricing values must not be negative")
        return pricing
    try:
        return PricingConfig(**pricing)
    except ValidationError as e:
        raise InvalidInput(f"Invalid pricing configuration: {e.errors()[0]['msg']}")


def calculate_fare(
    distance_km: float, pricing: Union[PricingConfig, Mapping]
) -> Decimal:
    """
    Fare for a distance: base + distance x rate, rounded to whole units,
    never below the configured minimum.
    """
    pricing = _as_pricing(pricing)
    try:
        distance = _to_decimal(distance_km)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInput("Distance must be a non-negative number")
    if not distance.is_finite() or distance < 0:
        raise InvalidInput("Distance must be a non-negative number")

    amount = (pricing.base_fee + distance * pricing.per_km_rate).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return max(amount, pricing.min_payment)


def calculate_payment_breakdown(
    distance_km: float,
    settings: PaymentSettings,
    category_pricing: Optional[CategoryPricing] = None,
) -> FareBreakdown:
    """Customer charge, rider earning and platform commission for one trip.

    An active category override replaces both pricings; otherwise the customer
    is charged from ``base_fee`` and the rider earns from ``rider_base_earning``.
    """
    if category_pricing and category_pricing.is_active:
        customer_pricing = rider_pricing = category_pricing.pricing()
    else:
        customer_pricing = settings.customer_pricing()
        rider_pricing = settings.rider_pricing()

    customer_charge = calculate_fare(distance_km, customer_pricing)
    rider_earning = calculate_fare(distance_km, rider_pricing)
    return FareBreakdown(
        customer_charge=customer_charge,
        rider_earning=rider_earning,
        commission=max(Decimal("0"), customer_charge - rider_earning),
    )


# ───────────────────────────────────────────────
# Pricing configuration
# ───────────────────────────────────────────────
async def get_payment_settings(supabase: AsyncClient) -> PaymentSettings:
    resp = (
        await supabase.table("rider_payment_settings")
        .select("*")
        .eq("is_active", True)
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        logger.error("payment_settings_missing")
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Payment settings missing"
        )
    return PaymentSettings(**resp.data)


async def get_category_pricing(
    category: Optional[str], supabase: AsyncClient
) -> Optional[CategoryPricing]:
    """Active pricing override for a delivery category, if any."""
    if not category:
        return None
    resp = (
        await supabase.table("category_pricing")
        .select("*")
        .eq("category", category)
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        return None
    pricing = CategoryPricing(**resp.data)
    return pricing if pricing.is_active else None


async def list_category_pricing(supabase: AsyncClient) -> list[CategoryPricing]:
    resp = (
        await supabase.table("category_pricing")
        .select("*")
        .order("category")
        .execute()
    )
    return [CategoryPricing(**row) for row in resp.data or []]


async def update_payment_settings(
    data: PaymentSettingsUpdate, supabase: AsyncClient
) -> PaymentSettings:
    current = await get_payment_settings(supabase)
    changes = {
        key: float(value) for key, value in data.model_dump(exclude_none=True).items()
    }
    if not changes:
        return current

    resp = await (
        supabase.table("rider_payment_settings")
        .update(changes)
        .eq("id", str(current.id))
        .execute()
    )
    logger.info("payment_settings_updated", changes=changes)
    return PaymentSettings(**resp.data[0])


async def update_category_pricing(
    pricing_id: UUID, data: CategoryPricingUpdate, supabase: AsyncClient
) -> CategoryPricing:
    changes = data.model_dump(exclude_none=True)
    changes = {
        key: value if isinstance(value, bool) else float(value)
        for key, value in changes.items()
    }
    if not changes:
        raise InvalidInput("Nothing to update")

    resp = await (
        supabase.table("category_pricing")
        .update(changes)
        .eq("id", str(pricing_id))
        .execute()
    )
    if not resp.data:
        raise NotFound("Category pricing not found")

    logger.info("category_pricing_updated", pricing_id=str(pricing_id), changes=changes)
    return CategoryPricing(**resp.data[0])
