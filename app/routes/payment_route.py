from fastapi import APIRouter, Depends, Request
from supabase import AsyncClient
from typing import Optional
from uuid import UUID
from app.schemas.payment_schemas import (
    CategoryPricing,
    CategoryPricingUpdate,
    CreateRiderPaymentRequest,
    CreateRiderPaymentResponse,
    EarningsSummary,
    PaymentAdjustmentUpdate,
    PaymentSettings,
    PaymentSettingsUpdate,
    PaymentStatus,
    PaymentStatusUpdate,
    RiderPayment,
    RiderPaymentList,
)
from app.services import payment_service, pricing_service
from app.dependencies.auth import get_current_user, require_admin, require_rider_access
from app.database.supabase import get_supabase_admin_client
from app.config.logging import logger

router = APIRouter(tags=["Payments"], prefix="/api/v1/payments")


@router.post("/rider-payments")
async def create_rider_payment(
    data: CreateRiderPaymentRequest,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> CreateRiderPaymentResponse:
    """
    ** Record the rider earning for a delivery. **

    - Distance runs from the rider's last known location (or the pickup) to
      the dropoff and is priced with the rider earning settings.
    - A delivery is paid at most once; repeating the call is a no-op.
    """
    payment = await payment_service.create_payment_for_delivery(data, supabase)
    if payment is None:
        return CreateRiderPaymentResponse(
            created=False, message="Payment already exists for this delivery"
        )

    logger.info(
        "rider_payment_endpoint",
        admin_id=current_user.id,
        payment_id=str(payment.id),
    )
    return CreateRiderPaymentResponse(
        created=True, payment=payment, message="Rider payment created"
    )


@router.patch("/rider-payments/{payment_id}/adjustment")
async def adjust_rider_payment(
    payment_id: UUID,
    data: PaymentAdjustmentUpdate,
    request: Request,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> RiderPayment:
    """Set bonus and penalty; the final amount never drops below zero."""
    return await payment_service.update_payment_adjustment(
        payment_id, data, current_user.id, supabase, request
    )


@router.patch("/rider-payments/{payment_id}/status")
async def update_rider_payment_status(
    payment_id: UUID,
    data: PaymentStatusUpdate,
    request: Request,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> RiderPayment:
    return await payment_service.update_payment_status(
        payment_id, data.status, current_user.id, supabase, request
    )


@router.get("/riders/{rider_id}/payments")
async def get_rider_payments(
    status: Optional[PaymentStatus] = None,
    rider_id: UUID = Depends(require_rider_access),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> RiderPaymentList:
    payments = await payment_service.list_rider_payments(
        rider_id, supabase, status_filter=status
    )
    return RiderPaymentList(payments=payments)


@router.get("/riders/{rider_id}/earnings")
async def get_rider_earnings(
    rider_id: UUID = Depends(require_rider_access),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> EarningsSummary:
    return await payment_service.get_earnings_summary(rider_id, supabase)


# ───────────────────────────────────────────────
# Pricing
# ───────────────────────────────────────────────
@router.get("/settings")
async def get_settings(
    current_user=Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> PaymentSettings:
    return await pricing_service.get_payment_settings(supabase)


@router.patch("/settings")
async def patch_settings(
    data: PaymentSettingsUpdate,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> PaymentSettings:
    logger.info("payment_settings_update_endpoint", admin_id=current_user.id)
    return await pricing_service.update_payment_settings(data, supabase)


@router.get("/category-pricing")
async def get_category_pricing(
    current_user=Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> list[CategoryPricing]:
    return await pricing_service.list_category_pricing(supabase)


@router.patch("/category-pricing/{pricing_id}")
async def patch_category_pricing(
    pricing_id: UUID,
    data: CategoryPricingUpdate,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> CategoryPricing:
    logger.info(
        "category_pricing_update_endpoint",
        admin_id=current_user.id,
        pricing_id=str(pricing_id),
    )
    return await pricing_service.update_category_pricing(pricing_id, data, supabase)
