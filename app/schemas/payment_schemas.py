from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum

from app.schemas.delivery_schemas import DeliveryRef


class PricingConfig(BaseModel):
    """Inputs of a single fare calculation."""

    base_fee: Decimal = Field(..., ge=0)
    per_km_rate: Decimal = Field(..., ge=0)
    min_payment: Decimal = Field(..., ge=0)


class PaymentSettings(BaseModel):
    """Global row of ``rider_payment_settings``.

    ``base_fee`` prices the customer delivery charge, ``rider_base_earning``
    prices the rider earning. Both share ``per_km_rate`` and ``min_payment``.
    """

    id: Optional[UUID] = None
    base_fee: Decimal = Decimal("80")
    per_km_rate: Decimal = Decimal("30")
    min_payment: Decimal = Decimal("100")
    rider_base_earning: Decimal = Decimal("50")
    max_delivery_radius_km: Optional[float] = None
    min_order_value: Optional[Decimal] = None
    is_active: bool = True

    def customer_pricing(self) -> PricingConfig:
        return PricingConfig(
            base_fee=self.base_fee,
            per_km_rate=self.per_km_rate,
            min_payment=self.min_payment,
        )

    def rider_pricing(self) -> PricingConfig:
        return PricingConfig(
            base_fee=self.rider_base_earning,
            per_km_rate=self.per_km_rate,
            min_payment=self.min_payment,
        )


class PaymentSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_fee: Optional[Decimal] = Field(None, ge=0)
    per_km_rate: Optional[Decimal] = Field(None, ge=0)
    min_payment: Optional[Decimal] = Field(None, ge=0)
    rider_base_earning: Optional[Decimal] = Field(None, ge=0)
    max_delivery_radius_km: Optional[float] = Field(None, gt=0)
    min_order_value: Optional[Decimal] = Field(None, ge=0)


class CategoryPricing(BaseModel):
    id: Optional[UUID] = None
    category: str
    base_fee: Decimal
    per_km_rate: Decimal
    min_payment: Decimal
    is_active: bool = True

    def pricing(self) -> PricingConfig:
        return PricingConfig(
            base_fee=self.base_fee,
            per_km_rate=self.per_km_rate,
            min_payment=self.min_payment,
        )


class CategoryPricingUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_fee: Optional[Decimal] = Field(None, ge=0)
    per_km_rate: Optional[Decimal] = Field(None, ge=0)
    min_payment: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


class FareBreakdown(BaseModel):
    customer_charge: Decimal
    rider_earning: Decimal
    commission: Decimal


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    PAID = "paid"


class RiderPayment(BaseModel):
    id: UUID
    rider_id: UUID
    order_id: Optional[UUID] = None
    rider_request_id: Optional[UUID] = None
    distance_km: float
    base_fee: Decimal
    per_km_rate: Decimal
    calculated_amount: Decimal
    bonus: Decimal = Decimal("0")
    penalty: Decimal = Decimal("0")
    final_amount: Decimal
    status: PaymentStatus
    rider_lat: Optional[float] = None
    rider_lng: Optional[float] = None
    customer_lat: Optional[float] = None
    customer_lng: Optional[float] = None
    created_at: Optional[datetime] = None


class CreateRiderPaymentRequest(DeliveryRef):
    pass


class CreateRiderPaymentResponse(BaseModel):
    created: bool
    payment: Optional[RiderPayment] = None
    message: str


class PaymentAdjustmentUpdate(BaseModel):
    bonus: Decimal = Field(Decimal("0"), ge=0)
    penalty: Decimal = Field(Decimal("0"), ge=0)


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class EarningsSummary(BaseModel):
    total_earnings: Decimal
    today_earnings: Decimal
    paid_earnings: Decimal
    pending_earnings: Decimal
    total_distance_km: float
    total_deliveries: int


class RiderPaymentList(BaseModel):
    payments: List[RiderPayment]
