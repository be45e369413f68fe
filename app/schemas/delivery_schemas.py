from pydantic import BaseModel, ConfigDict, Field, StrictFloat, model_validator
from typing import Any, Optional, List, Literal
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum


class DeliveryStatus(str, Enum):
    PLACED = "placed"
    PREPARING = "preparing"
    ON_WAY = "on_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (DeliveryStatus.DELIVERED.value, DeliveryStatus.CANCELLED.value)


class DeliveryKind(str, Enum):
    ORDER = "order"
    RIDER_REQUEST = "rider_request"


class DeliveryCategory(str, Enum):
    FOOD = "food"
    GROCERY = "grocery"
    BAKERY = "bakery"
    MEDICAL = "medical"
    PARCEL = "parcel"
    SELF_DELIVERY = "self_delivery"


# businesses.type -> pricing category
BUSINESS_TYPE_CATEGORY = {
    "restaurant": DeliveryCategory.FOOD,
    "bakery": DeliveryCategory.BAKERY,
    "grocery": DeliveryCategory.GROCERY,
    "shop": DeliveryCategory.PARCEL,
}


class DeliveryRef(BaseModel):
    """Points at exactly one delivery record: an order or a rider request."""

    model_config = ConfigDict(extra="forbid")

    order_id: Optional[UUID] = None
    rider_request_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _exactly_one(self):
        if bool(self.order_id) == bool(self.rider_request_id):
            raise ValueError("Exactly one of order_id or rider_request_id is required")
        return self

    @property
    def kind(self) -> DeliveryKind:
        return DeliveryKind.ORDER if self.order_id else DeliveryKind.RIDER_REQUEST

    @property
    def table(self) -> str:
        return "orders" if self.order_id else "rider_requests"

    @property
    def id(self) -> str:
        return str(self.order_id or self.rider_request_id)


class AssignRiderRequest(DeliveryRef):
    rider_id: UUID
    notify_rider: bool = True


class AssignmentInfo(BaseModel):
    type: DeliveryKind
    id: UUID
    status: DeliveryStatus


class AssignedRider(BaseModel):
    id: UUID
    name: Optional[str] = None
    is_online: bool = False


class AssignRiderResponse(BaseModel):
    success: bool = True
    assignment: AssignmentInfo
    rider: AssignedRider
    notification: Optional[dict[str, Any]] = None
    message: str


class OrderItem(BaseModel):
    id: str
    name: str
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    image: Optional[str] = None


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    customer_id: Optional[UUID] = None
    customer_phone: Optional[str] = None
    business_id: UUID
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: Optional[Decimal] = None
    delivery_fee: Optional[Decimal] = None
    total: Optional[Decimal] = None
    delivery_address: str = Field(..., min_length=1)
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    pickup_address: Optional[str] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    notes: Optional[str] = None
    auto_assign_rider: bool = False
    preferred_rider_id: Optional[UUID] = None


class CreatedOrder(BaseModel):
    id: UUID
    status: DeliveryStatus
    total: Decimal
    eta: Optional[str] = None
    created_at: Optional[datetime] = None


class CreateOrderResponse(BaseModel):
    success: bool = True
    order: CreatedOrder
    assigned_rider: Optional[AssignedRider] = None
    message: str


class DistanceRequest(BaseModel):
    origin_lat: StrictFloat
    origin_lng: StrictFloat
    destination_lat: StrictFloat
    destination_lng: StrictFloat


class DistanceMethod(str, Enum):
    ROUTED = "routed"
    HAVERSINE = "haversine"


class DistanceResult(BaseModel):
    distance_km: float
    duration_minutes: int
    method: DistanceMethod


class DistanceResponse(BaseModel):
    distance_km: float
    duration_minutes: int
    # "google" is the name existing clients expect for routed results
    method: Literal["google", "haversine"]
