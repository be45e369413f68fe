from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Optional
from uuid import UUID
from enum import Enum


class DeliveryEventType(str, Enum):
    RIDER_ASSIGNED = "rider_assigned"
    ON_WAY = "on_way"
    NEARBY = "nearby"
    DELIVERED = "delivered"


class RiderNotificationType(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_UPDATE = "order_update"
    URGENT = "urgent"


class DeliveryPushRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    customer_id: UUID = Field(..., alias="customerId")
    event_type: DeliveryEventType = Field(..., alias="eventType")
    order_id: Optional[UUID] = Field(None, alias="orderId")
    rider_request_id: Optional[UUID] = Field(None, alias="riderRequestId")
    rider_name: Optional[str] = Field(None, alias="riderName")

    @model_validator(mode="after")
    def _exactly_one(self):
        if bool(self.order_id) == bool(self.rider_request_id):
            raise ValueError("Must provide exactly one of orderId or riderRequestId")
        return self


class DeliveryPushResponse(BaseModel):
    success: bool = True
    pushed: bool
    recipients: int = 0
    reason: Optional[str] = None


class NotifyRiderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rider_id: UUID
    order_id: Optional[UUID] = None
    rider_request_id: Optional[UUID] = None
    notification_type: RiderNotificationType = RiderNotificationType.NEW_ORDER
    custom_title: Optional[str] = None
    custom_body: Optional[str] = None
    pickup_address: Optional[str] = None
    dropoff_address: Optional[str] = None
    order_total: Optional[float] = None


class NotifyRiderResponse(BaseModel):
    success: bool
    pushed: bool = False
    recipients: int = 0
    error: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class DeviceTokenRegister(BaseModel):
    token: str = Field(..., min_length=1)
    platform: Optional[str] = None  # "android", "ios", "web"


class DeviceTokenResponse(BaseModel):
    token: str
    platform: Optional[str]
