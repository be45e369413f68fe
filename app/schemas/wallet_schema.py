from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from decimal import Decimal
from datetime import datetime
from typing import Optional, List
from enum import Enum


class AdjustmentType(str, Enum):
    CASH_ADVANCE = "cash_advance"
    BONUS = "bonus"
    DEDUCTION = "deduction"
    SETTLEMENT = "settlement"
    CORRECTION = "correction"


class AdjustmentStatus(str, Enum):
    ACTIVE = "active"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class AvailableBalance(BaseModel):
    available: Decimal = Field(default=Decimal("0"))
    pending: Decimal = Field(default=Decimal("0"))
    withdrawn: Decimal = Field(default=Decimal("0"))


class WalletSummary(BaseModel):
    completed_earnings: Decimal
    paid_earnings: Decimal
    cash_advances: Decimal
    bonuses: Decimal
    deductions: Decimal
    pending_withdrawals: Decimal
    paid_withdrawals: Decimal
    net_balance: Decimal


class WithdrawalCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., description="Amount to withdraw (in PKR)")
    payment_method: str = "cash"


class WithdrawalProcess(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: WithdrawalStatus
    admin_notes: Optional[str] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None


class WithdrawalRequest(BaseModel):
    id: UUID
    rider_id: UUID
    amount: Decimal
    status: WithdrawalStatus
    admin_notes: Optional[str] = None
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None


class AdjustmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rider_id: UUID
    amount: Decimal = Field(..., description="Signed effect on the rider balance")
    adjustment_type: AdjustmentType
    reason: str
    linked_order_id: Optional[UUID] = None
    linked_rider_request_id: Optional[UUID] = None


class AdjustmentResolve(BaseModel):
    notes: Optional[str] = None


class WalletAdjustment(BaseModel):
    id: UUID
    rider_id: UUID
    amount: Decimal
    adjustment_type: AdjustmentType
    reason: str
    linked_order_id: Optional[UUID] = None
    linked_rider_request_id: Optional[UUID] = None
    status: AdjustmentStatus
    created_by: Optional[UUID] = None
    settled_by: Optional[UUID] = None
    settled_at: Optional[datetime] = None
    settled_notes: Optional[str] = None
    created_at: Optional[datetime] = None


class WalletAdjustmentList(BaseModel):
    adjustments: List[WalletAdjustment]


class WithdrawalList(BaseModel):
    withdrawals: List[WithdrawalRequest]
