from fastapi import Request
from uuid import UUID
from decimal import Decimal
from datetime import datetime, timezone
from typing import Iterable, Optional

from supabase import AsyncClient
from app.schemas.wallet_schema import (
    AdjustmentCreate,
    AdjustmentStatus,
    AdjustmentType,
    AvailableBalance,
    WalletAdjustment,
    WalletSummary,
    WithdrawalCreate,
    WithdrawalProcess,
    WithdrawalRequest,
    WithdrawalStatus,
)
from app.schemas.payment_schemas import PaymentStatus
from app.config.logging import logger
from app.utils.audit import log_audit_event
from app.utils.errors import (
    InsufficientBalance,
    InvalidInput,
    InvalidTransition,
    NotFound,
)

ZERO = Decimal("0")
OVERDRAW_NOTE = "Rejected automatically: insufficient balance"

OUTSTANDING_WITHDRAWALS = (WithdrawalStatus.PENDING.value, WithdrawalStatus.APPROVED.value)

# pending -> paid lets an admin skip the approval step
WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.PENDING: {
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.REJECTED,
        WithdrawalStatus.PAID,
    },
    WithdrawalStatus.APPROVED: {WithdrawalStatus.PAID},
}

CREDIT_ADJUSTMENTS = (AdjustmentType.CASH_ADVANCE, AdjustmentType.BONUS)
DEBIT_ADJUSTMENTS = (AdjustmentType.DEDUCTION, AdjustmentType.SETTLEMENT)


def _money(value) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


def _total(rows: Iterable[dict], field: str = "amount") -> Decimal:
    return sum((_money(row.get(field)) for row in rows), ZERO)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ───────────────────────────────────────────────
# Balances
# ───────────────────────────────────────────────
async def _load_ledger(rider_id: UUID, supabase: AsyncClient) -> tuple[list, list, list]:
    payments = (
        await supabase.table("rider_payments")
        .select("final_amount, status")
        .eq("rider_id", str(rider_id))
        .execute()
    )
    adjustments = (
        await supabase.table("rider_wallet_adjustments")
        .select("amount, adjustment_type, status")
        .eq("rider_id", str(rider_id))
        .eq("status", AdjustmentStatus.ACTIVE.value)
        .execute()
    )
    withdrawals = (
        await supabase.table("withdrawal_requests")
        .select("id, amount, status, created_at")
        .eq("rider_id", str(rider_id))
        .neq("status", WithdrawalStatus.REJECTED.value)
        .execute()
    )
    return payments.data or [], adjustments.data or [], withdrawals.data or []


def _balance_from_ledger(
    payments: list, adjustments: list, withdrawals: list
) -> tuple[Decimal, Decimal, Decimal]:
    """Unfloored available balance, outstanding and paid withdrawals."""
    completed = _total(
        (p for p in payments if p.get("status") == PaymentStatus.COMPLETED.value),
        "final_amount",
    )
    # Adjustment amounts carry their sign: credits positive, debits negative
    adjustments_net = _total(adjustments)
    pending = _total(w for w in withdrawals if w.get("status") in OUTSTANDING_WITHDRAWALS)
    withdrawn = _total(
        w for w in withdrawals if w.get("status") == WithdrawalStatus.PAID.value
    )
    return completed + adjustments_net - pending - withdrawn, pending, withdrawn


def _queued_before(withdrawals: list, withdrawal: dict) -> list:
    """Withdrawals created no later than ``withdrawal``, itself included."""
    mark = (withdrawal.get("created_at") or "", withdrawal["id"])
    return [
        w for w in withdrawals
        if (w.get("created_at") or "", w.get("id") or "") <= mark
    ]


async def get_available_balance(
    rider_id: UUID, supabase: AsyncClient
) -> AvailableBalance:
    """
    Withdrawable balance of a rider.

    Completed delivery earnings plus active adjustments, minus every
    withdrawal that has not been rejected. Never negative.
    """
    raw, pending, withdrawn = _balance_from_ledger(
        *await _load_ledger(rider_id, supabase)
    )
    return AvailableBalance(
        available=max(ZERO, raw), pending=pending, withdrawn=withdrawn
    )


async def get_wallet_summary(rider_id: UUID, supabase: AsyncClient) -> WalletSummary:
    payments, adjustments, withdrawals = await _load_ledger(rider_id, supabase)

    def earnings(status_value: str) -> Decimal:
        return _total(
            (p for p in payments if p.get("status") == status_value), "final_amount"
        )

    def adjusted(kind: AdjustmentType) -> Decimal:
        return _total(a for a in adjustments if a.get("adjustment_type") == kind.value)

    corrections = [
        _money(a.get("amount"))
        for a in adjustments
        if a.get("adjustment_type") == AdjustmentType.CORRECTION.value
    ]
    completed = earnings(PaymentStatus.COMPLETED.value)
    cash_advances = adjusted(AdjustmentType.CASH_ADVANCE)
    bonuses = adjusted(AdjustmentType.BONUS) + sum(
        (c for c in corrections if c > 0), ZERO
    )
    deductions = -(
        adjusted(AdjustmentType.DEDUCTION)
        + adjusted(AdjustmentType.SETTLEMENT)
        + sum((c for c in corrections if c < 0), ZERO)
    )
    pending = _total(w for w in withdrawals if w.get("status") in OUTSTANDING_WITHDRAWALS)
    paid_withdrawals = _total(
        w for w in withdrawals if w.get("status") == WithdrawalStatus.PAID.value
    )

    return WalletSummary(
        completed_earnings=completed,
        paid_earnings=earnings(PaymentStatus.PAID.value),
        cash_advances=cash_advances,
        bonuses=bonuses,
        deductions=deductions,
        pending_withdrawals=pending,
        paid_withdrawals=paid_withdrawals,
        net_balance=max(
            ZERO, completed + cash_advances + bonuses - deductions - pending
        ),
    )


# ───────────────────────────────────────────────
# Withdrawals
# ───────────────────────────────────────────────
async def create_withdrawal_request(
    rider_id: UUID, data: WithdrawalCreate, supabase: AsyncClient
) -> WithdrawalRequest:
    logger.info(
        "withdrawal_request_attempt", rider_id=str(rider_id), amount=float(data.amount)
    )
    if data.amount <= 0:
        raise InvalidInput("Withdrawal amount must be greater than zero")

    balance = await get_available_balance(rider_id, supabase)
    if data.amount > balance.available:
        logger.warning(
            "insufficient_wallet_balance",
            rider_id=str(rider_id),
            available=float(balance.available),
            requested=float(data.amount),
        )
        raise InsufficientBalance(
            f"Insufficient balance. Available: Rs {balance.available:,.2f}"
        )

    resp = await (
        supabase.table("withdrawal_requests")
        .insert(
            {
                "rider_id": str(rider_id),
                "amount": float(data.amount),
                "status": WithdrawalStatus.PENDING.value,
                "payment_method": data.payment_method,
            }
        )
        .execute()
    )
    withdrawal = resp.data[0]

    # Concurrent requests are settled in creation order: later ones that
    # overdraw are rejected, earlier ones stand
    payments, adjustments, withdrawals = await _load_ledger(rider_id, supabase)
    raw, _, _ = _balance_from_ledger(
        payments, adjustments, _queued_before(withdrawals, withdrawal)
    )
    if raw < 0:
        await (
            supabase.table("withdrawal_requests")
            .update(
                {
                    "status": WithdrawalStatus.REJECTED.value,
                    "admin_notes": OVERDRAW_NOTE,
                    "processed_at": _now(),
                }
            )
            .eq("id", withdrawal["id"])
            .execute()
        )
        logger.warning(
            "withdrawal_overdraw_rejected",
            rider_id=str(rider_id),
            withdrawal_id=withdrawal["id"],
        )
        await log_audit_event(
            supabase,
            entity_type="WITHDRAWAL_REQUEST",
            entity_id=withdrawal["id"],
            action="WITHDRAWAL_REJECTED",
            old_value={"status": WithdrawalStatus.PENDING.value},
            new_value={"status": WithdrawalStatus.REJECTED.value},
            change_amount=data.amount,
            actor_type="SYSTEM",
            notes=OVERDRAW_NOTE,
        )
        raise InsufficientBalance("Insufficient balance")

    logger.info(
        "withdrawal_request_created",
        rider_id=str(rider_id),
        withdrawal_id=withdrawal["id"],
        amount=float(data.amount),
    )
    return WithdrawalRequest(**withdrawal)


async def process_withdrawal(
    withdrawal_id: UUID,
    data: WithdrawalProcess,
    admin_id: str,
    supabase: AsyncClient,
    request: Optional[Request] = None,
) -> WithdrawalRequest:
    resp = (
        await supabase.table("withdrawal_requests")
        .select("*")
        .eq("id", str(withdrawal_id))
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        raise NotFound("Withdrawal request not found")

    current = WithdrawalStatus(resp.data["status"])
    if data.status not in WITHDRAWAL_TRANSITIONS.get(current, set()):
        raise InvalidTransition(
            f"Cannot move withdrawal from {current.value} to {data.status.value}"
        )

    changes = {
        "status": data.status.value,
        "admin_notes": data.admin_notes,
        "processed_by": str(admin_id),
        "processed_at": _now(),
    }
    if data.payment_method:
        changes["payment_method"] = data.payment_method
    if data.payment_reference:
        changes["payment_reference"] = data.payment_reference

    update_resp = await (
        supabase.table("withdrawal_requests")
        .update(changes)
        .eq("id", str(withdrawal_id))
        .eq("status", current.value)
        .execute()
    )
    if not update_resp.data:
        raise InvalidTransition("Withdrawal request was processed by someone else")

    withdrawal = update_resp.data[0]
    await log_audit_event(
        supabase,
        entity_type="WITHDRAWAL_REQUEST",
        entity_id=str(withdrawal_id),
        action=f"WITHDRAWAL_{data.status.value.upper()}",
        old_value={"status": current.value},
        new_value={"status": data.status.value},
        change_amount=_money(withdrawal.get("amount")),
        actor_id=str(admin_id),
        actor_type="ADMIN",
        notes=data.admin_notes,
        request=request,
    )
    logger.info(
        "withdrawal_processed",
        withdrawal_id=str(withdrawal_id),
        from_status=current.value,
        to_status=data.status.value,
        admin_id=str(admin_id),
    )
    return WithdrawalRequest(**withdrawal)


async def list_withdrawals(
    supabase: AsyncClient, rider_id: Optional[UUID] = None
) -> list[WithdrawalRequest]:
    query = supabase.table("withdrawal_requests").select("*")
    if rider_id:
        query = query.eq("rider_id", str(rider_id))
    resp = await query.order("created_at", desc=True).execute()
    return [WithdrawalRequest(**row) for row in resp.data or []]


# ───────────────────────────────────────────────
# Wallet adjustments
# ───────────────────────────────────────────────
def _validate_adjustment(data: AdjustmentCreate) -> None:
    if not data.reason or not data.reason.strip():
        raise InvalidInput("Reason is required")
    if data.amount == 0:
        raise InvalidInput("Adjustment amount cannot be zero")
    if data.adjustment_type in CREDIT_ADJUSTMENTS and data.amount < 0:
        raise InvalidInput(
            f"{data.adjustment_type.value} must have a positive amount"
        )
    if data.adjustment_type in DEBIT_ADJUSTMENTS and data.amount > 0:
        raise InvalidInput(
            f"{data.adjustment_type.value} must have a negative amount"
        )


async def create_adjustment(
    data: AdjustmentCreate,
    admin_id: str,
    supabase: AsyncClient,
    request: Optional[Request] = None,
) -> WalletAdjustment:
    _validate_adjustment(data)

    rider = (
        await supabase.table("riders")
        .select("id")
        .eq("id", str(data.rider_id))
        .maybe_single()
        .execute()
    )
    if not rider or not rider.data:
        raise NotFound("Rider not found")

    resp = await (
        supabase.table("rider_wallet_adjustments")
        .insert(
            {
                "rider_id": str(data.rider_id),
                "amount": float(data.amount),
                "adjustment_type": data.adjustment_type.value,
                "reason": data.reason.strip(),
                "linked_order_id": str(data.linked_order_id) if data.linked_order_id else None,
                "linked_rider_request_id": str(data.linked_rider_request_id)
                if data.linked_rider_request_id
                else None,
                "created_by": str(admin_id),
                "status": AdjustmentStatus.ACTIVE.value,
            }
        )
        .execute()
    )
    adjustment = resp.data[0]

    await log_audit_event(
        supabase,
        entity_type="WALLET_ADJUSTMENT",
        entity_id=adjustment["id"],
        action="ADJUSTMENT_CREATED",
        new_value={
            "adjustment_type": data.adjustment_type.value,
            "status": AdjustmentStatus.ACTIVE.value,
        },
        change_amount=data.amount,
        actor_id=str(admin_id),
        actor_type="ADMIN",
        notes=data.reason,
        request=request,
    )
    logger.info(
        "wallet_adjustment_created",
        adjustment_id=adjustment["id"],
        rider_id=str(data.rider_id),
        adjustment_type=data.adjustment_type.value,
        amount=float(data.amount),
    )
    return WalletAdjustment(**adjustment)


async def _close_adjustment(
    adjustment_id: UUID,
    new_status: AdjustmentStatus,
    admin_id: str,
    notes: Optional[str],
    supabase: AsyncClient,
    request: Optional[Request] = None,
) -> WalletAdjustment:
    resp = (
        await supabase.table("rider_wallet_adjustments")
        .select("*")
        .eq("id", str(adjustment_id))
        .maybe_single()
        .execute()
    )
    if not resp or not resp.data:
        raise NotFound("Wallet adjustment not found")

    if resp.data["status"] != AdjustmentStatus.ACTIVE.value:
        raise InvalidTransition(
            f"Only active adjustments can be {new_status.value}; this one is {resp.data['status']}"
        )

    update_resp = await (
        supabase.table("rider_wallet_adjustments")
        .update(
            {
                "status": new_status.value,
                "settled_at": _now(),
                "settled_by": str(admin_id),
                "settled_notes": notes,
            }
        )
        .eq("id", str(adjustment_id))
        .eq("status", AdjustmentStatus.ACTIVE.value)
        .execute()
    )
    if not update_resp.data:
        raise InvalidTransition("Wallet adjustment is no longer active")

    adjustment = update_resp.data[0]
    await log_audit_event(
        supabase,
        entity_type="WALLET_ADJUSTMENT",
        entity_id=str(adjustment_id),
        action=f"ADJUSTMENT_{new_status.value.upper()}",
        old_value={"status": AdjustmentStatus.ACTIVE.value},
        new_value={"status": new_status.value},
        change_amount=_money(adjustment.get("amount")),
        actor_id=str(admin_id),
        actor_type="ADMIN",
        notes=notes,
        request=request,
    )
    logger.info(
        "wallet_adjustment_closed",
        adjustment_id=str(adjustment_id),
        status=new_status.value,
        admin_id=str(admin_id),
    )
    return WalletAdjustment(**adjustment)


async def settle_adjustment(
    adjustment_id: UUID,
    admin_id: str,
    supabase: AsyncClient,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> WalletAdjustment:
    return await _close_adjustment(
        adjustment_id, AdjustmentStatus.SETTLED, admin_id, notes, supabase, request
    )


async def cancel_adjustment(
    adjustment_id: UUID,
    admin_id: str,
    supabase: AsyncClient,
    notes: Optional[str] = None,
    request: Optional[Request] = None,
) -> WalletAdjustment:
    return await _close_adjustment(
        adjustment_id, AdjustmentStatus.CANCELLED, admin_id, notes, supabase, request
    )


async def list_adjustments(
    supabase: AsyncClient,
    rider_id: Optional[UUID] = None,
    status_filter: Optional[AdjustmentStatus] = None,
) -> list[WalletAdjustment]:
    query = supabase.table("rider_wallet_adjustments").select("*")
    if rider_id:
        query = query.eq("rider_id", str(rider_id))
    if status_filter:
        query = query.eq("status", status_filter.value)
    resp = await query.order("created_at", desc=True).execute()
    return [WalletAdjustment(**row) for row in resp.data or []]
