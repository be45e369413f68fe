from fastapi import APIRouter, Depends, Request
from typing import Optional
from uuid import UUID
from app.schemas.wallet_schema import (
    AdjustmentCreate,
    AdjustmentResolve,
    AdjustmentStatus,
    AvailableBalance,
    WalletAdjustment,
    WalletAdjustmentList,
    WalletSummary,
    WithdrawalCreate,
    WithdrawalList,
    WithdrawalProcess,
    WithdrawalRequest,
)
from app.services import wallet_service
from app.dependencies.auth import get_current_rider, require_admin, require_rider_access
from app.database.supabase import get_supabase_admin_client
from supabase import AsyncClient
from app.config.logging import logger

router = APIRouter(prefix="/api/v1/wallet", tags=["Wallet"])


@router.get("/riders/{rider_id}/balance")
async def get_rider_balance(
    rider_id: UUID = Depends(require_rider_access),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> AvailableBalance:
    """
    Withdrawable balance of a rider.

    Returns:
        AvailableBalance: available, pending and withdrawn amounts.
    """
    logger.debug("get_rider_balance_endpoint", rider_id=str(rider_id))
    return await wallet_service.get_available_balance(rider_id, supabase)


@router.get("/riders/{rider_id}/summary")
async def get_rider_wallet_summary(
    rider_id: UUID = Depends(require_rider_access),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WalletSummary:
    """
    Earnings, adjustments and withdrawals of a rider with the net balance.
    """
    return await wallet_service.get_wallet_summary(rider_id, supabase)


@router.get("/riders/{rider_id}/withdrawals")
async def get_rider_withdrawals(
    rider_id: UUID = Depends(require_rider_access),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WithdrawalList:
    withdrawals = await wallet_service.list_withdrawals(supabase, rider_id=rider_id)
    return WithdrawalList(withdrawals=withdrawals)


@router.get("/riders/{rider_id}/adjustments")
async def get_rider_adjustments(
    rider_id: UUID = Depends(require_rider_access),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WalletAdjustmentList:
    adjustments = await wallet_service.list_adjustments(supabase, rider_id=rider_id)
    return WalletAdjustmentList(adjustments=adjustments)


@router.post("/withdrawals")
async def request_withdrawal(
    data: WithdrawalCreate,
    rider: dict = Depends(get_current_rider),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WithdrawalRequest:
    """
    Request a payout from the current rider's wallet.

    Args:
        data (WithdrawalCreate): Amount and payout method.

    Returns:
        WithdrawalRequest: The pending request.
    """
    logger.info(
        "withdrawal_endpoint_called", rider_id=rider["id"], amount=float(data.amount)
    )
    return await wallet_service.create_withdrawal_request(
        UUID(rider["id"]), data, supabase
    )


@router.get("/withdrawals")
async def list_all_withdrawals(
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WithdrawalList:
    withdrawals = await wallet_service.list_withdrawals(supabase)
    return WithdrawalList(withdrawals=withdrawals)


@router.post("/withdrawals/{withdrawal_id}/process")
async def process_withdrawal_request(
    withdrawal_id: UUID,
    data: WithdrawalProcess,
    request: Request,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WithdrawalRequest:
    """
    Approve, reject or mark a withdrawal as paid.

    Allowed moves: pending to approved, rejected or paid; approved to paid.
    """
    return await wallet_service.process_withdrawal(
        withdrawal_id, data, current_user.id, supabase, request
    )


@router.get("/adjustments")
async def list_wallet_adjustments(
    rider_id: Optional[UUID] = None,
    status: Optional[AdjustmentStatus] = None,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WalletAdjustmentList:
    adjustments = await wallet_service.list_adjustments(
        supabase, rider_id=rider_id, status_filter=status
    )
    return WalletAdjustmentList(adjustments=adjustments)


@router.post("/adjustments")
async def create_wallet_adjustment(
    data: AdjustmentCreate,
    request: Request,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WalletAdjustment:
    """
    Record a cash advance, bonus, deduction, settlement or correction.

    Credits carry a positive amount and debits a negative one.
    """
    return await wallet_service.create_adjustment(
        data, current_user.id, supabase, request
    )


@router.post("/adjustments/{adjustment_id}/settle")
async def settle_wallet_adjustment(
    adjustment_id: UUID,
    data: AdjustmentResolve,
    request: Request,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WalletAdjustment:
    return await wallet_service.settle_adjustment(
        adjustment_id, current_user.id, supabase, notes=data.notes, request=request
    )


@router.post("/adjustments/{adjustment_id}/cancel")
async def cancel_wallet_adjustment(
    adjustment_id: UUID,
    data: AdjustmentResolve,
    request: Request,
    current_user=Depends(require_admin),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> WalletAdjustment:
    return await wallet_service.cancel_adjustment(
        adjustment_id, current_user.id, supabase, notes=data.notes, request=request
    )
