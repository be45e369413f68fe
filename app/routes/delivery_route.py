from fastapi import APIRouter, Depends
from supabase import AsyncClient

from app.schemas.delivery_schemas import (
    AssignRiderRequest,
    AssignRiderResponse,
    CreateOrderRequest,
    CreateOrderResponse,
)
from app.services.delivery_service import assign_rider, create_order
from app.dependencies.auth import get_current_user, get_optional_user
from app.database.supabase import get_supabase_admin_client
from app.config.logging import logger

router = APIRouter(tags=["Deliveries"])


@router.post("/assign-rider")
async def assign_rider_endpoint(
    data: AssignRiderRequest,
    current_user=Depends(get_current_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> AssignRiderResponse:
    """
    Assign a rider to an order or a rider request.

    - The rider must exist, be active and not blocked.
    - A delivery already held by another rider is rejected.
    - Assigning the same rider again succeeds without changing anything.
    - A placed delivery moves to preparing.

    Rider and customer notifications are best-effort and never undo the
    assignment.
    """
    logger.info(
        "assign_rider_endpoint",
        user_id=current_user.id,
        delivery_id=data.id,
        rider_id=str(data.rider_id),
    )
    return await assign_rider(data, supabase)


@router.post("/create-order")
async def create_order_endpoint(
    data: CreateOrderRequest,
    current_user=Depends(get_optional_user),
    supabase: AsyncClient = Depends(get_supabase_admin_client),
) -> CreateOrderResponse:
    """
    Create a business order.

    Totals default to the item sum plus a quoted delivery fee. With
    ``auto_assign_rider`` the preferred (or first available) rider is
    assigned straight away.
    """
    return await create_order(
        data, current_user.id if current_user else None, supabase
    )
