from fastapi import APIRouter

from app.schemas.delivery_schemas import DistanceMethod, DistanceRequest, DistanceResponse
from app.services.distance_service import resolve_distance

router = APIRouter(tags=["Distance"])


@router.post("/calculate-distance")
async def calculate_distance(data: DistanceRequest) -> DistanceResponse:
    """Road distance and travel time between two points."""
    result = await resolve_distance(
        data.origin_lat, data.origin_lng, data.destination_lat, data.destination_lng
    )
    return DistanceResponse(
        distance_km=result.distance_km,
        duration_minutes=result.duration_minutes,
        method="google" if result.method == DistanceMethod.ROUTED else "haversine",
    )
