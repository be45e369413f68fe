import math
from numbers import Real
from typing import Optional

import httpx
from pydantic import ValidationError

from app.config.config import settings
from app.config.logging import logger
from app.schemas.delivery_schemas import DistanceMethod, DistanceResult
from app.utils.errors import InvalidInput
from app.utils.redis_utils import cache_json, get_cached_json

EARTH_RADIUS_KM = 6371
# Roads are not straight lines
ROAD_FACTOR = 1.3
AVERAGE_CITY_SPEED_KMH = 25


def round_half_up(value: float, ndigits: int = 0) -> float:
    factor = 10**ndigits
    return math.floor(value * factor + 0.5) / factor


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_road_distance(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> DistanceResult:
    distance_km = round_half_up(haversine_km(lat1, lng1, lat2, lng2) * ROAD_FACTOR, 1)
    duration = int(round_half_up(distance_km / AVERAGE_CITY_SPEED_KMH * 60))
    return DistanceResult(
        distance_km=distance_km,
        duration_minutes=duration,
        method=DistanceMethod.HAVERSINE,
    )


def _validate_coordinates(*values) -> None:
    for value in values:
        if (
            isinstance(value, bool)
            or not isinstance(value, Real)
            or not math.isfinite(value)
        ):
            raise InvalidInput("Invalid coordinates")


def _parse_route(payload) -> Optional[DistanceResult]:
    if not isinstance(payload, dict) or payload.get("code") != "Ok":
        return None
    routes = payload.get("routes")
    if not isinstance(routes, list) or not routes:
        return None

    route = routes[0]
    distance_m = route.get("distance") if isinstance(route, dict) else None
    duration_s = route.get("duration") if isinstance(route, dict) else None
    for value in (distance_m, duration_s):
        if not isinstance(value, Real) or not math.isfinite(value):
            return None

    return DistanceResult(
        distance_km=round_half_up(distance_m / 100) / 10,
        duration_minutes=int(round_half_up(duration_s / 60)),
        method=DistanceMethod.ROUTED,
    )


async def _route_distance(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> Optional[DistanceResult]:
    """Ask the routing service for a driving route. None on any failure."""
    url = (
        f"{settings.ROUTING_BASE_URL}/route/v1/driving/"
        f"{lng1},{lat1};{lng2},{lat2}"
    )
    try:
        async with httpx.AsyncClient(
            timeout=settings.ROUTING_TIMEOUT_SECONDS
        ) as client:
            response = await client.get(
                url,
                params={"overview": "false"},
                headers={"User-Agent": "FastHaazir/1.0"},
            )
        if not response.is_success:
            logger.warning("routing_request_failed", status_code=response.status_code)
            return None
        result = _parse_route(response.json())
    except httpx.HTTPError as e:
        logger.warning("routing_unavailable", error=str(e))
        return None
    except ValueError as e:
        logger.warning("routing_malformed_response", error=str(e))
        return None

    if result is None:
        logger.info("routing_no_route_found")
    return result


def _cache_key(lat1: float, lng1: float, lat2: float, lng2: float) -> str:
    return f"distance:{lat1:.5f},{lng1:.5f}:{lat2:.5f},{lng2:.5f}"


async def _read_cache(key: str) -> Optional[DistanceResult]:
    cached = await get_cached_json(key)
    if not cached:
        return None
    try:
        return DistanceResult(**cached)
    except ValidationError:
        logger.warning("distance_cache_invalid", key=key)
        return None


async def _write_cache(key: str, result: DistanceResult) -> None:
    await cache_json(
        key, result.model_dump(mode="json"), settings.DISTANCE_CACHE_SECONDS
    )


async def resolve_distance(
    origin_lat: float,
    origin_lng: float,
    dest_lat: float,
    dest_lng: float,
) -> DistanceResult:
    """
    Road distance and travel time between two points.

    Tries the routing service first and falls back to a haversine estimate
    scaled by ROAD_FACTOR. Only invalid coordinates raise.
    """
    _validate_coordinates(origin_lat, origin_lng, dest_lat, dest_lng)

    key = _cache_key(origin_lat, origin_lng, dest_lat, dest_lng)
    cached = await _read_cache(key)
    if cached:
        return cached

    routed = await _route_distance(origin_lat, origin_lng, dest_lat, dest_lng)
    if routed:
        logger.info(
            "distance_resolved",
            method=routed.method.value,
            distance_km=routed.distance_km,
            duration_minutes=routed.duration_minutes,
        )
        await _write_cache(key, routed)
        return routed

    estimate = estimate_road_distance(origin_lat, origin_lng, dest_lat, dest_lng)
    logger.info(
        "distance_resolved",
        method=estimate.method.value,
        distance_km=estimate.distance_km,
        duration_minutes=estimate.duration_minutes,
    )
    return estimate
