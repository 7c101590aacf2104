from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.metrics import MECHANIC_SEARCHES
from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.services.geo_index import GeoIndex
from mechdispatch.services.pricing import offers_service
from mechdispatch.utils.geo import round_distance

logger = structlog.get_logger()


@dataclass(frozen=True)
class Candidate:
    mechanic: MechanicProfile
    distance_km: float
    is_available: bool


def rank_key(mechanic: MechanicProfile, distance_km: float) -> tuple:
    """Nearest first, then best rated, then lowest id so equal candidates keep a stable order."""
    return (distance_km, -(mechanic.rating_avg or 0.0), str(mechanic.id))


async def find_candidates(
    db: AsyncSession,
    lat: float,
    lng: float,
    radius_km: float,
    specialty: str | None = None,
) -> list[Candidate]:
    """Mechanics within ``radius_km`` of (lat, lng), optionally restricted to a specialty.

    Busy mechanics are kept and flagged through ``is_available`` so the
    customer can still pick them. Returns an empty list when nobody matches.
    """
    hits = await GeoIndex(db).query(lat, lng, radius_km)
    if specialty:
        hits = [hit for hit in hits if offers_service(hit.mechanic, specialty)]

    hits.sort(key=lambda hit: rank_key(hit.mechanic, hit.distance_km))
    candidates = [
        Candidate(
            mechanic=hit.mechanic,
            distance_km=round_distance(hit.distance_km),
            is_available=bool(hit.mechanic.is_available),
        )
        for hit in hits
    ]

    MECHANIC_SEARCHES.labels(result="hit" if candidates else "empty").inc()
    logger.info(
        "mechanic_search",
        radius_km=radius_km,
        specialty=specialty,
        results=len(candidates),
    )
    return candidates
