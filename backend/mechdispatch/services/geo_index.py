from dataclasses import dataclass

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mechdispatch.models.mechanic_profile import MechanicProfile
from mechdispatch.utils.geo import bounding_box, calculate_distance_km, within_radius

logger = structlog.get_logger()


@dataclass(frozen=True)
class GeoHit:
    mechanic: MechanicProfile
    distance_km: float


class GeoIndex:
    """Radius queries over mechanic locations.

    The SQL bounding box is only a pre-filter; membership is decided by the
    exact great-circle distance, so the result is the same as a full scan.
    Read-only: safe to run concurrently with anything else.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def query(self, lat: float, lng: float, radius_km: float) -> list[GeoHit]:
        min_lat, max_lat, min_lng, max_lng = bounding_box(lat, lng, radius_km)

        conditions = [
            MechanicProfile.latitude.is_not(None),
            MechanicProfile.longitude.is_not(None),
            MechanicProfile.latitude >= min_lat,
            MechanicProfile.latitude <= max_lat,
        ]
        if min_lng < -180.0:
            # Circle crosses the antimeridian westwards
            conditions.append(
                or_(MechanicProfile.longitude >= min_lng + 360.0, MechanicProfile.longitude <= max_lng)
            )
        elif max_lng > 180.0:
            conditions.append(
                or_(MechanicProfile.longitude >= min_lng, MechanicProfile.longitude <= max_lng - 360.0)
            )
        elif min_lng > -180.0 or max_lng < 180.0:
            conditions.append(
                and_(MechanicProfile.longitude >= min_lng, MechanicProfile.longitude <= max_lng)
            )

        result = await self.db.execute(
            select(MechanicProfile)
            .options(selectinload(MechanicProfile.user))
            .where(*conditions)
        )
        profiles = result.scalars().all()

        hits = []
        for profile in profiles:
            distance = calculate_distance_km(lat, lng, profile.latitude, profile.longitude)
            if within_radius(distance, radius_km):
                hits.append(GeoHit(mechanic=profile, distance_km=distance))

        logger.debug(
            "geo_index_query",
            radius_km=radius_km,
            prefiltered=len(profiles),
            matched=len(hits),
        )
        return hits
