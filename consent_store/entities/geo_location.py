"""
Geo-location entity adapter.

Geo locations are linked to consents through the consent_geo_location
junction so consents can be queried by regulatory zone ("all EU consents").
"""

from __future__ import annotations

from typing import Any

from consent_store.db.hooks.pipeline import ContextInput
from consent_store.db.tables import CONSENT, CONSENT_GEO_LOCATION, GEO_LOCATION
from consent_store.db.where import WhereCondition, eq
from consent_store.entities.base import EntityAdapter, Record
from consent_store.exceptions import HookRejectedError


class GeoLocationAdapter(EntityAdapter):
    model = GEO_LOCATION

    async def create_geo_location(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        payload = dict(data)
        payload["country_code"] = payload["country_code"].upper()
        payload["regulatory_zones"] = sorted({zone.upper() for zone in payload.get("regulatory_zones") or []})
        return await self._create(payload, context)

    async def find_geo_location(self, country_code: str, region_code: str | None = None) -> Record | None:
        return await self._find_one([eq("country_code", country_code.upper()), eq("region_code", region_code)])

    async def find_or_create_geo_location(self, data: dict[str, Any], context: ContextInput = None) -> Record:
        existing = await self.find_geo_location(data["country_code"], data.get("region_code"))
        if existing is not None:
            return existing
        return await self.create_geo_location(data, context)

    async def find_geo_locations_by_zone(self, zone: str) -> list[Record]:
        # string[] columns hold JSON text; match the quoted element
        return await self._find_all([WhereCondition("regulatory_zones", f'"{zone.upper()}"', "contains")])

    async def link_consent_geo_location(self, consent_id: Any, geo_location_id: Any, context: ContextInput = None) -> Record:
        created = await self.pipeline.create_with_hooks(
            {"consent_id": consent_id, "geo_location_id": geo_location_id},
            CONSENT_GEO_LOCATION,
            context=context,
        )
        if created is None:
            raise HookRejectedError(CONSENT_GEO_LOCATION, "create")
        return created

    async def find_consents_by_regulatory_zone(self, zone: str, active_only: bool = True) -> list[Record]:
        """Consents linked to any geo location inside ``zone``."""
        locations = await self.find_geo_locations_by_zone(zone)
        if not locations:
            return []
        links = await self._find_all(
            [WhereCondition("geo_location_id", [location["id"] for location in locations], "in")],
            model=CONSENT_GEO_LOCATION,
        )
        consent_ids = sorted({link["consent_id"] for link in links}, key=str)
        if not consent_ids:
            return []
        where = [WhereCondition("id", consent_ids, "in")]
        if active_only:
            where.append(eq("is_active", True))
        return await self.adapter.find_many(CONSENT, where, limit=len(consent_ids))
