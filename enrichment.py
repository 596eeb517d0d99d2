"""Optional Google Places lookup that fills in phone, rating, website and photo."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from config import Settings, settings as default_settings
from costs import CostMonitor
from schemas import ProviderRecord
from utils import setup_logger

logger = setup_logger("enrichment")

DETAIL_FIELDS = "formatted_phone_number,rating,website,photos,formatted_address"


class EnrichmentError(Exception):
    """Raised when a Places lookup for one provider fails."""


class PlacesEnricher:
    def __init__(
        self,
        settings: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None,
        monitor: Optional[CostMonitor] = None,
    ) -> None:
        self.settings = settings
        self.api_key = settings.GOOGLE_PLACES_API_KEY
        self._http = client
        self.monitor = monitor

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            timeout=self.settings.HTTP_READ_TIMEOUT,
            connect=self.settings.HTTP_CONNECT_TIMEOUT,
            read=self.settings.HTTP_READ_TIMEOUT,
            write=self.settings.HTTP_WRITE_TIMEOUT,
            pool=self.settings.HTTP_POOL_TIMEOUT,
        )
        return httpx.AsyncClient(timeout=timeout)

    async def _get(self, client: httpx.AsyncClient, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            r = await client.get(self.settings.PLACES_BASE_URL + path, params=params | {"key": self.api_key})
            r.raise_for_status()
            return r.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EnrichmentError(f"Places {path} failed: {exc}") from exc

    def photo_url(self, reference: str, max_width: int = 400) -> str:
        return (
            f"{self.settings.PLACES_BASE_URL}photo?maxwidth={max_width}"
            f"&photo_reference={reference}&key={self.api_key}"
        )

    async def enrich_one(self, client: httpx.AsyncClient, record: ProviderRecord) -> ProviderRecord:
        if not (record.city and record.state):
            return record

        search = await self._get(
            client,
            "textsearch/json",
            {"query": f"{record.name} {record.specialty} {record.city} {record.state}"},
        )
        places = search.get("results") or []
        if not places or not places[0].get("place_id"):
            return record

        place = places[0]
        details = await self._get(
            client,
            "details/json",
            {"place_id": place["place_id"], "fields": DETAIL_FIELDS},
        )
        result = details.get("result") or {}

        update: Dict[str, Any] = {
            "place_id": place["place_id"],
            "sources": record.sources + ["places"] if "places" not in record.sources else record.sources,
        }
        if result.get("formatted_phone_number"):
            update["phone"] = result["formatted_phone_number"]
        if result.get("rating"):
            update["rating"] = float(result["rating"])
        if result.get("website"):
            update["website"] = result["website"]
        photos = result.get("photos") or []
        if photos and photos[0].get("photo_reference"):
            update["photo_url"] = self.photo_url(photos[0]["photo_reference"])
        address = place.get("formatted_address") or result.get("formatted_address")
        if address:
            update["location"] = address
        return record.model_copy(update=update)

    async def enrich(self, records: List[ProviderRecord]) -> List[ProviderRecord]:
        """Enrich every record concurrently; a failed lookup keeps the registry data."""
        if not self.enabled or not records:
            return records

        semaphore = asyncio.Semaphore(self.settings.ENRICHMENT_CONCURRENCY)

        async def guarded(client: httpx.AsyncClient, record: ProviderRecord) -> ProviderRecord:
            async with semaphore:
                try:
                    return await self.enrich_one(client, record)
                except EnrichmentError as exc:
                    logger.warning("[PLACES] Could not enrich %s (%s): %s", record.name, record.npi, exc)
                    return record

        if self._http is not None:
            enriched = await asyncio.gather(*(guarded(self._http, r) for r in records))
        else:
            async with self._client() as client:
                enriched = await asyncio.gather(*(guarded(client, r) for r in records))

        if self.monitor:
            self.monitor.record_places_enrichment(len(records))
        hits = sum(1 for r in enriched if "places" in r.sources)
        logger.info("[PLACES] Enriched %d/%d providers", hits, len(records))
        return list(enriched)
