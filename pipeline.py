"""End-to-end physician search: parse, query the registry, enrich, rank, paginate."""

from __future__ import annotations

from typing import List, Optional, Tuple

from config import Settings, settings as default_settings
from enrichment import PlacesEnricher
from locations import LocationNormalizer, format_location
from query_parser import QueryParser
from ranking import ResultRanker
from schemas import SearchIntent, SearchResponse
from service import RegistryError, RegistryTimeoutError, SearchStrategyEngine
from specialities import SpecialtyNormalizer
from utils import dedupe_preserve, setup_logger

logger = setup_logger("pipeline")


class SearchFailedError(Exception):
    """The registry could not be reached for the primary search."""

    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


def suggest_alternative_searches(
    intent: SearchIntent,
    specialties: SpecialtyNormalizer,
    locations: LocationNormalizer,
) -> List[str]:
    """Related queries worth trying: specialty variants and nearby cities."""
    suggestions: List[str] = []
    specialty = intent.specialty
    city = intent.location.city if intent.location else None
    where = _location_label(intent)

    if specialty and specialties.is_canonical(specialty):
        for variation in specialties.variations(specialty, limit=3):
            suggestions.append(f"{variation} in {where}" if where else variation)

    if specialty and city:
        for nearby in list(locations.nearby_cities(city))[:2]:
            suggestions.append(f"{specialty} in {nearby}")

    return suggestions


def no_result_feedback(
    query: str,
    intent: SearchIntent,
    radius: int,
    specialties: SpecialtyNormalizer,
    locations: LocationNormalizer,
) -> Tuple[str, List[str]]:
    """Error message and hints tailored to what the query did and did not contain."""
    suggestions: List[str] = []
    specialty = intent.specialty
    where = _location_label(intent)

    if not (intent.has_name or intent.has_specialty or intent.has_location):
        error = "Please include a location (city, state, or zip code) for better results."
        suggestions.append("Try including a doctor name, specialty, or location in your search")
        suggestions.append('Example: "retina surgeon in Tacoma, Washington"')
        suggestions.append('Example: "Dr. Mark Nelson retina surgeon"')
    elif not intent.has_location:
        error = "Please include a location (city, state, or zip code) for better results."
        suggestions.append('Try adding a location to your search (e.g., "in Tacoma, Washington")')
        suggestions.append(f'Example: "{specialty or "doctor"} in [your city], [your state]"')
    elif not intent.has_specialty and not intent.has_name:
        error = 'Try searching with a specialty (like "retina surgeon" or "cardiologist") or doctor name.'
        suggestions.append("Try adding a specialty to your search")
        suggestions.append(f'Example: "retina surgeon in {where or "your location"}"')
        suggestions.append(f'Example: "Dr. [name] in {where or "your location"}"')
    else:
        error = f'No doctors found for "{query}". Try:'
        suggestions.append("Checking your spelling")
        suggestions.append("Using a nearby city or different location")
        suggestions.append("Searching for a related specialty")
        suggestions.append(f"Expanding your search radius (currently {radius / 1000:g}km)")
        if intent.has_name:
            suggestions.append("Trying a partial name match (e.g., just last name)")
        if intent.has_specialty:
            suggestions.append("Trying a broader specialty term")

    suggestions.extend(suggest_alternative_searches(intent, specialties, locations))
    return error, dedupe_preserve(suggestions)


def _location_label(intent: SearchIntent) -> Optional[str]:
    loc = intent.location
    if not loc:
        return None
    return loc.full or format_location(loc.city, loc.state)


class SearchPipeline:
    def __init__(
        self,
        parser: QueryParser,
        engine: SearchStrategyEngine,
        ranker: ResultRanker,
        enricher: Optional[PlacesEnricher] = None,
        settings: Settings = default_settings,
    ) -> None:
        self.parser = parser
        self.engine = engine
        self.ranker = ranker
        self.enricher = enricher
        self.settings = settings

    def clamp_radius(self, radius: Optional[int]) -> int:
        if radius is None or radius <= 0:
            return self.settings.DEFAULT_RADIUS_METERS
        return min(radius, self.settings.MAX_RADIUS_METERS)

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        if not page_size:
            return self.settings.DEFAULT_PAGE_SIZE
        return max(self.settings.MIN_PAGE_SIZE, min(page_size, self.settings.MAX_PAGE_SIZE))

    async def search(
        self,
        query: str,
        radius: Optional[int] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> SearchResponse:
        radius = self.clamp_radius(radius)
        page = max(1, page or 1)
        page_size = self.clamp_page_size(page_size)

        intent = await self.parser.parse(query)
        logger.info(
            "[PARSE] %r -> name=%s specialty=%s location=%s (%s, %.2f)",
            query,
            intent.name.full if intent.name else None,
            intent.specialty,
            _location_label(intent),
            intent.source,
            intent.confidence,
        )

        response = SearchResponse(
            query=query,
            specialty=intent.specialty or "Not specified",
            location=_location_label(intent),
            intent=intent,
            search_radius=radius if intent.has_location else None,
        )

        validation = self.engine.validate(intent)
        if not validation.valid:
            logger.info("[SEARCH] Rejected %r: %s", query, validation.error)
            response.error = validation.error
            response.suggestions = validation.suggestions
            return response

        try:
            outcome = await self.engine.search(intent)
        except RegistryTimeoutError as exc:
            raise SearchFailedError(str(exc), timeout=True) from exc
        except RegistryError as exc:
            raise SearchFailedError(str(exc)) from exc

        response.strategy = outcome.strategy
        response.fallback_step = outcome.fallback_step

        records = outcome.records
        if self.enricher is not None:
            records = await self.enricher.enrich(records)

        ranked = self.ranker.rank(
            records,
            intent,
            specialty=outcome.effective_specialty,
            name_relaxed=outcome.name_filter_relaxed,
        )

        if not ranked:
            response.error, response.suggestions = no_result_feedback(
                query, intent, radius, self.engine.specialties, self.engine.locations
            )
            return response

        page_items, pagination = self.ranker.paginate(ranked, page, page_size)
        response.results = page_items
        response.results_count = pagination.total
        response.pagination = pagination
        if outcome.fallback_step:
            response.suggestions = suggest_alternative_searches(
                intent, self.engine.specialties, self.engine.locations
            ) or None
        return response

    def stats(self) -> dict:
        return {
            "parser": self.parser.stats(),
            "taxonomy": self.ranker.resolver.stats(),
            "costs": self.parser.monitor.summary() if self.parser.monitor else None,
        }

    def clear_caches(self) -> None:
        self.parser.clear_cache()
        self.ranker.resolver.clear_cache()
