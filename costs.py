"""Usage and cost counters for the paid collaborators (Gemini, Google Places)."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict

# rough per-call estimates in USD
COST_ESTIMATES = {
    "nlp_parse": 0.001,
    "places_lookup": 0.005,
}


@dataclass
class CostStats:
    total_queries: int = 0
    nlp_calls: int = 0
    cache_hits: int = 0
    taxonomy_resolutions: int = 0
    taxonomy_cache_hits: int = 0
    places_lookups: int = 0
    total_cost: float = 0.0


class CostMonitor:
    """Track collaborator calls; cache hits are counted but cost nothing."""

    def __init__(self) -> None:
        self.stats = CostStats()

    def record_query_parsing(self, used_nlp: bool, from_cache: bool = False) -> None:
        self.stats.total_queries += 1
        if from_cache:
            self.stats.cache_hits += 1
            return
        if used_nlp:
            self.stats.nlp_calls += 1
            self.stats.total_cost += COST_ESTIMATES["nlp_parse"]

    def record_taxonomy_resolution(self, from_cache: bool = False) -> None:
        if from_cache:
            self.stats.taxonomy_cache_hits += 1
            return
        self.stats.taxonomy_resolutions += 1

    def record_places_enrichment(self, doctor_count: int) -> None:
        self.stats.places_lookups += doctor_count
        self.stats.total_cost += doctor_count * COST_ESTIMATES["places_lookup"]

    def summary(self) -> Dict[str, object]:
        data = asdict(self.stats)
        queries = self.stats.total_queries
        data["total_cost"] = round(self.stats.total_cost, 4)
        data["average_cost"] = round(self.stats.total_cost / queries, 4) if queries else 0.0
        data["cache_hit_rate"] = self.stats.cache_hits / queries if queries else 0.0
        return data

    def reset(self) -> None:
        self.stats = CostStats()
