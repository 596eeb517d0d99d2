from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from config import Settings, settings as default_settings
from fuzzy import filter_by_name, match_name, similarity
from locations import LocationNormalizer
from schemas import Confidence, Pagination, ProviderRecord, RankedResult, SearchIntent
from specialities import SpecialtyNormalizer, TaxonomyMapping, TaxonomyResolver
from utils import dedupe_by_npi, setup_logger

logger = setup_logger("ranking")

WEIGHTS_WITH_NAME = {"name": 0.6, "specialty": 0.2, "location": 0.2}
WEIGHTS_WITHOUT_NAME = {"specialty": 0.5, "location": 0.5}


def _score_taxonomy(codes: Sequence[str], description: str, mapping: TaxonomyMapping, keywords: Sequence[str]) -> float:
    """Best agreement between a record's taxonomy codes and the requested mapping."""
    best = 0.0
    wanted_prefix = mapping.primary[:4]
    for code in codes:
        code = code.upper()
        if mapping.secondary and code == mapping.secondary:
            s = 1.0
        elif code == mapping.primary:
            s = 0.8
        elif code.startswith(wanted_prefix):
            s = 0.7
        else:
            s = 0.0
        best = max(best, s)
    desc = description.lower()
    if best < 0.6 and any(k in desc for k in keywords if k):
        best = 0.6
    return best


class ResultRanker:
    """Score, threshold, sort and paginate provider records for one intent."""

    def __init__(
        self,
        specialties: SpecialtyNormalizer,
        locations: LocationNormalizer,
        resolver: TaxonomyResolver,
        settings: Settings = default_settings,
    ) -> None:
        self.specialties = specialties
        self.locations = locations
        self.resolver = resolver
        self.settings = settings

    # --------------------
    # Component scores
    # --------------------

    def specialty_score(self, record: ProviderRecord, specialty: str) -> float:
        have = record.specialty.lower()
        wanted = {specialty.lower(), self.specialties.registry_term(specialty).lower()}
        if any(w in have or have in w for w in wanted):
            return 100.0

        score = max(similarity(have, w) for w in wanted)
        mapping = self.resolver.resolve(specialty)
        if mapping:
            canonical = self.specialties.normalize(specialty) or specialty
            keywords = self.specialties.taxonomy.keywords.get(canonical, ())
            score = max(score, _score_taxonomy(record.taxonomy_codes, record.specialty, mapping, keywords))
        return round(score * 100, 1)

    def location_score(self, record: ProviderRecord, intent: SearchIntent) -> float:
        loc = intent.location
        city_ok = bool(loc.city) and self.locations.city_matches(loc.city, record.city)
        state_ok = bool(loc.state) and (record.state or "").upper() == loc.state.upper()
        nearby = bool(loc.city) and (record.city or "").title() in self.locations.nearby_cities(loc.city)

        if loc.city and loc.state:
            if city_ok and state_ok:
                return 100.0
            if nearby and state_ok:
                return 70.0
            if state_ok:
                return 60.0
            return 50.0 if city_ok else 0.0
        if loc.city:
            return 100.0 if city_ok else (70.0 if nearby else 0.0)
        return 100.0 if state_ok else 0.0

    def score(
        self,
        record: ProviderRecord,
        intent: SearchIntent,
        specialty: Optional[str] = None,
        use_name: bool = True,
    ) -> Confidence:
        """Weighted confidence for one record.

        With ``use_name=False`` the name is left out entirely, which is how a
        relaxed (name-unmatched) candidate set is scored.
        """
        specialty = specialty or intent.specialty
        with_name = use_name and intent.has_name
        weights = WEIGHTS_WITH_NAME if with_name else WEIGHTS_WITHOUT_NAME
        parts: Dict[str, float] = {}

        if with_name:
            parts["name"] = float(match_name(intent.name.full, record.name).score)
        if specialty:
            parts["specialty"] = self.specialty_score(record, specialty)
        if intent.has_location:
            parts["location"] = self.location_score(record, intent)

        used = sum(weights[k] for k in parts)
        base = sum(weights[k] * v for k, v in parts.items()) / used if used else 0.0
        bonus = float(self.settings.SOURCE_BONUS) if record.multi_source else 0.0

        return Confidence(
            name_score=parts.get("name", 0.0),
            specialty_score=parts.get("specialty", 0.0),
            location_score=parts.get("location", 0.0),
            source_bonus=bonus,
            total=round(min(100.0, max(0.0, base + bonus)), 1),
        )

    def threshold_for(self, intent: Optional[SearchIntent], record: ProviderRecord, use_name: bool = True) -> int:
        if intent is None:
            return self.settings.THRESHOLD_DEFAULT
        if use_name and intent.has_name:
            return self.settings.THRESHOLD_WITH_NAME
        if record.multi_source:
            return self.settings.THRESHOLD_MULTI_SOURCE
        return self.settings.THRESHOLD_WITHOUT_NAME

    # --------------------
    # Ranking
    # --------------------

    def rank(
        self,
        candidates: List[ProviderRecord],
        intent: SearchIntent,
        threshold: Optional[float] = None,
        specialty: Optional[str] = None,
        name_relaxed: bool = False,
    ) -> List[RankedResult]:
        """Rank candidates for ``intent``.

        ``name_relaxed`` marks a set the engine already kept despite no name
        match; such a set, like one the pre-filter here would empty, is scored
        on specialty and location only.
        """
        records = dedupe_by_npi(candidates)
        if intent.has_name and not name_relaxed:
            records, name_relaxed = filter_by_name(
                records,
                intent.name.full,
                key=lambda r: r.name,
                min_score=self.settings.NAME_FILTER_MIN_SCORE,
            )
            if name_relaxed:
                logger.info("[RANK] Name pre-filter would drop every candidate; ranking all %d", len(records))

        use_name = intent.has_name and not name_relaxed
        # a relaxed name-only query has nothing left to score against
        nothing_to_score = not use_name and not (specialty or intent.specialty) and not intent.has_location

        ranked: List[RankedResult] = []
        dropped = 0
        for record in records:
            confidence = self.score(record, intent, specialty=specialty, use_name=use_name)
            if threshold is not None:
                cutoff = threshold
            elif nothing_to_score:
                cutoff = 0
            else:
                cutoff = self.threshold_for(intent, record, use_name=use_name)
            if confidence.total < cutoff:
                dropped += 1
                continue
            ranked.append(RankedResult(**record.model_dump(), confidence=confidence))

        # sorted() is stable, so equal scores keep registry order
        ranked = sorted(ranked, key=lambda r: r.confidence.total, reverse=True)
        logger.info("[RANK] %d kept, %d below threshold", len(ranked), dropped)
        return ranked

    @staticmethod
    def paginate(items: List[RankedResult], page: int, page_size: int) -> Tuple[List[RankedResult], Pagination]:
        total = len(items)
        offset = (page - 1) * page_size
        pagination = Pagination(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=-(-total // page_size) if page_size else 0,
            has_more=offset + page_size < total,
        )
        return items[offset: offset + page_size], pagination
