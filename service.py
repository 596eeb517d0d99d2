from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Protocol, Tuple

import httpx

from config import Settings, settings as default_settings
from fuzzy import filter_by_name
from locations import LocationNormalizer
from schemas import ProviderRecord, SearchIntent
from specialities import SpecialtyNormalizer
from utils import dedupe_by_npi, setup_logger

logger = setup_logger("service")

# --------------------
# Errors
# --------------------


class RegistryError(Exception):
    """Raised when the provider registry cannot be queried."""


class RegistryTimeoutError(RegistryError):
    """Raised when the provider registry does not answer in time."""


# --------------------
# Registry client
# --------------------


class ProviderRegistry(Protocol):
    async def search(
        self,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        specialty: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        ...


class NPPESClient:
    """Async client for the public NPPES NPI registry."""

    def __init__(self, settings: Settings = default_settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._http = client
        self.calls = 0

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            timeout=self.settings.HTTP_READ_TIMEOUT,
            connect=self.settings.HTTP_CONNECT_TIMEOUT,
            read=self.settings.HTTP_READ_TIMEOUT,
            write=self.settings.HTTP_WRITE_TIMEOUT,
            pool=self.settings.HTTP_POOL_TIMEOUT,
        )
        return httpx.AsyncClient(timeout=timeout)

    def _base_params(self) -> Dict[str, str]:
        return {
            "version": self.settings.NPI_API_VERSION,
            "enumeration_type": self.settings.NPI_ENUMERATION_TYPE,
            "limit": str(self.settings.NPI_RESULT_LIMIT),
        }

    async def search(
        self,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        specialty: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        criteria = {
            "first_name": first_name,
            "last_name": last_name,
            "taxonomy_description": specialty,
            "city": city,
            "state": state,
        }
        params = self._base_params() | {k: v for k, v in criteria.items() if v}
        self.calls += 1

        try:
            if self._http is not None:
                r = await self._http.get(self.settings.NPI_BASE_URL, params=params)
            else:
                async with self._client() as client:
                    r = await client.get(self.settings.NPI_BASE_URL, params=params)
            r.raise_for_status()
            data = r.json()
        except httpx.TimeoutException as exc:
            raise RegistryTimeoutError(f"NPPES request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RegistryError(f"NPPES request failed: {exc}") from exc
        except ValueError as exc:
            raise RegistryError(f"NPPES returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise RegistryError("NPPES returned an unexpected payload")
        if data.get("Errors"):
            logger.warning("[SEARCH] NPPES rejected %s: %s", criteria, data["Errors"])
            return []
        results = data.get("results") or []
        logger.info("[SEARCH] NPPES %s -> %d results", {k: v for k, v in criteria.items() if v}, len(results))
        return results


# --------------------
# Cleaning
# --------------------


def _best_location_address(addresses: List[Dict[str, Any]], want_state: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not addresses:
        return None
    locs = [a for a in addresses if (a.get("address_purpose") or "").upper() == "LOCATION"]
    if want_state:
        locs = [a for a in locs if (a.get("state") or "").upper() == want_state.upper()] or locs
    return locs[0] if locs else addresses[0]


def _name_from_basic(basic: Dict[str, Any], with_middle: bool = False) -> str:
    first = (basic.get("first_name") or "").strip()
    middle = (basic.get("middle_name") or "").strip() if with_middle else ""
    last = (basic.get("last_name") or "").strip()
    return " ".join(p for p in [first, middle, last] if p)


def _extract_zip_from_addr(addr: Dict[str, Any]) -> Optional[str]:
    pc = (addr.get("postal_code") or "").strip()
    if not pc:
        return None
    return pc[:5]  # ZIP+4 → ZIP-5


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(value[:10], fmt).date()
        except ValueError:
            continue
    return None


def _years_experience(enumeration_date: Optional[str], today: date) -> int:
    enumerated = _parse_date(enumeration_date)
    if not enumerated:
        return 10
    # enumeration happens after training, hence the +5
    return max(5, min(40, today.year - enumerated.year + 5))


def to_provider_record(
    entry: Dict[str, Any],
    want_state: Optional[str] = None,
    today: Optional[date] = None,
) -> Optional[ProviderRecord]:
    basic = entry.get("basic") or {}
    addresses = entry.get("addresses") or []
    addr = _best_location_address(addresses, want_state=want_state)
    npi = str(entry.get("number") or "").strip()

    if not basic or not addr or not npi:
        return None

    taxonomies = entry.get("taxonomies") or []
    primary_tax = next((t for t in taxonomies if t.get("primary")), taxonomies[0] if taxonomies else None)

    line1 = addr.get("address_1")
    city = addr.get("city")
    state = addr.get("state")
    zip5 = _extract_zip_from_addr(addr)
    single_line = ", ".join(filter(None, [line1, city, state])) + (f" {zip5}" if zip5 else "")

    return ProviderRecord(
        npi=npi,
        name=_name_from_basic(basic),
        first_name=basic.get("first_name") or None,
        last_name=basic.get("last_name") or None,
        credential=basic.get("credential") or None,
        specialty=(primary_tax or {}).get("desc") or "General Practice",
        taxonomy_codes=[t["code"] for t in taxonomies if t.get("code")],
        location=single_line.strip() or "Address not available",
        city=city or None,
        state=state or None,
        postal_code=zip5,
        phone=addr.get("telephone_number") or "Not available",
        rating=0.0,
        years_experience=_years_experience(basic.get("enumeration_date"), today or date.today()),
    )


# --------------------
# Post-filters
# --------------------


def _has_both_names(basic: Dict[str, Any]) -> bool:
    return bool((basic.get("first_name") or "").strip() and (basic.get("last_name") or "").strip())


def is_lenient_match(entry: Dict[str, Any], **_: Any) -> bool:
    """Both names and at least one address; no specialty constraint."""
    return _has_both_names(entry.get("basic") or {}) and bool(entry.get("addresses"))


def is_active_provider(entry: Dict[str, Any], today: date, max_age_years: int = 5, **_: Any) -> bool:
    """Active status, recently updated, with a street-level practice location."""
    basic = entry.get("basic") or {}
    status = (basic.get("status") or "").upper()
    if status not in ("A", "ACTIVE"):
        return False
    updated = _parse_date(basic.get("last_updated"))
    if not updated or (today - updated).days > max_age_years * 365.25:
        return False
    has_location = any(
        (a.get("address_purpose") or "").upper() == "LOCATION" and (a.get("address_1") or "").strip()
        for a in entry.get("addresses") or []
    )
    return has_location and _has_both_names(basic)


def is_minimally_valid(entry: Dict[str, Any], **_: Any) -> bool:
    """Any name, any address, not explicitly deactivated."""
    basic = entry.get("basic") or {}
    status = (basic.get("status") or "").upper()
    if status in ("D", "DEACTIVATED") or basic.get("deactivation_date"):
        return False
    return bool(_name_from_basic(basic)) and bool(entry.get("addresses"))


FILTERS: Dict[str, Callable[..., bool]] = {
    "lenient": is_lenient_match,
    "active": is_active_provider,
    "minimal": is_minimally_valid,
}


# --------------------
# Strategy engine
# --------------------


class Strategy(NamedTuple):
    name: str
    fields: Tuple[str, ...]
    post_filter: str


# keyed by (has_name, has_specialty, has_location)
STRATEGIES: Dict[Tuple[bool, bool, bool], Strategy] = {
    (True, False, False): Strategy("name_only", ("name",), "lenient"),
    (True, False, True): Strategy("name_location", ("name", "location"), "lenient"),
    (True, True, False): Strategy("name_specialty", ("name", "specialty"), "lenient"),
    (True, True, True): Strategy("all_fields", ("name", "specialty", "location"), "lenient"),
    (False, True, True): Strategy("specialty_location", ("specialty", "location"), "active"),
    (False, True, False): Strategy("specialty_only", ("specialty",), "active"),
    (False, False, True): Strategy("location_only", ("location",), "active"),
}

VALIDATION_ERROR = (
    "Please provide at least 2 of the following: name, specialty, or location. "
    "Name alone is also acceptable."
)
VALIDATION_SUGGESTIONS = [
    "Provide at least 2 of: name, specialty, or location",
    'Name alone is acceptable (e.g., "Dr. John Smith")',
    'Name + Specialty (e.g., "Dr. Smith Cardiologist")',
    'Name + Location (e.g., "Dr. Smith in Houston, TX")',
    'Specialty + Location (e.g., "Cardiologists in Houston, TX")',
]


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


@dataclass
class SearchAttempt:
    step: str
    params: Dict[str, Optional[str]]
    raw_count: int
    kept_count: int


@dataclass
class EngineResult:
    records: List[ProviderRecord] = field(default_factory=list)
    strategy: Optional[str] = None
    fallback_step: Optional[str] = None
    effective_specialty: Optional[str] = None
    name_filter_relaxed: bool = False
    attempts: List[SearchAttempt] = field(default_factory=list)
    error: Optional[str] = None
    suggestions: Optional[List[str]] = None


class SearchStrategyEngine:
    """Pick a registry query for an intent and widen it until something is found."""

    def __init__(
        self,
        registry: ProviderRegistry,
        specialties: SpecialtyNormalizer,
        locations: LocationNormalizer,
        settings: Settings = default_settings,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.registry = registry
        self.specialties = specialties
        self.locations = locations
        self.settings = settings
        self.today = today

    @staticmethod
    def validate(intent: SearchIntent) -> ValidationResult:
        if intent.has_name or intent.field_count >= 2:
            return ValidationResult(True)
        return ValidationResult(False, VALIDATION_ERROR, list(VALIDATION_SUGGESTIONS))

    @staticmethod
    def select_strategy(intent: SearchIntent) -> Optional[Strategy]:
        return STRATEGIES.get((intent.has_name, intent.has_specialty, intent.has_location))

    # --------------------
    # Filters
    # --------------------

    def location_matches(self, entry: Dict[str, Any], city: Optional[str], state: Optional[str]) -> bool:
        if not city and not state:
            return True
        for addr in entry.get("addresses") or []:
            a_city = addr.get("city") or ""
            a_state = (addr.get("state") or "").upper()
            if state and a_state == state.upper():
                return True
            if city and self.locations.city_matches(city, a_city):
                if state and a_state and a_state != state.upper():
                    continue
                return True
        return False

    def _passes(self, entry: Dict[str, Any], post_filter: str, intent: SearchIntent) -> bool:
        check = FILTERS[post_filter]
        if not check(entry, today=self.today(), max_age_years=self.settings.ACTIVE_UPDATE_YEARS):
            return False
        loc = intent.location
        return self.location_matches(entry, loc.city if loc else None, loc.state if loc else None)

    # --------------------
    # Registry attempts
    # --------------------

    def _params(self, intent: SearchIntent, fields: Tuple[str, ...], specialty: Optional[str]) -> Dict[str, Optional[str]]:
        params: Dict[str, Optional[str]] = {}
        if "name" in fields and intent.name:
            params["first_name"] = intent.name.first
            params["last_name"] = intent.name.last
        if "last_name" in fields and intent.name:
            params["last_name"] = intent.name.last or intent.name.first
        if "specialty" in fields and specialty:
            params["specialty"] = self.specialties.registry_term(specialty)
        if "location" in fields and intent.location:
            params["city"] = intent.location.city
            params["state"] = intent.location.state
        return {k: v for k, v in params.items() if v}

    async def _attempt(
        self,
        result: EngineResult,
        step: str,
        intent: SearchIntent,
        fields: Tuple[str, ...],
        specialty: Optional[str],
        post_filter: str,
        primary: bool = False,
    ) -> List[Dict[str, Any]]:
        params = self._params(intent, fields, specialty)
        if not params:
            return []
        try:
            raw = await self.registry.search(**params)
        except RegistryError as exc:
            if primary:
                raise
            logger.warning("[SEARCH] %s attempt failed, treating as empty: %s", step, exc)
            raw = []
        kept = [e for e in raw if self._passes(e, post_filter, intent)]
        result.attempts.append(SearchAttempt(step, params, len(raw), len(kept)))
        logger.info("[SEARCH] %s: %d raw, %d kept", step, len(raw), len(kept))
        return kept

    async def search(self, intent: SearchIntent) -> EngineResult:
        validation = self.validate(intent)
        if not validation.valid:
            return EngineResult(error=validation.error, suggestions=validation.suggestions)

        strategy = self.select_strategy(intent)
        result = EngineResult(strategy=strategy.name, effective_specialty=intent.specialty)
        specialty = intent.specialty

        entries = await self._attempt(
            result, strategy.name, intent, strategy.fields, specialty, strategy.post_filter, primary=True
        )
        if not entries:
            entries = await self._expand(result, intent, strategy)

        entries = dedupe_by_npi(entries, key=lambda e: str(e.get("number") or ""))

        if intent.has_name:
            entries, relaxed = filter_by_name(
                entries,
                intent.name.full,
                key=lambda e: _name_from_basic(e.get("basic") or {}, with_middle=True),
                min_score=self.settings.NAME_FILTER_MIN_SCORE,
            )
            result.name_filter_relaxed = relaxed
            if relaxed:
                logger.info("[SEARCH] No candidate matched the name closely; keeping unfiltered set")

        want_state = intent.location.state if intent.location else None
        today = self.today()
        records = [to_provider_record(e, want_state=want_state, today=today) for e in entries]
        result.records = [r for r in records if r is not None]
        return result

    async def _expand(self, result: EngineResult, intent: SearchIntent, strategy: Strategy) -> List[Dict[str, Any]]:
        """Fallback cascade, run only while nothing has been found."""
        specialty = intent.specialty
        tried = {self.specialties.registry_term(specialty)} if specialty else set()
        name_filter = strategy.post_filter

        async def substitute(step: str, label: str) -> List[Dict[str, Any]]:
            term = self.specialties.registry_term(label)
            if term in tried:
                return []
            tried.add(term)
            return await self._attempt(result, step, intent, strategy.fields, label, name_filter)

        if specialty and "specialty" in strategy.fields:
            broader = self.specialties.broader_category(specialty)
            if broader:
                found = await substitute("broader_specialty", broader)
                if found:
                    return self._settle(result, "broader_specialty", found, broader)

            merged: List[Dict[str, Any]] = []
            first_hit = None
            for related in self.specialties.related_categories(specialty):
                found = await substitute("related_specialty", related)
                if found:
                    first_hit = first_hit or related
                    merged.extend(found)
            if merged:
                return self._settle(result, "related_specialty", dedupe_by_npi(merged, key=lambda e: str(e.get("number") or "")), first_hit)

            for alternative in self.specialties.alternative_terms(specialty):
                found = await substitute("alternative_specialty", alternative)
                if found:
                    return self._settle(result, "alternative_specialty", found, alternative)

        if intent.has_location and (intent.has_name or intent.has_specialty):
            fields = tuple(f for f in strategy.fields if f != "location")
            post_filter = "lenient" if intent.has_name else "active"
            found = await self._attempt(result, "drop_location", intent, fields, specialty, post_filter)
            if found:
                return self._settle(result, "drop_location", found, specialty)

        if intent.has_specialty and intent.has_name:
            fields = tuple(f for f in strategy.fields if f != "specialty")
            found = await self._attempt(result, "drop_specialty", intent, fields, None, "lenient")
            if found:
                return self._settle(result, "drop_specialty", found, None)

        if intent.has_name:
            fields, label = ("last_name",), None
        elif intent.has_specialty:
            fields, label = ("specialty",), specialty
        else:
            fields, label = ("location",), None
        found = await self._attempt(result, "last_resort", intent, fields, label, "minimal")
        found = found[: self.settings.LAST_RESORT_CAP]
        if found:
            return self._settle(result, "last_resort", found, label)

        logger.info("[SEARCH] Fallback cascade exhausted for strategy %s", strategy.name)
        return []

    @staticmethod
    def _settle(result: EngineResult, step: str, entries: List[Dict[str, Any]], specialty: Optional[str]) -> List[Dict[str, Any]]:
        result.fallback_step = step
        result.effective_specialty = specialty
        logger.info("[SEARCH] Fallback %s found %d candidates (specialty=%s)", step, len(entries), specialty)
        return entries
