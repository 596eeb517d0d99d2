"""Turn a free-text doctor search into a structured SearchIntent.

The primary path asks Gemini for a JSON intent; the deterministic path (regex
location extraction, specialty normalization, name parsing) is always
available and is used whenever the collaborator is missing, slow or wrong.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Dict, Optional, Protocol, Tuple

from cache import TTLCache
from config import Settings, settings as default_settings
from costs import CostMonitor
from locations import LocationNormalizer, format_location
from names import NAME_STOP_WORDS, NameParser
from schemas import LocationIntent, PersonName, SearchIntent, derive_search_type
from specialities import SpecialtyNormalizer, strip_span
from utils import normalize_whitespace, setup_logger

logger = setup_logger("query_parser")


class CollaboratorError(Exception):
    """Raised when the NLP collaborator fails or answers with something unusable."""


class CollaboratorTimeoutError(CollaboratorError):
    """Raised when the NLP collaborator does not answer in time."""


class IntentClient(Protocol):
    async def extract(self, query: str) -> Dict[str, Any]:
        ...


SYSTEM_PROMPT = (
    "You are a medical search specialist. Extract structured information from "
    "doctor search queries. Always return valid JSON only."
)

EXTRACTION_PROMPT = """Extract structured information from this doctor search query:

QUERY: "{query}"

1. Doctor name (if present): first, last, middle initial. Remove titles such as
   Dr., Doctor, MD, DO. "Smith, John" means first "John", last "Smith".
2. Medical specialty: the most specific specialty mentioned, in common terms
   ("cardiologist", "retina surgeon", "eye doctor"). null if none.
3. Location: city and state separately; state as a two-letter abbreviation;
   "full" as "City, ST". null if none.
4. search_type: "name_search", "specialty_search", "location_search" or "combined".
5. confidence: 0.0-1.0, how clear the query is.

Return JSON:
{{
  "name": {{"first": "John", "last": "Smith", "middle": "A"}} or null,
  "specialty": "cardiologist" or null,
  "location": {{"city": "Miami", "state": "FL", "full": "Miami, FL"}} or null,
  "search_type": "combined",
  "confidence": 0.95
}}

Only extract what is clearly present in the query. If there is no name, set
name to null, not an empty object."""


def parse_json_payload(text: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON object from a model answer, tolerating ``` fences."""
    if not text or not text.strip():
        raise CollaboratorError("Empty response from NLP collaborator")
    body = text.strip()
    if "```json" in body:
        body = body.split("```json")[1].split("```")[0].strip()
    elif "```" in body:
        body = body.split("```")[1].split("```")[0].strip()
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise CollaboratorError(f"NLP collaborator returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CollaboratorError("NLP collaborator returned a non-object JSON value")
    return data


class GeminiIntentClient:
    """Gemini-backed intent extraction."""

    def __init__(self, api_key: str, model_name: str = "gemini-2.5-flash") -> None:
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name, system_instruction=SYSTEM_PROMPT)

    async def extract(self, query: str) -> Dict[str, Any]:
        try:
            response = await self.model.generate_content_async(
                EXTRACTION_PROMPT.format(query=query),
                generation_config={
                    "response_mime_type": "application/json",
                    "temperature": 0.2,
                    "max_output_tokens": 500,
                },
            )
            text = response.text
        except Exception as exc:
            raise CollaboratorError(f"Gemini request failed: {exc}") from exc
        return parse_json_payload(text)


# --------------------
# Location patterns
# --------------------

_STATE_NAMES = (
    r"alabama|alaska|arizona|arkansas|california|colorado|connecticut|delaware|"
    r"district\s+of\s+columbia|florida|georgia|hawaii|idaho|illinois|indiana|iowa|kansas|"
    r"kentucky|louisiana|maine|maryland|massachusetts|michigan|minnesota|mississippi|"
    r"missouri|montana|nebraska|nevada|new\s+hampshire|new\s+jersey|new\s+mexico|"
    r"new\s+york|north\s+carolina|north\s+dakota|ohio|oklahoma|oregon|pennsylvania|"
    r"rhode\s+island|south\s+carolina|south\s+dakota|tennessee|texas|utah|vermont|"
    r"west\s+virginia|virginia|washington|wisconsin|wyoming"
)

# one word, or a common two-word city shape ("San Diego", "Salt Lake City", "Palm Springs")
_CITY = (
    r"(?:(?:San|Los|Las|New|Saint|St\.?|Fort|Ft\.?|Santa|El|Salt\s+Lake|Palm|Long|Baton|"
    r"Grand|Little|Kansas|Colorado|Sioux|Cedar|Corpus|Des|Ann|Oklahoma|Virginia|Jersey)\s+)?"
    r"[A-Z][a-z]+(?:\s+(?:City|Beach|Springs|Falls|Rapids|Park|Heights|Way|Island|Creek|"
    r"Valley|Harbor|Lake))?"
)

IN_PATTERN = re.compile(
    r"\b(?:in|near|at|around)\s+([^,?!]+(?:,\s*(?:" + _STATE_NAMES + r"|[A-Za-z]{2}\b))?)",
    re.IGNORECASE,
)
CITY_STATE_NAME_PATTERN = re.compile(r"\b(" + _CITY + r")\s+((?i:" + _STATE_NAMES + r"))\b")
CITY_STATE_CODE_PATTERN = re.compile(r"\b(" + _CITY + r")\s+([A-Z]{2})\b")
TRAILING_STATE_PATTERN = re.compile(
    r"\b(" + _CITY + r")\s+(" + _STATE_NAMES + r")\s*[.?!]?\s*$", re.IGNORECASE
)

_CREDENTIAL_RE = re.compile(r"(?:,\s*(?:M\.?D\.?|D\.?O\.?)\b|\s+(?:M\.D\.|D\.O\.))", re.IGNORECASE)
FILLER_WORDS = frozenset({
    "find", "search", "show", "me", "a", "an", "the", "best", "top", "good", "great",
    "looking", "for", "need", "i", "my", "who", "is", "are", "nearby", "local", "please",
    "with", "and", "of", "to", "dr", "dr.", "doctor", "near", "around", "here",
})
# "near me", "around here": no place named
DEICTIC_WORDS = frozenset({"me", "us", "you", "here", "home", "my", "our", "this", "there"})


class QueryParser:
    """Parse free-text queries into SearchIntent, caching collaborator answers."""

    def __init__(
        self,
        specialties: SpecialtyNormalizer,
        locations: LocationNormalizer,
        names: NameParser,
        client: Optional[IntentClient] = None,
        cache: Optional[TTLCache[SearchIntent]] = None,
        monitor: Optional[CostMonitor] = None,
        settings: Settings = default_settings,
    ) -> None:
        self.specialties = specialties
        self.locations = locations
        self.names = names
        self.client = client
        self.cache = cache if cache is not None else TTLCache(settings.QUERY_CACHE_SIZE, settings.QUERY_CACHE_TTL)
        self.monitor = monitor
        self.timeout = settings.COLLABORATOR_TIMEOUT
        self._specialty_words = {w.lower() for w in NAME_STOP_WORDS}
        self._stats = {
            "total_queries": 0,
            "cache_hits": 0,
            "nlp_calls": 0,
            "errors": 0,
            "timeouts": 0,
            "fallbacks": 0,
        }

    async def ask_collaborator(self, query: str) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(self.client.extract(query), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise CollaboratorTimeoutError(f"NLP collaborator timed out after {self.timeout:g}s") from exc

    async def parse(self, query: str) -> SearchIntent:
        self._stats["total_queries"] += 1
        key = normalize_whitespace(query or "").lower()

        cached = self.cache.get(key)
        if cached is not None:
            self._stats["cache_hits"] += 1
            if self.monitor:
                self.monitor.record_query_parsing(used_nlp=False, from_cache=True)
            return cached.model_copy(deep=True)

        if self.client is not None and key:
            self._stats["nlp_calls"] += 1
            if self.monitor:
                self.monitor.record_query_parsing(used_nlp=True)
            try:
                payload = await self.ask_collaborator(query)
                intent = self.validate_and_normalize(payload)
                self.cache.set(key, intent)
                logger.info("[PARSE] NLP intent for '%s': %s", query, intent.search_type)
                return intent.model_copy(deep=True)
            except CollaboratorTimeoutError as exc:
                self._stats["timeouts"] += 1
                logger.warning("[PARSE] %s, using fallback", exc)
            except CollaboratorError as exc:
                self._stats["errors"] += 1
                logger.warning("[PARSE] NLP collaborator failed, using fallback: %s", exc)
            except (ValueError, TypeError, AttributeError) as exc:
                self._stats["errors"] += 1
                logger.warning("[PARSE] Malformed NLP intent, using fallback: %s", exc)
        elif self.monitor:
            self.monitor.record_query_parsing(used_nlp=False)

        self._stats["fallbacks"] += 1
        return self.fallback_parse(query)

    # --------------------
    # Collaborator output
    # --------------------

    @staticmethod
    def _clean(value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        text = normalize_whitespace(str(value))
        if not text or text.lower() in {"null", "none", "n/a"}:
            return None
        return text

    def validate_and_normalize(self, parsed: Dict[str, Any]) -> SearchIntent:
        name = None
        raw_name = parsed.get("name")
        if isinstance(raw_name, dict):
            first = self._clean(raw_name.get("first"))
            last = self._clean(raw_name.get("last"))
            if first or last:
                name = PersonName(first=first, last=last, middle=self._clean(raw_name.get("middle")))

        specialty = self._clean(parsed.get("specialty"))
        if specialty:
            specialty = self.specialties.normalize(specialty) or specialty

        location = self._location_from_payload(parsed.get("location"))

        raw_confidence = parsed.get("confidence")
        try:
            confidence = 0.8 if raw_confidence is None else float(raw_confidence)
        except (TypeError, ValueError):
            confidence = 0.8
        confidence = max(0.0, min(1.0, confidence))

        intent = SearchIntent(
            name=name,
            specialty=specialty,
            location=location,
            confidence=confidence,
            source="nlp",
        )
        intent.search_type = derive_search_type(intent.has_name, intent.has_specialty, intent.has_location)
        return intent

    def _location_from_payload(self, raw: Any) -> Optional[LocationIntent]:
        if isinstance(raw, str):
            return self._location_intent(raw)
        if not isinstance(raw, dict):
            return None
        city = self._clean(raw.get("city"))
        state_text = self._clean(raw.get("state"))
        full = self._clean(raw.get("full"))
        if not city and not state_text:
            return self._location_intent(full) if full else None
        state = self.locations.state_code(state_text) if state_text else None
        if city and not state:
            parsed = self.locations.parse(city)
            if parsed.state:
                city, state = parsed.city, parsed.state
        if city:
            corrected = self.locations.correct_typo(city)
            if corrected != city:
                fixed = self.locations.parse(corrected)
                city, state = fixed.city or city, state or fixed.state
        if not city and not state:
            return None
        return LocationIntent(city=city, state=state, full=full or format_location(city, state))

    def _location_intent(self, text: Optional[str]) -> Optional[LocationIntent]:
        if not text:
            return None
        parsed = self.locations.parse(text)
        if not parsed.city and not parsed.state:
            return None
        return LocationIntent(
            city=parsed.city,
            state=parsed.state,
            full=format_location(parsed.city, parsed.state),
        )

    # --------------------
    # Deterministic path
    # --------------------

    def extract_location(self, query: str) -> Tuple[Optional[str], str]:
        """Find a location phrase; return it and the query with that span removed.

        "near me" style phrases are not locations. For "City ST" shapes the
        rightmost match wins, so a bare credential ("Smith MD Houston TX")
        is not read as a place.
        """
        pos = 0
        while True:
            m = IN_PATTERN.search(query, pos)
            if not m:
                break
            location = m.group(1).strip(" .")
            words = location.split()
            if words and words[0].lower() not in DEICTIC_WORDS:
                return location, strip_span(query, m.span())
            # resume after the skipped word; the capture may hide a later "in City"
            pos = m.start(1) + 1

        for pattern in (CITY_STATE_NAME_PATTERN, CITY_STATE_CODE_PATTERN):
            matches = [
                m for m in pattern.finditer(query)
                if pattern is not CITY_STATE_CODE_PATTERN or m.group(2) in self.locations.codes
            ]
            if matches:
                m = matches[-1]
                return f"{m.group(1)} {m.group(2)}", strip_span(query, m.span())

        m = TRAILING_STATE_PATTERN.search(query)
        if m:
            city = m.group(1)
            first_word = city.split()[0].lower()
            singular = first_word[:-1] if first_word.endswith("s") else first_word
            if {first_word, singular} & (self._specialty_words | set(self.specialties.taxonomy.synonyms)):
                return m.group(2), strip_span(query, m.span(2))
            return f"{city} {m.group(2)}", strip_span(query, m.span())

        return None, query

    def fallback_parse(self, query: str) -> SearchIntent:
        text = normalize_whitespace(_CREDENTIAL_RE.sub("", query or ""))

        location_text, text = self.extract_location(text)
        location = self._location_intent(location_text)

        specialty = None
        found = self.specialties.match(text)
        if found:
            specialty = found.canonical
            text = strip_span(text, found.span)

        remainder = " ".join(
            w for w in text.split()
            if w.lower().strip(",.") not in FILLER_WORDS and re.fullmatch(r"[A-Za-z][A-Za-z.'-]*,?", w)
        )
        parsed_name = self.names.parse(remainder)
        name = PersonName(first=parsed_name.first, last=parsed_name.last) if parsed_name.found else None

        intent = SearchIntent(name=name, specialty=specialty, location=location, source="fallback")
        intent.search_type = derive_search_type(intent.has_name, intent.has_specialty, intent.has_location)
        intent.confidence = 0.6 if intent.field_count >= 2 else 0.5
        logger.info(
            "[PARSE] Fallback intent for '%s': name=%s specialty=%s location=%s",
            query,
            name.full if name else None,
            specialty,
            location.full if location else None,
        )
        return intent

    def stats(self) -> Dict[str, object]:
        total = self._stats["total_queries"]
        return {
            **self._stats,
            "cache_hit_rate": self._stats["cache_hits"] / total if total else 0,
            "cache_size": len(self.cache),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
