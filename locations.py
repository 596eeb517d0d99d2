"""Location parsing: "City, ST" shapes, state names, typo corrections and aliases."""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, NamedTuple, Optional

from utils import normalize_whitespace

STATE_MAP: Dict[str, str] = {
    'ALABAMA': 'AL', 'ALASKA': 'AK', 'ARIZONA': 'AZ', 'ARKANSAS': 'AR',
    'CALIFORNIA': 'CA', 'COLORADO': 'CO', 'CONNECTICUT': 'CT', 'DELAWARE': 'DE',
    'FLORIDA': 'FL', 'GEORGIA': 'GA', 'HAWAII': 'HI', 'IDAHO': 'ID',
    'ILLINOIS': 'IL', 'INDIANA': 'IN', 'IOWA': 'IA', 'KANSAS': 'KS',
    'KENTUCKY': 'KY', 'LOUISIANA': 'LA', 'MAINE': 'ME', 'MARYLAND': 'MD',
    'MASSACHUSETTS': 'MA', 'MICHIGAN': 'MI', 'MINNESOTA': 'MN', 'MISSISSIPPI': 'MS',
    'MISSOURI': 'MO', 'MONTANA': 'MT', 'NEBRASKA': 'NE', 'NEVADA': 'NV',
    'NEW HAMPSHIRE': 'NH', 'NEW JERSEY': 'NJ', 'NEW MEXICO': 'NM', 'NEW YORK': 'NY',
    'NORTH CAROLINA': 'NC', 'NORTH DAKOTA': 'ND', 'OHIO': 'OH', 'OKLAHOMA': 'OK',
    'OREGON': 'OR', 'PENNSYLVANIA': 'PA', 'RHODE ISLAND': 'RI', 'SOUTH CAROLINA': 'SC',
    'SOUTH DAKOTA': 'SD', 'TENNESSEE': 'TN', 'TEXAS': 'TX', 'UTAH': 'UT',
    'VERMONT': 'VT', 'VIRGINIA': 'VA', 'WASHINGTON': 'WA', 'WEST VIRGINIA': 'WV',
    'WISCONSIN': 'WI', 'WYOMING': 'WY', 'DISTRICT OF COLUMBIA': 'DC',
}

STATE_CODES = frozenset(STATE_MAP.values())

# known misspellings -> canonical "City, ST"
LOCATION_CORRECTIONS: Dict[str, str] = {
    'seatle': 'Seattle, WA',
    'seattel': 'Seattle, WA',
    'new yourk': 'New York, NY',
    'los angles': 'Los Angeles, CA',
    'san fransisco': 'San Francisco, CA',
    'chigago': 'Chicago, IL',
    'philidelphia': 'Philadelphia, PA',
    'phenix': 'Phoenix, AZ',
    'huston': 'Houston, TX',
    'miama': 'Miami, FL',
    'atlants': 'Atlanta, GA',
    'racoma': 'Tacoma, WA',
    'tukwilla': 'Tukwila, WA',
    'pittsburg': 'Pittsburgh, PA',
    'cincinatti': 'Cincinnati, OH',
}

# alias -> canonical lowercase city, for containment checks
CITY_ALIASES: Dict[str, str] = {
    'nyc': 'new york',
    'new york city': 'new york',
    'manhattan': 'new york',
    'la': 'los angeles',
    'l.a.': 'los angeles',
    'sf': 'san francisco',
    'san fran': 'san francisco',
    'philly': 'philadelphia',
    'dc': 'washington',
    'washington dc': 'washington',
    'vegas': 'las vegas',
    'nola': 'new orleans',
    'st louis': 'saint louis',
    'st. louis': 'saint louis',
    'st paul': 'saint paul',
    'st. paul': 'saint paul',
    'ft worth': 'fort worth',
    'ft. worth': 'fort worth',
}

# nearby cities for alternative search suggestions
NEARBY_CITIES: Dict[str, tuple] = {
    'Seattle': ('Tacoma', 'Bellevue', 'Everett', 'Redmond'),
    'Tacoma': ('Seattle', 'Lakewood', 'Puyallup', 'Federal Way'),
    'Los Angeles': ('Santa Monica', 'Pasadena', 'Long Beach', 'Burbank'),
    'San Francisco': ('Oakland', 'San Jose', 'Berkeley', 'Palo Alto'),
    'New York': ('Brooklyn', 'Queens', 'Manhattan', 'Bronx'),
    'Chicago': ('Evanston', 'Oak Park', 'Naperville', 'Schaumburg'),
    'Houston': ('Sugar Land', 'Pasadena', 'The Woodlands', 'Katy'),
}


class ParsedLocation(NamedTuple):
    city: Optional[str]
    state: Optional[str]


@dataclass(frozen=True)
class LocationAliasTable:
    """Immutable location tables, built once and shared read-only."""

    states: Mapping[str, str]
    corrections: Mapping[str, str]
    city_aliases: Mapping[str, str]
    nearby: Mapping[str, tuple]

    @classmethod
    def build(
        cls,
        states: Mapping[str, str] = STATE_MAP,
        corrections: Mapping[str, str] = LOCATION_CORRECTIONS,
        city_aliases: Mapping[str, str] = CITY_ALIASES,
        nearby: Mapping[str, tuple] = NEARBY_CITIES,
    ) -> "LocationAliasTable":
        return cls(
            states=MappingProxyType({k.upper(): v.upper() for k, v in states.items()}),
            corrections=MappingProxyType({k.lower(): v for k, v in corrections.items()}),
            city_aliases=MappingProxyType({k.lower(): v.lower() for k, v in city_aliases.items()}),
            nearby=MappingProxyType(dict(nearby)),
        )


DEFAULT_LOCATIONS = LocationAliasTable.build()

_CITY_STATE_RE = re.compile(r"^([^,]+),\s*(.+)$")
_STATE_CODE_RE = re.compile(r"^[A-Za-z]{2}$")


def format_location(city: Optional[str], state: Optional[str]) -> Optional[str]:
    if city and state:
        return f"{city}, {state}"
    return city or state or None


class LocationNormalizer:
    """Turn free-text locations into (city, state) pairs."""

    def __init__(self, aliases: LocationAliasTable = DEFAULT_LOCATIONS) -> None:
        self.aliases = aliases
        self.codes = frozenset(aliases.states.values())

    def state_code(self, text: Optional[str]) -> Optional[str]:
        """Convert state name or abbreviation to standard 2-letter code."""
        if not text:
            return None
        state_text = normalize_whitespace(text.replace(".", "")).upper()
        if _STATE_CODE_RE.match(state_text) and state_text in self.codes:
            return state_text
        return self.aliases.states.get(state_text)

    def correct_typo(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return text
        key = normalize_whitespace(text).lower()
        if key in self.aliases.corrections:
            return self.aliases.corrections[key]
        head, sep, tail = text.partition(",")
        head_key = normalize_whitespace(head).lower()
        if sep and head_key in self.aliases.corrections:
            city = self.aliases.corrections[head_key].split(",")[0]
            return f"{city},{tail}"
        return text

    def parse(self, text: Optional[str]) -> ParsedLocation:
        if not text or not text.strip():
            return ParsedLocation(None, None)
        trimmed = normalize_whitespace(self.correct_typo(text))

        m = _CITY_STATE_RE.match(trimmed)
        if m:
            city = normalize_whitespace(m.group(1))
            state = self.state_code(m.group(2))
            return ParsedLocation(city or None, state)

        words = trimmed.split(" ")
        if len(words) >= 2:
            for n in (3, 2, 1):
                if len(words) <= n:
                    continue
                tail = " ".join(words[-n:])
                state = self.aliases.states.get(tail.upper())
                if n == 1 and not state and len(tail) == 2 and tail.isupper():
                    state = self.state_code(tail)
                if state:
                    return ParsedLocation(" ".join(words[:-n]), state)

        # a bare lowercase pair is a word ("me", "in"), not a state code
        if _STATE_CODE_RE.match(trimmed) and trimmed.isupper():
            code = self.state_code(trimmed)
            if code:
                return ParsedLocation(None, code)

        state = self.aliases.states.get(trimmed.upper())
        if state:
            return ParsedLocation(None, state)

        return ParsedLocation(trimmed, None)

    def canonical_city(self, city: Optional[str]) -> str:
        key = normalize_whitespace(city or "").lower()
        return self.aliases.city_aliases.get(key, key)

    def city_matches(self, wanted: Optional[str], candidate: Optional[str]) -> bool:
        """Case-insensitive containment in either direction after alias lookup."""
        a = self.canonical_city(wanted)
        b = self.canonical_city(candidate)
        if not a or not b:
            return False
        return a in b or b in a

    def nearby_cities(self, city: Optional[str]):
        if not city:
            return ()
        for known, nearby in self.aliases.nearby.items():
            if known.lower() == self.canonical_city(city):
                return nearby
        return ()
