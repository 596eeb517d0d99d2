"""Extract a doctor's first and last name from a search query."""

from __future__ import annotations

import re
from typing import Iterable, NamedTuple, Optional

from utils import normalize_whitespace

# specialty and body-part words that never belong to a name
NAME_STOP_WORDS = (
    "surgeon", "surgeons", "surgery", "specialist", "specialists", "doctor", "doctors",
    "physician", "physicians", "cardiologist", "cardiology", "ophthalmologist", "ophthalmology",
    "dermatologist", "dermatology", "neurologist", "neurology", "oncologist", "oncology",
    "pediatrician", "pediatrics", "psychiatrist", "psychiatry", "orthopedic", "orthopedist",
    "urologist", "radiologist", "internist", "gynecologist", "obgyn", "allergist",
    "gastroenterologist", "endocrinologist", "nephrologist", "pulmonologist", "rheumatologist",
    "podiatrist", "anesthesiologist", "hematologist", "therapist",
    "retina", "retinal", "eye", "eyes", "heart", "cardiac", "skin", "bone", "brain", "spine",
    "kidney", "lung", "foot", "knee", "hip", "cancer", "primary", "family", "internal",
    "general", "pediatric", "vascular", "thoracic", "plastic", "ent",
    "in", "near", "at", "around",
)

_TITLE_RE = re.compile(r"^(?:dr\.?|doctor)\s+", re.IGNORECASE)
_CREDENTIAL_RE = re.compile(r"(?:,?\s+(?:m\.d\.|d\.o\.|md|do|dds|phd|np))+\s*$", re.IGNORECASE)
_INITIAL_RE = re.compile(r"^[A-Za-z]\.?$")


class ParsedName(NamedTuple):
    first: Optional[str]
    last: Optional[str]

    @property
    def found(self) -> bool:
        return bool(self.first or self.last)


class NameParser:
    """Pull (first, last) tokens out of whatever is left of a query."""

    def __init__(self, stop_words: Iterable[str] = NAME_STOP_WORDS) -> None:
        words = sorted({w.lower() for w in stop_words}, key=len, reverse=True)
        self._stop_re = re.compile(
            r"(?<!\w)(?:" + "|".join(re.escape(w) for w in words) + r")(?!\w)",
            re.IGNORECASE,
        )

    def strip_stop_words(self, text: str) -> str:
        """Truncate at the earliest stop-word so specialty phrases stay out of the surname."""
        m = self._stop_re.search(text)
        return text[: m.start()] if m else text

    def parse(self, query: Optional[str]) -> ParsedName:
        if not query:
            return ParsedName(None, None)

        cleaned = _TITLE_RE.sub("", query.strip())
        cleaned = self.strip_stop_words(cleaned)
        cleaned = _CREDENTIAL_RE.sub("", cleaned)
        cleaned = normalize_whitespace(cleaned.replace(",", " "))

        words = [w for w in cleaned.split(" ") if w]
        if len(words) < 2:
            return ParsedName(None, None)

        # "Mark L. Nelson" -> the initial takes the middle slot
        if len(words) >= 3 and len(words[1]) <= 2 and _INITIAL_RE.match(words[1]):
            return ParsedName(words[0], words[2])

        # extra tokens are ignored so trailing location/specialty words can't become the surname
        return ParsedName(words[0], words[1])
