"""Specialty taxonomy: synonym normalization, fallback categories and NPPES codes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from cache import TTLCache
from fuzzy import similarity
from utils import normalize_whitespace, setup_logger

if TYPE_CHECKING:
    from costs import CostMonitor

logger = setup_logger("specialities")


class TaxonomyMapping(NamedTuple):
    primary: str
    secondary: Optional[str]
    description: str
    confidence: float = 1.0


# canonical label -> variants (plurals are matched automatically)
SPECIALTY_SYNONYMS: Dict[str, List[str]] = {
    "Cardiology": ["cardiologist", "cardiology doctor", "heart doctor",
                   "heart specialist", "cardiovascular disease", "cardio"],
    "Interventional Cardiology": ["interventional cardiologist", "cardiac cath", "stent doctor"],
    "Cardiac Surgery": ["heart surgeon", "heart surgery", "cardiac surgeon", "cardiovascular surgeon",
                        "cardiothoracic surgeon", "cardiothoracic surgery", "bypass surgeon"],
    "Thoracic Surgery": ["thoracic surgeon", "chest surgeon", "lung surgeon"],
    "Vascular Surgery": ["vascular surgeon", "vein surgeon", "artery surgeon", "vein doctor"],
    "Dermatology": ["dermatologist", "skin doctor", "skin specialist", "derm"],
    "Orthopedic Surgery": ["orthopedic", "orthopaedic", "orthopedist", "orthopedic surgeon",
                           "orthopaedic surgeon", "orthopedics", "bone doctor", "joint surgeon"],
    "Sports Medicine": ["sports medicine doctor", "sports doctor", "sports injury doctor"],
    "Ophthalmology": ["ophthalmologist", "eye doctor", "eye specialist", "eye surgeon", "ophthalmic surgeon"],
    "Retina Surgery": ["retina surgeon", "retina specialist", "retinal specialist", "retinal surgeon",
                       "vitreoretinal surgeon", "retina doctor", "retina"],
    "Otolaryngology": ["otolaryngologist", "ent", "ear nose throat", "ear nose and throat",
                       "ear doctor", "ent doctor"],
    "Obstetrics & Gynecology": ["obgyn", "ob-gyn", "ob/gyn", "ob gyn", "gynecologist", "obstetrician",
                                "womens health", "women's health", "gynecology", "obstetrics"],
    "Pediatrics": ["pediatrician", "paediatrician", "kids doctor", "children doctor", "child doctor",
                   "pediatric", "paediatrics"],
    "Psychiatry": ["psychiatrist", "mental health", "therapist", "mental health doctor"],
    "Internal Medicine": ["internist", "internal medicine doctor", "general internist"],
    "Family Medicine": ["family doctor", "family practice", "family physician", "primary care",
                        "primary care doctor", "primary care physician", "pcp",
                        "general practitioner", "general practice", "gp"],
    "Neurology": ["neurologist", "brain doctor", "nerve doctor", "neuro"],
    "Neurosurgery": ["neurosurgeon", "brain surgeon", "spine surgeon", "neurological surgery"],
    "Oncology": ["oncologist", "cancer doctor", "cancer specialist", "medical oncology"],
    "Hematology": ["hematologist", "blood doctor"],
    "Urology": ["urologist", "urinary doctor", "bladder doctor"],
    "Radiology": ["radiologist", "imaging specialist"],
    "Anesthesiology": ["anesthesiologist", "anesthetist", "anesthesia doctor"],
    "Endocrinology": ["endocrinologist", "diabetes doctor", "hormone doctor", "thyroid doctor"],
    "Gastroenterology": ["gastroenterologist", "gi doctor", "stomach doctor", "digestive doctor",
                         "gastro"],
    "Nephrology": ["nephrologist", "kidney doctor"],
    "Pulmonology": ["pulmonologist", "lung doctor", "respiratory doctor", "pulmonary disease"],
    "Rheumatology": ["rheumatologist", "arthritis doctor"],
    "Hematology & Oncology": ["hematologist oncologist", "hematology oncology", "hem onc"],
    "Infectious Disease": ["infectious disease doctor", "infectious disease specialist", "id doctor"],
    "Physical Medicine & Rehabilitation": ["physiatrist", "rehab doctor", "pm&r",
                                           "physical medicine", "rehabilitation doctor"],
    "Allergy & Immunology": ["allergist", "allergy doctor", "immunologist", "allergy"],
    "Plastic Surgery": ["plastic surgeon", "cosmetic surgeon", "reconstructive surgeon"],
    "General Surgery": ["general surgeon", "surgeon"],
    "Emergency Medicine": ["emergency doctor", "er doctor", "emergency physician"],
    "Geriatrics": ["geriatrician", "elderly care doctor", "geriatric medicine"],
    "Podiatry": ["podiatrist", "foot doctor"],
}

# common misspellings; matched like synonyms, never suggested
SPECIALTY_MISSPELLINGS: Dict[str, List[str]] = {
    "Cardiology": ["cardioligy", "cardiolgist"],
    "Dermatology": ["dermatolgy", "dermatologyst"],
    "Ophthalmology": ["opthamology", "opthalmology", "opthalmologist", "opthamologist"],
}

# NPPES taxonomy codes; description is what the registry's taxonomy_description matches on
SPECIALTY_TO_TAXONOMY: Dict[str, TaxonomyMapping] = {
    "Cardiology": TaxonomyMapping("207R00000X", "207RC0000X", "Cardiovascular Disease"),
    "Interventional Cardiology": TaxonomyMapping("207R00000X", "207RI0011X", "Interventional Cardiology"),
    "Cardiac Surgery": TaxonomyMapping("208G00000X", None, "Thoracic Surgery (Cardiothoracic Vascular Surgery)"),
    "Thoracic Surgery": TaxonomyMapping("208G00000X", None, "Thoracic Surgery"),
    "Vascular Surgery": TaxonomyMapping("208600000X", "2086S0129X", "Vascular Surgery"),
    "Dermatology": TaxonomyMapping("207N00000X", None, "Dermatology"),
    "Orthopedic Surgery": TaxonomyMapping("207X00000X", None, "Orthopaedic Surgery"),
    "Sports Medicine": TaxonomyMapping("207X00000X", "207XX0005X", "Sports Medicine"),
    "Ophthalmology": TaxonomyMapping("207W00000X", None, "Ophthalmology"),
    "Retina Surgery": TaxonomyMapping("207W00000X", "207WX0107X", "Retina Specialist"),
    "Otolaryngology": TaxonomyMapping("207Y00000X", None, "Otolaryngology"),
    "Obstetrics & Gynecology": TaxonomyMapping("207V00000X", None, "Obstetrics & Gynecology"),
    "Pediatrics": TaxonomyMapping("208000000X", None, "Pediatrics"),
    "Psychiatry": TaxonomyMapping("2084P0800X", None, "Psychiatry"),
    "Internal Medicine": TaxonomyMapping("207R00000X", None, "Internal Medicine"),
    "Family Medicine": TaxonomyMapping("207Q00000X", None, "Family Medicine"),
    "Neurology": TaxonomyMapping("2084N0400X", None, "Neurology"),
    "Neurosurgery": TaxonomyMapping("207T00000X", None, "Neurological Surgery"),
    "Oncology": TaxonomyMapping("207R00000X", "207RX0202X", "Medical Oncology"),
    "Hematology": TaxonomyMapping("207R00000X", "207RH0000X", "Hematology"),
    "Hematology & Oncology": TaxonomyMapping("207R00000X", "207RH0003X", "Hematology & Oncology"),
    "Urology": TaxonomyMapping("208800000X", None, "Urology"),
    "Radiology": TaxonomyMapping("2085R0202X", None, "Diagnostic Radiology"),
    "Anesthesiology": TaxonomyMapping("207L00000X", None, "Anesthesiology"),
    "Endocrinology": TaxonomyMapping("207R00000X", "207RE0101X", "Endocrinology, Diabetes & Metabolism"),
    "Gastroenterology": TaxonomyMapping("207R00000X", "207RG0100X", "Gastroenterology"),
    "Nephrology": TaxonomyMapping("207R00000X", "207RN0300X", "Nephrology"),
    "Pulmonology": TaxonomyMapping("207R00000X", "207RP1001X", "Pulmonary Disease"),
    "Rheumatology": TaxonomyMapping("207R00000X", "207RR0500X", "Rheumatology"),
    "Infectious Disease": TaxonomyMapping("207R00000X", "207RI0200X", "Infectious Disease"),
    "Physical Medicine & Rehabilitation": TaxonomyMapping("208100000X", None, "Physical Medicine & Rehabilitation"),
    "Allergy & Immunology": TaxonomyMapping("207K00000X", None, "Allergy & Immunology"),
    "Plastic Surgery": TaxonomyMapping("208200000X", None, "Plastic Surgery"),
    "General Surgery": TaxonomyMapping("208600000X", None, "Surgery"),
    "Emergency Medicine": TaxonomyMapping("207P00000X", None, "Emergency Medicine"),
    "Geriatrics": TaxonomyMapping("207R00000X", "207RG0300X", "Geriatric Medicine"),
    "Podiatry": TaxonomyMapping("213E00000X", None, "Podiatrist"),
}

# one level up
BROADER_CATEGORY: Dict[str, str] = {
    "Retina Surgery": "Ophthalmology",
    "Interventional Cardiology": "Cardiology",
    "Cardiac Surgery": "Thoracic Surgery",
    "Cardiology": "Internal Medicine",
    "Endocrinology": "Internal Medicine",
    "Gastroenterology": "Internal Medicine",
    "Nephrology": "Internal Medicine",
    "Pulmonology": "Internal Medicine",
    "Rheumatology": "Internal Medicine",
    "Infectious Disease": "Internal Medicine",
    "Hematology": "Internal Medicine",
    "Oncology": "Internal Medicine",
    "Hematology & Oncology": "Internal Medicine",
    "Geriatrics": "Internal Medicine",
    "Sports Medicine": "Orthopedic Surgery",
    "Thoracic Surgery": "General Surgery",
    "Vascular Surgery": "General Surgery",
    "Plastic Surgery": "General Surgery",
}

# siblings
RELATED_CATEGORIES: Dict[str, List[str]] = {
    "Retina Surgery": ["Glaucoma Specialist", "Cornea and External Diseases Specialist"],
    "Ophthalmology": ["Retina Surgery", "Optometrist"],
    "Cardiology": ["Interventional Cardiology", "Clinical Cardiac Electrophysiology"],
    "Interventional Cardiology": ["Cardiology", "Clinical Cardiac Electrophysiology"],
    "Cardiac Surgery": ["Vascular Surgery", "Cardiology"],
    "Thoracic Surgery": ["Cardiac Surgery", "Vascular Surgery"],
    "Vascular Surgery": ["Cardiac Surgery", "Thoracic Surgery"],
    "Orthopedic Surgery": ["Sports Medicine", "Physical Medicine & Rehabilitation"],
    "Sports Medicine": ["Orthopedic Surgery", "Physical Medicine & Rehabilitation"],
    "Family Medicine": ["Internal Medicine", "General Practice"],
    "Internal Medicine": ["Family Medicine", "General Practice"],
    "Neurology": ["Neurosurgery"],
    "Neurosurgery": ["Neurology"],
    "Oncology": ["Hematology & Oncology", "Hematology"],
    "Hematology": ["Hematology & Oncology", "Oncology"],
    "Pediatrics": ["Family Medicine"],
    "Psychiatry": ["Child & Adolescent Psychiatry", "Psychologist"],
    "Otolaryngology": ["Allergy & Immunology"],
    "Allergy & Immunology": ["Otolaryngology"],
    "Pulmonology": ["Critical Care Medicine", "Allergy & Immunology"],
    "Dermatology": ["Plastic Surgery"],
    "Plastic Surgery": ["Dermatology"],
}

# legacy alternative search terms
SPECIALTY_ALTERNATIVES: Dict[str, List[str]] = {
    "Retina Surgery": ["Retina", "Ophthalmology"],
    "Ophthalmology": ["Retina Surgery", "Eye"],
    "Cardiology": ["Cardiovascular Disease", "Cardiology"],
    "Orthopedic Surgery": ["Orthopedic", "Orthopedics"],
    "Pulmonology": ["Pulmonary"],
    "Oncology": ["Oncology", "Hematology & Oncology"],
    "Family Medicine": ["Family Practice", "Primary Care"],
    "Obstetrics & Gynecology": ["Gynecology", "Obstetrics"],
    "General Surgery": ["Surgery"],
}

# keyword hints used when a registry taxonomy description has no code match
TAXONOMY_KEYWORDS: Dict[str, List[str]] = {
    "Internal Medicine": ["internal", "primary", "primary care", "pcp", "general"],
    "Family Medicine": ["family", "primary", "primary care", "pcp", "general"],
    "Cardiology": ["cardio", "heart", "cardiovascular"],
    "Interventional Cardiology": ["cardio", "interventional"],
    "Pediatrics": ["pediatric", "child", "children"],
    "Retina Surgery": ["retina", "vitreo"],
    "Ophthalmology": ["ophthalm", "eye"],
    "Orthopedic Surgery": ["orthop"],
    "Oncology": ["oncology", "cancer"],
}


def _freeze(table: Mapping) -> Mapping:
    return MappingProxyType(
        {k: tuple(v) if isinstance(v, list) else v for k, v in table.items()}
    )


@dataclass(frozen=True)
class SpecialtyTaxonomy:
    """Immutable specialty tables, built once and shared read-only."""

    synonyms: Mapping[str, str]
    broader: Mapping[str, str] = field(default_factory=dict)
    related: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    alternatives: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    codes: Mapping[str, TaxonomyMapping] = field(default_factory=dict)
    keywords: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    misspellings: frozenset = frozenset()

    @classmethod
    def build(
        cls,
        synonyms: Mapping[str, Sequence[str]] = SPECIALTY_SYNONYMS,
        broader: Mapping[str, str] = BROADER_CATEGORY,
        related: Mapping[str, Sequence[str]] = RELATED_CATEGORIES,
        alternatives: Mapping[str, Sequence[str]] = SPECIALTY_ALTERNATIVES,
        codes: Mapping[str, TaxonomyMapping] = SPECIALTY_TO_TAXONOMY,
        keywords: Mapping[str, Sequence[str]] = TAXONOMY_KEYWORDS,
        misspellings: Mapping[str, Sequence[str]] = SPECIALTY_MISSPELLINGS,
    ) -> "SpecialtyTaxonomy":
        table: Dict[str, str] = {}
        for canonical, variants in synonyms.items():
            table[canonical.lower()] = canonical
            for variant in variants:
                table.setdefault(normalize_whitespace(variant.lower()), canonical)
        typos = set()
        for canonical, variants in misspellings.items():
            for variant in variants:
                key = normalize_whitespace(variant.lower())
                if key not in table:
                    table[key] = canonical
                    typos.add(key)
        return cls(
            synonyms=MappingProxyType(table),
            broader=MappingProxyType(dict(broader)),
            related=_freeze(related),
            alternatives=_freeze(alternatives),
            codes=MappingProxyType(dict(codes)),
            keywords=_freeze(keywords),
            misspellings=frozenset(typos),
        )

    @property
    def canonical_names(self) -> List[str]:
        return sorted(set(self.synonyms.values()))


DEFAULT_TAXONOMY = SpecialtyTaxonomy.build()


class SpecialtyMatch(NamedTuple):
    canonical: str
    span: Tuple[int, int]
    method: str
    score: float = 1.0


_WORD_RE = re.compile(r"[A-Za-z][A-Za-z'&/-]*")


class SpecialtyNormalizer:
    """Map free-text specialty phrases to canonical specialty labels."""

    WORD_THRESHOLD = 0.75
    BIGRAM_THRESHOLD = 0.70
    MIN_WORD_LENGTH = 3

    def __init__(self, taxonomy: SpecialtyTaxonomy = DEFAULT_TAXONOMY) -> None:
        self.taxonomy = taxonomy
        # longest synonyms first so "retina surgeon" wins over "surgeon"
        self._patterns = [
            (
                re.compile(r"(?<!\w)" + re.escape(syn) + r"(?:s|es)?(?!\w)", re.IGNORECASE),
                canonical,
            )
            for syn, canonical in sorted(
                taxonomy.synonyms.items(), key=lambda kv: (-len(kv[0]), kv[0])
            )
        ]

    def match(self, text: Optional[str]) -> Optional[SpecialtyMatch]:
        if not text or not text.strip():
            return None
        cleaned = text.replace("_", " ")

        for pattern, canonical in self._patterns:
            m = pattern.search(cleaned)
            if m:
                return SpecialtyMatch(canonical, m.span(), "exact")

        words = [w for w in _WORD_RE.finditer(cleaned)]
        best: Optional[SpecialtyMatch] = None
        for w in words:
            token = w.group(0).lower()
            if len(token) < self.MIN_WORD_LENGTH:
                continue
            for syn, canonical in self.taxonomy.synonyms.items():
                score = similarity(token, syn)
                if score >= self.WORD_THRESHOLD and (best is None or score > best.score):
                    best = SpecialtyMatch(canonical, w.span(), "fuzzy_word", score)
        if best:
            return best

        for first, second in zip(words, words[1:]):
            bigram = f"{first.group(0)} {second.group(0)}".lower()
            if len(bigram) < 5:
                continue
            span = (first.start(), second.end())
            for syn, canonical in self.taxonomy.synonyms.items():
                if bigram in syn:
                    score = 1.0
                else:
                    score = similarity(bigram, syn)
                if score >= self.BIGRAM_THRESHOLD and (best is None or score > best.score):
                    best = SpecialtyMatch(canonical, span, "fuzzy_bigram", score)
        return best

    def normalize(self, text: Optional[str]) -> Optional[str]:
        found = self.match(text)
        return found.canonical if found else None

    def is_canonical(self, label: Optional[str]) -> bool:
        return bool(label) and self.taxonomy.synonyms.get(label.lower()) == label

    def broader_category(self, canonical: Optional[str]) -> Optional[str]:
        if not canonical:
            return None
        return self.taxonomy.broader.get(canonical)

    def related_categories(self, canonical: Optional[str]) -> List[str]:
        if not canonical:
            return []
        return list(self.taxonomy.related.get(canonical, ()))

    def alternative_terms(self, canonical: Optional[str]) -> List[str]:
        if not canonical:
            return []
        return list(self.taxonomy.alternatives.get(canonical, ()))

    def variations(self, canonical: str, limit: int = 3) -> List[str]:
        """Lay-term variants of a canonical label, for search suggestions."""
        out = [
            syn for syn, c in self.taxonomy.synonyms.items()
            if c == canonical and syn != canonical.lower() and syn not in self.taxonomy.misspellings
        ]
        return out[:limit]

    def registry_term(self, specialty: str) -> str:
        """The description the registry's taxonomy search understands."""
        mapping = self.taxonomy.codes.get(specialty)
        return mapping.description if mapping else specialty


def strip_span(text: str, span: Tuple[int, int]) -> str:
    start, end = span
    return normalize_whitespace(f"{text[:start]} {text[end:]}")


class TaxonomyResolver:
    """Resolve a specialty label to NPPES taxonomy codes, with a local cache."""

    def __init__(
        self,
        normalizer: SpecialtyNormalizer,
        cache: Optional[TTLCache[Optional[TaxonomyMapping]]] = None,
        monitor: Optional["CostMonitor"] = None,
    ) -> None:
        self.normalizer = normalizer
        self.codes = normalizer.taxonomy.codes
        self.cache = cache if cache is not None else TTLCache(500, 7 * 24 * 60 * 60)
        self.monitor = monitor
        self._stats = {"total_resolutions": 0, "local_mappings": 0, "cache_hits": 0, "unresolved": 0}
        self._unresolved: set = set()

    def resolve(self, specialty: Optional[str]) -> Optional[TaxonomyMapping]:
        if not specialty:
            return None
        self._stats["total_resolutions"] += 1
        key = specialty.lower().strip()

        if key in self.cache:
            self._stats["cache_hits"] += 1
            if self.monitor:
                self.monitor.record_taxonomy_resolution(from_cache=True)
            return self.cache.get(key)

        mapping = self._local_mapping(specialty)
        if mapping:
            self._stats["local_mappings"] += 1
            logger.debug("[TAXONOMY] %s -> %s/%s", specialty, mapping.primary, mapping.secondary)
        else:
            self._stats["unresolved"] += 1
            self._unresolved.add(key)
            logger.info("[TAXONOMY] No taxonomy code for '%s'", specialty)
        if self.monitor:
            self.monitor.record_taxonomy_resolution(from_cache=False)
        self.cache.set(key, mapping)
        return mapping

    def _local_mapping(self, specialty: str) -> Optional[TaxonomyMapping]:
        if specialty in self.codes:
            return self.codes[specialty]
        key = specialty.lower().strip()
        for canonical, mapping in self.codes.items():
            if canonical.lower() == key or mapping.description.lower() == key:
                return mapping
        canonical = self.normalizer.normalize(specialty)
        if canonical and canonical in self.codes:
            return self.codes[canonical]._replace(confidence=0.8)
        for canonical, mapping in self.codes.items():
            name = canonical.lower()
            if len(key) >= 4 and (key in name or name in key):
                return mapping._replace(confidence=0.7)
        return None

    def stats(self) -> Dict[str, object]:
        total = self._stats["total_resolutions"]
        return {
            **self._stats,
            "local_mapping_rate": self._stats["local_mappings"] / total if total else 0,
            "cache_hit_rate": self._stats["cache_hits"] / total if total else 0,
            "unresolved_specialties": sorted(self._unresolved),
            "cache_size": len(self.cache),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
