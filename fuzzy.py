"""String similarity primitives and provider-name matching."""

from __future__ import annotations

import re
from typing import Callable, List, NamedTuple, Sequence, Tuple, TypeVar

from rapidfuzz.distance import Levenshtein

T = TypeVar("T")

NAME_MATCH_SCORE = 70
NAME_FILTER_MIN_SCORE = 60

_TITLES = {"dr", "doctor", "prof", "professor", "mr", "mrs", "ms"}
_SUFFIXES = {
    "md", "do", "dds", "dmd", "phd", "np", "pa", "pa-c", "mbbs", "facs", "facc",
    "rn", "od", "dpm", "jr", "sr", "ii", "iii", "iv",
}


class NameMatch(NamedTuple):
    match: bool
    score: int


def edit_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a or "", b or "")


def similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity in [0, 1], case-insensitive."""
    a = (a or "").lower()
    b = (b or "").lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - edit_distance(a, b)) / max_len


def name_tokens(name: str) -> List[str]:
    """Lowercased name tokens without titles, credentials or punctuation.

    "Smith, John A. MD" becomes ["john", "a", "smith"].
    """
    if not name:
        return []
    text = name.strip()
    if "," in text:
        head, _, tail = text.partition(",")
        tail_tokens = [t for t in re.split(r"[\s.]+", tail.lower()) if t]
        if tail_tokens and not all(t in _SUFFIXES for t in tail_tokens):
            text = f"{tail} {head}"
        else:
            text = head
    tokens = []
    for raw in text.lower().replace(".", " ").split():
        token = raw.strip(",;")
        if not token or token in _SUFFIXES:
            continue
        tokens.append(token)
    while tokens and tokens[0] in _TITLES:
        tokens.pop(0)
    return tokens


def _first_name_similarity(q: str, c: str) -> float:
    if len(q) == 1 or len(c) == 1:
        return 1.0 if q[0] == c[0] else 0.0
    if len(q) >= 3 and len(c) >= 3 and (q.startswith(c) or c.startswith(q)):
        return max(similarity(q, c), 0.9)
    return similarity(q, c)


def _pair_score(q: Sequence[str], c: Sequence[str]) -> float:
    q_first, q_last = q[0], q[-1]
    surnames = c[1:] or c
    last = max(similarity(q_last, s) for s in surnames)
    first = _first_name_similarity(q_first, c[0])
    return 0.6 * last + 0.4 * first


def match_name(query_name: str, candidate_name: str, threshold: int = NAME_MATCH_SCORE) -> NameMatch:
    """Token-aware comparison of a searched name against a registry name.

    Middle names and initials on either side are ignored, initials match a
    full first name, and the query may be given surname first.
    """
    q = name_tokens(query_name)
    c = name_tokens(candidate_name)
    if not q or not c:
        return NameMatch(False, 0)

    if len(q) == 1:
        best = max(similarity(q[0], token) for token in c)
    else:
        direct = _pair_score(q, c)
        swapped = _pair_score(list(reversed(q)), c) * 0.95
        full = similarity(f"{q[0]} {q[-1]}", f"{c[0]} {c[-1]}")
        best = max(direct, swapped, full)

    score = int(round(max(0.0, min(1.0, best)) * 100))
    return NameMatch(score >= threshold, score)


def filter_by_name(
    items: Sequence[T],
    query_name: str,
    key: Callable[[T], str],
    min_score: int = NAME_FILTER_MIN_SCORE,
) -> Tuple[List[T], bool]:
    """Keep items whose name scores at least ``min_score``.

    Returns ``(kept, relaxed)``. When nothing clears the bar the original items
    are returned with ``relaxed=True`` so a non-empty set never becomes empty.
    """
    if not items or not query_name:
        return list(items), False
    kept = [item for item in items if match_name(query_name, key(item)).score >= min_score]
    if not kept:
        return list(items), True
    return kept, False
