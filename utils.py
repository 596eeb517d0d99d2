"""Utility helpers shared across the search service."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Hashable, Iterable, List, Sequence

from config import settings


def setup_logger(name: str = "provider_search") -> logging.Logger:
    """Return a module-level logger with a friendly formatter."""

    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger


def normalize_whitespace(text: str) -> str:
    """Collapse repeated whitespace."""

    return " ".join(text.split()) if text else ""


def dedupe_preserve(seq: Sequence[Hashable]) -> list:
    """Remove duplicates while keeping original order."""

    return list(OrderedDict.fromkeys(seq))


def dedupe_by_npi(items: Iterable, key=lambda item: item.npi) -> List:
    """Keep the first occurrence of every NPI, preserving registry order."""

    seen = set()
    unique = []
    for item in items:
        npi = key(item)
        if npi in seen:
            continue
        seen.add(npi)
        unique.append(item)
    return unique


__all__ = [
    "setup_logger",
    "normalize_whitespace",
    "dedupe_preserve",
    "dedupe_by_npi",
]
