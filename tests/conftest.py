from __future__ import annotations

from datetime import date
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from config import Settings
from locations import LocationNormalizer
from names import NameParser
from specialities import SpecialtyNormalizer

TODAY = date(2025, 6, 1)


def make_entry(
    npi,
    first,
    last,
    desc="Cardiovascular Disease",
    code="207RC0000X",
    city="HOUSTON",
    state="TX",
    middle=None,
    status="A",
    last_updated="2024-11-02",
    enumeration_date="2010-05-01",
    address_1="6624 FANNIN ST",
    purpose="LOCATION",
):
    """An NPPES-shaped individual provider result."""
    return {
        "number": npi,
        "basic": {
            "first_name": first,
            "last_name": last,
            "middle_name": middle,
            "credential": "MD",
            "status": status,
            "last_updated": last_updated,
            "enumeration_date": enumeration_date,
        },
        "addresses": [
            {
                "address_purpose": purpose,
                "address_1": address_1,
                "city": city,
                "state": state,
                "postal_code": "770301234",
                "telephone_number": "713-555-0100",
            }
        ],
        "taxonomies": [{"code": code, "desc": desc, "primary": True}],
    }


class DummyRegistry:
    """Registry stand-in; ``responder(params)`` decides what each query returns."""

    def __init__(self, responder=None, fail=None):
        self.responder = responder or (lambda params: [])
        self.fail = fail
        self.calls = []

    async def search(self, **params):
        self.calls.append(params)
        exc = self.fail(params) if self.fail else None
        if exc is not None:
            raise exc
        return self.responder(params)


@pytest.fixture
def settings():
    return Settings(GEMINI_API_KEY=None, GOOGLE_PLACES_API_KEY=None)


@pytest.fixture
def specialties():
    return SpecialtyNormalizer()


@pytest.fixture
def locations():
    return LocationNormalizer()


@pytest.fixture
def names():
    return NameParser()
