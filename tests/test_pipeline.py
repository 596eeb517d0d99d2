from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import TODAY, DummyRegistry, make_entry
from config import Settings
from costs import CostMonitor
from enrichment import PlacesEnricher
from pipeline import SearchFailedError, SearchPipeline, no_result_feedback, suggest_alternative_searches
from query_parser import QueryParser
from ranking import ResultRanker
from schemas import LocationIntent, PersonName, SearchIntent
from service import RegistryError, RegistryTimeoutError, SearchStrategyEngine
from specialities import TaxonomyResolver


@pytest.fixture
def make_pipeline(specialties, locations, names, settings):
    def factory(registry, enricher=None):
        monitor = CostMonitor()
        parser = QueryParser(specialties, locations, names, monitor=monitor, settings=settings)
        engine = SearchStrategyEngine(registry, specialties, locations, settings=settings, today=lambda: TODAY)
        resolver = TaxonomyResolver(specialties, monitor=monitor)
        ranker = ResultRanker(specialties, locations, resolver, settings=settings)
        return SearchPipeline(parser, engine, ranker, enricher=enricher, settings=settings)

    return factory


def houston_cardiologists(params):
    return [make_entry(str(n), "DOC", f"NUMBER{n}") for n in range(20)]


def search(pipeline, query, **kwargs):
    return asyncio.run(pipeline.search(query, **kwargs))


def test_name_and_specialty_query(make_pipeline):
    nelson = make_entry("1366", "MARK", "NELSON", middle="L", desc="Ophthalmology", code="207W00000X", city="TACOMA", state="WA")

    def responder(params):
        if params == {"first_name": "Mark", "last_name": "Nelson", "specialty": "Retina Specialist"}:
            return [nelson]
        return []

    registry = DummyRegistry(responder)
    response = search(make_pipeline(registry), "Dr. Mark L. Nelson retina surgeon")

    assert response.error is None
    assert response.strategy == "name_specialty"
    assert response.fallback_step is None
    assert response.specialty == "Retina Surgery"
    assert response.location is None
    assert response.search_radius is None
    assert response.results_count == 1
    top = response.results[0]
    assert top.npi == "1366"
    assert top.name == "MARK NELSON"
    assert top.confidence.name_score == 100
    assert top.confidence.total == 95


def test_specialty_and_location_query(make_pipeline):
    registry = DummyRegistry(houston_cardiologists)
    response = search(make_pipeline(registry), "cardiologists in Houston, TX")

    assert registry.calls[0] == {"specialty": "Cardiovascular Disease", "city": "Houston", "state": "TX"}
    assert response.intent.name is None
    assert response.location == "Houston, TX"
    assert response.search_radius == 5000
    assert response.results_count == 20
    assert len(response.results) == 15
    assert response.pagination.has_more
    assert all(r.confidence.total == 100 for r in response.results)


def test_single_specialty_is_rejected_without_searching(make_pipeline):
    registry = DummyRegistry(houston_cardiologists)
    response = search(make_pipeline(registry), "retina surgeon")
    assert registry.calls == []
    assert response.results == []
    assert "at least 2" in response.error
    assert any("Name + Location" in s for s in response.suggestions)


def test_near_me_is_not_searched_as_maine(make_pipeline):
    registry = DummyRegistry(houston_cardiologists)
    response = search(make_pipeline(registry), "cardiologist near me")
    assert registry.calls == []
    assert response.intent.location is None
    assert "at least 2" in response.error
    assert not any(" ME" in s for s in response.suggestions)


@pytest.mark.parametrize("radius,expected", [(None, 5000), (-1, 5000), (0, 5000), (12000, 12000), (100000, 50000)])
def test_radius_is_clamped(make_pipeline, radius, expected):
    response = search(make_pipeline(DummyRegistry(houston_cardiologists)), "cardiologists in Houston, TX", radius=radius)
    assert response.search_radius == expected


@pytest.mark.parametrize("page_size,expected", [(1, 5), (200, 50), (None, 15), (20, 20)])
def test_page_size_is_clamped(make_pipeline, page_size, expected):
    response = search(
        make_pipeline(DummyRegistry(houston_cardiologists)), "cardiologists in Houston, TX", page_size=page_size
    )
    assert response.pagination.page_size == expected


def test_second_page(make_pipeline):
    response = search(
        make_pipeline(DummyRegistry(houston_cardiologists)), "cardiologists in Houston, TX", page=2, page_size=5
    )
    assert [r.npi for r in response.results] == ["5", "6", "7", "8", "9"]
    assert response.pagination.total_pages == 4
    assert response.results_count == 20


def test_registry_timeout_surfaces_as_search_failure(make_pipeline):
    registry = DummyRegistry(fail=lambda params: RegistryTimeoutError("timed out"))
    with pytest.raises(SearchFailedError) as excinfo:
        search(make_pipeline(registry), "cardiologists in Houston, TX")
    assert excinfo.value.timeout


def test_registry_error_surfaces_as_search_failure(make_pipeline):
    registry = DummyRegistry(fail=lambda params: RegistryError("bad gateway"))
    with pytest.raises(SearchFailedError) as excinfo:
        search(make_pipeline(registry), "cardiologists in Houston, TX")
    assert not excinfo.value.timeout


def test_unmatched_names_still_show_the_location_set(make_pipeline):
    def tacoma(params):
        return [
            make_entry("1", "JAMES", "PARKER", city="TACOMA", state="WA"),
            make_entry("2", "SUSAN", "WRIGHT", city="TACOMA", state="WA"),
        ]

    response = search(make_pipeline(DummyRegistry(tacoma)), "Dr. Mark Nelson in Tacoma, WA")

    assert response.strategy == "name_location"
    assert response.error is None
    assert [r.npi for r in response.results] == ["1", "2"]
    assert all(r.confidence.name_score == 0 for r in response.results)
    assert all(r.confidence.location_score == 100 for r in response.results)


def test_no_results_come_with_suggestions(make_pipeline):
    response = search(make_pipeline(DummyRegistry()), "Dr. Mark Nelson retina surgeon in Tacoma, WA")
    assert response.results == []
    assert response.results_count == 0
    assert response.error.startswith('No doctors found for "Dr. Mark Nelson retina surgeon in Tacoma, WA"')
    assert "Trying a partial name match (e.g., just last name)" in response.suggestions
    assert "Trying a broader specialty term" in response.suggestions
    assert "Expanding your search radius (currently 5km)" in response.suggestions
    assert "retina surgeon in Tacoma, WA" in response.suggestions
    assert "Retina Surgery in Seattle" in response.suggestions


def test_no_result_feedback_without_location(specialties, locations):
    intent = SearchIntent(name=PersonName(first="Mark", last="Nelson"), specialty="Retina Surgery")
    error, suggestions = no_result_feedback("mark nelson retina", intent, 5000, specialties, locations)
    assert error.startswith("Please include a location")
    assert 'Example: "Retina Surgery in [your city], [your state]"' in suggestions


def test_alternative_searches(specialties, locations):
    intent = SearchIntent(specialty="Cardiology", location=LocationIntent(city="Seattle", state="WA", full="Seattle, WA"))
    suggestions = suggest_alternative_searches(intent, specialties, locations)
    assert suggestions[0] == "cardiologist in Seattle, WA"
    assert suggestions[-2:] == ["Cardiology in Tacoma", "Cardiology in Bellevue"]


def test_enriched_results_get_the_source_bonus(make_pipeline):
    def places(request):
        if request.url.path.endswith("textsearch/json"):
            return httpx.Response(200, json={"results": [{"place_id": "p1"}]})
        return httpx.Response(200, json={"result": {"formatted_phone_number": "(713) 555-0111", "rating": 4.2}})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(places)) as http:
            enricher = PlacesEnricher(Settings(GOOGLE_PLACES_API_KEY="key"), client=http)
            pipeline = make_pipeline(DummyRegistry(houston_cardiologists), enricher=enricher)
            return await pipeline.search("cardiologists in Houston, TX", page_size=5)

    response = asyncio.run(go())
    top = response.results[0]
    assert top.phone == "(713) 555-0111"
    assert top.rating == 4.2
    assert top.sources == ["nppes", "places"]
    assert top.confidence.source_bonus == 10


def test_stats_and_cache_clear(make_pipeline):
    pipeline = make_pipeline(DummyRegistry(houston_cardiologists))
    search(pipeline, "cardiologists in Houston, TX")
    stats = pipeline.stats()
    assert stats["parser"]["total_queries"] == 1
    assert stats["costs"]["total_queries"] == 1
    assert stats["taxonomy"]["total_resolutions"] >= 0
    pipeline.clear_caches()
    assert pipeline.stats()["taxonomy"]["cache_size"] == 0
