from __future__ import annotations

import pytest

from ranking import ResultRanker
from schemas import LocationIntent, PersonName, ProviderRecord, SearchIntent
from specialities import TaxonomyResolver


@pytest.fixture
def ranker(specialties, locations, settings):
    return ResultRanker(specialties, locations, TaxonomyResolver(specialties), settings=settings)


def record(npi, name="JOHN SMITH", specialty="Cardiovascular Disease", codes=("207RC0000X",), city="HOUSTON", state="TX", sources=None):
    return ProviderRecord(
        npi=npi,
        name=name,
        specialty=specialty,
        taxonomy_codes=list(codes),
        city=city,
        state=state,
        sources=sources or ["nppes"],
    )


def intent(first=None, last=None, specialty=None, city=None, state=None):
    name = PersonName(first=first, last=last) if (first or last) else None
    location = LocationIntent(city=city, state=state) if (city or state) else None
    return SearchIntent(name=name, specialty=specialty, location=location)


CARDIO_HOUSTON = intent(specialty="Cardiology", city="Houston", state="TX")


def test_exact_match_scores_full_marks(ranker):
    confidence = ranker.score(record("1"), CARDIO_HOUSTON)
    assert confidence.specialty_score == 100
    assert confidence.location_score == 100
    assert confidence.name_score == 0
    assert confidence.total == 100


def test_taxonomy_code_agreement_counts(ranker):
    general_eye = record("1", specialty="Ophthalmology", codes=["207W00000X"])
    assert ranker.specialty_score(general_eye, "Retina Surgery") == 80
    retina = record("2", specialty="Ophthalmology", codes=["207WX0107X"])
    assert ranker.specialty_score(retina, "Retina Surgery") == 100


def test_weights_renormalize_over_present_fields(ranker):
    # name 0.6 and location 0.2, scaled back up to 1.0
    query = intent("Mark", "Nelson", city="Houston", state="TX")
    confidence = ranker.score(record("1", name="MARK NELSON", city="AUSTIN", state="OK"), query)
    assert confidence.name_score == 100
    assert confidence.location_score == 0
    assert confidence.total == 75


def test_location_partial_credit(ranker):
    same_state = record("1", city="AUSTIN")
    nearby = record("2", city="SUGAR LAND")
    assert ranker.location_score(same_state, CARDIO_HOUSTON) == 60
    assert ranker.location_score(nearby, CARDIO_HOUSTON) == 70
    state_only = intent(specialty="Cardiology", state="TX")
    assert ranker.location_score(same_state, state_only) == 100


def test_effective_specialty_overrides_intent(ranker):
    eye = record("1", specialty="Ophthalmology", codes=["207W00000X"], city="TACOMA", state="WA")
    query = intent(specialty="Retina Surgery", city="Tacoma", state="WA")
    assert ranker.score(eye, query, specialty="Ophthalmology").specialty_score == 100


def test_source_bonus(ranker):
    enriched = record("1", sources=["nppes", "places"])
    plain = record("2", specialty="Dermatology", codes=["207N00000X"])
    boosted = record("3", specialty="Dermatology", codes=["207N00000X"], sources=["nppes", "places"])

    assert ranker.score(enriched, CARDIO_HOUSTON).total == 100
    assert ranker.score(enriched, CARDIO_HOUSTON).source_bonus == 10
    assert ranker.score(boosted, CARDIO_HOUSTON).total == pytest.approx(
        ranker.score(plain, CARDIO_HOUSTON).total + 10
    )


def test_contextual_thresholds(ranker):
    with_name = intent("Mark", "Nelson", specialty="Cardiology")
    plain = record("1")
    enriched = record("2", sources=["nppes", "places"])
    assert ranker.threshold_for(with_name, plain) == 50
    assert ranker.threshold_for(CARDIO_HOUSTON, plain) == 40
    assert ranker.threshold_for(CARDIO_HOUSTON, enriched) == 30
    assert ranker.threshold_for(None, plain) == 60


def test_rank_sorts_and_thresholds(ranker):
    candidates = [
        record("1", specialty="Dermatology", codes=["207N00000X"], city="DALLAS"),
        record("2"),
        record("3", specialty="Urology", codes=["208800000X"], city="BOSTON", state="MA"),
        record("4", city="SUGAR LAND"),
    ]
    ranked = ranker.rank(candidates, CARDIO_HOUSTON)
    assert [r.npi for r in ranked][:2] == ["2", "4"]
    assert "3" not in [r.npi for r in ranked]
    totals = [r.confidence.total for r in ranked]
    assert totals == sorted(totals, reverse=True)


def test_rank_is_stable_for_ties(ranker):
    candidates = [record(str(n)) for n in range(5)]
    assert [r.npi for r in ranker.rank(candidates, CARDIO_HOUSTON)] == ["0", "1", "2", "3", "4"]


def test_higher_threshold_never_returns_more(ranker):
    candidates = [
        record("1"),
        record("2", city="AUSTIN"),
        record("3", specialty="Dermatology", codes=["207N00000X"]),
        record("4", specialty="Urology", codes=["208800000X"], city="BOSTON", state="MA"),
        record("5", city="SUGAR LAND"),
    ]
    counts = [len(ranker.rank(candidates, CARDIO_HOUSTON, threshold=t)) for t in (0, 30, 50, 70, 90, 100)]
    assert counts == sorted(counts, reverse=True)
    assert counts[0] == len(candidates)


def test_rank_dedupes_and_prefilters_names(ranker):
    query = intent("Mark", "Nelson", specialty="Cardiology")
    candidates = [
        record("1", name="MARK NELSON"),
        record("1", name="MARK NELSON"),
        record("2", name="SUSAN WHITAKER"),
    ]
    ranked = ranker.rank(candidates, query)
    assert [r.npi for r in ranked] == ["1"]


def test_name_prefilter_relaxes_when_nobody_matches(ranker):
    query = intent("Mark", "Nelson", specialty="Cardiology")
    ranked = ranker.rank([record("2", name="SUSAN WHITAKER")], query, threshold=0)
    assert [r.npi for r in ranked] == ["2"]


def test_relaxed_set_is_scored_without_the_name(ranker):
    query = intent("Mark", "Nelson", city="Houston", state="TX")
    candidates = [record("1", name="JAMES PARKER"), record("2", name="SUSAN WRIGHT", city="AUSTIN")]

    ranked = ranker.rank(candidates, query, name_relaxed=True)

    assert [r.npi for r in ranked] == ["1", "2"]
    assert ranked[0].confidence.name_score == 0
    assert ranked[0].confidence.total == 100
    assert ranked[1].confidence.total == 60


def test_relaxed_name_only_query_keeps_everyone(ranker):
    query = intent("Mark", "Nelson")
    ranked = ranker.rank([record("1", name="JAMES PARKER")], query)
    assert [r.npi for r in ranked] == ["1"]
    assert ranked[0].confidence.total == 0


def test_paginate(ranker):
    ranked = ranker.rank([record(str(n)) for n in range(23)], CARDIO_HOUSTON)

    items, page = ranker.paginate(ranked, page=2, page_size=10)
    assert [r.npi for r in items] == [str(n) for n in range(10, 20)]
    assert page.total == 23
    assert page.total_pages == 3
    assert page.has_more

    items, page = ranker.paginate(ranked, page=3, page_size=10)
    assert len(items) == 3
    assert not page.has_more

    items, page = ranker.paginate(ranked, page=5, page_size=10)
    assert items == []
    assert not page.has_more
