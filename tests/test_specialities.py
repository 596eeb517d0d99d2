from __future__ import annotations

import pytest

from specialities import TaxonomyResolver, strip_span


def test_normalize_exact_synonyms(specialties):
    assert specialties.normalize("retina surgeon") == "Retina Surgery"
    assert specialties.normalize("Looking for a heart doctor") == "Cardiology"
    assert specialties.normalize("cardiologists") == "Cardiology"
    assert specialties.normalize("OB/GYN") == "Obstetrics & Gynecology"


def test_longest_synonym_wins(specialties):
    # "surgeon" alone maps to General Surgery
    assert specialties.normalize("surgeon") == "General Surgery"
    assert specialties.normalize("retina surgeon") == "Retina Surgery"


def test_normalize_tolerates_misspellings(specialties):
    assert specialties.normalize("cardiolgist") == "Cardiology"
    assert specialties.normalize("opthamologist") == "Ophthalmology"


def test_normalize_is_idempotent_on_canonical_names(specialties):
    for canonical in specialties.taxonomy.canonical_names:
        assert specialties.normalize(canonical) == canonical
        assert specialties.is_canonical(canonical)


def test_normalize_unknown_text(specialties):
    assert specialties.normalize("") is None
    assert specialties.normalize(None) is None
    assert specialties.normalize("zzzz qqqq") is None


def test_match_span_can_be_stripped(specialties):
    text = "find a retina surgeon near me"
    found = specialties.match(text)
    assert found.canonical == "Retina Surgery"
    assert found.method == "exact"
    assert strip_span(text, found.span) == "find a near me"


def test_fallback_categories(specialties):
    assert specialties.broader_category("Retina Surgery") == "Ophthalmology"
    assert specialties.broader_category("Dermatology") is None
    assert specialties.related_categories("Retina Surgery") == [
        "Glaucoma Specialist",
        "Cornea and External Diseases Specialist",
    ]
    assert specialties.alternative_terms("Retina Surgery") == ["Retina", "Ophthalmology"]
    assert specialties.related_categories(None) == []


def test_registry_term(specialties):
    assert specialties.registry_term("Cardiology") == "Cardiovascular Disease"
    assert specialties.registry_term("Retina Surgery") == "Retina Specialist"
    assert specialties.registry_term("Glaucoma Specialist") == "Glaucoma Specialist"


def test_variations_exclude_the_canonical(specialties):
    variations = specialties.variations("Retina Surgery", limit=3)
    assert len(variations) == 3
    assert "retina surgery" not in variations


def test_misspellings_match_but_are_never_suggested(specialties):
    assert specialties.normalize("cardioligy") == "Cardiology"
    assert specialties.normalize("opthamology") == "Ophthalmology"
    for canonical in ("Cardiology", "Dermatology", "Ophthalmology"):
        variations = specialties.variations(canonical, limit=20)
        assert variations
        assert not set(variations) & specialties.taxonomy.misspellings
    assert specialties.variations("Cardiology", limit=3) == ["cardiologist", "cardiology doctor", "heart doctor"]


def test_short_synonyms_take_part_in_matching(specialties):
    assert specialties.normalize("ENT doctor in Austin") == "Otolaryngology"
    assert specialties.normalize("need a gp") == "Family Medicine"
    assert specialties.match("derms").canonical == "Dermatology"


def test_taxonomy_tables_are_read_only(specialties):
    with pytest.raises(TypeError):
        specialties.taxonomy.synonyms["foo"] = "Bar"


def test_resolver_caches_lookups(specialties):
    resolver = TaxonomyResolver(specialties)
    first = resolver.resolve("Cardiology")
    second = resolver.resolve("cardiology")
    assert first == second
    assert first.primary == "207R00000X"
    stats = resolver.stats()
    assert stats["total_resolutions"] == 2
    assert stats["cache_hits"] == 1


def test_resolver_lay_terms_and_misses(specialties):
    resolver = TaxonomyResolver(specialties)
    mapping = resolver.resolve("heart doctor")
    assert mapping.secondary == "207RC0000X"
    assert mapping.confidence == 0.8

    assert resolver.resolve("zzzz qqqq") is None
    # misses are cached too
    assert resolver.resolve("zzzz qqqq") is None
    assert resolver.stats()["unresolved_specialties"] == ["zzzz qqqq"]
    assert resolver.stats()["cache_hits"] == 1

    resolver.clear_cache()
    assert resolver.stats()["cache_size"] == 0
