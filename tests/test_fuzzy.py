from __future__ import annotations

import pytest

from fuzzy import filter_by_name, match_name, name_tokens, similarity


def test_similarity_bounds():
    assert similarity("", "") == 1.0
    assert similarity("Nelson", "nelson") == 1.0
    assert similarity("kitten", "sitting") == pytest.approx(4 / 7)
    assert similarity("abc", "") == 0.0


def test_name_tokens_strip_titles_and_credentials():
    assert name_tokens("Dr. Mark L. Nelson, MD") == ["mark", "l", "nelson"]
    assert name_tokens("Smith, John A.") == ["john", "a", "smith"]
    assert name_tokens("") == []


def test_middle_initial_is_ignored():
    result = match_name("Andrew M Kopstein", "ANDREW KOPSTEIN")
    assert result.match
    assert result.score >= 70

    assert match_name("Mark Nelson", "MARK LEE NELSON").score == 100


def test_surname_first_and_small_typos():
    assert match_name("Smith, John", "JOHN SMITH").score == 100
    assert match_name("Jon Smyth", "John Smith").match
    assert match_name("Nelson Mark", "MARK NELSON").match


def test_different_people_do_not_match():
    result = match_name("Mark Nelson", "SUSAN WHITAKER")
    assert not result.match
    assert result.score < 60


def test_single_token_query():
    assert match_name("Nelson", "MARK NELSON").score == 100


def test_filter_keeps_close_names():
    people = ["MARK NELSON", "SUSAN WHITAKER", "MARK L NELSON"]
    kept, relaxed = filter_by_name(people, "Mark Nelson", key=lambda n: n)
    assert kept == ["MARK NELSON", "MARK L NELSON"]
    assert not relaxed


def test_filter_never_empties_a_candidate_set():
    people = ["SUSAN WHITAKER", "PAUL ORTEGA"]
    kept, relaxed = filter_by_name(people, "Mark Nelson", key=lambda n: n)
    assert kept == people
    assert relaxed

    assert filter_by_name([], "Mark Nelson", key=lambda n: n) == ([], False)
