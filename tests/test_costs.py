from __future__ import annotations

import pytest

from costs import CostMonitor


def test_cache_hits_cost_nothing():
    monitor = CostMonitor()
    monitor.record_query_parsing(used_nlp=True)
    monitor.record_query_parsing(used_nlp=True, from_cache=True)
    summary = monitor.summary()
    assert summary["total_queries"] == 2
    assert summary["nlp_calls"] == 1
    assert summary["cache_hits"] == 1
    assert summary["cache_hit_rate"] == 0.5
    assert summary["total_cost"] == pytest.approx(0.001)


def test_places_and_taxonomy_counters():
    monitor = CostMonitor()
    monitor.record_places_enrichment(4)
    monitor.record_taxonomy_resolution()
    monitor.record_taxonomy_resolution(from_cache=True)
    summary = monitor.summary()
    assert summary["places_lookups"] == 4
    assert summary["total_cost"] == pytest.approx(0.02)
    assert summary["taxonomy_resolutions"] == 1
    assert summary["taxonomy_cache_hits"] == 1

    monitor.reset()
    assert monitor.summary()["places_lookups"] == 0
