from concurrent.futures import ThreadPoolExecutor

import pytest

from gemini_pool.state import PoolState
from gemini_pool.stats import calculate_success_rate


@pytest.fixture
def state():
    pool = PoolState()
    pool.registry.add("a", "A")
    pool.registry.add("b", "B")
    return pool


def test_success_rate_is_100_without_requests():
    assert calculate_success_rate(0, 0) == 100


def test_record_updates_key_and_global_counters(state):
    state.stats.record("a", True)
    state.stats.record("a", False)

    record = state.registry.get("a")
    stats = state.stats.snapshot()
    assert record.request_count == 2
    assert record.error_count == 1
    assert record.last_used_at is not None
    assert stats.total_requests == 2
    assert stats.total_errors == 1
    assert stats.success_rate == 50


def test_record_for_removed_key_still_counts_globally(state):
    state.registry.remove("b")

    state.stats.record("b", False)

    stats = state.stats.snapshot()
    assert stats.total_requests == 1
    assert stats.total_errors == 1
    assert stats.success_rate == 0


def test_reset_zeroes_counters_but_keeps_keys(state):
    state.registry.set_enabled("b", False)
    state.stats.record("a", False)
    state.stats.record("b", True)
    reset_before = state.stats.snapshot().last_reset_at

    state.stats.reset()

    stats = state.stats.snapshot()
    assert stats.total_requests == 0
    assert stats.total_errors == 0
    assert stats.success_rate == 100
    assert stats.last_reset_at >= reset_before

    records = state.registry.list()
    assert [(r.key, r.enabled) for r in records] == [("a", True), ("b", False)]
    for record in records:
        assert record.request_count == 0
        assert record.error_count == 0
        assert record.last_used_at is None


def test_report_outcome_logs_failures_only(state):
    state.report_outcome("a", True, request_path="/gemini/x")
    state.report_outcome("a", False, "HTTP 429", "/gemini/y", '{"error": "quota"}')

    entries, total = state.error_log.page(1, 10)
    assert total == 1
    assert entries[0].key_id == "a"
    assert entries[0].message == "HTTP 429"
    assert entries[0].request_path == "/gemini/y"
    assert entries[0].response_body == '{"error": "quota"}'
    assert state.stats.snapshot().total_requests == 2


def test_snapshot_to_dict(state):
    state.stats.record("a", True)

    data = state.stats.snapshot().to_dict()

    assert data["totalRequests"] == 1
    assert data["totalErrors"] == 0
    assert data["successRate"] == 100
    assert "lastReset" in data


def test_seed_keys_skips_duplicates():
    pool = PoolState()

    added = pool.seed_keys(["a", "b", "a"])

    assert added == 2
    assert [r.key for r in pool.registry.list()] == ["a", "b"]


def test_concurrent_reports_keep_counters_consistent(state):
    state.registry.add("c", "C")
    keys = ["a", "b", "c"]
    reports = 3000

    def report(i):
        key = keys[i % len(keys)]
        if i % 4 == 0:
            state.report_outcome(key, False, "HTTP 500", f"/gemini/{i}", "boom")
        elif i % 7 == 0:
            state.stats.record(key, True)
        else:
            state.report_outcome(key, True, request_path=f"/gemini/{i}")

    with ThreadPoolExecutor(max_workers=16) as executor:
        list(executor.map(report, range(reports)))

    stats = state.stats.snapshot()
    records = state.registry.list()
    failures = len([i for i in range(reports) if i % 4 == 0])

    assert stats.total_requests == reports
    assert stats.total_requests == sum(r.request_count for r in records)
    assert stats.total_errors == failures
    assert stats.total_errors == sum(r.error_count for r in records)
    assert stats.success_rate == calculate_success_rate(stats.total_requests, stats.total_errors)
    assert len(state.error_log) == failures
