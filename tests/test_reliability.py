"""
Tests for the circuit breaker and the commit retry queue.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from catechesis_admin.errors import GitHubAPIError, NetworkError
from catechesis_admin.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitConfig,
    CircuitState,
    get_circuit_breaker,
    get_registry,
)
from catechesis_admin.reliability.retry_queue import BACKOFF_MINUTES, RetryItem, RetryQueue


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Circuit breaker ──────────────────────────────────────────────────


class TestCircuitBreaker:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        config = CircuitConfig(failure_threshold=3, failure_window_seconds=60, reset_timeout_seconds=30)
        return CircuitBreaker("github", config, clock=clock)

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()

    def test_trips_after_threshold(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        assert breaker.is_open
        assert not breaker.allow_request()
        assert breaker.get_stats()["stats"]["rejected_count"] == 1

    def test_failures_outside_window_do_not_accumulate(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(61)
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()["stats"]["window_failures"] == 1

    def test_half_open_after_timeout(self, breaker, clock):
        breaker.force_open()
        assert breaker.time_until_retry() == 30
        clock.advance(30)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_probe_success_closes(self, breaker, clock):
        breaker.force_open()
        clock.advance(31)
        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_probe_failure_reopens(self, breaker, clock):
        breaker.force_open()
        clock.advance(31)
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_failure()
        assert breaker.is_open
        assert breaker.time_until_retry() == 30

    def test_reset(self, breaker):
        breaker.force_open()
        breaker.reset()
        stats = breaker.get_stats()
        assert stats["state"] == "closed"
        assert stats["stats"]["failure_count"] == 0
        assert stats["config"]["failure_threshold"] == 3

    def test_registry_shares_instances(self):
        first = get_circuit_breaker("registry-test")
        assert get_circuit_breaker("registry-test") is first
        assert "registry-test" in get_registry().get_all_stats()


# ── Retry queue ──────────────────────────────────────────────────────


class TestRetryItem:

    def test_backoff_schedule(self):
        now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
        item = RetryItem(path="a", content_b64="", message="m", attempt_count=1)
        assert item.calculate_next_retry(now) == "2026-10-17T12:01:00Z"
        item.attempt_count = 3
        assert item.calculate_next_retry(now) == "2026-10-17T12:15:00Z"
        item.attempt_count = 99
        assert item.calculate_next_retry(now) == (now + timedelta(minutes=BACKOFF_MINUTES[-1])).isoformat().replace("+00:00", "Z")

    def test_should_retry(self):
        now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
        item = RetryItem(path="a", content_b64="", message="m", attempt_count=1, next_retry_at="2026-10-17T12:01:00Z")
        assert not item.should_retry(now)
        assert item.should_retry(now + timedelta(minutes=1))
        item.attempt_count = item.max_attempts
        assert not item.should_retry(now + timedelta(days=1))


class TestRetryQueue:

    @pytest.fixture
    def queue(self, tmp_path):
        return RetryQueue(tmp_path / "state" / "commit_queue.json")

    def test_enqueue_persists(self, queue, tmp_path):
        item = queue.enqueue("config/settings.json", '{"a": 1}', "Salvar", NetworkError("offline"))
        assert item.attempt_count == 1
        assert item.last_error_code == "NETWORK_ERROR"
        assert "config/settings.json" in queue
        assert len(queue) == 1

        saved = json.loads((tmp_path / "state" / "commit_queue.json").read_text())
        stored = saved["items"]["config/settings.json"]
        assert base64.b64decode(stored["content_b64"]) == b'{"a": 1}'

        reloaded = RetryQueue(tmp_path / "state" / "commit_queue.json")
        assert reloaded._items["config/settings.json"].message == "Salvar"

    def test_same_path_replaces_content(self, queue):
        queue.enqueue("config/settings.json", "v1", "Salvar", NetworkError("x"))
        item = queue.enqueue("config/settings.json", "v2", "Salvar de novo", RuntimeError("y"))
        assert len(queue) == 1
        assert item.content == b"v2"
        assert item.attempt_count == 2
        assert item.last_error_code == "RuntimeError"

    def test_not_pending_until_backoff_elapses(self, queue):
        queue.enqueue("a.json", "x", "m")
        assert queue.get_pending() == []
        later = datetime.now(timezone.utc) + timedelta(minutes=2)
        assert [i.path for i in queue.get_pending(later)] == ["a.json"]

    def test_exhausted(self, queue):
        queue.enqueue("a.json", "x", "m", max_attempts=1)
        assert [i.path for i in queue.get_exhausted()] == ["a.json"]
        assert queue.get_stats()["exhausted"] == 1

    def test_flush_commits(self, queue, github_client, fake_github):
        queue.enqueue("config/settings.json", '{"ok": true}', "Salvar configurações")
        result = queue.flush(github_client, force=True)
        assert result == {"attempted": 1, "succeeded": ["config/settings.json"], "failed": []}
        assert fake_github.json("config/settings.json") == {"ok": True}
        assert len(queue) == 0

    def test_flush_without_force_skips_items_in_backoff(self, queue, github_client, fake_github):
        queue.enqueue("a.json", "x", "m")
        assert queue.flush(github_client)["attempted"] == 0
        assert fake_github.requests == []

    def test_flush_failure_requeues(self, queue, github_client, fake_github):
        queue.enqueue("a.json", "x", "m", GitHubAPIError("falha", status_code=502))
        fake_github.fail_next(500, times=4)
        result = queue.flush(github_client, force=True)
        assert result["succeeded"] == []
        assert result["failed"][0]["path"] == "a.json"
        assert queue._items["a.json"].attempt_count == 2

    def test_remove_and_clear(self, queue):
        queue.enqueue("a.json", "x", "m")
        queue.enqueue("b.json", "y", "m")
        assert queue.remove("a.json") is True
        assert queue.remove("a.json") is False
        assert queue.clear() == 1
        assert queue.get_stats()["total_items"] == 0

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "commit_queue.json"
        path.write_text("{not json")
        assert len(RetryQueue(path)) == 0

    def test_clear_from_another_instance_is_seen(self, queue, tmp_path):
        queue.enqueue("config/settings.json", "v1", "Salvar", NetworkError("x"))
        RetryQueue(tmp_path / "state" / "commit_queue.json").clear()

        item = queue.enqueue("config/settings.json", "v2", "Salvar", NetworkError("x"))
        assert item.attempt_count == 1
        assert len(queue) == 1

    def test_flush_from_another_instance_is_seen(self, queue, tmp_path, github_client):
        queue.enqueue("a.json", "x", "m")
        RetryQueue(tmp_path / "state" / "commit_queue.json").flush(github_client, force=True)

        assert len(queue) == 0
        queue.enqueue("b.json", "y", "m")
        stored = json.loads((tmp_path / "state" / "commit_queue.json").read_text())
        assert list(stored["items"]) == ["b.json"]

    def test_success_keeps_content_queued_during_flush(self, queue, tmp_path):
        queue.enqueue("a.json", "old", "m")

        class Client:
            def commit_file_with_retry(self, path, content, message, branch=None):
                # A newer save fails while the old content is being retried
                RetryQueue(tmp_path / "state" / "commit_queue.json").enqueue(path, "new", "m")

        result = queue.flush(Client(), force=True)
        assert result["succeeded"] == ["a.json"]
        assert queue._items["a.json"].content == b"new"
