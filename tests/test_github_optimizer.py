"""
Tests for the GitHub request queue: priorities, retries, cache and batches.
"""

from __future__ import annotations

import pytest

from catechesis_admin.errors import FileTooLargeError, NetworkError, ValidationError
from catechesis_admin.github.optimizer import RequestQueue


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def queue(github_client, clock, sleeps):
    return RequestQueue(github_client, batch_size=1, batch_delay=0, sleep=sleeps.append, clock=clock)


# ── Queue ────────────────────────────────────────────────────────────


class TestQueue:

    def test_invalid_priority(self, queue):
        with pytest.raises(ValidationError):
            queue.enqueue(lambda: None, priority="urgent")

    def test_priority_order(self, queue):
        ran = []
        queue.enqueue(lambda: ran.append("low"), priority="low")
        queue.enqueue(lambda: ran.append("normal"))
        queue.enqueue(lambda: ran.append("high-1"), priority="high")
        queue.enqueue(lambda: ran.append("high-2"), priority="high")
        assert queue.pending() == 4

        assert queue.process() == 4
        assert ran == ["high-1", "high-2", "normal", "low"]
        assert queue.pending() == 0

    def test_batches_are_spaced(self, github_client, sleeps, clock):
        queue = RequestQueue(github_client, batch_size=2, batch_delay=1.5, sleep=sleeps.append, clock=clock)
        for i in range(5):
            queue.enqueue(lambda i=i: i)
        queue.process()
        assert queue.get_queue_stats()["batches"] == 3
        assert sleeps == [1.5, 1.5]

    def test_results_through_futures(self, queue):
        future = queue.enqueue(lambda: 42)
        queue.process()
        assert future.result() == 42

    def test_submit(self, queue):
        assert queue.submit(lambda: "ok") == "ok"

    def test_retryable_errors_are_retried(self, queue, sleeps):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise NetworkError("Erro de rede")
            return "ok"

        assert queue.submit(flaky, label="flaky") == "ok"
        assert sleeps == [2.0]
        stats = queue.get_queue_stats()
        assert stats["retried"] == 1
        assert stats["processed"] == 1

    def test_retries_run_out(self, queue, sleeps):
        def always_down():
            raise NetworkError("Erro de rede")

        with pytest.raises(NetworkError):
            queue.submit(always_down)
        assert sleeps == [2.0, 4.0, 6.0]
        assert queue.get_queue_stats()["failed"] == 1

    def test_other_errors_fail_at_once(self, queue, sleeps):
        def invalid():
            raise ValidationError("Campo inválido")

        future = queue.enqueue(invalid)
        crash = queue.enqueue(lambda: 1 / 0)
        queue.process()
        assert isinstance(future.exception(), ValidationError)
        assert isinstance(crash.exception(), ZeroDivisionError)
        assert sleeps == []
        assert queue.get_queue_stats()["failed"] == 2

    def test_clear(self, queue):
        futures = [queue.enqueue(lambda: None) for _ in range(2)]
        assert queue.clear() == 2
        assert all(f.cancelled() for f in futures)
        assert queue.pending() == 0


# ── Cache ────────────────────────────────────────────────────────────


class TestCache:

    def test_hits_and_misses(self, queue, fake_github, clock):
        fake_github.put_file("config/settings.json", {"paroquia": "São Pedro"})

        first = queue.cached_get("config/settings.json")
        second = queue.cached_get("config/settings.json")
        assert first is second
        assert len(fake_github.calls("GET", "settings.json")) == 1

        stats = queue.get_queue_stats()
        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["cache_hit_rate"] == 0.5

        clock.now += 121
        queue.cached_get("config/settings.json")
        assert len(fake_github.calls("GET", "settings.json")) == 2

    def test_missing_file_is_cached(self, queue, fake_github):
        assert queue.cached_get("nada.json") is None
        assert queue.cached_get("nada.json") is None
        assert len(fake_github.calls("GET", "nada.json")) == 1

    def test_invalidate(self, queue, fake_github):
        fake_github.put_file("a.json", "{}")
        fake_github.put_file("b.json", "{}")
        queue.cached_get("a.json")
        queue.cached_get("b.json")
        assert queue.invalidate("a.json") == 1
        assert queue.invalidate() == 1

    def test_commit_invalidates(self, queue, fake_github):
        fake_github.put_file("data/catequese.json", "{}")
        assert queue.cached_get("data/catequese.json").text == "{}"

        result = queue.commit("data/catequese.json", '{"rows": []}', "Atualizar dados", priority="high")
        assert result.success
        assert queue.cached_get("data/catequese.json").text == '{"rows": []}'


# ── Batches ──────────────────────────────────────────────────────────


class TestBatchFileOperations:

    def test_all_committed(self, queue, fake_github):
        results = queue.batch_file_operations([
            ("data/a.json", "{}", "a"),
            ("data/b.json", b"{}", "b"),
        ])
        assert [r["success"] for r in results] == [True, True]
        assert results[0]["result"]["path"] == "data/a.json"
        assert set(fake_github.files) == {"data/a.json", "data/b.json"}

    def test_partial_failure(self, queue, fake_github):
        fake_github.fail_next(403, {"message": "Resource not accessible"})
        results = queue.batch_file_operations([
            ("data/a.json", "{}", "a"),
            ("data/b.json", "{}", "b"),
        ])
        assert results[0] == {
            "path": "data/a.json",
            "success": False,
            "error": "Sem permissão para esta operação: Resource not accessible",
        }
        assert results[1]["success"] is True
        assert list(fake_github.files) == ["data/b.json"]

    def test_oversized_file_rejected_before_queueing(self, queue, fake_github):
        queue.MAX_FILE_SIZE = 10
        with pytest.raises(FileTooLargeError) as exc:
            queue.batch_file_operations([
                ("data/a.json", "{}", "a"),
                ("data/big.json", "x" * 11, "big"),
            ])
        assert exc.value.details["path"] == "data/big.json"
        assert queue.pending() == 0
        assert fake_github.requests == []


class TestStats:

    def test_shape(self, queue, fake_github):
        fake_github.put_file("a.json", "{}")
        queue.cached_get("a.json")
        stats = queue.get_queue_stats()
        assert stats["pending"] == {"high": 0, "normal": 0, "low": 0}
        assert stats["total_pending"] == 0
        assert stats["processing"] is False
        assert stats["cache_size"] == 1
        assert stats["rate_limit"]["remaining"] == 4990
