"""
Tests for the public-site visit tracker.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

import pytest

from catechesis_admin.analytics.tracker import (
    MAX_USER_AGENT,
    VisitTracker,
    generate_visitor_id,
)


class FakeNow:
    def __init__(self):
        self.now = datetime(2026, 10, 17, 10, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def now():
    return FakeNow()


@pytest.fixture
def tracker(tmp_path, now):
    return VisitTracker(tmp_path / "analytics.json", clock=now)


class TestVisitorId:

    def test_format(self):
        visitor = generate_visitor_id("Firefox|direct", now_ms=36 ** 3)
        assert re.fullmatch(r"visitor_[0-9a-f]{16}_1000", visitor)

    def test_same_seed_same_hash(self):
        a = generate_visitor_id("x", now_ms=1)
        b = generate_visitor_id("x", now_ms=2)
        assert a.split("_")[1] == b.split("_")[1]


class TestVisitTracker:

    def test_record(self, tracker):
        session = tracker.record_visit("/turmas", visitor_id="v1", user_agent="U" * 300)
        assert session["page"] == "/turmas"
        assert session["referrer"] == "direct"
        assert len(session["user_agent"]) == MAX_USER_AGENT
        assert session["timestamp"] == "2026-10-17T10:30:00Z"

    def test_generated_visitor_id(self, tracker):
        session = tracker.record_visit("", user_agent="Firefox")
        assert session["visitor_id"].startswith("visitor_")
        assert session["page"] == "/"

    def test_unique_visitors_per_day(self, tracker):
        tracker.record_visit("/", visitor_id="v1")
        tracker.record_visit("/turmas", visitor_id="v1")
        tracker.record_visit("/", visitor_id="v2", referrer="https://google.com")

        summary = tracker.get_daily_summary()
        assert summary == {
            "date": "2026-10-17",
            "visits": 3,
            "unique_visitors": 2,
            "pages": {"/": 2, "/turmas": 1},
            "average_time_spent": None,
        }

    def test_time_spent(self, tracker):
        tracker.record_visit("/", visitor_id="v1")
        tracker.record_visit("/turmas", visitor_id="v1")
        tracker.record_visit("/", visitor_id="v2")
        assert tracker.update_time_spent("v1", 42.04) is True
        assert tracker.update_time_spent("v2", -5) is True
        assert tracker.update_time_spent("v3", 10) is False

        summary = tracker.get_daily_summary()
        assert summary["average_time_spent"] == 21.0

    def test_time_spent_without_visits_today(self, tracker):
        assert tracker.update_time_spent("v1", 10) is False

    def test_summary(self, tracker, now):
        tracker.record_visit("/", visitor_id="v1", referrer="https://google.com")
        now.now += timedelta(days=1)
        tracker.record_visit("/", visitor_id="v1")
        tracker.record_visit("/turmas", visitor_id="v2")

        summary = tracker.get_summary(days=7)
        assert summary["total_visits"] == 3
        assert summary["unique_visitors"] == 2
        assert summary["average_daily_visits"] == 0.4
        assert summary["top_pages"][0] == {"page": "/", "visits": 2}
        assert {"referrer": "https://google.com", "visits": 1} in summary["top_referrers"]
        assert len(summary["daily"]) == 7
        assert summary["daily"][-1] == {"date": "2026-10-18", "visits": 2, "unique_visitors": 2}
        assert summary["daily"][-2]["visits"] == 1

    def test_summary_window(self, tracker, now):
        tracker.record_visit("/", visitor_id="v1")
        now.now += timedelta(days=10)
        assert tracker.get_summary(days=7)["total_visits"] == 0

    def test_daily_summary_for_other_day(self, tracker):
        summary = tracker.get_daily_summary(date(2020, 1, 1))
        assert summary["visits"] == 0
        assert summary["date"] == "2020-01-01"

    def test_cleanup(self, tracker, now):
        tracker.record_visit("/", visitor_id="v1")
        now.now += timedelta(days=100)
        tracker.record_visit("/", visitor_id="v1")
        assert tracker.cleanup(keep_days=90) == 1
        assert tracker.cleanup(keep_days=90) == 0
        assert tracker.get_summary(days=1)["total_visits"] == 1

    def test_corrupt_file(self, tmp_path, now):
        path = tmp_path / "analytics.json"
        path.write_text('{"daily": []}')
        tracker = VisitTracker(path, clock=now)
        assert tracker.get_daily_summary()["visits"] == 0
        tracker.record_visit("/", visitor_id="v1")
        assert tracker.get_daily_summary()["visits"] == 1
