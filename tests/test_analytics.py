from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

import pytest

from waitlist.analytics import AnalyticsEngine, spots_remaining
from waitlist.database import Database
from waitlist.models import QuestionId


NOW = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "waitlist.sqlite3")
    db.initialize()
    return db


def _engine(database: Database) -> AnalyticsEngine:
    return AnalyticsEngine(database, clock=lambda: NOW, local_timezone=timezone.utc)


def _signup(
    database: Database,
    email: str,
    *,
    created_at: datetime = NOW,
    skill: str = "design",
    challenge: str = "finding_clients",
    interest: str = "5",
) -> None:
    database.create_signup(
        email,
        [
            (QuestionId.PRIMARY_SKILL, skill),
            (QuestionId.BIGGEST_CHALLENGE, challenge),
            (QuestionId.INTEREST_LEVEL, interest),
        ],
        created_at=created_at,
    )


def _signups(database: Database, interests: Iterable[str]) -> None:
    for index, interest in enumerate(interests):
        _signup(database, f"user{index}@x.com", interest=interest, created_at=NOW - timedelta(minutes=index))


def test_spots_remaining_is_clamped() -> None:
    assert spots_remaining(0) == 500
    assert spots_remaining(1) == 499
    assert spots_remaining(500) == 0
    assert spots_remaining(612) == 0
    assert spots_remaining(3, spots_total=10) == 7


def test_basic_stats_tracks_signups(database: Database) -> None:
    engine = _engine(database)
    assert engine.basic_stats().total_signups == 0

    _signup(database, "a@x.com")
    stats = engine.basic_stats()

    assert stats.total_signups == 1
    assert stats.spots_left == 499
    assert stats.to_payload() == {
        "totalSignups": 1,
        "spotsLeft": 499,
        "timestamp": "2025-07-01T12:00:00Z",
    }


def test_three_signups_today_fill_todays_bucket(database: Database) -> None:
    _signups(database, ["5", "4", "3"])

    report = _engine(database).comprehensive_stats()

    assert report.total_users == 3
    assert report.users_today == 3
    assert len(report.daily_signups) == 30
    assert report.daily_signups[-1].date == "2025-07-01"
    assert report.daily_signups[-1].signups == 3
    assert report.daily_signups[0].date == "2025-06-02"
    assert sum(bucket.signups for bucket in report.daily_signups) == 3


def test_weekly_growth_is_new_without_prior_users(database: Database) -> None:
    _signups(database, ["5", "5"])

    assert _engine(database).comprehensive_stats().weekly_growth_rate == "New"


def test_weekly_growth_relative_to_previous_users(database: Database) -> None:
    _signup(database, "old1@x.com", created_at=NOW - timedelta(days=10))
    _signup(database, "old2@x.com", created_at=NOW - timedelta(days=12))
    _signup(database, "new@x.com", created_at=NOW - timedelta(days=2))

    report = _engine(database).comprehensive_stats()

    assert report.users_this_week == 1
    assert report.users_this_month == 3
    assert report.weekly_growth_rate == "50.0%"


def test_retention_potential_counts_high_interest(database: Database) -> None:
    _signups(database, ["4", "5", "5"])
    assert _engine(database).comprehensive_stats().business_metrics.retention_potential == "100.0"


def test_retention_potential_is_zero_for_low_interest(tmp_path: Path) -> None:
    database = Database(tmp_path / "low.sqlite3")
    database.initialize()
    _signups(database, ["1", "1"])

    metrics = _engine(database).comprehensive_stats().business_metrics

    assert metrics.retention_potential == "0.0"
    assert metrics.completion_rate == "100.0"


def test_empty_store_uses_defaults(database: Database) -> None:
    report = _engine(database).comprehensive_stats()

    assert report.total_users == 0
    assert report.spots_left == 500
    assert report.weekly_growth_rate == "New"
    assert report.market_insights.average_interest == 0.0
    assert report.market_insights.top_skill.answer == "design"
    assert report.market_insights.top_skill.count == 0
    assert report.market_insights.top_challenge.answer == "payment_delays"
    assert report.market_insights.peak_signup_hour == 0
    assert report.business_metrics.retention_potential == "0"
    assert report.business_metrics.completion_rate == "0"
    assert report.business_metrics.market_fit == "Developing"
    assert [stage.rate for stage in report.conversion_funnel] == ["100%", "33%", "0%", "0%"]


def test_market_insights_and_funnel(database: Database) -> None:
    _signup(database, "a@x.com", skill="video", challenge="skill_gaps", interest="5",
            created_at=NOW.replace(hour=9, minute=30))
    _signup(database, "b@x.com", skill="video", challenge="payment_delays", interest="4",
            created_at=NOW.replace(hour=9, minute=45))
    _signup(database, "c@x.com", skill="writing", challenge="skill_gaps", interest="3",
            created_at=NOW.replace(hour=11))
    database.create_signup("partial@x.com", [(QuestionId.PRIMARY_SKILL, "design")],
                           created_at=NOW.replace(hour=11, minute=30))

    report = _engine(database).comprehensive_stats()

    insights = report.market_insights
    assert insights.top_skill.answer == "video"
    assert insights.top_skill.count == 2
    assert insights.top_challenge.answer == "skill_gaps"
    assert insights.average_interest == 3.0
    assert insights.peak_signup_hour == 9
    assert report.hourly_signups[9].hour == "9:00"
    assert report.hourly_signups[9].signups == 2
    assert report.hourly_signups[11].signups == 2

    funnel = report.conversion_funnel
    assert [stage.stage for stage in funnel] == [
        "Landing Page View",
        "Email Entered",
        "Survey Started",
        "Survey Completed",
    ]
    assert [stage.users for stage in funnel] == [12, 4, 4, 3]
    assert [stage.rate for stage in funnel] == ["100%", "33%", "100.0%", "75.0%"]
    assert [stage.estimated for stage in funnel] == [True, False, False, False]
    assert report.business_metrics.completion_rate == "75.0"
    assert report.business_metrics.market_fit == "Strong"


def test_summary_counts_recent_signups(database: Database) -> None:
    _signup(database, "old@x.com", created_at=NOW - timedelta(days=9), skill="video")
    _signup(database, "new@x.com", created_at=NOW - timedelta(days=1))

    summary = _engine(database).summary()

    assert summary.total_users == 2
    assert summary.recent_signups == 1
    payload = summary.to_payload()
    assert payload["skillDistribution"] == [
        {"answer": "design", "count": 1},
        {"answer": "video", "count": 1},
    ]
    assert payload["interestLevels"] == [{"answer": "5", "count": 2}]


def test_report_payload_uses_camel_case(database: Database) -> None:
    _signup(database, "a@x.com")

    payload = _engine(database).comprehensive_stats().to_payload()

    for key in (
        "totalUsers",
        "usersToday",
        "usersThisWeek",
        "usersThisMonth",
        "weeklyGrowthRate",
        "dailySignups",
        "hourlySignups",
        "conversionFunnel",
        "marketInsights",
        "businessMetrics",
    ):
        assert key in payload
    assert payload["marketInsights"]["topSkill"] == {"answer": "design", "count": 1}
    assert payload["businessMetrics"]["avgTimeToComplete"] == "4.2 min"
