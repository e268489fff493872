"""On-demand aggregation of waitlist statistics.

Every call rescans the store; nothing is cached between calls and the
individual queries are not taken from a common snapshot.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .config import DEFAULT_SPOTS_TOTAL
from .database import Database
from .models import QuestionId

DAILY_BUCKETS = 30
DEFAULT_TOP_SKILL = "design"
DEFAULT_TOP_CHALLENGE = "payment_delays"
ESTIMATED_VIEWS_PER_SIGNUP = 3
AVG_TIME_TO_COMPLETE = "4.2 min"
HIGH_INTEREST_THRESHOLD = 4


def spots_remaining(total_signups: int, spots_total: int = DEFAULT_SPOTS_TOTAL) -> int:
    """Founder spots still open; signups beyond the cap are never rejected."""

    return max(spots_total - total_signups, 0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _percentage(numerator: int, denominator: int) -> str:
    if denominator <= 0:
        return "0"
    return f"{numerator / denominator * 100:.1f}"


def _parse_level(answer: str) -> Optional[int]:
    try:
        return int(answer.strip())
    except (AttributeError, ValueError):
        return None


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_payload(self) -> Dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class DistributionEntry(_Schema):
    answer: str
    count: int


class DailySignups(_Schema):
    date: str
    signups: int


class HourlySignups(_Schema):
    hour: str
    signups: int


class FunnelStage(_Schema):
    stage: str
    users: int
    rate: str
    estimated: bool = False


class MarketInsights(_Schema):
    average_interest: float
    top_skill: DistributionEntry
    top_challenge: DistributionEntry
    peak_signup_hour: int


class BusinessMetrics(_Schema):
    retention_potential: str
    market_fit: str
    avg_time_to_complete: str
    completion_rate: str


class BasicStats(_Schema):
    total_signups: int
    spots_left: int
    timestamp: datetime


class AnalyticsSummary(_Schema):
    total_users: int
    skill_distribution: List[DistributionEntry]
    challenge_distribution: List[DistributionEntry]
    interest_levels: List[DistributionEntry]
    recent_signups: int
    timestamp: datetime


class ComprehensiveReport(_Schema):
    total_users: int
    users_today: int
    users_this_week: int
    users_this_month: int
    spots_left: int
    weekly_growth_rate: str
    daily_signups: List[DailySignups]
    skill_distribution: List[DistributionEntry]
    challenge_distribution: List[DistributionEntry]
    interest_levels: List[DistributionEntry]
    hourly_signups: List[HourlySignups]
    conversion_funnel: List[FunnelStage]
    market_insights: MarketInsights
    business_metrics: BusinessMetrics
    timestamp: datetime


def _entries(distribution: Dict[str, int]) -> List[DistributionEntry]:
    return [DistributionEntry(answer=answer, count=count) for answer, count in distribution.items()]


def _top(entries: List[DistributionEntry], default: str) -> DistributionEntry:
    if not entries:
        return DistributionEntry(answer=default, count=0)
    best = entries[0]
    for entry in entries[1:]:
        if entry.count > best.count:
            best = entry
    return best


class AnalyticsEngine:
    """Stateless read-only statistics over the waitlist store."""

    def __init__(
        self,
        database: Database,
        *,
        spots_total: int = DEFAULT_SPOTS_TOTAL,
        clock: Callable[[], datetime] = _utcnow,
        local_timezone: Optional[tzinfo] = None,
    ) -> None:
        self._database = database
        self._spots_total = spots_total
        self._clock = clock
        # None means the server's local timezone.
        self._local_timezone = local_timezone

    def basic_stats(self) -> BasicStats:
        total = self._database.count_users()
        return BasicStats(
            total_signups=total,
            spots_left=spots_remaining(total, self._spots_total),
            timestamp=self._clock(),
        )

    def summary(self) -> AnalyticsSummary:
        now = self._clock()
        return AnalyticsSummary(
            total_users=self._database.count_users(),
            skill_distribution=_entries(self._database.answer_distribution(QuestionId.PRIMARY_SKILL)),
            challenge_distribution=_entries(self._database.answer_distribution(QuestionId.BIGGEST_CHALLENGE)),
            interest_levels=_entries(self._database.answer_distribution(QuestionId.INTEREST_LEVEL)),
            recent_signups=self._database.count_users(since=now - timedelta(days=7)),
            timestamp=now,
        )

    def comprehensive_stats(self) -> ComprehensiveReport:
        now = self._clock()
        last_month = now - timedelta(days=30)

        total_users = self._database.count_users()
        users_today = self._database.count_users(since=now - timedelta(days=1))
        users_this_week = self._database.count_users(since=now - timedelta(days=7))
        users_this_month = self._database.count_users(since=last_month)

        daily = self._daily_histogram(now, self._database.list_signup_times(since=last_month))
        hourly = self._hourly_histogram(self._database.list_signup_times())

        skills = _entries(self._database.answer_distribution(QuestionId.PRIMARY_SKILL))
        challenges = _entries(self._database.answer_distribution(QuestionId.BIGGEST_CHALLENGE))
        interest = _entries(self._database.answer_distribution(QuestionId.INTEREST_LEVEL))

        survey_started = self._database.count_responses(QuestionId.PRIMARY_SKILL)
        survey_completed = self._database.count_responses(QuestionId.INTEREST_LEVEL)

        return ComprehensiveReport(
            total_users=total_users,
            users_today=users_today,
            users_this_week=users_this_week,
            users_this_month=users_this_month,
            spots_left=spots_remaining(total_users, self._spots_total),
            weekly_growth_rate=self._weekly_growth_rate(total_users, users_this_week),
            daily_signups=daily,
            skill_distribution=skills,
            challenge_distribution=challenges,
            interest_levels=interest,
            hourly_signups=[
                HourlySignups(hour=f"{hour}:00", signups=count) for hour, count in enumerate(hourly)
            ],
            conversion_funnel=self._conversion_funnel(total_users, survey_started, survey_completed),
            market_insights=MarketInsights(
                average_interest=self._average_interest(interest, total_users),
                top_skill=_top(skills, DEFAULT_TOP_SKILL),
                top_challenge=_top(challenges, DEFAULT_TOP_CHALLENGE),
                peak_signup_hour=hourly.index(max(hourly)),
            ),
            business_metrics=BusinessMetrics(
                retention_potential=_percentage(
                    sum(
                        entry.count
                        for entry in interest
                        if (_parse_level(entry.answer) or 0) >= HIGH_INTEREST_THRESHOLD
                    ),
                    total_users,
                ),
                market_fit="Strong" if challenges else "Developing",
                avg_time_to_complete=AVG_TIME_TO_COMPLETE,
                completion_rate=_percentage(survey_completed, total_users),
            ),
            timestamp=now,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _daily_histogram(self, now: datetime, signup_times: List[datetime]) -> List[DailySignups]:
        # Days are bucketed on UTC calendar boundaries.
        today = now.astimezone(timezone.utc).date()
        buckets: Dict[str, int] = {}
        for offset in range(DAILY_BUCKETS - 1, -1, -1):
            buckets[(today - timedelta(days=offset)).isoformat()] = 0
        for created_at in signup_times:
            key = created_at.astimezone(timezone.utc).date().isoformat()
            if key in buckets:
                buckets[key] += 1
        return [DailySignups(date=day, signups=count) for day, count in buckets.items()]

    def _hourly_histogram(self, signup_times: List[datetime]) -> List[int]:
        # Hours use local time of day, unlike the UTC daily buckets.
        hourly = [0] * 24
        for created_at in signup_times:
            hourly[created_at.astimezone(self._local_timezone).hour] += 1
        return hourly

    @staticmethod
    def _weekly_growth_rate(total_users: int, users_this_week: int) -> str:
        previous = total_users - users_this_week
        if previous <= 0:
            return "New"
        return f"{users_this_week / previous * 100:.1f}%"

    @staticmethod
    def _average_interest(levels: List[DistributionEntry], total_users: int) -> float:
        if total_users <= 0:
            return 0.0
        weighted = 0
        for entry in levels:
            level = _parse_level(entry.answer)
            if level is not None:
                weighted += level * entry.count
        return round(weighted / total_users, 2)

    @staticmethod
    def _conversion_funnel(total_users: int, survey_started: int, survey_completed: int) -> List[FunnelStage]:
        def rate(count: int) -> str:
            return f"{_percentage(count, total_users)}%"

        return [
            FunnelStage(
                stage="Landing Page View",
                users=total_users * ESTIMATED_VIEWS_PER_SIGNUP,
                rate="100%",
                estimated=True,
            ),
            FunnelStage(stage="Email Entered", users=total_users, rate="33%"),
            FunnelStage(stage="Survey Started", users=survey_started, rate=rate(survey_started)),
            FunnelStage(stage="Survey Completed", users=survey_completed, rate=rate(survey_completed)),
        ]


__all__ = [
    "AnalyticsEngine",
    "AnalyticsSummary",
    "BasicStats",
    "BusinessMetrics",
    "ComprehensiveReport",
    "DailySignups",
    "DistributionEntry",
    "FunnelStage",
    "HourlySignups",
    "MarketInsights",
    "spots_remaining",
]
