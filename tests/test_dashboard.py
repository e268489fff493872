from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from waitlist.analytics import AnalyticsEngine
from waitlist.dashboard import dashboard_context, error_context, recent_signup_rows
from waitlist.database import Database
from waitlist.models import QuestionId


NOW = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)


def test_recent_signup_rows_use_labels_and_status(tmp_path: Path) -> None:
    database = Database(tmp_path / "waitlist.sqlite3")
    database.initialize()
    database.create_signup(
        "full@x.com",
        [
            (QuestionId.PRIMARY_SKILL, "photography"),
            (QuestionId.BIGGEST_CHALLENGE, "pricing_services"),
            (QuestionId.INTEREST_LEVEL, "4"),
        ],
        created_at=NOW,
    )
    database.create_signup("partial@x.com", [(QuestionId.PRIMARY_SKILL, "knitting")], created_at=NOW)

    rows = {row.email: row for row in recent_signup_rows(database.list_recent_users())}

    full = rows["full@x.com"]
    assert full.primary_skill == "Photography"
    assert full.biggest_challenge == "Pricing Services"
    assert full.interest_level == "4/5 ⭐"
    assert full.completed is True
    assert full.signed_up_on == "01 Jul 2025"

    partial = rows["partial@x.com"]
    assert partial.primary_skill == "knitting"
    assert partial.biggest_challenge == "-"
    assert partial.interest_level == "-"
    assert partial.completed is False


def test_dashboard_context_flags_completion_health(tmp_path: Path) -> None:
    database = Database(tmp_path / "waitlist.sqlite3")
    database.initialize()
    engine = AnalyticsEngine(database, clock=lambda: NOW)

    empty = dashboard_context(engine.comprehensive_stats(), [])
    assert empty["completion_healthy"] is False
    assert empty["rows"] == []
    assert empty["generated_at"] == "01 Jul 2025 • 12:00 UTC"

    database.create_signup(
        "a@x.com",
        [
            (QuestionId.PRIMARY_SKILL, "design"),
            (QuestionId.BIGGEST_CHALLENGE, "skill_gaps"),
            (QuestionId.INTEREST_LEVEL, "5"),
        ],
        created_at=NOW,
    )
    context = dashboard_context(engine.comprehensive_stats(), database.list_recent_users())
    assert context["completion_healthy"] is True
    assert len(context["rows"]) == 1


def test_error_context_includes_traceback() -> None:
    try:
        raise RuntimeError("upstream unavailable")
    except RuntimeError as exc:
        context = error_context(exc)

    assert context["message"] == "upstream unavailable"
    assert "RuntimeError: upstream unavailable" in context["trace"]
