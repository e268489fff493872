"""Presentation helpers for the server-rendered analytics dashboard."""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List

from fastapi.templating import Jinja2Templates

from .analytics import ComprehensiveReport
from .models import QuestionId, UserWithResponses, challenge_label, skill_label

RECENT_SIGNUP_LIMIT = 50


@dataclass(frozen=True)
class RecentSignupRow:
    """A row in the dashboard's recent signups table."""

    email: str
    primary_skill: str
    biggest_challenge: str
    interest_level: str
    completed: bool
    signed_up_on: str


def template_environment() -> Jinja2Templates:
    base_dir = Path(__file__).resolve().parent
    templates = Jinja2Templates(directory=str(base_dir / "templates"))
    templates.env.filters["skill_label"] = skill_label
    templates.env.filters["challenge_label"] = challenge_label
    return templates


def _format_date(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%d %b %Y")


def _format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%d %b %Y • %H:%M %Z")


def recent_signup_rows(users: Iterable[UserWithResponses]) -> List[RecentSignupRow]:
    rows: List[RecentSignupRow] = []
    for entry in users:
        skill = entry.answer_for(QuestionId.PRIMARY_SKILL)
        challenge = entry.answer_for(QuestionId.BIGGEST_CHALLENGE)
        interest = entry.answer_for(QuestionId.INTEREST_LEVEL)
        rows.append(
            RecentSignupRow(
                email=entry.user.email,
                primary_skill=skill_label(skill) if skill else "-",
                biggest_challenge=challenge_label(challenge) if challenge else "-",
                interest_level=f"{interest}/5 ⭐" if interest else "-",
                completed=entry.is_complete,
                signed_up_on=_format_date(entry.user.created_at),
            )
        )
    return rows


def dashboard_context(report: ComprehensiveReport, users: Iterable[UserWithResponses]) -> Dict[str, object]:
    completion = report.business_metrics.completion_rate
    try:
        completion_healthy = float(completion) > 80
    except ValueError:
        completion_healthy = False
    return {
        "report": report,
        "rows": recent_signup_rows(users),
        "completion_healthy": completion_healthy,
        "generated_at": _format_datetime(report.timestamp),
    }


def error_context(exc: BaseException) -> Dict[str, object]:
    return {
        "message": str(exc) or exc.__class__.__name__,
        "trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


__all__ = [
    "RECENT_SIGNUP_LIMIT",
    "RecentSignupRow",
    "dashboard_context",
    "error_context",
    "recent_signup_rows",
    "template_environment",
]
