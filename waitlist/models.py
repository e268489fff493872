"""Domain models for the waitlist service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

NOT_SPECIFIED = "Not specified"


class QuestionId(str, Enum):
    """Closed set of survey questions asked during signup."""

    PRIMARY_SKILL = "primary_skill"
    BIGGEST_CHALLENGE = "biggest_challenge"
    INTEREST_LEVEL = "interest_level"

    @property
    def text(self) -> str:
        return QUESTION_TEXT[self]


QUESTION_TEXT: Dict[QuestionId, str] = {
    QuestionId.PRIMARY_SKILL: "What's your primary creative skill?",
    QuestionId.BIGGEST_CHALLENGE: "What's your biggest challenge as a freelancer?",
    QuestionId.INTEREST_LEVEL: "How interested are you in skill-swapping?",
}


class Skill(str, Enum):
    DESIGN = "design"
    DEVELOPMENT = "development"
    PHOTOGRAPHY = "photography"
    WRITING = "writing"
    MARKETING = "marketing"
    VIDEO = "video"
    OTHER = "other"


class Challenge(str, Enum):
    PAYMENT_DELAYS = "payment_delays"
    FINDING_CLIENTS = "finding_clients"
    PRICING_SERVICES = "pricing_services"
    SKILL_GAPS = "skill_gaps"


SKILL_LABELS: Dict[Skill, str] = {
    Skill.DESIGN: "Graphic Design",
    Skill.DEVELOPMENT: "Web Development",
    Skill.PHOTOGRAPHY: "Photography",
    Skill.WRITING: "Content Writing",
    Skill.MARKETING: "Digital Marketing",
    Skill.VIDEO: "Video Production",
    Skill.OTHER: "Other",
}

CHALLENGE_LABELS: Dict[Challenge, str] = {
    Challenge.PAYMENT_DELAYS: "Payment Delays",
    Challenge.FINDING_CLIENTS: "Finding Clients",
    Challenge.PRICING_SERVICES: "Pricing Services",
    Challenge.SKILL_GAPS: "Skill Gaps",
}


def skill_label(code: Optional[str]) -> str:
    """Return the display label for a skill code.

    Unknown codes are returned unchanged; empty or missing codes render as
    ``"Not specified"``.
    """

    if not code:
        return NOT_SPECIFIED
    try:
        return SKILL_LABELS[Skill(code)]
    except ValueError:
        return code


def challenge_label(code: Optional[str]) -> str:
    """Return the display label for a challenge code (see :func:`skill_label`)."""

    if not code:
        return NOT_SPECIFIED
    try:
        return CHALLENGE_LABELS[Challenge(code)]
    except ValueError:
        return code


@dataclass(frozen=True)
class User:
    """A waitlist member."""

    id: str
    email: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Response:
    """A single survey answer owned by a user."""

    id: str
    user_id: str
    question_id: str
    question: str
    answer: str
    created_at: datetime


@dataclass(frozen=True)
class UserWithResponses:
    """A user together with the answers recorded for them."""

    user: User
    responses: List[Response] = field(default_factory=list)

    def answer_for(self, question_id: QuestionId) -> Optional[str]:
        for response in self.responses:
            if response.question_id == question_id.value:
                return response.answer
        return None

    @property
    def is_complete(self) -> bool:
        answered = {response.question_id for response in self.responses}
        return all(question.value in answered for question in QuestionId)


@dataclass(frozen=True)
class WelcomeProfile:
    """Details rendered into the welcome email."""

    position: Optional[int] = None
    primary_skill: Optional[str] = None
    biggest_challenge: Optional[str] = None
    interest_level: Optional[int] = None

    @property
    def has_answers(self) -> bool:
        return bool(self.primary_skill or self.biggest_challenge or self.interest_level)


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single notification attempt."""

    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None
    demo: bool = False


@dataclass(frozen=True)
class RecipientResult:
    email: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class BroadcastResult:
    """Per-recipient tally for a batched broadcast."""

    success: bool
    sent: int
    total: int
    results: List[RecipientResult] = field(default_factory=list)
    batches: int = 0

    @property
    def failed(self) -> int:
        return self.total - self.sent


@dataclass(frozen=True)
class SignupResult:
    """Returned by the signup pipeline once the user has been committed."""

    success: bool
    user_id: str
    position: int
    email_sent: bool
    spots_left: int
    email_error: Optional[str] = None


__all__ = [
    "BroadcastResult",
    "CHALLENGE_LABELS",
    "Challenge",
    "DeliveryResult",
    "NOT_SPECIFIED",
    "QUESTION_TEXT",
    "QuestionId",
    "RecipientResult",
    "Response",
    "SKILL_LABELS",
    "SignupResult",
    "Skill",
    "User",
    "UserWithResponses",
    "WelcomeProfile",
    "challenge_label",
    "skill_label",
]
