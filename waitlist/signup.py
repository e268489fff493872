"""Waitlist signup pipeline: validation, persistence and post-commit hooks."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .analytics import spots_remaining
from .config import DEFAULT_SPOTS_TOTAL
from .database import Database, DuplicateEmailError
from .mailer import Mailer
from .models import DeliveryResult, QuestionId, SignupResult, WelcomeProfile
from .realtime import ConnectionRegistry

logger = logging.getLogger("zintle.signup")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class SignupError(Exception):
    """Base class for errors the caller can correct."""


class ValidationError(SignupError):
    """Raised when a submission is missing fields or has malformed values."""

    def __init__(self, details: List[Dict[str, str]]) -> None:
        super().__init__("Validation failed")
        self.details = details


class ConflictError(SignupError):
    """Raised when the email address is already on the waitlist."""

    def __init__(self, email: str) -> None:
        super().__init__("Email already registered")
        self.email = email


class WaitlistSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: str = Field(..., max_length=254)
    primary_skill: str = Field(..., alias="primarySkill", min_length=1)
    biggest_challenge: str = Field(..., alias="biggestChallenge", min_length=1)
    interest_level: int = Field(..., alias="interestLevel", ge=1, le=5)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        if not _EMAIL_PATTERN.fullmatch(value):
            raise ValueError("email must be a valid email address")
        return value

    @field_validator("interest_level", mode="before")
    @classmethod
    def _reject_boolean_level(cls, value: Any) -> Any:
        # bool is an int subclass; lax coercion would store true as level 1.
        if isinstance(value, bool):
            raise ValueError("interestLevel must be a number")
        return value

    def answers(self) -> List[tuple[QuestionId, str]]:
        return [
            (QuestionId.PRIMARY_SKILL, self.primary_skill),
            (QuestionId.BIGGEST_CHALLENGE, self.biggest_challenge),
            (QuestionId.INTEREST_LEVEL, str(self.interest_level)),
        ]


def validate_submission(payload: Any) -> WaitlistSubmission:
    """Validate a raw request body, raising :class:`ValidationError`."""

    if not isinstance(payload, Mapping):
        raise ValidationError([{"field": "body", "message": "Request body must be a JSON object"}])
    try:
        return WaitlistSubmission.model_validate(dict(payload))
    except PydanticValidationError as exc:
        details = [
            {
                "field": ".".join(str(part) for part in error["loc"]) or "body",
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        raise ValidationError(details) from exc


class SignupPipeline:
    """Turn a waitlist submission into a committed user.

    Mail and realtime notifications run after the transaction commits and
    their failures never undo the signup.
    """

    def __init__(
        self,
        database: Database,
        mailer: Mailer,
        registry: Optional[ConnectionRegistry] = None,
        *,
        spots_total: int = DEFAULT_SPOTS_TOTAL,
    ) -> None:
        self._database = database
        self._mailer = mailer
        self._registry = registry
        self._spots_total = spots_total

    async def submit(
        self,
        email: Any,
        primary_skill: Any,
        biggest_challenge: Any,
        interest_level: Any,
    ) -> SignupResult:
        return await self.submit_payload(
            {
                "email": email,
                "primarySkill": primary_skill,
                "biggestChallenge": biggest_challenge,
                "interestLevel": interest_level,
            }
        )

    async def submit_payload(self, payload: Any) -> SignupResult:
        submission = validate_submission(payload)

        if self._database.get_user_by_email(submission.email) is not None:
            raise ConflictError(submission.email)

        try:
            user, _ = self._database.create_signup(submission.email, submission.answers())
        except DuplicateEmailError as exc:
            # Lost a race with a concurrent signup for the same address.
            raise ConflictError(submission.email) from exc

        position = self._database.count_users()
        spots_left = spots_remaining(position, self._spots_total)
        logger.info("New waitlist signup %s as founder #%s", user.id, position)

        delivery = await self._run_hooks(submission, position, spots_left)

        return SignupResult(
            success=True,
            user_id=user.id,
            position=position,
            email_sent=delivery.success,
            spots_left=spots_left,
            email_error=delivery.error,
        )

    async def _run_hooks(self, submission: WaitlistSubmission, position: int, spots_left: int) -> DeliveryResult:
        profile = WelcomeProfile(
            position=position,
            primary_skill=submission.primary_skill,
            biggest_challenge=submission.biggest_challenge,
            interest_level=submission.interest_level,
        )
        try:
            delivery = await self._mailer.send_welcome(submission.email, profile)
        except Exception as exc:
            logger.exception("Welcome email hook failed for %s", submission.email)
            delivery = DeliveryResult(success=False, error=str(exc))
        if not delivery.success:
            logger.error("Failed to send welcome email to %s: %s", submission.email, delivery.error)

        if self._registry is not None:
            try:
                subscribers = await self._registry.publish_counts(position, spots_left)
            except Exception:
                logger.warning("Realtime counter broadcast failed", exc_info=True)
            else:
                logger.info("Counter update for founder #%s reached %s subscriber(s)", position, subscribers)

        return delivery


__all__ = [
    "ConflictError",
    "SignupError",
    "SignupPipeline",
    "ValidationError",
    "WaitlistSubmission",
    "validate_submission",
]
