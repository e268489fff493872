from __future__ import annotations

from datetime import datetime, timezone

from waitlist.models import (
    QuestionId,
    Response,
    User,
    UserWithResponses,
    WelcomeProfile,
    challenge_label,
    skill_label,
)


def test_labels_map_known_codes() -> None:
    assert skill_label("design") == "Graphic Design"
    assert skill_label("video") == "Video Production"
    assert challenge_label("payment_delays") == "Payment Delays"


def test_labels_pass_through_unknown_codes() -> None:
    assert skill_label("pottery") == "pottery"
    assert challenge_label("burnout") == "burnout"


def test_labels_for_missing_codes() -> None:
    assert skill_label("") == "Not specified"
    assert skill_label(None) == "Not specified"
    assert challenge_label(None) == "Not specified"


def test_question_text() -> None:
    assert QuestionId.INTEREST_LEVEL.text == "How interested are you in skill-swapping?"
    assert QuestionId("primary_skill") is QuestionId.PRIMARY_SKILL


def test_user_with_responses_completion() -> None:
    created = datetime(2025, 7, 1, tzinfo=timezone.utc)
    user = User(id="u1", email="a@x.com", created_at=created, updated_at=created)
    responses = [
        Response(id=f"r{index}", user_id="u1", question_id=question.value, question=question.text,
                 answer=answer, created_at=created)
        for index, (question, answer) in enumerate(
            [(QuestionId.PRIMARY_SKILL, "design"), (QuestionId.BIGGEST_CHALLENGE, "skill_gaps")]
        )
    ]

    partial = UserWithResponses(user=user, responses=responses)
    assert partial.is_complete is False
    assert partial.answer_for(QuestionId.BIGGEST_CHALLENGE) == "skill_gaps"

    complete = UserWithResponses(
        user=user,
        responses=responses
        + [
            Response(id="r2", user_id="u1", question_id="interest_level", question="",
                     answer="4", created_at=created)
        ],
    )
    assert complete.is_complete is True


def test_welcome_profile_has_answers() -> None:
    assert WelcomeProfile(position=1).has_answers is False
    assert WelcomeProfile(position=1, interest_level=3).has_answers is True
