"""
Answer Ledger — first-answer-wins record of every participant's answers.

Each accepted answer is stamped with the server time, the seconds elapsed since
the question was first shown, and its 1-based arrival order for that question.
Records live on Participant.answers and are never overwritten.
"""
import logging
from enum import Enum
from typing import Dict

from models.game import (
    AnswerRecord,
    AnswerValue,
    ChoiceAnswer,
    MultipleChoiceQuestion,
    Participant,
    Question,
    SliderAnswer,
    SliderQuestion,
)

logger = logging.getLogger(__name__)


class SubmitResult(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_ANSWERED = "already_answered"
    INVALID = "invalid"  # answer shape or value does not fit the question


class AnswerLedger:
    def __init__(self):
        self._shown_at_ms: Dict[str, int] = {}   # question_id → first shown
        self._ordinals: Dict[str, int] = {}      # question_id → answers accepted so far

    def mark_shown(self, question_id: str, now_ms: int) -> None:
        """Record when a question was first shown; answers already taken keep their ordinals."""
        self._shown_at_ms.setdefault(question_id, now_ms)
        self._ordinals.setdefault(question_id, 0)

    def clear(self) -> None:
        self._shown_at_ms.clear()
        self._ordinals.clear()

    @staticmethod
    def fits(question: Question, value: AnswerValue) -> bool:
        if isinstance(question, MultipleChoiceQuestion):
            return isinstance(value, ChoiceAnswer) and question.has_option(value.answer_id)
        if isinstance(question, SliderQuestion):
            return (
                isinstance(value, SliderAnswer)
                and float(value.value).is_integer()
                and 0 <= value.value <= question.max_position
            )
        return False

    def submit(
        self,
        participant: Participant,
        question: Question,
        value: AnswerValue,
        now_ms: int,
    ) -> SubmitResult:
        if question.id in participant.answers:
            return SubmitResult.ALREADY_ANSWERED
        if not self.fits(question, value):
            return SubmitResult.INVALID

        # Missing start time (never shown, or clock skew) counts as "shown now"
        shown_at = self._shown_at_ms.get(question.id, now_ms)
        ordinal = self._ordinals.get(question.id, 0) + 1
        self._ordinals[question.id] = ordinal

        participant.answers[question.id] = AnswerRecord(
            value=value,
            submitted_at_ms=now_ms,
            seconds_since_shown=max(0.0, (now_ms - shown_at) / 1000),
            ordinal=ordinal,
        )
        return SubmitResult.ACCEPTED
