"""
Compatibility Scorer — pure Python, no I/O.

score(a, b) averages a per-question similarity over the questions both
participants answered:
  choice   1 when the option ids match, else 0
  slider   1 - |a/(n-1) - b/(n-1)| for an n-position slider (linear proximity);
           a single-position slider falls back to exact match
Mismatched answer shapes contribute 0. No jointly answered questions → 0.

Scores are recomputed on every results push; nothing is cached.
"""
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from models.game import (
    AnswerRecord,
    ChoiceAnswer,
    CompatibilityScore,
    PairAnalysis,
    Participant,
    Question,
    SliderAnswer,
    SliderQuestion,
)

# Normalized slider distance still counted as agreeing in pair analysis
SLIDER_AGREEMENT_DISTANCE = 0.2
# Legacy scale used when a slider answer has no matching slider question
LEGACY_SLIDER_RANGE = 100.0


def question_similarity(
    a: AnswerRecord, b: AnswerRecord, question: Optional[Question]
) -> float:
    va, vb = a.value, b.value

    if isinstance(va, ChoiceAnswer) and isinstance(vb, ChoiceAnswer):
        return 1.0 if va.answer_id == vb.answer_id else 0.0

    if isinstance(va, SliderAnswer) and isinstance(vb, SliderAnswer):
        if isinstance(question, SliderQuestion):
            max_position = question.max_position
            if max_position > 0:
                return 1.0 - abs(va.value / max_position - vb.value / max_position)
            return 1.0 if va.value == vb.value else 0.0
        return 1.0 - abs(va.value - vb.value) / LEGACY_SLIDER_RANGE

    return 0.0


def score(
    a: Participant, b: Participant, questions: Mapping[str, Question]
) -> float:
    """Compatibility of a with b in [0, 1]."""
    total = 0.0
    joint = 0
    for question_id, record_a in a.answers.items():
        record_b = b.answers.get(question_id)
        if record_b is None:
            continue
        joint += 1
        total += question_similarity(record_a, record_b, questions.get(question_id))
    return total / joint if joint else 0.0


def rank_matches(
    viewer: Participant,
    others: Iterable[Participant],
    questions: Mapping[str, Question],
    reasons: Optional[Mapping[str, str]] = None,
) -> List[CompatibilityScore]:
    """Viewer's private results feed: everyone else, best match first, ranks from 1."""
    matches = [
        CompatibilityScore(
            userId=other.id,
            anonymousName=other.name,
            score=score(viewer, other, questions),
            connectionReason=(reasons or {}).get(other.id),
        )
        for other in others
        if other.id != viewer.id
    ]
    matches.sort(key=lambda m: m.score, reverse=True)
    for i, match in enumerate(matches):
        match.rank = i + 1
    return matches


def is_agreement(a: AnswerRecord, b: AnswerRecord, question: Question) -> bool:
    va, vb = a.value, b.value
    if isinstance(va, ChoiceAnswer) and isinstance(vb, ChoiceAnswer):
        return va.answer_id == vb.answer_id
    if isinstance(va, SliderAnswer) and isinstance(vb, SliderAnswer) and isinstance(question, SliderQuestion):
        max_position = question.max_position
        if max_position > 0:
            return abs(va.value - vb.value) / max_position <= SLIDER_AGREEMENT_DISTANCE
        return va.value == vb.value
    return False


def analyze_pair(
    a: Participant, b: Participant, questions: Sequence[Question]
) -> PairAnalysis:
    agreements: List[str] = []
    differences: List[str] = []
    for question in questions:
        record_a = a.answers.get(question.id)
        record_b = b.answers.get(question.id)
        if record_a is None or record_b is None:
            continue
        if is_agreement(record_a, record_b, question):
            agreements.append(question.text)
        else:
            differences.append(question.text)

    by_id: Dict[str, Question] = {q.id: q for q in questions}
    return PairAnalysis(
        user_a_id=a.id,
        user_b_id=b.id,
        user_a_name=a.name,
        user_b_name=b.name,
        score=score(a, b, by_id),
        agreements=agreements[:3],
        differences=differences[:2],
    )
