"""
Narrative statistics — condenses every participant's answers into the handful
of notable facts the narrator writes about.

  consensus    multiple-choice question where ≥80% picked the same option
  divider      slider question with the highest variance
  maverick     participant with the most outlier answers
  quickdraw    participant with the lowest mean answer time
  hesitation   single slowest answer, reported only above 5 seconds
  secret_pair  exactly two participants sharing an unpopular answer

Pure functions; no I/O.
"""
import math
from typing import Dict, List, Optional, Sequence, Tuple

from models.game import (
    AnswerRecord,
    ChoiceAnswer,
    Consensus,
    Divider,
    Hesitation,
    Maverick,
    MultipleChoiceQuestion,
    NarrativeData,
    Participant,
    Question,
    Quickdraw,
    SecretPair,
    SliderAnswer,
    SliderQuestion,
)

CONSENSUS_SHARE = 0.8
UNPOPULAR_SHARE = 0.3
OUTLIER_STDDEVS = 1.5
HESITATION_MIN_SECONDS = 5.0


def variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def is_outlier(value: float, values: Sequence[float]) -> bool:
    if len(values) < 2:
        return False
    std_dev = math.sqrt(variance(values))
    if std_dev == 0:
        return False
    mean = sum(values) / len(values)
    return abs(value - mean) > OUTLIER_STDDEVS * std_dev


def answer_text(question: Question, record: AnswerRecord) -> str:
    value = record.value
    if isinstance(value, ChoiceAnswer):
        if isinstance(question, MultipleChoiceQuestion):
            return question.option_text(value.answer_id)
        return value.answer_id
    if isinstance(question, SliderQuestion):
        return question.label_for(value.value)
    return f"Position {value.value:g}"


def _answer_key(record: AnswerRecord) -> str:
    value = record.value
    if isinstance(value, ChoiceAnswer):
        return value.answer_id
    return f"slider_{value.value:g}"


def _answers_for(
    participants: Sequence[Participant], question_id: str
) -> List[Tuple[Participant, AnswerRecord]]:
    return [
        (p, p.answers[question_id]) for p in participants if question_id in p.answers
    ]


def aggregate_narrative_data(
    participants: Sequence[Participant], questions: Sequence[Question]
) -> NarrativeData:
    data = NarrativeData(total_players=len(participants), total_questions=len(questions))
    if not participants or not questions:
        return data

    consensus: Optional[Consensus] = None
    divider: Optional[Divider] = None
    max_variance = 0.0
    outliers: Dict[str, int] = {p.id: 0 for p in participants}
    times: Dict[str, List[float]] = {p.id: [] for p in participants}
    slowest: Optional[Hesitation] = None

    for question in questions:
        answered = _answers_for(participants, question.id)
        if not answered:
            continue

        if isinstance(question, MultipleChoiceQuestion):
            counts: Dict[str, int] = {}
            for _, record in answered:
                if isinstance(record.value, ChoiceAnswer):
                    counts[record.value.answer_id] = counts.get(record.value.answer_id, 0) + 1

            if counts:
                top_id, top_count = max(counts.items(), key=lambda kv: kv[1])
                previous = consensus.match_count if consensus else 0
                if top_count / len(answered) >= CONSENSUS_SHARE and top_count > previous:
                    consensus = Consensus(
                        question_id=question.id,
                        question_text=question.text,
                        answer=question.option_text(top_id),
                        match_count=top_count,
                    )

            for participant, record in answered:
                if isinstance(record.value, ChoiceAnswer):
                    share = counts.get(record.value.answer_id, 0) / len(answered)
                    if share < UNPOPULAR_SHARE:
                        outliers[participant.id] += 1

        elif isinstance(question, SliderQuestion):
            values = [r.value.value for _, r in answered if isinstance(r.value, SliderAnswer)]
            if values:
                spread = variance(values)
                if spread > max_variance:
                    max_variance = spread
                    divider = Divider(
                        question_id=question.id,
                        question_text=question.text,
                        variance=spread,
                    )
                for participant, record in answered:
                    if isinstance(record.value, SliderAnswer) and is_outlier(record.value.value, values):
                        outliers[participant.id] += 1

        for participant, record in answered:
            times[participant.id].append(record.seconds_since_shown)
            if slowest is None or record.seconds_since_shown > slowest.seconds:
                slowest = Hesitation(
                    user_id=participant.id,
                    name=participant.name,
                    question_id=question.id,
                    question_text=question.text,
                    seconds=record.seconds_since_shown,
                )

    by_id = {p.id: p for p in participants}

    maverick: Optional[Maverick] = None
    for user_id, count in outliers.items():
        if count > 0 and (maverick is None or count > maverick.outlier_count):
            maverick = Maverick(user_id=user_id, name=by_id[user_id].name, outlier_count=count)

    quickdraw: Optional[Quickdraw] = None
    for user_id, samples in times.items():
        if not samples:
            continue
        avg = sum(samples) / len(samples)
        if quickdraw is None or avg < quickdraw.avg_seconds:
            quickdraw = Quickdraw(user_id=user_id, name=by_id[user_id].name, avg_seconds=avg)

    data.consensus = consensus
    data.divider = divider
    data.maverick = maverick
    data.quickdraw = quickdraw
    if slowest is not None and slowest.seconds > HESITATION_MIN_SECONDS:
        data.hesitation = slowest
    data.secret_pair = _find_secret_pair(participants, questions)
    return data


def _find_secret_pair(
    participants: Sequence[Participant], questions: Sequence[Question]
) -> Optional[SecretPair]:
    for question in questions:
        answered = _answers_for(participants, question.id)
        if len(answered) <= 2:
            continue

        groups: Dict[str, List[Tuple[Participant, AnswerRecord]]] = {}
        for participant, record in answered:
            groups.setdefault(_answer_key(record), []).append((participant, record))

        for group in groups.values():
            if len(group) == 2 and len(group) / len(answered) < UNPOPULAR_SHARE:
                (first, record), (second, _) = group
                return SecretPair(
                    user_ids=[first.id, second.id],
                    names=[first.name, second.name],
                    question_id=question.id,
                    question_text=question.text,
                    answer=answer_text(question, record),
                )
    return None
