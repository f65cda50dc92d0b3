import pytest

from agents.answer_ledger import AnswerLedger, SubmitResult
from models.game import (
    AnswerOption,
    ChoiceAnswer,
    MultipleChoiceQuestion,
    Participant,
    SliderAnswer,
    SliderConfig,
    SliderQuestion,
)

PICK = MultipleChoiceQuestion(
    id="pick",
    text="Pick one",
    answers=[AnswerOption(id="a1", text="One"), AnswerOption(id="a2", text="Two")],
)
SCALE = SliderQuestion(id="scale", text="Scale", config=SliderConfig(positions=5))


@pytest.fixture
def ledger():
    return AnswerLedger()


def make(pid: str) -> Participant:
    return Participant(id=pid, name=pid, color="#000000")


def test_first_answer_wins(ledger):
    p = make("p")
    ledger.mark_shown("pick", 1_000)
    assert ledger.submit(p, PICK, ChoiceAnswer(answer_id="a1"), 3_000) == SubmitResult.ACCEPTED
    assert ledger.submit(p, PICK, ChoiceAnswer(answer_id="a2"), 4_000) == SubmitResult.ALREADY_ANSWERED

    record = p.answers["pick"]
    assert record.value == ChoiceAnswer(answer_id="a1")
    assert record.submitted_at_ms == 3_000
    assert record.seconds_since_shown == pytest.approx(2.0)
    assert record.ordinal == 1


def test_ordinals_count_per_question(ledger):
    ledger.mark_shown("pick", 0)
    ledger.mark_shown("scale", 0)
    people = [make(f"p{i}") for i in range(3)]
    for p in people:
        ledger.submit(p, PICK, ChoiceAnswer(answer_id="a1"), 10)
    ledger.submit(people[2], SCALE, SliderAnswer(value=2), 10)

    assert [p.answers["pick"].ordinal for p in people] == [1, 2, 3]
    assert people[2].answers["scale"].ordinal == 1


def test_missing_start_time_counts_as_now(ledger):
    p = make("p")
    ledger.submit(p, SCALE, SliderAnswer(value=4), 5_000)
    assert p.answers["scale"].seconds_since_shown == 0.0


def test_mark_shown_keeps_first_start_time(ledger):
    p = make("p")
    ledger.mark_shown("pick", 100)
    ledger.mark_shown("pick", 900)
    ledger.submit(p, PICK, ChoiceAnswer(answer_id="a1"), 1_100)
    assert p.answers["pick"].seconds_since_shown == pytest.approx(1.0)


@pytest.mark.parametrize(
    "question,value",
    [
        (PICK, ChoiceAnswer(answer_id="a7")),
        (PICK, SliderAnswer(value=1)),
        (SCALE, ChoiceAnswer(answer_id="a1")),
        (SCALE, SliderAnswer(value=5)),
        (SCALE, SliderAnswer(value=-1)),
        (SCALE, SliderAnswer(value=2.5)),
    ],
)
def test_answers_that_do_not_fit_are_invalid(ledger, question, value):
    p = make("p")
    assert ledger.submit(p, question, value, 0) == SubmitResult.INVALID
    assert p.answers == {}


def test_clear_forgets_timers(ledger):
    p = make("p")
    ledger.mark_shown("pick", 100)
    ledger.clear()
    ledger.submit(p, PICK, ChoiceAnswer(answer_id="a1"), 5_000)
    assert p.answers["pick"].seconds_since_shown == 0.0
