import pytest

from models.game import (
    AnswerOption,
    AnswerRecord,
    ChoiceAnswer,
    MultipleChoiceQuestion,
    Participant,
    SliderAnswer,
    SliderConfig,
    SliderQuestion,
)
from services.narrative_service import aggregate_narrative_data, is_outlier, variance

PIZZA = MultipleChoiceQuestion(
    id="pizza",
    text="Pineapple on pizza?",
    answers=[AnswerOption(id=f"a{i}", text=t) for i, t in enumerate(["Yes", "No", "Never tried", "Depends"], 1)],
)
PET = MultipleChoiceQuestion(
    id="pet",
    text="Cats or dogs?",
    answers=[AnswerOption(id=f"a{i}", text=t) for i, t in enumerate(["Cats", "Dogs", "Both", "Neither"], 1)],
)
MORNING = SliderQuestion(
    id="morning",
    text="Mornings are...",
    config=SliderConfig(positions=6, labels=["The worst", "", "", "", "", "The best"], labelStyle="edges"),
)


def rec(value, seconds: float) -> AnswerRecord:
    return AnswerRecord(value=value, submitted_at_ms=0, seconds_since_shown=seconds, ordinal=1)


def player(pid: str, pizza: str, pet: str, morning: float, seconds: float) -> Participant:
    return Participant(
        id=pid,
        name=pid.title(),
        color="#000000",
        answers={
            "pizza": rec(ChoiceAnswer(answer_id=pizza), seconds),
            "pet": rec(ChoiceAnswer(answer_id=pet), seconds),
            "morning": rec(SliderAnswer(value=morning), seconds),
        },
    )


@pytest.fixture
def group():
    # Seven players: pizza is unanimous, two share the rare "Neither" pet answer,
    # and Zed sits far from everyone on mornings.
    return [
        player("ann", "a1", "a1", 2, 2.0),
        player("bo", "a1", "a1", 2, 3.0),
        player("cy", "a1", "a1", 2, 1.0),
        player("di", "a1", "a2", 2, 4.0),
        player("ed", "a1", "a4", 2, 2.5),
        player("flo", "a1", "a4", 2, 3.5),
        player("zed", "a1", "a2", 5, 9.0),
    ]


def test_variance_and_outliers():
    assert variance([]) == 0.0
    assert variance([1, 1, 1]) == 0.0
    assert variance([0, 2]) == pytest.approx(1.0)
    values = [2, 2, 2, 2, 2, 2, 5]
    assert is_outlier(5, values)
    assert not is_outlier(2, values)
    assert not is_outlier(3, [3])


def test_counts(group):
    data = aggregate_narrative_data(group, [PIZZA, PET, MORNING])
    assert data.total_players == 7
    assert data.total_questions == 3


def test_consensus_needs_eighty_percent(group):
    data = aggregate_narrative_data(group, [PIZZA, PET, MORNING])
    assert data.consensus.question_id == "pizza"
    assert data.consensus.answer == "Yes"
    assert data.consensus.match_count == 7


def test_divider_is_highest_variance_slider(group):
    data = aggregate_narrative_data(group, [PIZZA, PET, MORNING])
    assert data.divider.question_id == "morning"
    assert data.divider.variance > 0


def test_maverick_has_most_outliers(group):
    data = aggregate_narrative_data(group, [PIZZA, PET, MORNING])
    # zed: rare pet answer (2/7) and slider outlier
    assert data.maverick.user_id == "zed"
    assert data.maverick.outlier_count == 2


def test_quickdraw_and_hesitation(group):
    data = aggregate_narrative_data(group, [PIZZA, PET, MORNING])
    assert data.quickdraw.user_id == "cy"
    assert data.quickdraw.avg_seconds == pytest.approx(1.0)
    assert data.hesitation.user_id == "zed"
    assert data.hesitation.seconds == pytest.approx(9.0)


def test_hesitation_needs_more_than_five_seconds():
    people = [player("a", "a1", "a1", 0, 2.0), player("b", "a2", "a1", 5, 5.0)]
    data = aggregate_narrative_data(people, [PIZZA, PET, MORNING])
    assert data.hesitation is None


def test_secret_pair_shares_a_rare_answer(group):
    data = aggregate_narrative_data(group, [PIZZA, PET, MORNING])
    assert data.secret_pair is not None
    assert data.secret_pair.question_id == "pet"
    assert sorted(data.secret_pair.user_ids) in (["di", "zed"], ["ed", "flo"])


def test_empty_input_has_no_highlights():
    data = aggregate_narrative_data([], [PIZZA])
    assert data.total_players == 0
    assert data.consensus is None and data.quickdraw is None and data.secret_pair is None
