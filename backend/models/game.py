from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from enum import Enum


class Phase(str, Enum):
    LOBBY = "LOBBY"
    INTRO = "INTRO"
    ANSWERING = "ANSWERING"
    RESULTS = "RESULTS"
    REVEAL = "REVEAL"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    SLIDER = "SLIDER"


# ── Questions ─────────────────────────────────────────────────────────────────

class AnswerOption(BaseModel):
    id: str
    text: str


class SliderConfig(BaseModel):
    positions: int = Field(ge=1)          # number of discrete snap positions
    labels: List[str] = []                # one label per position ("" for unlabeled)
    labelStyle: Literal["all", "edges"] = "all"


class MultipleChoiceQuestion(BaseModel):
    type: Literal[QuestionType.MULTIPLE_CHOICE] = QuestionType.MULTIPLE_CHOICE
    id: str
    text: str
    answers: List[AnswerOption]

    def has_option(self, answer_id: str) -> bool:
        return any(a.id == answer_id for a in self.answers)

    def option_text(self, answer_id: str) -> str:
        for a in self.answers:
            if a.id == answer_id:
                return a.text
        return answer_id


class SliderQuestion(BaseModel):
    type: Literal[QuestionType.SLIDER] = QuestionType.SLIDER
    id: str
    text: str
    config: SliderConfig

    @property
    def max_position(self) -> int:
        return self.config.positions - 1

    def label_for(self, value: float) -> str:
        position = int(round(value))
        if 0 <= position < len(self.config.labels) and self.config.labels[position]:
            return self.config.labels[position]
        return f"Position {value:g}"


Question = Annotated[
    Union[MultipleChoiceQuestion, SliderQuestion],
    Field(discriminator="type"),
]


class LobbyConfig(BaseModel):
    deck: str


# ── Answers ───────────────────────────────────────────────────────────────────

class ChoiceAnswer(BaseModel):
    kind: Literal["choice"] = "choice"
    answer_id: str


class SliderAnswer(BaseModel):
    kind: Literal["slider"] = "slider"
    value: float


AnswerValue = Annotated[
    Union[ChoiceAnswer, SliderAnswer],
    Field(discriminator="kind"),
]


class AnswerRecord(BaseModel):
    """One accepted answer. Written once, never edited."""

    model_config = {"frozen": True}

    value: AnswerValue
    submitted_at_ms: int
    seconds_since_shown: float
    ordinal: int  # 1-based order of arrival within the question


# ── Participants ──────────────────────────────────────────────────────────────

class Participant(BaseModel):
    id: str
    name: str
    color: str
    joined_seq: int = 0  # join order within the room, used for host hand-off
    answers: Dict[str, AnswerRecord] = {}  # question_id → first accepted answer

    def to_public(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


# ── Results ───────────────────────────────────────────────────────────────────

class CompatibilityScore(BaseModel):
    userId: str
    anonymousName: str
    score: float
    rank: int = 0
    connectionReason: Optional[str] = None


class PairAnalysis(BaseModel):
    """Input for one pairing-reason prompt line."""

    user_a_id: str
    user_b_id: str
    user_a_name: str
    user_b_name: str
    score: float
    agreements: List[str] = []
    differences: List[str] = []

    @property
    def key(self) -> str:
        return f"{self.user_a_id}-{self.user_b_id}"


# ── HTTP response models ──────────────────────────────────────────────────────

class DeckSummary(BaseModel):
    name: str
    cards: int


class RoomSummary(BaseModel):
    room_id: str
    phase: Phase
    players: int
    configured: bool
    deck: Optional[str] = None
    host_id: Optional[str] = None
    question_index: int
    question_count: int


# ── Narrative statistics ──────────────────────────────────────────────────────

class Consensus(BaseModel):
    question_id: str
    question_text: str
    answer: str
    match_count: int


class Divider(BaseModel):
    question_id: str
    question_text: str
    variance: float


class Maverick(BaseModel):
    user_id: str
    name: str
    outlier_count: int


class Quickdraw(BaseModel):
    user_id: str
    name: str
    avg_seconds: float


class Hesitation(BaseModel):
    user_id: str
    name: str
    question_id: str
    question_text: str
    seconds: float


class SecretPair(BaseModel):
    user_ids: List[str]
    names: List[str]
    question_id: str
    question_text: str
    answer: str


class NarrativeData(BaseModel):
    """Aggregated answer statistics handed to the narrative generator."""

    total_players: int
    total_questions: int
    consensus: Optional[Consensus] = None
    divider: Optional[Divider] = None
    maverick: Optional[Maverick] = None
    quickdraw: Optional[Quickdraw] = None
    hesitation: Optional[Hesitation] = None
    secret_pair: Optional[SecretPair] = None
