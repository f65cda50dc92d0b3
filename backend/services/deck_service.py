"""
Deck provider — resolves a deck reference into an ordered question list.

Decks are authored as cards; get_question_set() adapts them to Question models:
  buttons card (4 answers)  → multiple choice, options a1..a4
  slider card, 2 answers    → 6 positions, edge labels only
  slider card, 5 answers    → 5 positions, every position labelled
"""
import logging
from typing import Dict, List, Optional

from models.game import (
    AnswerOption,
    DeckSummary,
    MultipleChoiceQuestion,
    Question,
    SliderConfig,
    SliderQuestion,
)

logger = logging.getLogger(__name__)


DECKS: List[Dict] = [
    {
        "deck_name": "(not yet) friends",
        "cards": [
            {
                "card_name": "happiness",
                "question": "What makes you happy in life?",
                "type": "buttons",
                "answers": [
                    "Time with friends",
                    "Working on my goals",
                    "Good food",
                    "Seeing new places",
                ],
            },
            {
                "card_name": "focus_strengths_vs_weaknesses",
                "question": "I tend to focus on my...",
                "type": "slider",
                "answers": ["Weaknesses", "Strengths"],
            },
            {
                "card_name": "inspiration",
                "question": "Where do you get inspiration from?",
                "type": "buttons",
                "answers": [
                    "Other humans",
                    "Time in Nature",
                    "My hobbies",
                    "Beautiful things",
                ],
            },
            {
                "card_name": "past_vs_future",
                "question": "I tend to...",
                "type": "slider",
                "answers": ["Reflect on the past", "Envision the future"],
            },
            {
                "card_name": "fear",
                "question": "What are you most scared of?",
                "type": "buttons",
                "answers": [
                    "Public speaking",
                    "Asking someone for a date",
                    "Making big life decisions",
                    "Admitting a mistake",
                ],
            },
        ],
    },
    {
        "deck_name": "weekend energy",
        "cards": [
            {
                "card_name": "ideal_weekend",
                "question": "What's your ideal weekend activity?",
                "type": "buttons",
                "answers": [
                    "Adventure outdoors",
                    "Cozy at home",
                    "Socializing with friends",
                    "Learning something new",
                ],
            },
            {
                "card_name": "adventurous",
                "question": "How adventurous are you?",
                "type": "slider",
                "answers": ["Not at all", "A little", "Somewhat", "Very", "Extremely"],
            },
            {
                "card_name": "planning",
                "question": "Do you prefer planning or spontaneity?",
                "type": "slider",
                "answers": ["Strict planner", "Fully spontaneous"],
            },
            {
                "card_name": "pineapple",
                "question": "Pineapple on pizza?",
                "type": "buttons",
                "answers": [
                    "Absolutely yes!",
                    "Hard no",
                    "Never tried it",
                    "Depends on the mood",
                ],
            },
        ],
    },
]


def card_to_question(card: Dict) -> Question:
    answers: List[str] = card["answers"]

    if card["type"] == "buttons":
        return MultipleChoiceQuestion(
            id=card["card_name"],
            text=card["question"],
            answers=[AnswerOption(id=f"a{i + 1}", text=t) for i, t in enumerate(answers)],
        )

    if len(answers) == 2:
        config = SliderConfig(
            positions=6,
            labels=[answers[0], "", "", "", "", answers[1]],
            labelStyle="edges",
        )
    elif len(answers) == 5:
        config = SliderConfig(positions=5, labels=list(answers), labelStyle="all")
    else:
        raise ValueError(
            f"Slider card '{card['card_name']}' must have 2 or 5 answers, got {len(answers)}"
        )
    return SliderQuestion(id=card["card_name"], text=card["question"], config=config)


class DeckService:
    def __init__(self, decks: Optional[List[Dict]] = None):
        self._decks: Dict[str, Dict] = {
            d["deck_name"]: d for d in (DECKS if decks is None else decks)
        }

    def list_decks(self) -> List[DeckSummary]:
        return [DeckSummary(name=name, cards=len(d["cards"])) for name, d in self._decks.items()]

    def get_question_set(self, ref: str) -> Optional[List[Question]]:
        """Ordered questions for a deck, or None when the deck is unknown."""
        deck = self._decks.get(ref)
        if deck is None:
            return None
        return [card_to_question(card) for card in deck["cards"]]


_deck_service: Optional[DeckService] = None


def get_deck_service() -> DeckService:
    global _deck_service
    if _deck_service is None:
        _deck_service = DeckService()
    return _deck_service
