import asyncio
import random
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Tuple

import pytest

from agents.game_master import Room
from agents.narrator_agent import NarrativeGenerationError
from services.deck_service import DeckService
from services.identity_service import IdentityAllocator

TEST_DECKS = [
    {
        "deck_name": "test",
        "cards": [
            {
                "card_name": "food",
                "question": "Favourite food?",
                "type": "buttons",
                "answers": ["Pizza", "Sushi", "Tacos", "Salad"],
            },
            {
                "card_name": "mornings",
                "question": "Mornings are...",
                "type": "slider",
                "answers": ["The worst", "The best"],
            },
        ],
    },
]


class FakeChannel:
    """Records every frame a room sends, expanded per recipient."""

    def __init__(self):
        self.inbox: Dict[str, List[Dict]] = defaultdict(list)
        self.broadcasts: List[Tuple[Dict, Optional[str]]] = []
        self._members: Mapping[str, object] = {}

    def attach(self, members: Mapping[str, object]) -> None:
        self._members = members

    def send_to(self, connection_id: str, message: Dict) -> None:
        self.inbox[connection_id].append(message)

    def broadcast(self, message: Dict, exclude: Optional[str] = None) -> None:
        self.broadcasts.append((message, exclude))
        for connection_id in list(self._members):
            if connection_id != exclude:
                self.inbox[connection_id].append(message)

    def of_type(self, connection_id: str, msg_type: str) -> List[Dict]:
        return [m for m in self.inbox[connection_id] if m["type"] == msg_type]

    def broadcast_types(self) -> List[str]:
        return [m["type"] for m, _ in self.broadcasts]

    def phases(self) -> List[str]:
        return [m["phase"] for m, _ in self.broadcasts if m["type"] == "PHASE_CHANGE"]

    def clear(self) -> None:
        self.inbox.clear()
        self.broadcasts.clear()


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGenerator:
    def __init__(self, story=None, reasons=None, fail: bool = False):
        self.story = story if story is not None else ["Line one.", "Line two.", "Line three."]
        self.reasons = reasons if reasons is not None else {}
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None
        self.story_calls = 0
        self.reason_calls = 0

    async def generate_story(self, data):
        self.story_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise NarrativeGenerationError("upstream down")
        return list(self.story)

    async def generate_connection_reasons(self, pairs):
        self.reason_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise NarrativeGenerationError("upstream down")
        return dict(self.reasons)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def deck_service():
    return DeckService(TEST_DECKS)


@pytest.fixture
def room(channel, clock, generator, deck_service):
    r = Room(
        "room-1",
        channel,
        deck_service,
        generator,
        clock=clock,
        allocator=IdentityAllocator(random.Random(7)),
        quorum_fraction=0.75,
        min_players_to_start=2,
    )
    channel.attach(r.participants)
    return r


def join_all(room: Room, count: int) -> List[str]:
    ids = [f"c{i}" for i in range(1, count + 1)]
    for connection_id in ids:
        room.join(connection_id)
    return ids


def start_game(room: Room, ids: List[str], deck: str = "test") -> None:
    host = ids[0]
    room.handle_message(host, {"type": "CONFIGURE_LOBBY", "deck": deck})
    room.handle_message(host, {"type": "START_GAME"})


def to_answering(room: Room, ids: List[str]) -> None:
    start_game(room, ids)
    for connection_id in ids:
        room.handle_message(connection_id, {"type": "INTRO_READY"})


def answer_all(room: Room, ids: List[str], choice: str = "a1", slider: float = 0) -> None:
    """Everyone answers both test questions: food=choice, mornings=slider."""
    for connection_id in ids:
        room.handle_message(
            connection_id, {"type": "ANSWER", "questionId": "food", "answerId": choice}
        )
    for connection_id in ids:
        room.handle_message(
            connection_id, {"type": "SLIDER_ANSWER", "questionId": "mornings", "value": slider}
        )


async def settle(room: Room) -> None:
    """Wait for the room's background narrative and pairing-reason jobs."""
    for lock in (room._story_lock, room._insights_lock):
        task = lock.task
        if task is not None:
            await task
