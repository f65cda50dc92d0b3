"""
Game Master — the authoritative per-room state machine. Pure Python, no LLM.

Phases (linear; only RESET_ROOM goes back to LOBBY):
  LOBBY      host configures a deck, then starts with ≥2 participants
  INTRO      participants signal ready; ≥75% ready → ANSWERING
  ANSWERING  a question advances once every connected participant answered it;
             past the last question → RESULTS
  RESULTS    personalised rankings pushed; narrative + pairing reasons requested
             in the background; ≥75% ready or TRANSITION_TO_REVEAL → REVEAL
  REVEAL     mutual identity reveal and private chats

Every handler is synchronous and runs on the event loop thread, so each room
processes its events strictly one after another. Only the narrative and
pairing-reason calls await I/O; each runs behind a GenerationLock, and its
result is written only if the room's generation token is unchanged.

Malformed or out-of-phase frames are dropped without a reply.
"""
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from agents import compatibility
from agents.answer_ledger import AnswerLedger, SubmitResult
from agents.narrator_agent import compose_connection_reasons, compose_story
from agents.nudge_limiter import NudgeLimiter
from agents.reveal_coordinator import RevealCoordinator
from config import settings
from models.game import (
    ChoiceAnswer,
    LobbyConfig,
    Participant,
    Phase,
    Question,
    RoomSummary,
    SliderAnswer,
)
from models.messages import (
    AnswerMessage,
    ChatCloseMessage,
    ChatSendMessage,
    ConfigureLobbyMessage,
    CursorMessage,
    IntroReadyMessage,
    NudgeMessage,
    PingMessage,
    PlayerReadyMessage,
    ResetRoomMessage,
    RevealRequestMessage,
    SliderAnswerMessage,
    StartGameMessage,
    TransitionToRevealMessage,
    parse_client_message,
)
from services.identity_service import IdentityAllocator, identity_allocator
from services.narrative_service import aggregate_narrative_data
from utils.generation_lock import GenerationLock

logger = logging.getLogger(__name__)

POST_GAME_PHASES = (Phase.RESULTS, Phase.REVEAL)


class Room:
    """
    One game session. Owns every collection for the room; the hub creates it on
    first join and calls close() after the last leave.

    `channel` delivers frames: send_to(connection_id, msg) and
    broadcast(msg, exclude=None). Both are fire-and-forget.
    """

    def __init__(
        self,
        room_id: str,
        channel,
        deck_service,
        generator,
        clock: Callable[[], float] = time.time,
        allocator: Optional[IdentityAllocator] = None,
        quorum_fraction: Optional[float] = None,
        min_players_to_start: Optional[int] = None,
    ):
        self.room_id = room_id
        self._channel = channel
        self._decks = deck_service
        self._generator = generator
        self._clock = clock
        self._allocator = allocator or identity_allocator
        self.quorum_fraction = (
            settings.quorum_fraction if quorum_fraction is None else quorum_fraction
        )
        self.min_players_to_start = (
            settings.min_players_to_start if min_players_to_start is None else min_players_to_start
        )
        self.max_chat_length = settings.max_chat_length

        self.participants: Dict[str, Participant] = {}
        self.phase: Phase = Phase.LOBBY
        self.lobby_config: Optional[LobbyConfig] = None
        self.questions: List[Question] = []
        self.current_question_index = 0
        self.host_id: Optional[str] = None
        self.generation = 0
        self._join_seq = 0

        self.intro_ready: Set[str] = set()
        self.results_ready: Set[str] = set()

        self.ledger = AnswerLedger()
        self.reveals = RevealCoordinator(
            room_id,
            self.participants,
            channel,
            window_seconds=settings.chat_window_seconds,
            max_messages=settings.chat_max_messages,
        )
        self.nudges = NudgeLimiter(settings.nudge_cooldown_seconds)

        self.narrative: Optional[List[str]] = None
        # viewer_id → {other_id: pairing reason}
        self.insights: Dict[str, Dict[str, str]] = {}
        self._story_lock = GenerationLock(f"{room_id}:narrative")
        self._insights_lock = GenerationLock(f"{room_id}:insights")

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _now(self) -> float:
        return self._clock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def is_empty(self) -> bool:
        return not self.participants

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    def _questions_by_id(self) -> Dict[str, Question]:
        return {q.id: q for q in self.questions}

    def _quorum_reached(self, ready: Set[str]) -> bool:
        total = len(self.participants)
        return total > 0 and len(ready) / total >= self.quorum_fraction

    def _broadcast_phase(self) -> None:
        self._channel.broadcast({"type": "PHASE_CHANGE", "phase": self.phase.value})

    # ── Connection lifecycle ──────────────────────────────────────────────────

    def join(self, connection_id: str) -> Participant:
        name, color = self._allocator.allocate(p.color for p in self.participants.values())
        self._join_seq += 1
        participant = Participant(
            id=connection_id, name=name, color=color, joined_seq=self._join_seq
        )
        self.participants[connection_id] = participant
        logger.info(
            "[%s] %s joined as %s (%d connected)",
            self.room_id, connection_id, name, len(self.participants),
        )

        self._channel.broadcast(
            {"type": "join", "id": connection_id, "name": name, "color": color},
            exclude=connection_id,
        )
        self._channel.send_to(connection_id, self.sync_payload(connection_id))

        if self.phase in POST_GAME_PHASES:
            self._send_results(connection_id)
            # An in-flight narrative reaches late joiners through the room broadcast
            if self.narrative is not None:
                self._channel.send_to(connection_id, {"type": "NARRATIVE", "story": self.narrative})
        return participant

    def leave(self, connection_id: str) -> None:
        participant = self.participants.pop(connection_id, None)
        if participant is None:
            return
        logger.info(
            "[%s] %s (%s) left (%d connected)",
            self.room_id, connection_id, participant.name, len(self.participants),
        )

        self.reveals.drop_participant(connection_id)
        self.nudges.forget(connection_id)
        self.intro_ready.discard(connection_id)
        self.results_ready.discard(connection_id)
        self._channel.broadcast({"type": "leave", "id": connection_id})

        if self.host_id == connection_id:
            self._hand_off_host()

        if not self.participants:
            return

        # The leaver's absence can unblock whatever the room was waiting on
        if self.phase == Phase.ANSWERING:
            self._check_all_answered()
        elif self.phase == Phase.INTRO:
            self._broadcast_intro_ready_status()
        elif self.phase == Phase.RESULTS:
            self._broadcast_ready_status()

    def _hand_off_host(self) -> None:
        if not self.participants:
            self.host_id = None
            return
        successor = min(self.participants.values(), key=lambda p: p.joined_seq)
        self.host_id = successor.id
        logger.info("[%s] Host handed off to %s", self.room_id, successor.id)
        self._broadcast_sync()

    def close(self) -> None:
        """Room discarded: late background results must not be written."""
        self.generation += 1
        self._story_lock.detach()
        self._insights_lock.detach()
        logger.info("[%s] Room closed", self.room_id)

    # ── Sync ──────────────────────────────────────────────────────────────────

    def _answered_by(self) -> Dict[str, List[str]]:
        answered: Dict[str, List[str]] = {}
        for participant in self.participants.values():
            for question_id in participant.answers:
                answered.setdefault(question_id, []).append(participant.name)
        return answered

    def sync_payload(self, connection_id: str) -> Dict[str, Any]:
        return {
            "type": "sync",
            "self": connection_id,
            "users": [p.to_public() for p in self.participants.values()],
            "answeredBy": self._answered_by(),
            "phase": self.phase.value,
            "currentQuestionIndex": self.current_question_index,
            "lobbyConfig": self.lobby_config.model_dump() if self.lobby_config else None,
            "questions": [q.model_dump(mode="json") for q in self.questions],
            "hostId": self.host_id,
        }

    def _broadcast_sync(self) -> None:
        for connection_id in list(self.participants):
            self._channel.send_to(connection_id, self.sync_payload(connection_id))

    def summary(self) -> RoomSummary:
        return RoomSummary(
            room_id=self.room_id,
            phase=self.phase,
            players=len(self.participants),
            configured=self.lobby_config is not None,
            deck=self.lobby_config.deck if self.lobby_config else None,
            host_id=self.host_id,
            question_index=self.current_question_index,
            question_count=len(self.questions),
        )

    # ── Message dispatch ──────────────────────────────────────────────────────

    def handle_message(self, connection_id: str, data: Any) -> None:
        sender = self.participants.get(connection_id)
        if sender is None:
            return
        try:
            msg = parse_client_message(data)
        except ValidationError as exc:
            logger.debug(
                "[%s] Dropped invalid frame from %s: %d error(s)",
                self.room_id, connection_id, exc.error_count(),
            )
            return

        if isinstance(msg, CursorMessage):
            self._on_cursor(sender, msg)
        elif isinstance(msg, PingMessage):
            self._channel.send_to(connection_id, {"type": "pong"})
        elif isinstance(msg, ConfigureLobbyMessage):
            self._on_configure(sender, msg.deck)
        elif isinstance(msg, StartGameMessage):
            self._on_start(sender)
        elif isinstance(msg, AnswerMessage):
            self._on_answer(sender, msg.questionId, ChoiceAnswer(answer_id=msg.answerId))
        elif isinstance(msg, SliderAnswerMessage):
            self._on_answer(sender, msg.questionId, SliderAnswer(value=msg.value))
        elif isinstance(msg, IntroReadyMessage):
            self._on_intro_ready(sender)
        elif isinstance(msg, PlayerReadyMessage):
            self._on_player_ready(sender)
        elif isinstance(msg, TransitionToRevealMessage):
            if self.phase == Phase.RESULTS:
                self._enter_reveal()
        elif isinstance(msg, RevealRequestMessage):
            self._on_reveal_request(sender, msg.targetId)
        elif isinstance(msg, NudgeMessage):
            self._on_nudge(sender, msg.targetId)
        elif isinstance(msg, ChatSendMessage):
            self._on_chat_send(sender, msg)
        elif isinstance(msg, ChatCloseMessage):
            self.reveals.close(msg.chatId, sender.id)
        elif isinstance(msg, ResetRoomMessage):
            self._on_reset(sender)

    # ── Handlers ──────────────────────────────────────────────────────────────

    def _on_cursor(self, sender: Participant, msg: CursorMessage) -> None:
        self._channel.broadcast(
            {
                "type": "cursor",
                "id": sender.id,
                "x": msg.x,
                "y": msg.y,
                "name": sender.name,
                "color": sender.color,
            },
            exclude=sender.id,
        )

    def _on_configure(self, sender: Participant, deck: str) -> None:
        if self.phase != Phase.LOBBY or self.lobby_config is not None:
            return
        questions = self._decks.get_question_set(deck)
        if not questions:
            logger.debug("[%s] Unknown deck %r from %s", self.room_id, deck, sender.id)
            return

        self.lobby_config = LobbyConfig(deck=deck)
        self.questions = list(questions)
        self.host_id = sender.id
        logger.info(
            "[%s] Lobby configured by %s: deck=%r (%d questions)",
            self.room_id, sender.id, deck, len(self.questions),
        )
        self._broadcast_sync()

    def _on_start(self, sender: Participant) -> None:
        if self.phase != Phase.LOBBY:
            return
        if sender.id != self.host_id:
            logger.debug("[%s] Start refused: %s is not host", self.room_id, sender.id)
            return
        if len(self.participants) < self.min_players_to_start:
            logger.debug(
                "[%s] Start refused: %d connected, need %d",
                self.room_id, len(self.participants), self.min_players_to_start,
            )
            return
        if self.lobby_config is None or not self.questions:
            return

        self._clear_game_state()
        self.phase = Phase.INTRO
        logger.info("[%s] Game started with %d players", self.room_id, len(self.participants))
        self._broadcast_phase()
        self._broadcast_intro_ready_status()

    def _on_answer(self, sender: Participant, question_id: str, value) -> None:
        if self.phase != Phase.ANSWERING:
            return
        question = self._questions_by_id().get(question_id)
        if question is None:
            return

        result = self.ledger.submit(sender, question, value, self._now_ms())
        if result != SubmitResult.ACCEPTED:
            logger.debug(
                "[%s] Answer from %s on %s not accepted: %s",
                self.room_id, sender.id, question_id, result.value,
            )
            return

        self._channel.broadcast({
            "type": "PLAYER_ANSWERED",
            "anonymousName": sender.name,
            "questionId": question_id,
        })
        self._check_all_answered()

    def _on_intro_ready(self, sender: Participant) -> None:
        if self.phase != Phase.INTRO:
            return
        self.intro_ready.add(sender.id)
        self._broadcast_intro_ready_status()

    def _on_player_ready(self, sender: Participant) -> None:
        if self.phase != Phase.RESULTS:
            return
        self.results_ready.add(sender.id)
        self._broadcast_ready_status()

    def _on_reveal_request(self, sender: Participant, target_id: str) -> None:
        if self.phase != Phase.REVEAL or target_id == sender.id:
            return
        target = self.participants.get(target_id)
        if target is None:
            return
        self.reveals.request_reveal(sender, target, self._now())

    def _on_chat_send(self, sender: Participant, msg: ChatSendMessage) -> None:
        if len(msg.text) > self.max_chat_length:
            return
        self.reveals.send_message(msg.chatId, sender.id, msg.text, self._now())

    def _on_nudge(self, sender: Participant, target_id: str) -> None:
        target = self.participants.get(target_id)
        if target_id == sender.id or target is None:
            self._channel.send_to(sender.id, {
                "type": "NUDGE_STATUS", "targetId": target_id, "success": False,
            })
            return

        result = self.nudges.try_nudge(sender.id, target_id, self._now())
        if not result.accepted:
            self._channel.send_to(sender.id, {
                "type": "NUDGE_STATUS",
                "targetId": target_id,
                "success": False,
                "cooldownRemaining": result.cooldown_remaining,
            })
            return

        self._channel.send_to(target_id, {
            "type": "NUDGE_RECEIVED",
            "senderId": sender.id,
            "senderName": sender.name,
            "senderColor": sender.color,
        })
        self._channel.send_to(sender.id, {
            "type": "NUDGE_STATUS", "targetId": target_id, "success": True,
        })

    def _on_reset(self, sender: Participant) -> None:
        if sender.id != self.host_id or self.phase not in POST_GAME_PHASES:
            return
        self._clear_game_state()
        self.lobby_config = None
        self.questions = []
        self.host_id = None
        self.phase = Phase.LOBBY
        logger.info("[%s] Room reset by %s", self.room_id, sender.id)
        self._broadcast_phase()
        self._broadcast_sync()

    def _clear_game_state(self) -> None:
        self.generation += 1
        self._story_lock.detach()
        self._insights_lock.detach()
        for participant in self.participants.values():
            participant.answers = {}
        self.ledger.clear()
        self.current_question_index = 0
        self.intro_ready.clear()
        self.results_ready.clear()
        self.narrative = None
        self.insights = {}
        self.reveals.clear()
        self.nudges.clear()

    # ── Quorum ────────────────────────────────────────────────────────────────

    def _broadcast_intro_ready_status(self) -> None:
        self._channel.broadcast({
            "type": "INTRO_READY_STATUS",
            "readyCount": len(self.intro_ready),
            "totalPlayers": len(self.participants),
            "readyUserIds": sorted(self.intro_ready),
        })
        if self.phase == Phase.INTRO and self._quorum_reached(self.intro_ready):
            self._enter_answering()

    def _broadcast_ready_status(self) -> None:
        self._channel.broadcast({
            "type": "READY_STATUS",
            "readyCount": len(self.results_ready),
            "totalPlayers": len(self.participants),
            "readyUserIds": sorted(self.results_ready),
        })
        if self.phase == Phase.RESULTS and self._quorum_reached(self.results_ready):
            self._enter_reveal()

    # ── Transitions ───────────────────────────────────────────────────────────

    def _enter_answering(self) -> None:
        self.current_question_index = 0
        self.intro_ready.clear()
        # Timer must exist before the phase flips so the first answer has a start time
        self.ledger.mark_shown(self.questions[0].id, self._now_ms())
        self.phase = Phase.ANSWERING
        logger.info("[%s] → ANSWERING", self.room_id)
        self._broadcast_phase()

    def _check_all_answered(self) -> None:
        # Loops because answers to later questions may already be in
        while self.phase == Phase.ANSWERING and self.participants:
            question = self.current_question
            if question is None:
                return
            if not all(question.id in p.answers for p in self.participants.values()):
                return
            self._advance_question()

    def _advance_question(self) -> None:
        self.current_question_index += 1
        question = self.current_question
        if question is None:
            self._enter_results()
            return
        self.ledger.mark_shown(question.id, self._now_ms())
        logger.info(
            "[%s] Question %d/%d",
            self.room_id, self.current_question_index + 1, len(self.questions),
        )
        self._channel.broadcast({
            "type": "QUESTION_ADVANCE",
            "questionIndex": self.current_question_index,
        })

    def _enter_results(self) -> None:
        if self.phase != Phase.ANSWERING:
            return
        self.phase = Phase.RESULTS
        self.results_ready.clear()
        logger.info("[%s] → RESULTS", self.room_id)
        self._broadcast_phase()

        for connection_id in list(self.participants):
            self._send_results(connection_id)
        self._broadcast_ready_status()

        self._request_narrative()
        self._request_insights()

    def _enter_reveal(self) -> None:
        if self.phase != Phase.RESULTS:
            return
        self.phase = Phase.REVEAL
        logger.info("[%s] → REVEAL", self.room_id)
        self._broadcast_phase()

    # ── Results ───────────────────────────────────────────────────────────────

    def _send_results(self, connection_id: str) -> None:
        viewer = self.participants.get(connection_id)
        if viewer is None:
            return
        matches = compatibility.rank_matches(
            viewer,
            self.participants.values(),
            self._questions_by_id(),
            reasons=self.insights.get(connection_id),
        )
        self._channel.send_to(connection_id, {
            "type": "RESULTS",
            "matches": [m.model_dump(exclude_none=True) for m in matches],
        })

    # ── Background generation ─────────────────────────────────────────────────

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation and self.phase in POST_GAME_PHASES

    def _request_narrative(self) -> None:
        generation = self.generation
        self._story_lock.run(lambda: self._generate_narrative(generation))

    async def _generate_narrative(self, generation: int) -> None:
        data = aggregate_narrative_data(list(self.participants.values()), self.questions)
        story = await compose_story(data, self._generator)

        if not self._is_current(generation):
            logger.info("[%s] Discarding stale narrative (generation %d)", self.room_id, generation)
            return
        self.narrative = story
        self._channel.broadcast({"type": "NARRATIVE", "story": story})

    def _request_insights(self) -> None:
        generation = self.generation
        self._insights_lock.run(lambda: self._generate_insights(generation))

    async def _generate_insights(self, generation: int) -> None:
        questions = list(self.questions)
        pairs = [
            compatibility.analyze_pair(a, b, questions)
            for a, b in itertools.combinations(self.participants.values(), 2)
        ]
        if not pairs:
            return
        reasons = await compose_connection_reasons(pairs, self._generator)

        if not self._is_current(generation):
            logger.info("[%s] Discarding stale pairing reasons (generation %d)", self.room_id, generation)
            return

        insights: Dict[str, Dict[str, str]] = {}
        for pair in pairs:
            reason = reasons.get(pair.key)
            if reason:
                insights.setdefault(pair.user_a_id, {})[pair.user_b_id] = reason
                insights.setdefault(pair.user_b_id, {})[pair.user_a_id] = reason
        self.insights = insights
        logger.info("[%s] Pairing reasons ready for %d pairs", self.room_id, len(pairs))

        for connection_id in list(self.participants):
            self._send_results(connection_id)
