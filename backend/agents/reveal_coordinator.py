"""
Reveal/Chat Coordinator — mutual-consent identity reveal plus the private
two-party chat it unlocks.

Reveal graph: requester → {targets}. Edges never expire. When both directed
edges of a pair exist, exactly one ChatSession is opened for the pair; the
session id is the sorted id pair, so a duplicate mutual detection finds the
existing session and does nothing.

Closing a session (either party, or a disconnect) keeps the reveal edges but
marks the pair as closed: the pair cannot reopen a chat for the rest of this
room's lifetime. A room reset clears both.

Chat rate limit: per participant per session, at most `max_messages` while
the gap since that sender's previous accepted message stays under
`window_seconds`; a quiet gap of a full window resets the count. Over-limit
messages are dropped without a reply.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Set, Tuple

from models.game import Participant

logger = logging.getLogger(__name__)


def chat_id_for(a: str, b: str) -> str:
    first, second = sorted((a, b))
    return f"{first}-{second}"


@dataclass
class ChatSession:
    id: str
    participants: Tuple[str, str]
    started_at: float
    message_counts: Dict[str, int] = field(default_factory=dict)
    last_message_at: Dict[str, float] = field(default_factory=dict)

    def partner_of(self, participant_id: str) -> str:
        a, b = self.participants
        return b if participant_id == a else a

    def includes(self, participant_id: str) -> bool:
        return participant_id in self.participants


class RevealCoordinator:
    def __init__(
        self,
        room_id: str,
        participants: Mapping[str, Participant],
        channel,
        window_seconds: float = 10.0,
        max_messages: int = 10,
    ):
        self.room_id = room_id
        self._participants = participants
        self._channel = channel
        self.window_seconds = window_seconds
        self.max_messages = max_messages

        self.requests: Dict[str, Set[str]] = {}      # requester_id → target_ids
        self.sessions: Dict[str, ChatSession] = {}   # chat_id → live session
        self._closed: Set[str] = set()               # chat_ids closed this room lifetime

    # ── Reveal ────────────────────────────────────────────────────────────────

    def is_mutual(self, a: str, b: str) -> bool:
        return b in self.requests.get(a, set()) and a in self.requests.get(b, set())

    def request_reveal(self, requester: Participant, target: Participant, now: float) -> None:
        self.requests.setdefault(requester.id, set()).add(target.id)

        # Repeatable banner for the target; no dedup
        self._channel.send_to(target.id, {
            "type": "REVEAL_REQUEST_NOTIFICATION",
            "requesterId": requester.id,
            "requesterName": requester.name,
            "requesterColor": requester.color,
        })

        if not self.is_mutual(requester.id, target.id):
            self._channel.send_to(requester.id, {
                "type": "REVEAL_STATUS",
                "targetId": target.id,
                "status": "pending",
            })
            return

        chat_id = chat_id_for(requester.id, target.id)
        if chat_id in self.sessions or chat_id in self._closed:
            logger.debug("[%s] Mutual reveal for %s already handled", self.room_id, chat_id)
            return

        self._open_session(chat_id, requester, target, now)

    def _open_session(
        self, chat_id: str, requester: Participant, target: Participant, now: float
    ) -> None:
        first, second = sorted((requester.id, target.id))
        self.sessions[chat_id] = ChatSession(
            id=chat_id, participants=(first, second), started_at=now
        )
        logger.info("[%s] Mutual reveal — chat %s opened", self.room_id, chat_id)

        for me, partner in ((requester, target), (target, requester)):
            self._channel.send_to(me.id, {
                "type": "REVEAL_MUTUAL",
                "userId": partner.id,
                "name": partner.name,
                "color": partner.color,
            })
            self._channel.send_to(me.id, {
                "type": "CHAT_STARTED",
                "chatId": chat_id,
                "partnerId": partner.id,
                "partnerName": partner.name,
                "partnerColor": partner.color,
            })

    # ── Chat ──────────────────────────────────────────────────────────────────

    def _within_rate_limit(self, session: ChatSession, sender_id: str, now: float) -> bool:
        last = session.last_message_at.get(sender_id)
        if last is None or now - last >= self.window_seconds:
            session.message_counts[sender_id] = 1
        else:
            count = session.message_counts.get(sender_id, 0)
            if count >= self.max_messages:
                return False
            session.message_counts[sender_id] = count + 1
        # Window is measured from the last accepted message
        session.last_message_at[sender_id] = now
        return True

    def send_message(self, chat_id: str, sender_id: str, text: str, now: float) -> bool:
        """Deliver a chat line to the partner. Returns False when dropped."""
        session = self.sessions.get(chat_id)
        if session is None or not session.includes(sender_id):
            return False

        clean = text.strip()
        if not clean:
            return False

        if not self._within_rate_limit(session, sender_id, now):
            logger.debug("[%s] Chat %s: %s rate limited", self.room_id, chat_id, sender_id)
            return False

        sender = self._participants.get(sender_id)
        partner_id = session.partner_of(sender_id)
        if sender is None or partner_id not in self._participants:
            return False

        self._channel.send_to(partner_id, {
            "type": "CHAT_MESSAGE",
            "chatId": chat_id,
            "fromId": sender_id,
            "fromName": sender.name,
            "text": clean,
            "timestamp": int(now * 1000),
        })
        return True

    def close(self, chat_id: str, requester_id: str) -> bool:
        session = self.sessions.get(chat_id)
        if session is None or not session.includes(requester_id):
            return False
        for participant_id in session.participants:
            self._channel.send_to(participant_id, {"type": "CHAT_CLOSED", "chatId": chat_id})
        self._discard(chat_id)
        return True

    def _discard(self, chat_id: str) -> None:
        self.sessions.pop(chat_id, None)
        self._closed.add(chat_id)
        logger.info("[%s] Chat %s closed", self.room_id, chat_id)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def drop_participant(self, participant_id: str) -> None:
        """Disconnect path: close the leaver's chats and erase their edges."""
        for chat_id, session in list(self.sessions.items()):
            if session.includes(participant_id):
                self._channel.send_to(
                    session.partner_of(participant_id),
                    {"type": "CHAT_CLOSED", "chatId": chat_id},
                )
                self._discard(chat_id)

        self.requests.pop(participant_id, None)
        for targets in self.requests.values():
            targets.discard(participant_id)

    def clear(self) -> None:
        self.requests.clear()
        self.sessions.clear()
        self._closed.clear()
