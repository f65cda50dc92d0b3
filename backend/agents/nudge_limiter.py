"""
Nudge Limiter — directed (sender, target) cooldown for the "poke" signal.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class NudgeResult:
    accepted: bool
    cooldown_remaining: Optional[int] = None  # whole seconds, only when on cooldown


class NudgeLimiter:
    def __init__(self, cooldown_seconds: float = 10.0):
        self.cooldown_seconds = cooldown_seconds
        self._last_sent: Dict[Tuple[str, str], float] = {}

    def try_nudge(self, sender_id: str, target_id: str, now: float) -> NudgeResult:
        """Accept and restart the cooldown, or report the seconds left on it."""
        last = self._last_sent.get((sender_id, target_id))
        if last is not None:
            elapsed = now - last
            if elapsed < self.cooldown_seconds:
                return NudgeResult(
                    accepted=False,
                    cooldown_remaining=math.ceil(self.cooldown_seconds - elapsed),
                )
        self._last_sent[(sender_id, target_id)] = now
        return NudgeResult(accepted=True)

    def forget(self, participant_id: str) -> None:
        """Drop every cooldown the participant is part of (on disconnect)."""
        for key in [k for k in self._last_sent if participant_id in k]:
            del self._last_sent[key]

    def clear(self) -> None:
        self._last_sent.clear()
