"""
Narrator Agent — Gemini text generation for the results screen.

Two outputs, both requested once per RESULTS entry by the room:
  1. Story      3–5 short insight lines about how the group answered
  2. Reasons    ≤5-word pairing reason for every connected pair

The Gemini call is bounded: each attempt is wrapped in asyncio.wait_for, and
failures are retried with exponential backoff up to llm_max_retries. When the
call still fails (or no API key is configured) the compose_* helpers fall back
to deterministic local text so gameplay never waits on the upstream service.
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from google import genai
from google.genai import types

from config import settings
from models.game import NarrativeData, PairAnalysis

logger = logging.getLogger(__name__)

MAX_STORY_LINES = 5
MAX_STORY_LINE_CHARS = 500
MAX_REASON_WORDS = 5


class NarrativeGenerationError(RuntimeError):
    """Upstream text generation failed (timeout, API error, unusable output)."""


# ── Prompts ───────────────────────────────────────────────────────────────────

STORY_SYSTEM_PROMPT = """You are a creative storyteller for a social connection game. Your job is to write engaging, insightful narratives about how players answered questions together.

Given structured data about player answers, write 3-5 short narrative insights. Each insight should be 1-2 sentences max.

Guidelines:
- Mix tones: playful/witty for speed insights, thoughtful/insightful for connections, dramatic for outliers
- Use player names naturally in the narrative
- Be specific about what made each insight interesting
- Keep it concise and engaging
- Don't repeat the same insight multiple times

Return ONLY a JSON array of strings, no markdown or explanation. Example format:
["insight 1", "insight 2", "insight 3"]"""

REASONS_SYSTEM_PROMPT = """You generate ultra-concise connection reasons explaining why two people would connect based on their compatibility quiz answers.

Guidelines:
- MAXIMUM 5 words per reason
- Be specific and insightful, not generic
- Focus on what makes their connection interesting (shared values, complementary differences, unique alignment)
- Use natural, conversational language
- Examples: "shared values drive connection", "opposites attract creative sparks", "both value deep conversations"

Return ONLY a JSON object mapping each pair's number to its reason. Example format:
{"1": "shared values drive connection", "2": "opposites attract creative sparks"}"""


def format_narrative_data(data: NarrativeData) -> str:
    parts = [
        f"Total players: {data.total_players}",
        f"Total questions: {data.total_questions}",
    ]
    if data.consensus:
        c = data.consensus
        parts.append(
            f'\nCONSENSUS: On "{c.question_text}", {c.match_count} out of '
            f'{data.total_players} players chose "{c.answer}".'
        )
    if data.divider:
        parts.append(
            f'\nDIVIDER: "{data.divider.question_text}" had the highest variance '
            f"({data.divider.variance:.2f}), showing the most disagreement."
        )
    if data.maverick:
        parts.append(
            f"\nMAVERICK: {data.maverick.name} had {data.maverick.outlier_count} outlier "
            "answers, standing apart from the group."
        )
    if data.quickdraw:
        parts.append(
            f"\nQUICKDRAW: {data.quickdraw.name} answered fastest with an average time of "
            f"{data.quickdraw.avg_seconds:.1f} seconds per question."
        )
    if data.hesitation:
        h = data.hesitation
        parts.append(
            f"\nHESITATION: {h.name} took the longest time ({h.seconds:.1f} seconds) "
            f'to answer "{h.question_text}".'
        )
    if data.secret_pair:
        s = data.secret_pair
        parts.append(
            f"\nSECRET CONNECTION: {s.names[0]} and {s.names[1]} uniquely matched on "
            f'"{s.question_text}" with answer "{s.answer}".'
        )
    return "\n".join(parts)


def format_pair(pair: PairAnalysis) -> str:
    parts = [f"{pair.user_a_name} & {pair.user_b_name} ({round(pair.score * 100)}% match)"]
    if pair.agreements:
        parts.append(f"Agreed on: {', '.join(pair.agreements[:3])}")
    if pair.differences:
        parts.append(f"Differed on: {', '.join(pair.differences[:2])}")
    return "; ".join(parts)


# ── Response parsing ──────────────────────────────────────────────────────────

def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\n?", "", text)
        text = re.sub(r"\n?```$", "", text.strip())
    return text.strip()


def parse_story(content: str) -> List[str]:
    """JSON array of strings; tolerates code fences and plain-text lines."""
    cleaned = _strip_fences(content)
    try:
        parsed = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        parsed = None

    if isinstance(parsed, list):
        lines = [s.strip() for s in parsed if isinstance(s, str) and s.strip()]
        if lines:
            return lines[:MAX_STORY_LINES]

    lines = [
        line.strip()
        for line in cleaned.splitlines()
        if line.strip() and not line.strip().startswith("```")
    ]
    if lines:
        return lines[:MAX_STORY_LINES]

    if len(content) > MAX_STORY_LINE_CHARS:
        return [content[:MAX_STORY_LINE_CHARS] + "..."]
    return [content] if content.strip() else []


def parse_reasons(content: str, pairs: Sequence[PairAnalysis]) -> Dict[str, str]:
    """
    JSON object keyed by the pair's 1-based position in the prompt listing.
    Returned reasons are keyed by `PairAnalysis.key`; longer than 5 words are truncated.
    """
    try:
        parsed = json.loads(_strip_fences(content))
    except (json.JSONDecodeError, ValueError):
        logger.warning("Pairing reasons were not valid JSON; using fallback")
        return {}
    if not isinstance(parsed, dict):
        return {}

    reasons: Dict[str, str] = {}
    for number, pair in enumerate(pairs, start=1):
        reason = parsed.get(str(number))
        if isinstance(reason, str) and reason.strip():
            reasons[pair.key] = " ".join(reason.split()[:MAX_REASON_WORDS])
    return reasons


# ── Deterministic fallbacks ───────────────────────────────────────────────────

def fallback_story(data: NarrativeData) -> List[str]:
    lines = [f"{data.total_players} players answered {data.total_questions} questions together."]
    if data.consensus:
        lines.append(
            f'Everyone agreed on one thing: "{data.consensus.answer}" when asked '
            f'"{data.consensus.question_text}".'
        )
    if data.maverick:
        lines.append(
            f"{data.maverick.name} stood out with {data.maverick.outlier_count} unique answers."
        )
    if data.quickdraw:
        lines.append(
            f"{data.quickdraw.name} was the fastest, answering in an average of "
            f"{data.quickdraw.avg_seconds:.1f} seconds."
        )
    if data.secret_pair:
        names = data.secret_pair.names
        lines.append(
            f'{names[0]} and {names[1]} uniquely matched on "{data.secret_pair.question_text}".'
        )
    return lines


def fallback_connection_reason(score: float) -> str:
    if score >= 0.7:
        return "high compatibility match"
    if score >= 0.5:
        return "interesting different perspectives"
    return "complementary opposites attract"


# ── Gemini generator ──────────────────────────────────────────────────────────

class GeminiNarrativeGenerator:
    """Text-only Gemini client (generate_content) with timeout + retry."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        client: Optional[Any] = None,
    ):
        self.api_key = settings.gemini_api_key if api_key is None else api_key
        self.model = model or settings.narrative_model
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self.max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self.retry_delay_seconds = (
            settings.llm_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        )
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise NarrativeGenerationError("GEMINI_API_KEY not set")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _complete(self, system: str, prompt: str, temperature: float = 0.8) -> str:
        client = self._get_client()
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await asyncio.wait_for(
                    client.aio.models.generate_content(
                        model=self.model,
                        contents=prompt,
                        config=types.GenerateContentConfig(
                            system_instruction=system,
                            temperature=temperature,
                        ),
                    ),
                    timeout=self.timeout_seconds,
                )
                text = (response.text or "").strip()
                if text:
                    return text
                last_error = NarrativeGenerationError("Empty response from Gemini")
            except asyncio.TimeoutError as exc:
                last_error = exc
                logger.warning(
                    "Gemini attempt %d/%d timed out after %.0fs",
                    attempt + 1, self.max_retries + 1, self.timeout_seconds,
                )
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Gemini attempt %d/%d failed: %s", attempt + 1, self.max_retries + 1, exc
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay_seconds * (2 ** attempt))

        raise NarrativeGenerationError(f"Gemini call failed: {last_error}") from last_error

    async def generate_story(self, data: NarrativeData) -> List[str]:
        prompt = (
            f"Here's the game data:\n\n{format_narrative_data(data)}\n\n"
            "Write 3-5 engaging narrative insights based on this data."
        )
        story = parse_story(await self._complete(STORY_SYSTEM_PROMPT, prompt))
        if not story:
            raise NarrativeGenerationError("Story response contained no insights")
        return story

    async def generate_connection_reasons(self, pairs: Sequence[PairAnalysis]) -> Dict[str, str]:
        if not pairs:
            return {}
        listing = "\n".join(f"{i + 1}. {format_pair(p)}" for i, p in enumerate(pairs))
        keys = ", ".join(f'"{i}"' for i in range(1, len(pairs) + 1))
        prompt = (
            f"Generate connection reasons for these pairs:\n\n{listing}\n\n"
            f"Return JSON object with keys: {keys}"
        )
        return parse_reasons(await self._complete(REASONS_SYSTEM_PROMPT, prompt), pairs)


# ── Fallback-wrapped entry points used by the room ────────────────────────────

async def compose_story(data: NarrativeData, generator) -> List[str]:
    """
    Story for the NARRATIVE broadcast. Never raises:
    generator → deterministic fallback → empty list (clients stop loading).
    """
    if data.total_players < 2 or data.total_questions == 0:
        logger.warning(
            "Not enough data for a narrative (%d players, %d questions)",
            data.total_players, data.total_questions,
        )
        return []

    try:
        story = await generator.generate_story(data)
        logger.info("Narrative generated (%d lines)", len(story))
        return story
    except Exception:
        logger.warning("Narrative generation failed; using fallback", exc_info=True)

    try:
        return fallback_story(data)
    except Exception:
        logger.error("Fallback narrative failed; sending empty story", exc_info=True)
        return []


async def compose_connection_reasons(
    pairs: Sequence[PairAnalysis], generator
) -> Dict[str, str]:
    """Reason for every pair key; missing or failed entries use the score-band fallback."""
    if not pairs:
        return {}
    try:
        generated = await generator.generate_connection_reasons(pairs)
    except Exception:
        logger.warning("Pairing reason generation failed; using fallback", exc_info=True)
        generated = {}
    return {
        pair.key: generated.get(pair.key) or fallback_connection_reason(pair.score)
        for pair in pairs
    }


_generator: Optional[GeminiNarrativeGenerator] = None


def get_narrative_generator() -> GeminiNarrativeGenerator:
    global _generator
    if _generator is None:
        _generator = GeminiNarrativeGenerator()
    return _generator
