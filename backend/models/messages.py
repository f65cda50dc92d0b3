"""
Inbound WebSocket frames (client → room).

Every frame is a JSON object with a ``type`` discriminator. Frames that fail
validation are dropped by the hub without a reply.
"""
import math
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

MAX_ID_LENGTH = 64
MAX_CHAT_LENGTH = 500

Ident = Annotated[str, Field(min_length=1, max_length=MAX_ID_LENGTH)]


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CursorMessage(_Inbound):
    type: Literal["cursor"]
    x: float
    y: float

    @field_validator("x", "y")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("cursor coordinates must be finite")
        return v


class PingMessage(_Inbound):
    type: Literal["ping"]


class ConfigureLobbyMessage(_Inbound):
    type: Literal["CONFIGURE_LOBBY"]
    deck: Annotated[str, Field(min_length=1, max_length=128)]


class StartGameMessage(_Inbound):
    type: Literal["START_GAME"]


class AnswerMessage(_Inbound):
    type: Literal["ANSWER"]
    questionId: Ident
    answerId: Ident


class SliderAnswerMessage(_Inbound):
    type: Literal["SLIDER_ANSWER"]
    questionId: Ident
    value: Annotated[float, Field(ge=0, le=100, allow_inf_nan=False)]


class IntroReadyMessage(_Inbound):
    type: Literal["INTRO_READY"]


class PlayerReadyMessage(_Inbound):
    type: Literal["PLAYER_READY"]


class TransitionToRevealMessage(_Inbound):
    type: Literal["TRANSITION_TO_REVEAL"]


class RevealRequestMessage(_Inbound):
    type: Literal["REVEAL_REQUEST"]
    targetId: Ident


class NudgeMessage(_Inbound):
    type: Literal["NUDGE"]
    targetId: Ident


class ChatSendMessage(_Inbound):
    type: Literal["CHAT_SEND"]
    chatId: Annotated[str, Field(min_length=1, max_length=2 * MAX_ID_LENGTH + 1)]
    text: Annotated[str, Field(min_length=1, max_length=MAX_CHAT_LENGTH)]


class ChatCloseMessage(_Inbound):
    type: Literal["CHAT_CLOSE"]
    chatId: Annotated[str, Field(min_length=1, max_length=2 * MAX_ID_LENGTH + 1)]


class ResetRoomMessage(_Inbound):
    type: Literal["RESET_ROOM"]


ClientMessage = Annotated[
    Union[
        CursorMessage,
        PingMessage,
        ConfigureLobbyMessage,
        StartGameMessage,
        AnswerMessage,
        SliderAnswerMessage,
        IntroReadyMessage,
        PlayerReadyMessage,
        TransitionToRevealMessage,
        RevealRequestMessage,
        NudgeMessage,
        ChatSendMessage,
        ChatCloseMessage,
        ResetRoomMessage,
    ],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(data: object) -> ClientMessage:
    """Validate a decoded JSON frame. Raises pydantic.ValidationError."""
    return client_message_adapter.validate_python(data)
