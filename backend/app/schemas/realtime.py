"""Schemas for inbound websocket chat frames."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from app.config import get_settings


class InboundEvent(BaseModel):
    """Common configuration for client frames."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _check_identity(value: str) -> str:
    if "!" in value:
        raise ValueError("Identity must not contain '!'")
    limit = get_settings().identity_max_length
    if len(value) > limit:
        raise ValueError(f"Identity exceeds maximum length of {limit} characters")
    return value


def _check_body(value: str) -> str:
    if not value.strip():
        raise ValueError("Message must not be empty")
    limit = get_settings().chat_message_max_length
    if len(value) > limit:
        raise ValueError(f"Message exceeds maximum length of {limit} characters")
    return value


class JoinEvent(InboundEvent):
    identity: constr(strip_whitespace=True, min_length=1)
    credential: str | None = Field(default=None, description="Optional secret used for the tripcode")

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, value: str) -> str:
        return _check_identity(value)

    @field_validator("credential")
    @classmethod
    def blank_credential_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value


class MessageEvent(InboundEvent):
    body: str

    @field_validator("body")
    @classmethod
    def validate_body(cls, value: str) -> str:
        return _check_body(value)


class PrivateMessageEvent(InboundEvent):
    to: constr(strip_whitespace=True, min_length=1)
    body: str

    @field_validator("body")
    @classmethod
    def validate_body(cls, value: str) -> str:
        return _check_body(value)


class TypingEvent(InboundEvent):
    pass


class StopTypingEvent(InboundEvent):
    pass


class MarkReadEvent(InboundEvent):
    message_ids: list[int] = Field(alias="messageIds", max_length=500)


class FocusPrivateChatEvent(InboundEvent):
    other_identity: constr(strip_whitespace=True, min_length=1) = Field(alias="otherIdentity")


INBOUND_EVENTS: dict[str, type[InboundEvent]] = {
    "join": JoinEvent,
    "message": MessageEvent,
    "privateMessage": PrivateMessageEvent,
    "typing": TypingEvent,
    "stopTyping": StopTypingEvent,
    "markRead": MarkReadEvent,
    "focusPrivateChat": FocusPrivateChatEvent,
}
