"""Pydantic models for values exchanged with the dice-chat service.

Field names match the service's JSON keys, so models validate response bodies
directly and ``model_dump()`` produces request bodies.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field


class UserRole(str, enum.Enum):
    """Role of a chat participant. ``system`` only appears on server messages."""

    dm = "dm"
    player = "player"
    system = "system"


class ChatMessage(BaseModel):
    id: int | None = None
    room_id: str | None = None
    content: str
    username: str
    user_role: UserRole
    timestamp: str | None = None
    is_system_message: bool | None = None
    extra_data: Any = None


class MessagePage(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    count: int = 0


class DiceRollRequest(BaseModel):
    expression: str
    description: str = ""
    campaign_id: str | None = None
    session_id: str | None = None
    advantage: bool | None = None
    disadvantage: bool | None = None


class DiceRollResult(BaseModel):
    id: int
    expression: str
    raw_rolls: dict[str, list[int]] = Field(default_factory=dict)
    modifiers: list[tuple[str, int]] = Field(default_factory=list)
    total: int
    is_critical: bool = False
    is_fumble: bool = False
    breakdown: str
    timestamp: str | None = None


class DiceRequest(BaseModel):
    """A roll request recognized inside a chat message."""

    expression: str
    description: str
    requester: str


class AuthResponse(BaseModel):
    token: str
    user: dict[str, Any] = Field(default_factory=dict)
