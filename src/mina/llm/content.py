"""Conversation content: turns made of typed parts.

A part is one of four explicit variants. Each serializes to a dict with a
``type`` tag so conversations can be persisted and loaded back.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Union

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]

ROLES: tuple[str, ...] = ("user", "assistant")

# Older records tag assistant turns with the Gemini-style role name.
LEGACY_ROLES = {"model": "assistant"}


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineDataPart:
    """Binary payload (base64) with its MIME type."""

    data: str
    mime_type: str


@dataclass(frozen=True)
class FunctionCallPart:
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True)
class FunctionResultPart:
    """The result of a tool invocation, fed back to the model."""

    name: str
    response: str
    call_id: str | None = None


Part = Union[TextPart, InlineDataPart, FunctionCallPart, FunctionResultPart]


def part_to_dict(part: Part) -> dict[str, Any]:
    """Serialize a part to a tagged dict."""
    match part:
        case TextPart(text=text):
            return {"type": "text", "text": text}
        case InlineDataPart(data=data, mime_type=mime_type):
            return {"type": "inline_data", "data": data, "mime_type": mime_type}
        case FunctionCallPart(name=name, args=args, call_id=call_id):
            return {"type": "function_call", "name": name, "args": args, "call_id": call_id}
        case FunctionResultPart(name=name, response=response, call_id=call_id):
            return {
                "type": "function_result",
                "name": name,
                "response": response,
                "call_id": call_id,
            }
    raise TypeError(f"Not a content part: {part!r}")


def part_from_dict(data: Any) -> Part | None:
    """Parse a tagged dict into a part.

    Returns None for anything that is not a well-formed part.
    """
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    if kind == "text" and isinstance(data.get("text"), str):
        return TextPart(data["text"])
    if kind == "inline_data" and data.get("data") and data.get("mime_type"):
        return InlineDataPart(str(data["data"]), str(data["mime_type"]))
    if kind == "function_call" and data.get("name"):
        args = data.get("args")
        return FunctionCallPart(
            name=str(data["name"]),
            args=args if isinstance(args, dict) else {},
            call_id=data.get("call_id"),
        )
    if kind == "function_result" and data.get("name"):
        return FunctionResultPart(
            name=str(data["name"]),
            response=str(data.get("response", "")),
            call_id=data.get("call_id"),
        )
    return None


@dataclass(frozen=True)
class Attribution:
    """Who said a user turn."""

    user_id: str
    username: str | None = None
    display_name: str | None = None


@dataclass
class Turn:
    """One role-tagged message unit."""

    role: Role
    parts: list[Part]
    timestamp: float = field(default_factory=time.time)
    attribution: Attribution | None = None

    @property
    def text(self) -> str:
        """Text content only, parts joined with a space."""
        texts = []
        for part in self.parts:
            match part:
                case TextPart(text=text) if text.strip():
                    texts.append(text.strip())
        return " ".join(texts)

    @property
    def non_text_parts(self) -> list[Part]:
        return [part for part in self.parts if not isinstance(part, TextPart)]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "role": self.role,
            "parts": [part_to_dict(part) for part in self.parts],
            "timestamp": self.timestamp,
        }
        if self.attribution is not None:
            data["user_id"] = self.attribution.user_id
            data["username"] = self.attribution.username
            data["display_name"] = self.attribution.display_name
        return data

    @classmethod
    def from_dict(cls, data: Any, now: float | None = None) -> Turn | None:
        """Create from a raw stored record.

        Unknown roles, records without valid parts and malformed records
        yield None. Missing timestamps default to ``now``.
        """
        if not isinstance(data, dict):
            return None

        raw_role = data.get("role")
        role = LEGACY_ROLES.get(raw_role, raw_role) if isinstance(raw_role, str) else None
        if role not in ROLES:
            logger.debug(f"Dropping turn with unknown role: {raw_role!r}")
            return None

        raw_parts = data.get("parts")
        if not isinstance(raw_parts, list):
            return None
        parts = [p for p in (part_from_dict(raw) for raw in raw_parts) if p is not None]
        if not parts:
            return None

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            timestamp = now if now is not None else time.time()

        attribution = None
        if role == "user" and data.get("user_id"):
            attribution = Attribution(
                user_id=str(data["user_id"]),
                username=data.get("username"),
                display_name=data.get("display_name"),
            )

        return cls(role=role, parts=parts, timestamp=float(timestamp), attribution=attribution)
