from __future__ import annotations
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class MessageType(str, Enum):
    """Wire kinds exchanged with the relay (the ``type`` field of each frame)."""

    # Client -> relay
    JOIN = "join"
    LEAVE = "leave"
    # Both directions
    MESSAGE = "message"
    # Relay -> client
    USER_LIST = "userList"
    ERROR = "error"


# ========================================
#           OUTBOUND INTENTS
# ========================================

@dataclass(frozen=True)
class Join:
    name: str
    password: Optional[str] = None


@dataclass(frozen=True)
class Leave:
    name: str


@dataclass(frozen=True)
class Post:
    name: str
    content: str


OutboundIntent = Union[Join, Leave, Post]


# ========================================
#           INBOUND EVENTS
# ========================================

@dataclass(frozen=True)
class MessagePosted:
    author: str
    content: str


@dataclass(frozen=True)
class RosterChanged:
    members: Tuple[str, ...]


@dataclass(frozen=True)
class Rejected:
    reason: str


InboundEvent = Union[MessagePosted, RosterChanged, Rejected]


# ========================================
#           ENCODING
# ========================================

def intent_to_dict(intent: OutboundIntent) -> Dict[str, Any]:
    """Build the wire structure for an outbound intent."""
    if isinstance(intent, Join):
        frame: Dict[str, Any] = {"type": MessageType.JOIN.value, "username": intent.name}
        # An empty password is the same as no password
        if intent.password:
            frame["password"] = intent.password
        return frame
    if isinstance(intent, Leave):
        return {"type": MessageType.LEAVE.value, "username": intent.name}
    if isinstance(intent, Post):
        return {"type": MessageType.MESSAGE.value, "username": intent.name, "content": intent.content}
    raise TypeError(f"Unsupported intent: {intent!r}")


def encode(intent: OutboundIntent) -> str:
    """
    Encode an intent as a single JSON text frame.

    json.dumps escapes control characters inside strings, so the frame never
    contains a raw newline.
    """
    return json.dumps(intent_to_dict(intent), ensure_ascii=False, separators=(",", ":"))


# ========================================
#           DECODING
# ========================================

def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def event_from_dict(data: Any) -> Optional[InboundEvent]:
    """Map a parsed inbound structure to an event, or None if it is not one we accept."""
    if not isinstance(data, dict):
        return None

    kind = data.get("type")

    if kind == MessageType.MESSAGE.value:
        username = data.get("username")
        content = data.get("content")
        if _non_empty_str(username) and _non_empty_str(content):
            return MessagePosted(author=username, content=content)
        return None

    if kind == MessageType.USER_LIST.value:
        users = data.get("users")
        if not isinstance(users, list) or not all(isinstance(u, str) for u in users):
            return None
        return RosterChanged(members=tuple(users))

    if kind == MessageType.ERROR.value:
        reason = data.get("error")
        if _non_empty_str(reason):
            return Rejected(reason=reason)
        return None

    return None


def decode(payload: Union[str, bytes]) -> Optional[InboundEvent]:
    """
    Decode one inbound frame.

    Never raises: anything that is not valid UTF-8 JSON describing a known
    kind with its required fields yields None.
    """
    try:
        if isinstance(payload, (bytes, bytearray)):
            payload = bytes(payload).decode("utf-8")
        if not isinstance(payload, str):
            return None
        data = json.loads(payload)
    except (ValueError, RecursionError):
        return None
    return event_from_dict(data)
