"""
The Link Phone - Call Events

The telephony SDK signals one logical transition through several event
names, depending on call path. Every name is classified here into a
tagged CallEvent so the phone widget handles each transition in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class CallEventKind(str, Enum):
    """Logical transition signalled by an SDK event."""
    CONNECT = "connect"
    TERMINATE = "terminate"


# Any of these means the remote party is (or is about to be) on the line
CONNECT_EVENTS = frozenset({"accepted", "progress", "confirmed", "connecting"})

# A single real hangup can emit several of these in sequence
TERMINATE_EVENTS = frozenset({
    "terminated",
    "ended",
    "bye",
    "disposed",
    "cancel",
    "rejected",
    "failed",
})

# Session.state values meaning the call connected before listeners were attached
CONNECTED_SESSION_STATES = frozenset({"answered", "confirmed", "connected"})

# Emitted by PhoneWidget.hang_up(), never by an SDK
LOCAL_HANGUP = "hangup"

SUBSCRIBED_EVENTS = tuple(sorted(CONNECT_EVENTS | TERMINATE_EVENTS))


@dataclass(frozen=True)
class CallEvent:
    """One SDK (or local) event, tagged with its logical kind."""
    kind: CallEventKind
    name: str
    session_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        return self.name == "failed"


def classify_event(name: str) -> Optional[CallEventKind]:
    """Map an SDK event name to its logical kind, or None if irrelevant."""
    if name in CONNECT_EVENTS:
        return CallEventKind.CONNECT
    if name in TERMINATE_EVENTS or name == LOCAL_HANGUP:
        return CallEventKind.TERMINATE
    return None


def build_event(name: str, session_id: str, payload: Any = None) -> Optional[CallEvent]:
    """Build a CallEvent from a raw SDK callback, or None if the name is not tracked."""
    kind = classify_event(name)
    if kind is None:
        return None

    if isinstance(payload, dict):
        data = dict(payload)
    elif isinstance(payload, BaseException):
        data = {"message": str(payload) or type(payload).__name__}
    elif payload is None:
        data = {}
    else:
        data = {"message": str(payload)}

    return CallEvent(kind=kind, name=name, session_id=session_id, payload=data)
