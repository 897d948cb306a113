"""
The Link Phone - Telephony Data Models

Domain types for one softphone call and Pydantic models for the
provisioning / call-logging wire payloads.

Design Notes:
- CallSession is transient and owned by exactly one PhoneWidget.
- CallContext is frozen: it is captured when a call starts and passed by
  value to every callback bound for that call.
- Wire models use camelCase aliases to match the backend API.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class CallStatus(str, Enum):
    """Call lifecycle status."""
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class CallDirection(str, Enum):
    """Call direction."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class PhoneStatus(str, Enum):
    """Adapter lifecycle of a phone widget."""
    NOT_READY = "not_ready"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


class LogOutcome(str, Enum):
    """What happened to a completed call's log request."""
    LOGGED = "logged"
    SKIPPED = "skipped"
    FAILED = "failed"
    MISSED = "missed"


# =============================================================================
# Domain Types
# =============================================================================

def new_call_session_id() -> str:
    """Mint a call session id, unique per attempt."""
    return f"call-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class CallContext:
    """Business attribution for one call: who was called, for which client."""
    client_id: Optional[str]
    person_id: Optional[str]
    phone_number: str
    session_id: Optional[str]

    @property
    def is_loggable(self) -> bool:
        return bool(self.client_id and self.session_id)


@dataclass
class CallSession:
    """
    State of the single active call on a phone widget.

    ``logged`` flips to True exactly once; ``started_at`` is a monotonic
    timestamp set by the first connection-signalling event.
    """
    session_id: str
    phone_number: str
    direction: CallDirection
    context: CallContext
    status: CallStatus = CallStatus.RINGING
    duration_seconds: int = 0
    is_muted: bool = False
    is_on_hold: bool = False
    logged: bool = False
    started_at: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None

    @property
    def is_inbound(self) -> bool:
        return self.direction == CallDirection.INBOUND

    @property
    def is_active(self) -> bool:
        return self.status in (CallStatus.RINGING, CallStatus.CONNECTED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "phone_number": self.phone_number,
            "direction": self.direction.value,
            "status": self.status.value,
            "duration_seconds": self.duration_seconds,
            "is_muted": self.is_muted,
            "is_on_hold": self.is_on_hold,
            "logged": self.logged,
            "created_at": self.created_at.isoformat() + "Z",
            "ended_at": self.ended_at.isoformat() + "Z" if self.ended_at else None,
        }


@dataclass
class CallRecord:
    """Snapshot of a completed call kept in the recent-calls history."""
    phone_id: str
    session_id: str
    phone_number_masked: str
    direction: CallDirection
    duration_seconds: int
    outcome: LogOutcome
    created_at: datetime
    ended_at: datetime
    client_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phone_id": self.phone_id,
            "session_id": self.session_id,
            "phone_number": self.phone_number_masked,
            "direction": self.direction.value,
            "duration_seconds": self.duration_seconds,
            "outcome": self.outcome.value,
            "client_id": self.client_id,
            "created_at": self.created_at.isoformat() + "Z",
            "ended_at": self.ended_at.isoformat() + "Z",
        }


# =============================================================================
# Wire Models
# =============================================================================

class CallLogRequest(BaseModel):
    """
    Body of POST /log-call.

    Serialize with ``model_dump(by_alias=True, exclude_none=True)`` so an
    absent person id is omitted rather than sent as null.
    """

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., alias="clientId")
    person_id: Optional[str] = Field(None, alias="personId")
    phone_number: str = Field(..., alias="phoneNumber")
    direction: CallDirection
    duration: int = Field(..., ge=0, description="Call duration in seconds")
    session_id: str = Field(..., alias="sessionId")

    @classmethod
    def from_session(cls, session: CallSession) -> "CallLogRequest":
        ctx = session.context
        return cls(
            client_id=ctx.client_id,
            person_id=ctx.person_id or None,
            phone_number=ctx.phone_number,
            direction=session.direction,
            duration=session.duration_seconds,
            session_id=ctx.session_id,
        )


class SipInfo(BaseModel):
    """One SIP registration entry from the provisioning endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    username: Optional[str] = None
    password: Optional[str] = None
    authorization_id: Optional[str] = Field(None, alias="authorizationId")
    domain: Optional[str] = None
    outbound_proxy: Optional[str] = Field(None, alias="outboundProxy")
    transport: Optional[str] = None


class SipProvision(BaseModel):
    """Response of POST /sip-provision."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    sip_info: List[SipInfo] = Field(default_factory=list, alias="sipInfo")
