"""
The Link Phone - API Schemas

Pydantic models for request/response validation.
These define the contract between the embedding page and the phone service.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


# ===========================================
# Phone Schemas
# ===========================================

class PhoneCreateRequest(BaseModel):
    """Request to create a phone widget."""

    client_id: Optional[str] = Field(
        default=None,
        description="Client the widget's calls are logged against"
    )
    person_id: Optional[str] = Field(
        default=None,
        description="Contact person within the client"
    )
    default_phone_number: Optional[str] = Field(
        default=None,
        description="Number dialled when a call is placed without one"
    )


class CallSnapshot(BaseModel):
    """Current call of a phone widget."""

    session_id: str
    phone_number: str
    direction: str = Field(description="inbound or outbound")
    status: str = Field(description="ringing, connected or disconnected")
    duration_seconds: int = 0
    duration_display: str = Field(default="00:00", description="mm:ss")
    is_muted: bool = False
    is_on_hold: bool = False
    logged: bool = False
    created_at: str
    ended_at: Optional[str] = None


class PhoneSnapshot(BaseModel):
    """Read-only view of a phone widget."""

    phone_id: str
    status: str = Field(description="not_ready, initializing, ready or error")
    call_status: str = Field(description="idle, ringing, connected or disconnected")
    provider: Optional[str] = None
    client_id: Optional[str] = None
    person_id: Optional[str] = None
    default_phone_number: Optional[str] = None
    call: Optional[CallSnapshot] = None
    pending_notices: int = 0
    created_at: str
    last_active_at: str


# ===========================================
# Call Schemas
# ===========================================

class PlaceCallRequest(BaseModel):
    """Request to place an outbound call."""

    phone_number: Optional[str] = Field(
        default=None,
        description="Number as entered; the widget default is used if omitted"
    )


class NoticeSchema(BaseModel):
    """User-facing notice raised by a phone widget."""

    title: str
    description: str
    variant: str = Field(description="default, warning or destructive")
    code: Optional[str] = None
    created_at: str


class NoticesResponse(BaseModel):
    phone_id: str
    notices: List[NoticeSchema]


class CallRecordSchema(BaseModel):
    """A finished call from the recent-calls history."""

    phone_id: str
    session_id: str
    phone_number: str = Field(description="Masked remote number")
    direction: str
    duration_seconds: int
    outcome: str = Field(description="logged, skipped, failed or missed")
    client_id: Optional[str] = None
    created_at: str
    ended_at: str


class RecentCallsResponse(BaseModel):
    calls: List[CallRecordSchema]
    count: int


# ===========================================
# Simulation Schemas
# ===========================================

class SimulateEventRequest(BaseModel):
    """Emit an SDK event on the current simulated call."""

    event: str = Field(description="SDK event name, e.g. accepted, terminated, failed")
    message: Optional[str] = Field(
        default=None,
        description="Error message delivered with a failed event"
    )


class SimulateIncomingRequest(BaseModel):
    """Deliver an inbound call to a simulated phone."""

    phone_number: str = Field(min_length=1)
    display_name: Optional[str] = None


class SimulateResponse(BaseModel):
    accepted: bool
    phone: PhoneSnapshot
