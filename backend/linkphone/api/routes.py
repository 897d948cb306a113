"""
The Link Phone - REST API Routes

HTTP control surface for phone widgets: create a widget, place and control
calls, read notices and recent calls.

Architecture:
    All call operations flow through a PhoneWidget held by the PhoneRegistry,
    accessed via dependency injection from app.state. Domain errors propagate
    as LinkPhoneError and are rendered by the handler registered in main.py.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query, Request, status

from linkphone.config import Settings
from linkphone.core.exceptions import (
    NoActiveCallError,
    PhoneInitializationError,
    SimulationDisabledError,
)
from linkphone.telephony.phone import PhoneWidget
from linkphone.telephony.providers.simulator import SimulatedPhoneAdapter, SimulatedSdkError
from linkphone.telephony.registry import PhoneRegistry

from .schemas import (
    CallRecordSchema,
    NoticeSchema,
    NoticesResponse,
    PhoneCreateRequest,
    PhoneSnapshot,
    PlaceCallRequest,
    RecentCallsResponse,
    SimulateEventRequest,
    SimulateIncomingRequest,
    SimulateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["phones"])


# =============================================================================
# Dependencies
# =============================================================================

def get_registry(request: Request) -> PhoneRegistry:
    """Dependency to get the phone registry from app state."""
    return request.app.state.registry


def get_settings(request: Request) -> Settings:
    """Dependency to get settings from app state."""
    return request.app.state.settings


async def get_phone(
    phone_id: str,
    registry: PhoneRegistry = Depends(get_registry),
) -> PhoneWidget:
    """Dependency resolving the path's phone_id to a widget."""
    return await registry.get_phone_or_raise(phone_id)


def require_simulation(settings: Settings = Depends(get_settings)) -> Settings:
    """Dependency that ensures simulation endpoints are enabled."""
    if not settings.simulation_enabled:
        raise SimulationDisabledError(
            "Simulation is disabled. "
            "Set TELEPHONY_PROVIDER=simulator outside production to enable."
        )
    return settings


def _snapshot(phone: PhoneWidget) -> PhoneSnapshot:
    return PhoneSnapshot.model_validate(phone.snapshot())


def _simulated_adapter(phone: PhoneWidget) -> SimulatedPhoneAdapter:
    adapter = phone.adapter
    if not isinstance(adapter, SimulatedPhoneAdapter):
        raise SimulationDisabledError(
            "Phone is not backed by the simulator",
            details={"phone_id": phone.phone_id},
        )
    return adapter


# =============================================================================
# Phone Endpoints
# =============================================================================

@router.post(
    "/phones",
    response_model=PhoneSnapshot,
    status_code=status.HTTP_201_CREATED,
    summary="Create a phone widget",
)
async def create_phone(
    request: PhoneCreateRequest,
    registry: PhoneRegistry = Depends(get_registry),
) -> PhoneSnapshot:
    """
    Create a phone widget and initialize it (SIP provisioning + registration).

    On initialization failure the widget stays registered in the ``error``
    state; its id is returned in the error details so it can be retried via
    ``POST /phones/{phone_id}/initialize``.
    """
    phone = await registry.create_phone(
        client_id=request.client_id,
        person_id=request.person_id,
        default_phone_number=request.default_phone_number,
        initialize=False,
    )
    try:
        await phone.initialize()
    except PhoneInitializationError as err:
        err.details["phone_id"] = phone.phone_id
        raise
    return _snapshot(phone)


@router.get("/phones/{phone_id}", response_model=PhoneSnapshot)
async def get_phone_status(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    """Current widget and call state."""
    return _snapshot(phone)


@router.post("/phones/{phone_id}/initialize", response_model=PhoneSnapshot)
async def initialize_phone(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    """Retry initialization of a widget in the error state."""
    await phone.initialize()
    return _snapshot(phone)


@router.delete("/phones/{phone_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_phone(
    phone_id: str,
    registry: PhoneRegistry = Depends(get_registry),
) -> None:
    """Hang up any call, stop the adapter and remove the widget."""
    await registry.remove_phone(phone_id)


# =============================================================================
# Call Endpoints
# =============================================================================

@router.post(
    "/phones/{phone_id}/calls",
    response_model=PhoneSnapshot,
    status_code=status.HTTP_201_CREATED,
    summary="Place an outbound call",
)
async def place_call(
    request: PlaceCallRequest,
    phone: PhoneWidget = Depends(get_phone),
) -> PhoneSnapshot:
    """
    Place a call to ``phone_number`` (or the widget's default number).

    Errors:
        403 MICROPHONE_PERMISSION_DENIED, 409 PHONE_NOT_READY / CALL_IN_PROGRESS,
        504 CALL_SETUP_TIMEOUT, 502 CALL_REJECTED, 400 INVALID_PHONE_NUMBER
    """
    await phone.place_call(request.phone_number)
    return _snapshot(phone)


@router.post("/phones/{phone_id}/hangup", response_model=PhoneSnapshot)
async def hang_up(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    await phone.hang_up()
    return _snapshot(phone)


@router.post("/phones/{phone_id}/mute", response_model=PhoneSnapshot)
async def toggle_mute(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    await phone.toggle_mute()
    return _snapshot(phone)


@router.post("/phones/{phone_id}/hold", response_model=PhoneSnapshot)
async def toggle_hold(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    await phone.toggle_hold()
    return _snapshot(phone)


@router.post("/phones/{phone_id}/answer", response_model=PhoneSnapshot)
async def answer_call(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    await phone.answer_call()
    return _snapshot(phone)


@router.post("/phones/{phone_id}/decline", response_model=PhoneSnapshot)
async def decline_call(phone: PhoneWidget = Depends(get_phone)) -> PhoneSnapshot:
    await phone.decline_call()
    return _snapshot(phone)


@router.get("/phones/{phone_id}/notices", response_model=NoticesResponse)
async def get_notices(
    phone: PhoneWidget = Depends(get_phone),
    peek: bool = Query(default=False, description="Read without clearing"),
) -> NoticesResponse:
    """Pending notices, oldest first. Reading clears them unless ``peek``."""
    notices = phone.notices.peek() if peek else phone.notices.drain()
    return NoticesResponse(
        phone_id=phone.phone_id,
        notices=[NoticeSchema.model_validate(n.to_dict()) for n in notices],
    )


@router.get("/calls/recent", response_model=RecentCallsResponse)
async def get_recent_calls(
    registry: PhoneRegistry = Depends(get_registry),
    limit: int = Query(default=50, ge=1, le=500),
    phone_id: Optional[str] = Query(default=None),
) -> RecentCallsResponse:
    """Finished calls, most recent first. Numbers are masked."""
    records = registry.get_recent_calls(limit=limit, phone_id=phone_id)
    return RecentCallsResponse(
        calls=[CallRecordSchema.model_validate(r.to_dict()) for r in records],
        count=len(records),
    )


# =============================================================================
# Simulation Endpoints (development only)
# =============================================================================

@router.post(
    "/phones/{phone_id}/simulate/event",
    response_model=SimulateResponse,
    dependencies=[Depends(require_simulation)],
)
async def simulate_event(
    request: SimulateEventRequest,
    phone: PhoneWidget = Depends(get_phone),
) -> SimulateResponse:
    """Emit an SDK event (e.g. accepted, terminated, failed) on the current call."""
    _simulated_adapter(phone)
    session = phone.sdk_session
    if session is None:
        raise NoActiveCallError("No call to deliver the event to")

    payload = None
    if request.event == "failed":
        payload = SimulatedSdkError(request.message or "Call failed")
    elif request.message:
        payload = {"message": request.message}

    logger.info("Simulating %s event on phone %s", request.event, phone.phone_id)
    session.emit(request.event, payload)
    return SimulateResponse(accepted=True, phone=_snapshot(phone))


@router.post(
    "/phones/{phone_id}/simulate/incoming",
    response_model=SimulateResponse,
    dependencies=[Depends(require_simulation)],
)
async def simulate_incoming(
    request: SimulateIncomingRequest,
    phone: PhoneWidget = Depends(get_phone),
) -> SimulateResponse:
    """Ring the phone with an inbound call."""
    adapter = _simulated_adapter(phone)
    session = adapter.ring(request.phone_number, display_name=request.display_name)
    return SimulateResponse(accepted=phone.sdk_session is session, phone=_snapshot(phone))
