"""
The Link Phone - Phone Widget

Call session state machine for one softphone widget.

States:
    idle → ringing → connected → disconnected → idle

    - Outbound: place_call() moves idle → ringing
    - Inbound: an adapter invite moves idle → ringing and arms auto-decline
    - Any connection event (accepted/progress/confirmed/connecting) moves
      ringing → connected and starts the duration timer once
    - Any termination event (terminated/ended/bye/disposed/cancel/rejected/
      failed, or a local hang-up) moves → disconnected, freezes the duration
      and logs the call once
    - disconnected → idle after the post-call delay

Concurrency:
    Everything runs on one asyncio event loop. SDK callbacks are synchronous
    and funnel into _dispatch(); the session's ``logged`` flag is set before
    any await so duplicate termination events in one tick cannot double-log.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set, Tuple

from linkphone.config import Settings
from linkphone.core.exceptions import (
    CallControlError,
    CallError,
    CallInProgressError,
    CallRejectedError,
    CallSetupTimeoutError,
    InvalidPhoneNumberError,
    LinkPhoneError,
    MicrophonePermissionError,
    NoActiveCallError,
    NoIncomingCallError,
    PhoneInitializationError,
    PhoneNotReadyError,
)
from linkphone.core.logging import LogContext

from . import timers as timer_names
from .api_client import LinkApiClient, LinkApiError
from .call_logger import CallCompleteHook, CallLogger
from .events import (
    CONNECTED_SESSION_STATES,
    LOCAL_HANGUP,
    SUBSCRIBED_EVENTS,
    CallEvent,
    CallEventKind,
    build_event,
)
from .models import (
    CallContext,
    CallDirection,
    CallRecord,
    CallSession,
    CallStatus,
    LogOutcome,
    PhoneStatus,
    new_call_session_id,
)
from .notifications import NoticeBoard
from .numbers import (
    format_duration,
    mask_phone_number,
    normalize_phone_number,
    validate_phone_number,
)
from .providers.base import (
    AdapterFactory,
    ManagedSession,
    MediaPermissions,
    PhoneAdapter,
    remote_display,
)
from .timers import CallTimers

logger = logging.getLogger(__name__)

CallFinishedHook = Callable[[CallRecord], None]

# Friendly titles for placement failures
_FAILURE_TITLES: Dict[type, Tuple[str, str]] = {
    InvalidPhoneNumberError: ("No phone number", "Please select a person with a phone number"),
    PhoneNotReadyError: ("Phone Not Ready", "Please initialize the phone first"),
    CallInProgressError: ("Call In Progress", "Hang up the current call before placing another"),
    MicrophonePermissionError: ("Microphone Blocked", "Please allow microphone access to make calls"),
    CallSetupTimeoutError: ("Call Error", "Call setup timed out. Please try again."),
}


class PhoneWidget:
    """
    One softphone: an adapter handle, its timers and at most one active call.

    Usage:
        phone = PhoneWidget("ph_1", api_client, adapter_factory, permissions,
                            settings=settings, client_id="client-1")
        await phone.initialize()
        await phone.place_call("07912345678")
        ...
        await phone.hang_up()
        await phone.shutdown()
    """

    def __init__(
        self,
        phone_id: str,
        api_client: LinkApiClient,
        adapter_factory: AdapterFactory,
        permissions: MediaPermissions,
        settings: Settings,
        client_id: Optional[str] = None,
        person_id: Optional[str] = None,
        default_phone_number: Optional[str] = None,
        on_call_complete: Optional[CallCompleteHook] = None,
        on_call_finished: Optional[CallFinishedHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.phone_id = phone_id
        self.client_id = client_id
        self.person_id = person_id
        self.default_phone_number = default_phone_number
        self.status = PhoneStatus.NOT_READY
        self.notices = NoticeBoard(max_notices=settings.notices_max)
        self.created_at = datetime.utcnow()
        self.last_active_at = self.created_at

        self._api = api_client
        self._adapter_factory = adapter_factory
        self._permissions = permissions
        self._clock = clock
        self._on_call_finished = on_call_finished
        self._call_logger = CallLogger(api_client, self.notices, on_call_complete)

        self._country_code = settings.default_country_code
        self._setup_timeout = settings.call_setup_timeout_seconds
        self._auto_decline_after = settings.auto_decline_seconds
        self._reset_delay = settings.post_call_reset_seconds
        self._tick_interval = settings.duration_tick_seconds

        self._adapter: Optional[PhoneAdapter] = None
        self._session: Optional[CallSession] = None
        self._managed: Optional[ManagedSession] = None
        self._timers = CallTimers()
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def session(self) -> Optional[CallSession]:
        """The current call, or None when idle."""
        return self._session

    @property
    def call_status(self) -> CallStatus:
        return self._session.status if self._session else CallStatus.IDLE

    @property
    def adapter(self) -> Optional[PhoneAdapter]:
        return self._adapter

    @property
    def timers(self) -> CallTimers:
        return self._timers

    @property
    def sdk_session(self) -> Any:
        """The SDK session of the current call, if one is attached."""
        return self._managed.sdk if self._managed else None

    @property
    def is_ready(self) -> bool:
        return self.status == PhoneStatus.READY and self._adapter is not None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """
        Provision SIP credentials and start the phone adapter.

        No-op while already initializing or ready.

        Raises:
            PhoneInitializationError: Provisioning or registration failed
        """
        if self.status in (PhoneStatus.INITIALIZING, PhoneStatus.READY):
            return

        self.status = PhoneStatus.INITIALIZING
        self._touch()

        with LogContext(phone_id=self.phone_id):
            try:
                adapter = await self._start_adapter()
            except PhoneInitializationError as err:
                self.status = PhoneStatus.ERROR
                logger.error("Phone initialization failed: %s", err.message)
                self.notices.error(
                    "Initialization Error",
                    "Failed to initialize phone. Please try again.",
                    code=err.code,
                )
                raise

            adapter.on_inbound(self._on_inbound_call)
            self._adapter = adapter
            self.status = PhoneStatus.READY
            logger.info("Phone ready (provider=%s)", adapter.name)
            self.notices.info("Phone Ready", "Phone is ready to make calls")

    async def _start_adapter(self) -> PhoneAdapter:
        try:
            provision = await self._api.provision_sip()
        except LinkApiError as err:
            raise PhoneInitializationError(
                f"SIP provisioning failed: {err.message}", details=err.details
            ) from err

        if not provision.sip_info:
            raise PhoneInitializationError("Failed to get SIP provisioning credentials")

        try:
            adapter = self._adapter_factory(provision.sip_info[0])
            await adapter.start()
        except Exception as err:
            raise PhoneInitializationError(f"Phone registration failed: {err}") from err

        return adapter

    async def shutdown(self) -> None:
        """Hang up, cancel every timer, stop the adapter and wait for pending logs."""
        with LogContext(phone_id=self.phone_id):
            if self._session is not None:
                await self.hang_up()
            cancelled = self._timers.cancel_all()
            if cancelled:
                logger.debug("Cancelled %d timers on shutdown", cancelled)

            adapter, self._adapter = self._adapter, None
            if adapter is not None:
                try:
                    await adapter.stop()
                except Exception:
                    logger.warning("Error stopping phone adapter", exc_info=True)

            await self.flush()
            self.status = PhoneStatus.NOT_READY

    async def flush(self) -> None:
        """Wait for in-flight call logs and background tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Outbound Calls
    # =========================================================================

    async def place_call(self, number: Optional[str] = None) -> Optional[CallSession]:
        """
        Place an outbound call.

        Args:
            number: Number as entered; defaults to the widget's default number

        Returns:
            The new CallSession, or None if the call was hung up during setup

        Raises:
            PhoneNotReadyError, CallInProgressError, InvalidPhoneNumberError,
            MicrophonePermissionError, CallSetupTimeoutError, CallRejectedError.
            The widget is idle again whenever one is raised (except
            CallInProgressError, which leaves the active call untouched).
        """
        number = (number or self.default_phone_number or "").strip()
        self._touch()

        if not number:
            self._fail_placement(InvalidPhoneNumberError("Phone number is required"))
        if not self.is_ready:
            self._fail_placement(PhoneNotReadyError("Phone adapter is not initialized"))
        if self._session is not None:
            self._fail_placement(CallInProgressError("Another call is active on this phone"))

        try:
            granted = await self._permissions.request_microphone()
        except Exception as err:
            logger.warning("Microphone permission request failed: %s", err)
            granted = False
        if not granted:
            self._fail_placement(MicrophonePermissionError("Microphone access denied"))
        if self._session is not None:
            self._fail_placement(CallInProgressError("Another call is active on this phone"))

        try:
            formatted = normalize_phone_number(number, self._country_code)
        except InvalidPhoneNumberError as err:
            self._fail_placement(err)
        if not validate_phone_number(formatted):
            self._fail_placement(
                InvalidPhoneNumberError("Phone number is not dialable", details={"number": mask_phone_number(number)})
            )

        session_id = new_call_session_id()
        context = CallContext(
            client_id=self.client_id,
            person_id=self.person_id,
            phone_number=number,
            session_id=session_id,
        )
        session = CallSession(
            session_id=session_id,
            phone_number=number,
            direction=CallDirection.OUTBOUND,
            context=context,
        )
        self._session = session

        with LogContext(phone_id=self.phone_id, call_session_id=session_id):
            logger.info("Placing call to %s", mask_phone_number(formatted))

            try:
                sdk_session = await asyncio.wait_for(
                    self._adapter.call(formatted), timeout=self._setup_timeout
                )
            except asyncio.TimeoutError as err:
                self._fail_placement(
                    CallSetupTimeoutError("Call setup timed out"), session=session, cause=err
                )
            except Exception as err:
                self._fail_placement(
                    CallRejectedError(str(err) or "Failed to make call"), session=session, cause=err
                )

            if sdk_session is None:
                self._fail_placement(
                    CallRejectedError("Failed to create call session"), session=session
                )

            if self._session is not session:
                logger.info("Call was hung up during setup, closing SDK session")
                await self._close_quietly(ManagedSession(sdk_session))
                return None

            self._attach(session, sdk_session)

            # The SDK may resolve after the call already connected
            if getattr(sdk_session, "state", None) in CONNECTED_SESSION_STATES:
                self._dispatch(CallEvent(CallEventKind.CONNECT, "state", session_id))

        return session

    def _fail_placement(
        self,
        error: LinkPhoneError,
        session: Optional[CallSession] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        """Surface a placement failure and raise. A call being set up is dropped."""
        title, description = _FAILURE_TITLES.get(
            type(error), ("Call Error", error.message or "Failed to make call")
        )
        logger.warning("Call placement failed: %s (%s)", error.message, error.code)
        self.notices.error(title, description, code=error.code)
        if session is not None and self._session is session:
            self._reset()
        raise error from cause

    # =========================================================================
    # Inbound Calls
    # =========================================================================

    def _on_inbound_call(self, sdk_session: Any) -> None:
        number = remote_display(sdk_session)

        if self._session is not None:
            logger.warning(
                "Declining inbound call from %s: phone busy", mask_phone_number(number)
            )
            self._spawn(self._close_quietly(ManagedSession(sdk_session), "decline"))
            return

        session_id = new_call_session_id()
        context = CallContext(
            client_id=self.client_id,
            person_id=self.person_id,
            phone_number=number,
            session_id=session_id,
        )
        session = CallSession(
            session_id=session_id,
            phone_number=number,
            direction=CallDirection.INBOUND,
            context=context,
        )
        self._session = session
        self._attach(session, sdk_session)
        self._arm_auto_decline(session)
        self._touch()

        with LogContext(phone_id=self.phone_id, call_session_id=session_id):
            logger.info("Incoming call from %s", mask_phone_number(number))
        self.notices.info("Incoming Call", f"Call from {number}")

    def _arm_auto_decline(self, session: CallSession) -> None:
        self._timers.schedule(
            timer_names.AUTO_DECLINE,
            self._auto_decline_after,
            functools.partial(self._auto_decline, session),
        )

    async def _auto_decline(self, session: CallSession) -> None:
        if self._session is not session or session.status != CallStatus.RINGING:
            return

        with LogContext(phone_id=self.phone_id, call_session_id=session.session_id):
            logger.info("Auto-declining unanswered call")
            managed = self._managed
            self._finish_without_log(session)
            if managed is not None:
                await self._close_quietly(managed, "decline")
        self.notices.info("Missed Call", f"Missed call from {session.phone_number}")

    async def answer_call(self) -> None:
        """
        Answer the ringing inbound call.

        Raises:
            NoIncomingCallError: No inbound call is ringing
            CallControlError: The SDK failed to answer
        """
        session, managed = self._require_incoming()
        self._timers.cancel(timer_names.AUTO_DECLINE)

        try:
            await managed.invoke("answer")
        except Exception as err:
            self._arm_auto_decline(session)
            self._control_failed("answer", "Failed to answer call", err)

    async def decline_call(self) -> None:
        """
        Decline the ringing inbound call and return to idle.

        Raises:
            NoIncomingCallError: No inbound call is ringing
            CallControlError: The SDK failed to decline
        """
        session, managed = self._require_incoming()
        self._timers.cancel(timer_names.AUTO_DECLINE)

        try:
            await managed.invoke("decline")
        except Exception as err:
            self._arm_auto_decline(session)
            self._control_failed("decline", "Failed to decline call", err)

        if self._session is session:
            self._finish_without_log(session)

    # =========================================================================
    # In-call Controls
    # =========================================================================

    async def hang_up(self) -> None:
        """
        End the current call and reset to idle.

        Never raises: SDK errors while closing are logged and local state is
        reset regardless. With no active call this is a plain reset.
        """
        self._touch()
        session, managed = self._session, self._managed

        if session is None:
            self._reset()
            return

        with LogContext(phone_id=self.phone_id, call_session_id=session.session_id):
            if session.is_active and managed is not None:
                self._dispatch(CallEvent(CallEventKind.TERMINATE, LOCAL_HANGUP, session.session_id))
            self._reset()

            if managed is not None:
                await self._close_quietly(managed)

    async def toggle_mute(self) -> bool:
        """Mute or unmute the connected call. Returns the new muted state."""
        session, managed = self._require_connected()
        method = "unmute" if session.is_muted else "mute"
        try:
            await managed.invoke(method)
        except Exception as err:
            self._control_failed(method, f"Failed to {method} call", err)
        session.is_muted = not session.is_muted
        return session.is_muted

    async def toggle_hold(self) -> bool:
        """Hold or resume the connected call. Returns the new hold state."""
        session, managed = self._require_connected()
        method = "unhold" if session.is_on_hold else "hold"
        try:
            await managed.invoke(method)
        except Exception as err:
            self._control_failed(method, f"Failed to {method} call", err)
        session.is_on_hold = not session.is_on_hold
        return session.is_on_hold

    def _require_connected(self) -> Tuple[CallSession, ManagedSession]:
        self._touch()
        session, managed = self._session, self._managed
        if session is None or managed is None or session.status != CallStatus.CONNECTED:
            raise NoActiveCallError("No connected call")
        return session, managed

    def _require_incoming(self) -> Tuple[CallSession, ManagedSession]:
        self._touch()
        session, managed = self._session, self._managed
        if (
            session is None
            or managed is None
            or not session.is_inbound
            or session.status != CallStatus.RINGING
        ):
            raise NoIncomingCallError("No incoming call is ringing")
        return session, managed

    def _control_failed(self, action: str, description: str, err: Exception) -> None:
        error = CallControlError(description, details={"action": action, "reason": str(err)})
        logger.error("SDK %s failed: %s", action, err)
        self.notices.error("Error", description, code=error.code)
        raise error from err

    # =========================================================================
    # Event Handling
    # =========================================================================

    def _attach(self, session: CallSession, sdk_session: Any) -> None:
        """Wrap the SDK session and route its lifecycle events to _dispatch()."""
        managed = ManagedSession(sdk_session)
        if not managed.can_close:
            logger.warning("SDK session exposes no terminate/dispose/bye method")
        self._managed = managed

        for name in SUBSCRIBED_EVENTS:
            sdk_session.on(name, functools.partial(self._on_sdk_event, session.context, name))

    def _on_sdk_event(self, context: CallContext, name: str, *args: Any) -> None:
        event = build_event(name, context.session_id, args[0] if args else None)
        if event is not None:
            self._dispatch(event)

    def _dispatch(self, event: CallEvent) -> None:
        """Single reducer for every connection and termination signal."""
        session = self._session
        if session is None or session.session_id != event.session_id:
            logger.debug("Ignoring %s event for stale call", event.name)
            return

        with LogContext(phone_id=self.phone_id, call_session_id=session.session_id):
            if event.kind == CallEventKind.CONNECT:
                self._on_connect(session, event)
            else:
                self._on_terminate(session, event)

    def _on_connect(self, session: CallSession, event: CallEvent) -> None:
        if session.status == CallStatus.DISCONNECTED:
            return

        if session.status == CallStatus.RINGING:
            session.status = CallStatus.CONNECTED
            self._timers.cancel(timer_names.AUTO_DECLINE)
            logger.info("Call connected (%s)", event.name)

        if session.started_at is None:
            session.started_at = self._clock()
            self._timers.every(
                timer_names.DURATION_TICK,
                self._tick_interval,
                functools.partial(self._tick, session),
            )

    def _tick(self, session: CallSession) -> None:
        if self._session is session and session.status == CallStatus.CONNECTED:
            session.duration_seconds = self._elapsed(session)

    def _elapsed(self, session: CallSession) -> int:
        if session.started_at is None:
            return 0
        return max(0, int(self._clock() - session.started_at))

    def _on_terminate(self, session: CallSession, event: CallEvent) -> None:
        if session.logged or session.status == CallStatus.DISCONNECTED:
            return

        # Read the start time before stopping the timer
        session.duration_seconds = self._elapsed(session)
        self._timers.cancel(timer_names.DURATION_TICK)
        self._timers.cancel(timer_names.AUTO_DECLINE)
        session.status = CallStatus.DISCONNECTED
        session.ended_at = datetime.utcnow()

        logger.info(
            "Call ended (%s) after %ds", event.name, session.duration_seconds
        )

        if event.is_failure:
            self.notices.error(
                "Call Failed",
                event.payload.get("message") or "Failed to connect call",
                code=CallError.code,
            )

        session.logged = True
        self._spawn(self._complete_call(session))

    async def _complete_call(self, session: CallSession) -> None:
        outcome = await self._call_logger.log(session)
        self._record(session, outcome)
        self._schedule_reset(session)

    def _schedule_reset(self, session: CallSession) -> None:
        if self._session is session:
            self._timers.schedule(
                timer_names.POST_CALL_RESET,
                self._reset_delay,
                functools.partial(self._reset_if_current, session),
            )

    def _reset_if_current(self, session: CallSession) -> None:
        if self._session is session:
            self._reset()

    def _finish_without_log(self, session: CallSession) -> None:
        session.status = CallStatus.DISCONNECTED
        session.ended_at = datetime.utcnow()
        self._record(session, LogOutcome.MISSED)
        self._reset()

    def _reset(self) -> None:
        """Return to idle: drop the call and every call timer."""
        self._timers.cancel_all()
        self._session = None
        self._managed = None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _record(self, session: CallSession, outcome: LogOutcome) -> None:
        if self._on_call_finished is None:
            return
        record = CallRecord(
            phone_id=self.phone_id,
            session_id=session.session_id,
            phone_number_masked=mask_phone_number(session.phone_number),
            direction=session.direction,
            duration_seconds=session.duration_seconds,
            outcome=outcome,
            created_at=session.created_at,
            ended_at=session.ended_at or datetime.utcnow(),
            client_id=session.context.client_id,
        )
        try:
            self._on_call_finished(record)
        except Exception:
            logger.exception("on_call_finished hook failed")

    async def _close_quietly(self, managed: ManagedSession, method: Optional[str] = None) -> None:
        try:
            if method is not None:
                await managed.invoke(method)
            elif not await managed.close():
                logger.warning("No terminate/dispose/bye method found on session")
        except Exception:
            logger.warning("Error closing SDK session", exc_info=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _touch(self) -> None:
        self.last_active_at = datetime.utcnow()

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view of the widget and its current call."""
        call = None
        if self._session is not None:
            session = self._session
            if session.status == CallStatus.CONNECTED:
                session.duration_seconds = self._elapsed(session)
            call = session.to_dict()
            call["duration_display"] = format_duration(session.duration_seconds)

        return {
            "phone_id": self.phone_id,
            "status": self.status.value,
            "call_status": self.call_status.value,
            "provider": self._adapter.name if self._adapter else None,
            "client_id": self.client_id,
            "person_id": self.person_id,
            "default_phone_number": self.default_phone_number,
            "call": call,
            "pending_notices": len(self.notices),
            "created_at": self.created_at.isoformat() + "Z",
            "last_active_at": self.last_active_at.isoformat() + "Z",
        }
