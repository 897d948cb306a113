"""
The Link Phone - Simulator Provider

In-memory phone adapter for development and tests. Behaves like the
WebRTC softphone SDK it stands in for: sessions emit the same event names,
and a single hangup emits several termination events in a row.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

from ..models import SipInfo
from ..numbers import mask_phone_number
from .base import EventCallback, InboundCallback, MediaPermissions, PhoneAdapter, TelephonySession

logger = logging.getLogger(__name__)

# What a real SDK emits for one hangup
HANGUP_EVENT_BURST = ("terminated", "ended", "bye")


class SimulatedSdkError(Exception):
    """Raised by simulated SDK methods configured to fail."""


class SimulatedSession(TelephonySession):
    """A simulated call session."""

    def __init__(
        self,
        remote_number: str,
        display_name: Optional[str] = None,
        state: Optional[str] = None,
        failing_methods: Optional[Set[str]] = None,
    ):
        self.remote_number = remote_number
        self._display_name = display_name
        self._state = state or "initial"
        self._listeners: Dict[str, List[EventCallback]] = defaultdict(list)
        self.failing_methods: Set[str] = set(failing_methods or ())
        self.calls: List[str] = []

    @property
    def state(self) -> Optional[str]:
        return self._state

    @property
    def remote_identity(self) -> Dict[str, Any]:
        return {"display_name": self._display_name, "uri": {"user": self.remote_number}}

    def on(self, event: str, callback: EventCallback) -> None:
        self._listeners[event].append(callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event to every subscriber, synchronously."""
        for callback in list(self._listeners.get(event, ())):
            if payload is None:
                callback()
            else:
                callback(payload)

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failing_methods:
            raise SimulatedSdkError(f"{method} failed")

    async def mute(self) -> None:
        self._record("mute")

    async def unmute(self) -> None:
        self._record("unmute")

    async def hold(self) -> None:
        self._record("hold")

    async def unhold(self) -> None:
        self._record("unhold")

    async def answer(self) -> None:
        self._record("answer")
        self._state = "answered"
        self.emit("accepted")

    async def decline(self) -> None:
        self._record("decline")
        self._state = "declined"

    async def terminate(self) -> None:
        self._record("terminate")
        self._state = "terminated"
        for event in HANGUP_EVENT_BURST:
            self.emit(event)

    # Remote-side actions

    def remote_answer(self) -> None:
        self._state = "answered"
        self.emit("progress")
        self.emit("accepted")

    def remote_hangup(self) -> None:
        self._state = "terminated"
        for event in HANGUP_EVENT_BURST:
            self.emit(event)

    def fail(self, message: str = "Call failed") -> None:
        self._state = "failed"
        self.emit("failed", SimulatedSdkError(message))


class SimulatedPhoneAdapter(PhoneAdapter):
    """
    Phone adapter that places calls in memory.

    Args:
        sip_info: Provisioned SIP credentials (only checked for a username)
        fail_start: start() raises
        reject_calls: call() raises
        hang_calls: call() never returns (exercises the setup timeout)
        session_state: initial state of outbound sessions, e.g. "connected"
        call_delay: seconds call() takes to resolve
    """

    def __init__(
        self,
        sip_info: Optional[SipInfo] = None,
        fail_start: bool = False,
        reject_calls: bool = False,
        hang_calls: bool = False,
        session_state: Optional[str] = None,
        call_delay: float = 0.0,
    ):
        self.sip_info = sip_info
        self.fail_start = fail_start
        self.reject_calls = reject_calls
        self.hang_calls = hang_calls
        self.session_state = session_state
        self.call_delay = call_delay
        self.started = False
        self.stopped = False
        self.dialled: List[str] = []
        self.sessions: List[SimulatedSession] = []
        self._inbound_handlers: List[InboundCallback] = []

    @property
    def name(self) -> str:
        return "simulator"

    async def start(self) -> None:
        if self.fail_start:
            raise SimulatedSdkError("SIP registration failed")
        if self.sip_info is not None and not self.sip_info.username:
            raise SimulatedSdkError("SIP credentials missing username")
        self.started = True
        logger.info("Simulated phone registered")

    async def call(self, number: str) -> SimulatedSession:
        self.dialled.append(number)
        if self.hang_calls:
            await asyncio.Event().wait()
        if self.call_delay:
            await asyncio.sleep(self.call_delay)
        if self.reject_calls:
            raise SimulatedSdkError("Call rejected by provider")

        session = SimulatedSession(remote_number=number, state=self.session_state)
        self.sessions.append(session)
        logger.info("Simulated outbound call to %s", mask_phone_number(number))
        return session

    def on_inbound(self, callback: InboundCallback) -> None:
        self._inbound_handlers.append(callback)

    def ring(self, remote_number: str, display_name: Optional[str] = None) -> SimulatedSession:
        """Deliver an inbound call invite to every registered handler."""
        session = SimulatedSession(remote_number=remote_number, display_name=display_name)
        self.sessions.append(session)
        for handler in list(self._inbound_handlers):
            handler(session)
        return session

    async def stop(self) -> None:
        self.stopped = True
        self.started = False

    @property
    def last_session(self) -> Optional[SimulatedSession]:
        return self.sessions[-1] if self.sessions else None


class SimulatedPermissions(MediaPermissions):
    """Microphone prompt with a fixed answer."""

    def __init__(self, granted: bool = True):
        self.granted = granted
        self.requests = 0

    async def request_microphone(self) -> bool:
        self.requests += 1
        return self.granted


def simulator_factory(**options: Any) -> Callable[[SipInfo], SimulatedPhoneAdapter]:
    """Adapter factory producing SimulatedPhoneAdapter instances with fixed options."""

    def factory(sip_info: SipInfo) -> SimulatedPhoneAdapter:
        return SimulatedPhoneAdapter(sip_info=sip_info, **options)

    return factory
