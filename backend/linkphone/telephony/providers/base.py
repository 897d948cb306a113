"""
The Link Phone - Telephony Provider Base

Abstract boundary to the third-party softphone SDK.

Implementations handle provider-specific:
- SIP registration (start/stop)
- Call placement and inbound call delivery
- Session objects emitting lifecycle events
- Microphone permission prompts
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ..models import SipInfo

EventCallback = Callable[..., None]
InboundCallback = Callable[[Any], None]

# Probed in this order; the first one the session exposes is used
CLOSE_METHODS = ("terminate", "dispose", "bye")


async def call_sdk(method: Callable[..., Any], *args: Any) -> Any:
    """Invoke an SDK method that may be sync or async."""
    result = method(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class TelephonySession(ABC):
    """
    One telephony call as exposed by the SDK.

    Besides the abstract methods, a session must expose at least one of
    ``terminate()``, ``dispose()`` or ``bye()``.
    """

    @property
    @abstractmethod
    def state(self) -> Optional[str]:
        """SDK-reported state, e.g. "answered", "confirmed", "connected"."""
        ...

    @property
    @abstractmethod
    def remote_identity(self) -> Any:
        """Remote party: object or dict with display_name / uri.user."""
        ...

    @abstractmethod
    def on(self, event: str, callback: EventCallback) -> None:
        """Subscribe to a lifecycle event."""
        ...

    @abstractmethod
    async def mute(self) -> None: ...

    @abstractmethod
    async def unmute(self) -> None: ...

    @abstractmethod
    async def hold(self) -> None: ...

    @abstractmethod
    async def unhold(self) -> None: ...

    @abstractmethod
    async def answer(self) -> None: ...

    @abstractmethod
    async def decline(self) -> None: ...


class ManagedSession:
    """
    SDK session plus its normalized close capability.

    The close method is probed once when the session is attached, so callers
    only ever use ``close()``.
    """

    def __init__(self, sdk_session: Any):
        self.sdk = sdk_session
        self._close: Optional[Callable[[], Any]] = probe_close(sdk_session)

    @property
    def can_close(self) -> bool:
        return self._close is not None

    @property
    def close_method(self) -> Optional[str]:
        return getattr(self._close, "__name__", None)

    async def close(self) -> bool:
        """Close the SDK session. Returns False if it exposes no close method."""
        if self._close is None:
            return False
        await call_sdk(self._close)
        return True

    async def invoke(self, method_name: str) -> None:
        await call_sdk(getattr(self.sdk, method_name))


def probe_close(sdk_session: Any) -> Optional[Callable[[], Any]]:
    """Return the first callable of terminate/dispose/bye on the session."""
    for name in CLOSE_METHODS:
        method = getattr(sdk_session, name, None)
        if callable(method):
            return method
    return None


def remote_display(sdk_session: Any, default: str = "Unknown") -> str:
    """Extract the remote party's display name or number from an inbound session."""
    identity = getattr(sdk_session, "remote_identity", None)
    if identity is None:
        return default

    if isinstance(identity, dict):
        display_name = identity.get("display_name") or identity.get("displayName")
        uri = identity.get("uri") or {}
    else:
        display_name = getattr(identity, "display_name", None)
        uri = getattr(identity, "uri", None) or {}

    if display_name:
        return str(display_name)

    user = uri.get("user") if isinstance(uri, dict) else getattr(uri, "user", None)
    return str(user) if user else default


class PhoneAdapter(ABC):
    """Abstract base class for softphone SDK adapters."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Connect and register with the SIP provider."""
        ...

    @abstractmethod
    async def call(self, number: str) -> Any:
        """
        Place an outbound call.

        Args:
            number: Normalized dial string

        Returns:
            SDK session object (see TelephonySession)
        """
        ...

    @abstractmethod
    def on_inbound(self, callback: InboundCallback) -> None:
        """Register the handler for inbound call invites."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Unregister and release transport resources."""
        ...


class MediaPermissions(ABC):
    """Microphone permission prompt."""

    @abstractmethod
    async def request_microphone(self) -> bool:
        """Return True if microphone access is granted."""
        ...


AdapterFactory = Callable[[SipInfo], PhoneAdapter]
PermissionsFactory = Callable[[], MediaPermissions]
