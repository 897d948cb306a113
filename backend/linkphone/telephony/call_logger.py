"""
The Link Phone - Call Logging

Posts completed call metadata to the backend. Best effort: a failed log
never rolls back call state, since the call already happened.

The caller (PhoneWidget) guarantees at most one log() per session via the
session's ``logged`` flag.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Optional

from linkphone.core.exceptions import CallLogError, MissingCallContextError
from linkphone.core.logging import get_logger

from .api_client import LinkApiClient, LinkApiError
from .models import CallLogRequest, CallSession, LogOutcome
from .notifications import NoticeBoard, NoticeVariant
from .numbers import mask_phone_number

logger = get_logger(__name__)

CallCompleteHook = Callable[[int, str], Any]


class CallLogger:
    """
    Records completed calls against their client.

    Outcomes:
        LOGGED  - backend accepted the log, "Call Logged" notice
        SKIPPED - no client/session id in the call context, "Call Not Logged" warning
        FAILED  - backend request failed, "Call Logging Failed" notice
    """

    def __init__(
        self,
        api_client: LinkApiClient,
        notices: NoticeBoard,
        on_call_complete: Optional[CallCompleteHook] = None,
    ):
        self._api = api_client
        self._notices = notices
        self._on_call_complete = on_call_complete

    async def log(self, session: CallSession) -> LogOutcome:
        ctx = session.context
        log_data = {
            "session_id": ctx.session_id,
            "direction": session.direction.value,
            "duration": session.duration_seconds,
        }

        if not ctx.is_loggable:
            skipped = MissingCallContextError(
                "Call context has no client association",
                details={"has_client_id": bool(ctx.client_id), "has_session_id": bool(ctx.session_id)},
            )
            logger.warning(f"Call not logged: {skipped.message}", data=log_data)
            self._notices.push(
                "Call Not Logged",
                "Call ended. Note: Call was not logged as no client context was provided.",
                variant=NoticeVariant.WARNING,
                code=skipped.code,
            )
            return LogOutcome.SKIPPED

        try:
            await self._api.log_call(CallLogRequest.from_session(session))
        except LinkApiError as err:
            failure = CallLogError(
                f"Failed to log call: {err.message}",
                details={"session_id": ctx.session_id, **err.details},
            )
            logger.error(failure.message, data=log_data)
            self._notices.error(
                "Call Logging Failed",
                "The call ended but could not be recorded in communications.",
                code=failure.code,
            )
            return LogOutcome.FAILED

        logger.info(
            f"Call logged for {mask_phone_number(ctx.phone_number)}",
            data=log_data,
        )
        self._notices.info("Call Logged", "Call has been logged to communications")
        await self._notify_complete(session)
        return LogOutcome.LOGGED

    async def _notify_complete(self, session: CallSession) -> None:
        if self._on_call_complete is None:
            return
        try:
            result = self._on_call_complete(session.duration_seconds, session.context.phone_number)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_call_complete hook failed", data={"session_id": session.session_id})
