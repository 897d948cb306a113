"""
The Link Phone - Phone Widget State Machine Tests

Tests for PhoneWidget call lifecycle.
These tests verify:
- Outbound placement, number normalization and placement failures
- Exactly-once call logging across termination event sequences
- Duration tracking and freezing
- In-call controls (mute/hold) and hang-up idempotence
- Inbound calls: answer, decline, auto-decline, busy handling
- Initialization and shutdown

Run with: pytest tests/test_phone_state_machine.py -v
"""

import asyncio

import pytest

from linkphone.core.exceptions import (
    CallControlError,
    CallInProgressError,
    CallRejectedError,
    CallSetupTimeoutError,
    InvalidPhoneNumberError,
    MicrophonePermissionError,
    NoActiveCallError,
    NoIncomingCallError,
    PhoneInitializationError,
    PhoneNotReadyError,
)
from linkphone.telephony import timers as timer_names
from linkphone.telephony.models import CallDirection, CallStatus, LogOutcome, PhoneStatus
from linkphone.telephony.notifications import NoticeVariant


async def ready_phone(make_phone, **overrides):
    phone = make_phone(**overrides)
    await phone.initialize()
    return phone


async def connected_call(phone, simulator, number=None):
    session = await phone.place_call(number)
    sdk = simulator.adapter.last_session
    sdk.remote_answer()
    return session, sdk


def notice_titles(phone):
    return [n.title for n in phone.notices.peek()]


class TestInitialization:
    """Tests for SIP provisioning and adapter start."""

    @pytest.mark.asyncio
    async def test_initialize_registers_adapter(self, make_phone, simulator, backend):
        """Should provision SIP credentials and start the adapter."""
        phone = await ready_phone(make_phone)

        assert phone.status == PhoneStatus.READY
        assert phone.is_ready
        assert simulator.adapter.started
        assert simulator.adapter.sip_info.username == "sip-user-1"
        assert simulator.adapter.sip_info.outbound_proxy == "proxy.example.test:8083"
        assert backend.requests[0].url.path == "/api/ringcentral/sip-provision"
        assert phone.notices.latest().title == "Phone Ready"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, make_phone, backend):
        """Initializing a ready phone should not provision again."""
        phone = await ready_phone(make_phone)
        await phone.initialize()

        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_provisioning_failure(self, make_phone, backend):
        """A failed provisioning request should leave the phone in error."""
        backend.provision_status = 500
        phone = make_phone()

        with pytest.raises(PhoneInitializationError) as exc_info:
            await phone.initialize()

        assert "Provisioning unavailable" in exc_info.value.message
        assert phone.status == PhoneStatus.ERROR
        assert phone.notices.latest().title == "Initialization Error"
        assert phone.notices.latest().variant == NoticeVariant.DESTRUCTIVE

    @pytest.mark.asyncio
    async def test_empty_sip_info(self, make_phone, backend):
        """No SIP entries in the provisioning response is an init failure."""
        backend.sip_info = []
        phone = make_phone()

        with pytest.raises(PhoneInitializationError):
            await phone.initialize()
        assert phone.status == PhoneStatus.ERROR

    @pytest.mark.asyncio
    async def test_adapter_start_failure(self, make_phone, simulator):
        """SDK registration failure is an init failure."""
        simulator.options["fail_start"] = True
        phone = make_phone()

        with pytest.raises(PhoneInitializationError):
            await phone.initialize()
        assert phone.adapter is None

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, make_phone, backend):
        """A phone in the error state can be initialized again."""
        backend.provision_status = 503
        phone = make_phone()
        with pytest.raises(PhoneInitializationError):
            await phone.initialize()

        backend.provision_status = 200
        await phone.initialize()

        assert phone.status == PhoneStatus.READY


class TestOutboundPlacement:
    """Tests for place_call()."""

    @pytest.mark.asyncio
    async def test_uk_mobile_is_normalized(self, make_phone, simulator):
        """07912345678 should be dialled as +447912345678."""
        phone = await ready_phone(make_phone)

        session = await phone.place_call("07912345678")

        assert simulator.adapter.dialled == ["+447912345678"]
        assert session.status == CallStatus.RINGING
        assert session.direction == CallDirection.OUTBOUND
        assert session.phone_number == "07912345678"
        assert session.session_id.startswith("call-")
        assert simulator.adapter.last_session.listener_count("terminated") == 1
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_default_number_is_used(self, make_phone, simulator):
        """With no number given, the widget default is dialled."""
        phone = await ready_phone(make_phone, default_phone_number="020 7946 0000")

        await phone.place_call()

        assert simulator.adapter.dialled == ["+442079460000"]
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_microphone_denied(self, make_phone, simulator, permissions):
        """Denied microphone access aborts placement and leaves the phone idle."""
        permissions.granted = False
        phone = await ready_phone(make_phone)

        with pytest.raises(MicrophonePermissionError):
            await phone.place_call("07912345678")

        assert phone.session is None
        assert phone.call_status == CallStatus.IDLE
        assert simulator.adapter.dialled == []
        notice = phone.notices.latest()
        assert notice.title == "Microphone Blocked"
        assert notice.variant == NoticeVariant.DESTRUCTIVE

    @pytest.mark.asyncio
    async def test_not_initialized(self, make_phone):
        """Placing a call before initialize() fails with PHONE_NOT_READY."""
        phone = make_phone()

        with pytest.raises(PhoneNotReadyError):
            await phone.place_call("07912345678")
        assert phone.notices.latest().title == "Phone Not Ready"

    @pytest.mark.asyncio
    async def test_no_number(self, make_phone):
        """No number and no default is a validation failure."""
        phone = await ready_phone(make_phone, default_phone_number=None)

        with pytest.raises(InvalidPhoneNumberError):
            await phone.place_call()
        assert phone.session is None

    @pytest.mark.asyncio
    async def test_undialable_number(self, make_phone, simulator):
        """Too few digits to dial is rejected before the adapter is called."""
        phone = await ready_phone(make_phone)

        with pytest.raises(InvalidPhoneNumberError):
            await phone.place_call("123")

        assert simulator.adapter.dialled == []
        assert phone.session is None

    @pytest.mark.asyncio
    async def test_setup_timeout(self, make_phone, simulator):
        """A call() that never resolves times out and returns to idle."""
        simulator.options["hang_calls"] = True
        phone = await ready_phone(make_phone)

        with pytest.raises(CallSetupTimeoutError):
            await phone.place_call("07912345678")

        assert phone.session is None
        assert phone.notices.latest().title == "Call Error"

    @pytest.mark.asyncio
    async def test_call_rejected(self, make_phone, simulator):
        """An SDK error from call() surfaces as CALL_REJECTED."""
        simulator.options["reject_calls"] = True
        phone = await ready_phone(make_phone)

        with pytest.raises(CallRejectedError) as exc_info:
            await phone.place_call("07912345678")

        assert exc_info.value.message == "Call rejected by provider"
        assert phone.session is None

    @pytest.mark.asyncio
    async def test_second_call_while_active(self, make_phone):
        """Only one call per widget: the active call is left untouched."""
        phone = await ready_phone(make_phone)
        first = await phone.place_call("07912345678")

        with pytest.raises(CallInProgressError):
            await phone.place_call("07700900123")

        assert phone.session is first
        assert first.status == CallStatus.RINGING
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_already_connected_session(self, make_phone, simulator):
        """A session already answered when call() resolves starts connected."""
        simulator.options["session_state"] = "connected"
        phone = await ready_phone(make_phone)

        session = await phone.place_call("07912345678")

        assert session.status == CallStatus.CONNECTED
        assert timer_names.DURATION_TICK in phone.timers
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_hang_up_during_setup(self, make_phone, simulator, backend):
        """Hanging up before call() resolves closes the late session without logging."""
        simulator.options["call_delay"] = 0.1
        phone = await ready_phone(make_phone)

        placing = asyncio.create_task(phone.place_call("07912345678"))
        await asyncio.sleep(0.02)
        await phone.hang_up()
        result = await placing

        assert result is None
        assert phone.session is None
        assert simulator.adapter.last_session.calls == ["terminate"]
        await phone.flush()
        assert backend.logged_calls == []


class TestCallLogging:
    """Tests for exactly-once completion logging."""

    @pytest.mark.asyncio
    async def test_burst_logs_once_with_duration(self, make_phone, simulator, clock, backend):
        """terminated + ended in the same tick after 45s gives one POST with duration 45."""
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator, "07912345678")

        clock.advance(45)
        sdk.emit("terminated")
        sdk.emit("ended")
        await phone.flush()

        assert backend.logged_calls == [{
            "clientId": "client-1",
            "personId": "person-1",
            "phoneNumber": "07912345678",
            "direction": "outbound",
            "duration": 45,
            "sessionId": session.session_id,
        }]
        assert session.logged
        assert phone.notices.latest().title == "Call Logged"
        await phone.shutdown()

    @pytest.mark.parametrize("events", [
        ("terminated", "ended", "bye"),
        ("failed", "terminated"),
        ("bye",),
        ("disposed", "ended"),
        ("cancel", "rejected", "terminated"),
    ])
    @pytest.mark.asyncio
    async def test_any_termination_sequence_logs_once(self, make_phone, simulator, backend, events):
        """Every termination sequence, followed by a hang-up, posts exactly one log."""
        phone = await ready_phone(make_phone)
        await connected_call(phone, simulator)
        sdk = simulator.adapter.last_session

        for event in events:
            sdk.emit(event)
        await phone.hang_up()
        await phone.hang_up()
        await phone.flush()

        assert len(backend.logged_calls) == 1
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_local_hang_up_logs_once(self, make_phone, simulator, clock, backend):
        """hang_up() logs, resets at once and ignores the SDK's own terminate burst."""
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)
        clock.advance(7)

        await phone.hang_up()

        assert phone.session is None
        assert sdk.calls == ["terminate"]
        await phone.flush()
        assert len(backend.logged_calls) == 1
        assert backend.logged_calls[0]["duration"] == 7
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_hang_up_while_idle(self, make_phone, backend):
        """Hanging up with no call is a harmless reset."""
        phone = await ready_phone(make_phone)

        await phone.hang_up()
        await phone.hang_up()

        assert phone.session is None
        assert backend.logged_calls == []

    @pytest.mark.asyncio
    async def test_outbound_cancelled_while_ringing(self, make_phone, simulator, backend):
        """An outbound call ended before connecting is logged with duration 0."""
        phone = await ready_phone(make_phone)
        await phone.place_call("07912345678")

        await phone.hang_up()
        await phone.flush()

        assert len(backend.logged_calls) == 1
        assert backend.logged_calls[0]["duration"] == 0

    @pytest.mark.asyncio
    async def test_failed_event_posts_notice(self, make_phone, simulator):
        """A failed event surfaces the SDK's error message."""
        phone = await ready_phone(make_phone)
        await phone.place_call("07912345678")

        simulator.adapter.last_session.fail("Busy here")
        await phone.flush()

        assert "Call Failed" in notice_titles(phone)
        failed = [n for n in phone.notices.peek() if n.title == "Call Failed"][0]
        assert failed.description == "Busy here"
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_missing_client_context(self, make_phone, simulator, backend, finished_calls):
        """With no client id the call is not logged and a warning notice is raised."""
        phone = await ready_phone(make_phone, client_id=None)
        await connected_call(phone, simulator)

        await phone.hang_up()
        await phone.flush()

        assert backend.logged_calls == []
        notice = phone.notices.latest()
        assert notice.title == "Call Not Logged"
        assert notice.variant == NoticeVariant.WARNING
        assert finished_calls[-1].outcome == LogOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_backend_failure_still_resets(self, make_phone, simulator, backend, finished_calls):
        """A failed log request is reported but the phone still returns to idle."""
        backend.log_status = 500
        phone = await ready_phone(make_phone)
        await connected_call(phone, simulator)

        simulator.adapter.last_session.remote_hangup()
        await phone.flush()

        assert phone.notices.latest().title == "Call Logging Failed"
        assert phone.notices.latest().code == "CALL_LOG_FAILED"
        assert finished_calls[-1].outcome == LogOutcome.FAILED

        await asyncio.sleep(0.1)
        assert phone.session is None

    @pytest.mark.asyncio
    async def test_post_call_reset(self, make_phone, simulator):
        """After a remote hang-up the call stays disconnected briefly, then resets."""
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)

        sdk.remote_hangup()
        await phone.flush()

        assert phone.session is session
        assert session.status == CallStatus.DISCONNECTED
        assert timer_names.POST_CALL_RESET in phone.timers

        await asyncio.sleep(0.1)
        assert phone.session is None
        assert phone.timers.active(timer_names.POST_CALL_RESET) is False

    @pytest.mark.asyncio
    async def test_stale_session_events_are_ignored(self, make_phone, simulator, backend):
        """Late events from a finished call do not touch the next call."""
        phone = await ready_phone(make_phone)
        _, first_sdk = await connected_call(phone, simulator)
        await phone.hang_up()

        second = await phone.place_call("07700900123")
        first_sdk.emit("terminated")
        first_sdk.emit("accepted")
        await phone.flush()

        assert phone.session is second
        assert second.status == CallStatus.RINGING
        assert len(backend.logged_calls) == 1
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_on_call_complete_hook(self, make_phone, simulator, clock):
        """The completion hook receives duration and number after a successful log."""
        completed = []
        phone = await ready_phone(
            make_phone, on_call_complete=lambda duration, number: completed.append((duration, number))
        )
        await connected_call(phone, simulator, "07912345678")
        clock.advance(12)

        await phone.hang_up()
        await phone.flush()

        assert completed == [(12, "07912345678")]

    @pytest.mark.asyncio
    async def test_async_on_call_complete_hook(self, make_phone, simulator):
        """Async completion hooks are awaited."""
        completed = []

        async def hook(duration, number):
            completed.append(number)

        phone = await ready_phone(make_phone, on_call_complete=hook)
        await connected_call(phone, simulator, "07912345678")
        await phone.hang_up()
        await phone.flush()

        assert completed == ["07912345678"]


class TestDuration:
    """Tests for connected-time tracking."""

    @pytest.mark.asyncio
    async def test_duration_ticks_while_connected(self, make_phone, simulator, clock):
        """Duration follows the clock while the call is connected."""
        phone = await ready_phone(make_phone)
        session, _ = await connected_call(phone, simulator)

        clock.advance(3)
        await asyncio.sleep(0.05)

        assert session.duration_seconds == 3
        assert phone.snapshot()["call"]["duration_display"] == "00:03"
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_duration_frozen_at_termination(self, make_phone, simulator, clock, backend):
        """Duration stops at the termination event, not at the log or reset."""
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)

        clock.advance(10)
        sdk.remote_hangup()
        clock.advance(20)
        await asyncio.sleep(0.03)
        await phone.flush()

        assert session.duration_seconds == 10
        assert backend.logged_calls[0]["duration"] == 10
        assert timer_names.DURATION_TICK not in phone.timers
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_timer_starts_once(self, make_phone, simulator, clock):
        """Repeated connection events do not restart the duration."""
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)

        clock.advance(5)
        sdk.emit("confirmed")
        sdk.emit("accepted")
        clock.advance(1)

        assert phone.snapshot()["call"]["duration_seconds"] == 6
        await phone.shutdown()


class TestInCallControls:
    """Tests for mute and hold."""

    @pytest.mark.asyncio
    async def test_toggle_mute(self, make_phone, simulator):
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)

        assert await phone.toggle_mute() is True
        assert await phone.toggle_mute() is False

        assert sdk.calls == ["mute", "unmute"]
        assert session.is_muted is False
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_toggle_hold(self, make_phone, simulator):
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)

        assert await phone.toggle_hold() is True
        assert session.is_on_hold
        assert sdk.calls == ["hold"]
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_mute_failure_keeps_state(self, make_phone, simulator):
        """An SDK error leaves the mute flag unchanged and raises a notice."""
        phone = await ready_phone(make_phone)
        session, sdk = await connected_call(phone, simulator)
        sdk.failing_methods.add("mute")

        with pytest.raises(CallControlError):
            await phone.toggle_mute()

        assert session.is_muted is False
        assert phone.notices.latest().description == "Failed to mute call"
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_controls_require_connected_call(self, make_phone):
        phone = await ready_phone(make_phone)
        await phone.place_call("07912345678")

        with pytest.raises(NoActiveCallError):
            await phone.toggle_mute()
        with pytest.raises(NoActiveCallError):
            await phone.toggle_hold()
        await phone.shutdown()


class TestInboundCalls:
    """Tests for inbound call handling."""

    @pytest.mark.asyncio
    async def test_incoming_call_rings(self, make_phone, simulator):
        phone = await ready_phone(make_phone)

        simulator.adapter.ring("07700900123")

        session = phone.session
        assert session.direction == CallDirection.INBOUND
        assert session.status == CallStatus.RINGING
        assert session.phone_number == "07700900123"
        assert timer_names.AUTO_DECLINE in phone.timers
        assert phone.notices.latest().title == "Incoming Call"
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_display_name_preferred(self, make_phone, simulator):
        phone = await ready_phone(make_phone)

        simulator.adapter.ring("07700900123", display_name="Reception")

        assert phone.session.phone_number == "Reception"
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_answer_connects_and_clears_auto_decline(self, make_phone, simulator):
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")

        await phone.answer_call()

        assert phone.session.status == CallStatus.CONNECTED
        assert sdk.calls == ["answer"]
        assert timer_names.AUTO_DECLINE not in phone.timers
        assert timer_names.DURATION_TICK in phone.timers
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_answered_call_is_logged_inbound(self, make_phone, simulator, clock, backend):
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")
        await phone.answer_call()

        clock.advance(20)
        sdk.remote_hangup()
        await phone.flush()

        assert len(backend.logged_calls) == 1
        assert backend.logged_calls[0]["direction"] == "inbound"
        assert backend.logged_calls[0]["duration"] == 20
        assert backend.logged_calls[0]["phoneNumber"] == "07700900123"
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_decline(self, make_phone, simulator, backend, finished_calls):
        """Declining resets at once and is not logged."""
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")

        await phone.decline_call()

        assert phone.session is None
        assert sdk.calls == ["decline"]
        assert timer_names.AUTO_DECLINE not in phone.timers
        assert backend.logged_calls == []
        assert finished_calls[-1].outcome == LogOutcome.MISSED

    @pytest.mark.asyncio
    async def test_auto_decline(self, make_phone, simulator, backend):
        """An unanswered call is declined automatically."""
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")

        await asyncio.sleep(0.3)

        assert phone.session is None
        assert sdk.calls == ["decline"]
        assert backend.logged_calls == []
        assert phone.notices.latest().title == "Missed Call"

    @pytest.mark.asyncio
    async def test_answer_failure_rearms_auto_decline(self, make_phone, simulator):
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")
        sdk.failing_methods.add("answer")

        with pytest.raises(CallControlError):
            await phone.answer_call()

        assert phone.session.status == CallStatus.RINGING
        assert timer_names.AUTO_DECLINE in phone.timers
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_decline_failure_rearms_auto_decline(self, make_phone, simulator, backend):
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")
        sdk.failing_methods.add("decline")

        with pytest.raises(CallControlError):
            await phone.decline_call()

        assert phone.session.status == CallStatus.RINGING
        assert timer_names.AUTO_DECLINE in phone.timers

        await asyncio.sleep(0.3)

        assert phone.session is None
        assert backend.logged_calls == []
        assert phone.notices.latest().title == "Missed Call"

    @pytest.mark.asyncio
    async def test_caller_cancels_before_answer(self, make_phone, simulator, backend, finished_calls):
        """A call the caller abandons is logged once with zero duration."""
        phone = await ready_phone(make_phone)
        sdk = simulator.adapter.ring("07700900123")

        sdk.emit("cancel")
        sdk.emit("terminated")

        assert phone.session.status == CallStatus.DISCONNECTED
        await phone.flush()

        assert len(backend.logged_calls) == 1
        assert backend.logged_calls[0]["direction"] == "inbound"
        assert backend.logged_calls[0]["duration"] == 0
        assert finished_calls[-1].outcome == LogOutcome.LOGGED
        await asyncio.sleep(0.1)
        assert phone.session is None

    @pytest.mark.asyncio
    async def test_incoming_while_busy_is_declined(self, make_phone, simulator):
        phone = await ready_phone(make_phone)
        active = await phone.place_call("07912345678")

        intruder = simulator.adapter.ring("07700900123")
        await phone.flush()

        assert phone.session is active
        assert intruder.calls == ["decline"]
        await phone.shutdown()

    @pytest.mark.asyncio
    async def test_answer_without_incoming_call(self, make_phone):
        phone = await ready_phone(make_phone)

        with pytest.raises(NoIncomingCallError):
            await phone.answer_call()
        with pytest.raises(NoIncomingCallError):
            await phone.decline_call()


class TestShutdown:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_shutdown_hangs_up_and_stops(self, make_phone, simulator, backend):
        phone = await ready_phone(make_phone)
        await connected_call(phone, simulator)
        adapter = simulator.adapter

        await phone.shutdown()

        assert phone.session is None
        assert phone.status == PhoneStatus.NOT_READY
        assert adapter.stopped
        assert len(backend.logged_calls) == 1
        assert not phone.timers.active(timer_names.DURATION_TICK)
        assert not phone.timers.active(timer_names.POST_CALL_RESET)
