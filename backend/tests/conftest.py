"""
The Link Phone - Test Configuration and Fixtures

Shared fixtures for all test modules.
"""

import json
import os
import sys
from typing import Any, Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

# Ensure backend package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from linkphone.config import Settings
from linkphone.telephony.api_client import LinkApiClient
from linkphone.telephony.models import CallRecord
from linkphone.telephony.phone import PhoneWidget
from linkphone.telephony.providers.simulator import SimulatedPermissions, SimulatedPhoneAdapter


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")


# =============================================================================
# Test Doubles
# =============================================================================

class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLinkBackend:
    """In-memory stand-in for the practice-management backend."""

    def __init__(self):
        self.sip_info: List[Dict[str, Any]] = [{
            "username": "sip-user-1",
            "password": "sip-secret",
            "authorizationId": "auth-1",
            "domain": "sip.example.test",
            "outboundProxy": "proxy.example.test:8083",
            "transport": "WSS",
        }]
        self.provision_status = 200
        self.log_status = 200
        self.requests: List[httpx.Request] = []
        self.logged_calls: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == "/api/ringcentral/sip-provision":
            if self.provision_status >= 400:
                return httpx.Response(self.provision_status, json={"message": "Provisioning unavailable"})
            return httpx.Response(200, json={"sipInfo": self.sip_info})

        if request.url.path == "/api/ringcentral/log-call":
            self.logged_calls.append(json.loads(request.content))
            if self.log_status >= 400:
                return httpx.Response(self.log_status, json={"message": "Client not found"})
            return httpx.Response(200, json={"success": True, "id": len(self.logged_calls)})

        return httpx.Response(404, json={"message": "Not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class SimulatorHarness:
    """Adapter factory that remembers every adapter it built."""

    def __init__(self):
        self.options: Dict[str, Any] = {}
        self.adapters: List[SimulatedPhoneAdapter] = []

    def factory(self, sip_info) -> SimulatedPhoneAdapter:
        adapter = SimulatedPhoneAdapter(sip_info=sip_info, **self.options)
        self.adapters.append(adapter)
        return adapter

    @property
    def adapter(self) -> SimulatedPhoneAdapter:
        return self.adapters[-1]


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """
    Create test settings with short timers.

    Durations are driven by FakeClock; only scheduling uses real time.
    """
    return Settings(
        app_env="testing",
        app_debug=True,
        app_log_level="WARNING",  # Reduce noise in tests
        link_api_base_url="http://link.test",
        telephony_provider="simulator",
        call_setup_timeout_seconds=0.2,
        auto_decline_seconds=0.2,
        post_call_reset_seconds=0.05,
        duration_tick_seconds=0.01,
        max_phones=5,
    )


# =============================================================================
# Telephony Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeLinkBackend:
    return FakeLinkBackend()


@pytest.fixture
def simulator() -> SimulatorHarness:
    return SimulatorHarness()


@pytest.fixture
def permissions() -> SimulatedPermissions:
    return SimulatedPermissions(granted=True)


@pytest.fixture
def api_client(test_settings: Settings, backend: FakeLinkBackend) -> LinkApiClient:
    return LinkApiClient.from_settings(test_settings, transport=backend.transport)


@pytest.fixture
def finished_calls() -> List[CallRecord]:
    return []


@pytest.fixture
def make_phone(
    test_settings: Settings,
    api_client: LinkApiClient,
    simulator: SimulatorHarness,
    permissions: SimulatedPermissions,
    clock: FakeClock,
    finished_calls: List[CallRecord],
) -> Callable[..., PhoneWidget]:
    """Factory for phone widgets wired to the simulator and fake backend."""

    def _make(**overrides: Any) -> PhoneWidget:
        kwargs: Dict[str, Any] = dict(
            phone_id="ph_test",
            api_client=api_client,
            adapter_factory=simulator.factory,
            permissions=permissions,
            settings=test_settings,
            client_id="client-1",
            person_id="person-1",
            default_phone_number="07912345678",
            on_call_finished=finished_calls.append,
            clock=clock,
        )
        kwargs.update(overrides)
        return PhoneWidget(**kwargs)

    return _make


# =============================================================================
# API Client Fixtures
# =============================================================================

@pytest.fixture
def client(test_settings: Settings, backend: FakeLinkBackend, simulator: SimulatorHarness):
    """FastAPI TestClient with the simulator and fake backend."""
    from main import create_app

    app = create_app(
        settings=test_settings,
        transport=backend.transport,
        adapter_factory=simulator.factory,
    )
    with TestClient(app) as test_client:
        yield test_client
