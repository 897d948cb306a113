"""
The Link Phone - Telephony Providers

Provider-specific implementations of the softphone SDK boundary.

Supported Providers:
- simulator: In-memory phone for development and tests
"""

from typing import Tuple

from linkphone.config import Settings
from linkphone.core.exceptions import ConfigurationError

from .base import (
    AdapterFactory,
    ManagedSession,
    MediaPermissions,
    PermissionsFactory,
    PhoneAdapter,
    TelephonySession,
)
from .simulator import SimulatedPermissions, SimulatedPhoneAdapter


def create_provider(settings: Settings) -> Tuple[AdapterFactory, PermissionsFactory]:
    """
    Build the adapter and permission factories for the configured provider.

    Raises:
        ConfigurationError: If the provider is unknown
    """
    if settings.telephony_provider == "simulator":
        def adapter_factory(sip_info):
            return SimulatedPhoneAdapter(sip_info=sip_info)

        def permissions_factory():
            return SimulatedPermissions(granted=settings.simulator_microphone_granted)

        return adapter_factory, permissions_factory

    raise ConfigurationError(
        f"Unknown telephony provider: {settings.telephony_provider}",
        details={"supported": ["simulator"]},
    )


__all__ = [
    "AdapterFactory",
    "ManagedSession",
    "MediaPermissions",
    "PermissionsFactory",
    "PhoneAdapter",
    "SimulatedPermissions",
    "SimulatedPhoneAdapter",
    "TelephonySession",
    "create_provider",
]
