"""
The Link Phone - Telephony Module

Embeddable softphone: places and receives calls through a SIP phone
adapter and logs completed calls against the client they belong to.

Components:
- phone: PhoneWidget call state machine
- call_logger: Posts completed calls to the backend
- api_client: Backend client (SIP provisioning, call logging)
- registry: Live phone widgets and recent-calls history
- providers: Phone adapter boundary and the in-memory simulator
"""

from .models import CallContext, CallDirection, CallSession, CallStatus, PhoneStatus
from .numbers import mask_phone_number, normalize_phone_number
from .phone import PhoneWidget
from .registry import PhoneRegistry

__all__ = [
    "CallContext",
    "CallDirection",
    "CallSession",
    "CallStatus",
    "PhoneRegistry",
    "PhoneStatus",
    "PhoneWidget",
    "mask_phone_number",
    "normalize_phone_number",
]
