"""
The Link Phone - Exception Hierarchy

Structured exceptions for consistent error handling across the system.
All exceptions include error codes for API responses.
"""

from typing import Optional


class LinkPhoneError(Exception):
    """Base exception for all phone service errors."""

    code: str = "UNKNOWN_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Serialize for API error responses."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Phone Lifecycle Errors
# =============================================================================

class PhoneError(LinkPhoneError):
    """Error in the softphone subsystem."""
    code = "PHONE_ERROR"
    status_code = 502


class PhoneInitializationError(PhoneError):
    """SIP provisioning or adapter start/registration failed."""
    code = "PHONE_INITIALIZATION_FAILED"
    status_code = 502


class PhoneNotReadyError(PhoneError):
    """Phone adapter has not been initialized."""
    code = "PHONE_NOT_READY"
    status_code = 409


class PhoneNotFoundError(PhoneError):
    """Phone widget not found."""
    code = "PHONE_NOT_FOUND"
    status_code = 404


class PhoneLimitError(PhoneError):
    """Maximum concurrent phone widgets exceeded."""
    code = "PHONE_LIMIT_EXCEEDED"
    status_code = 429


# =============================================================================
# Call Placement Errors
# =============================================================================

class CallError(PhoneError):
    """Error while placing or controlling a call."""
    code = "CALL_ERROR"


class MicrophonePermissionError(CallError):
    """Microphone access was denied."""
    code = "MICROPHONE_PERMISSION_DENIED"
    status_code = 403


class CallSetupTimeoutError(CallError):
    """Call setup did not complete in time."""
    code = "CALL_SETUP_TIMEOUT"
    status_code = 504


class CallRejectedError(CallError):
    """The telephony SDK refused to place the call."""
    code = "CALL_REJECTED"
    status_code = 502


class CallInProgressError(CallError):
    """Another call is already active on this phone."""
    code = "CALL_IN_PROGRESS"
    status_code = 409


class NoActiveCallError(CallError):
    """No active call to control."""
    code = "NO_ACTIVE_CALL"
    status_code = 409


class NoIncomingCallError(CallError):
    """No ringing inbound call to answer or decline."""
    code = "NO_INCOMING_CALL"
    status_code = 409


class CallControlError(CallError):
    """Mute, hold, answer or decline failed in the SDK."""
    code = "CALL_CONTROL_FAILED"
    status_code = 502


# =============================================================================
# Call Logging Errors
# =============================================================================

class CallLogError(PhoneError):
    """Call happened but was not recorded by the backend."""
    code = "CALL_LOG_FAILED"
    status_code = 502


class MissingCallContextError(CallLogError):
    """Call context lacks a client or session id."""
    code = "CALL_CONTEXT_MISSING"
    status_code = 422


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(LinkPhoneError):
    """Input validation error."""
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidPhoneNumberError(ValidationError):
    """Phone number cannot be dialled."""
    code = "INVALID_PHONE_NUMBER"


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(LinkPhoneError):
    """Configuration error."""
    code = "CONFIGURATION_ERROR"
    status_code = 500


class SimulationDisabledError(ConfigurationError):
    """Simulation endpoints require the simulator provider outside production."""
    code = "SIMULATION_DISABLED"
    status_code = 403
