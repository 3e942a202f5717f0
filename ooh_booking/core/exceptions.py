"""Custom exception classes for the out-of-hours booking flow."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class BookingFlowError(Exception):
    """Base exception for the booking flow."""

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize booking flow error.

        Args:
            message: Error message
            recoverable: Whether the user can retry the step that failed
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ConfigurationError(BookingFlowError):
    """Configuration is missing or invalid."""

    def __init__(self, message: str = "Configuration error", recoverable: bool = False):
        super().__init__(message, recoverable)


class ValidationError(BookingFlowError):
    """Patient intake failed validation. No network call was made."""

    def __init__(
        self,
        message: str = "Please correct the highlighted fields",
        field_errors: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize validation error.

        Args:
            message: Summary message
            field_errors: Mapping of form field name to user-facing error
        """
        self.field_errors: Dict[str, str] = dict(field_errors or {})
        super().__init__(message, recoverable=True, details={"fields": self.field_errors})


class GatewayError(BookingFlowError):
    """Workflow gateway request failed (network error or non-2xx status)."""

    def __init__(
        self,
        message: str = "Workflow gateway request failed",
        status: Optional[int] = None,
        workflow_type: Optional[str] = None,
    ):
        details: Dict[str, Any] = {}
        if status is not None:
            details["status"] = status
        if workflow_type:
            details["workflowtype"] = workflow_type
        self.status = status
        self.workflow_type = workflow_type
        super().__init__(message, recoverable=True, details=details)


class GatewayTimeoutError(GatewayError):
    """Workflow gateway did not answer within the request timeout."""

    def __init__(self, timeout: float, workflow_type: Optional[str] = None):
        self.timeout = timeout
        super().__init__(
            f"Request timeout after {int(timeout * 1000)}ms", workflow_type=workflow_type
        )


class MalformedResponse(BookingFlowError):
    """Gateway response could not be decoded, even after repair."""

    def __init__(self, message: str = "Malformed gateway response", raw: Optional[str] = None):
        details = {"raw_preview": raw[:200]} if raw else {}
        super().__init__(message, recoverable=True, details=details)


class RegistrationError(BookingFlowError):
    """Patient registration did not yield both PatientID and VisitID."""

    def __init__(
        self,
        message: str = "Patient registration failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable=True, details=details)


class ReservationError(BookingFlowError):
    """Slot reservation failed; the previous stable state is kept."""

    def __init__(
        self,
        message: str = "Failed to reserve slot",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, recoverable=True, details=details)


class PaymentSetupError(BookingFlowError):
    """Payment intent could not be created or was incomplete."""

    def __init__(self, message: str = "Payment setup failed", missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        details = {"missing_fields": self.missing} if self.missing else {}
        super().__init__(message, recoverable=True, details=details)


class PaymentFailed(BookingFlowError):
    """Processor declined or did not confirm the payment."""

    def __init__(self, message: str = "Payment failed", status: Optional[str] = None):
        self.status = status
        details = {"status": status} if status else {}
        super().__init__(message, recoverable=True, details=details)


class ProcessorError(BookingFlowError):
    """Error raised by a payment processor implementation."""

    def __init__(self, message: str = "Payment processor error", code: Optional[str] = None):
        self.code = code
        details = {"code": code} if code else {}
        super().__init__(message, recoverable=True, details=details)


class HoldExpiredError(BookingFlowError):
    """The 3-minute hold on the slot has run out."""

    def __init__(
        self,
        message: str = "Your slot reservation has expired. Please select a new time slot.",
    ):
        super().__init__(message, recoverable=True)


class ReleaseError(BookingFlowError):
    """Slot release failed. Only ever logged, never raised to callers."""

    def __init__(self, message: str = "Slot release failed"):
        super().__init__(message, recoverable=True)
