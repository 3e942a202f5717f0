"""Core infrastructure: configuration, logging, errors, retries."""

from .exceptions import (
    BookingFlowError,
    ConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    HoldExpiredError,
    MalformedResponse,
    PaymentFailed,
    PaymentSetupError,
    ProcessorError,
    RegistrationError,
    ReleaseError,
    ReservationError,
    ValidationError,
)
from .result import Failure, Result, Success

__all__ = [
    "BookingFlowError",
    "ConfigurationError",
    "GatewayError",
    "GatewayTimeoutError",
    "HoldExpiredError",
    "MalformedResponse",
    "PaymentFailed",
    "PaymentSetupError",
    "ProcessorError",
    "RegistrationError",
    "ReleaseError",
    "ReservationError",
    "ValidationError",
    "Success",
    "Failure",
    "Result",
]
