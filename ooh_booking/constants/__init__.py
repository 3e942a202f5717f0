"""Constants for the booking flow.

    from ooh_booking.constants import HoldWindow, Timeouts, WorkflowType
"""

from .timing import HoldWindow, Timeouts
from .workflows import (
    REPAIRABLE_ARRAY_FIELDS,
    STATUS_CONFIRMED,
    STATUS_RESERVED,
    RequestType,
    WorkflowType,
)

__all__ = [
    "HoldWindow",
    "Timeouts",
    "WorkflowType",
    "RequestType",
    "STATUS_RESERVED",
    "STATUS_CONFIRMED",
    "REPAIRABLE_ARRAY_FIELDS",
]
