"""Workflow gateway request identifiers."""

from typing import Final


class WorkflowType:
    """Values of the ``workflowtype`` routing field."""

    SAVE_PATIENT_DETAILS: Final[str] = "save_patient_details"
    BOOK_APPOINTMENT: Final[str] = "book_appointment"
    APPOINTMENT_SLOTS: Final[str] = "appointment_slots"
    TREATMENT_CENTRES: Final[str] = "treatment_centres"
    LOOKUPS: Final[str] = "lookups"
    STRIPE: Final[str] = "stripe"
    SEND_CONFIRMATION_EMAILS: Final[str] = "send_confirmation_emails"
    TEST_CONNECTION: Final[str] = "test_connection"


class RequestType:
    """Values of the secondary ``type`` field."""

    GET_SLOTS: Final[str] = "get_slots"
    RELEASE_SLOT: Final[str] = "release_slot"
    GET_TREATMENT_CENTRES: Final[str] = "get_treatment_centres"
    CREATE_PAYMENT_INTENT: Final[str] = "create_payment_intent"
    PING: Final[str] = "ping"


# Reservation status values echoed by the gateway
STATUS_RESERVED: Final[str] = "Reserved"
STATUS_CONFIRMED: Final[str] = "Confirmed"

# Arrays the lookups workflow sometimes emits broken
REPAIRABLE_ARRAY_FIELDS: Final[tuple] = ("Doctors", "Surgeries")
