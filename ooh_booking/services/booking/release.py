"""Best-effort release of a held slot."""

from typing import Any, Optional

from loguru import logger

from ...constants.workflows import RequestType, WorkflowType
from ...core.exceptions import BookingFlowError, ReleaseError
from ...core.tasks import BackgroundTasks
from ...gateway.normalizer import classify, decode, parse_json_text


class ReleaseDispatcher:
    """
    Frees a slot the patient no longer holds.

    Release is cleanup, not part of the patient's own flow: every failure is
    logged and swallowed.
    """

    def __init__(self, gateway, tasks: Optional[BackgroundTasks] = None):
        """
        Initialize release dispatcher.

        Args:
            gateway: WorkflowGatewayClient (or anything with ``post``)
            tasks: Registry for fire-and-forget releases
        """
        self.gateway = gateway
        self.tasks = tasks or BackgroundTasks()

    async def release(self, visit_id: int, appointment_id: int) -> bool:
        """
        Ask the gateway to free a held slot.

        Args:
            visit_id: Visit the hold belongs to
            appointment_id: Held appointment

        Returns:
            True if the gateway accepted the request. Never raises.
        """
        payload = {
            "workflowtype": WorkflowType.APPOINTMENT_SLOTS,
            "type": RequestType.RELEASE_SLOT,
            "visitID": visit_id,
            "appointmentID": appointment_id,
        }
        logger.info(f"Releasing slot: visit {visit_id}, appointment {appointment_id}")

        try:
            text = await self.gateway.post(payload)
        except BookingFlowError as e:
            error = ReleaseError(f"Failed to release slot {appointment_id}: {e.message}")
            logger.warning(f"{error.message} ({e.__class__.__name__})")
            return False
        except Exception as e:
            logger.error(f"Unexpected error releasing slot {appointment_id}: {e}", exc_info=True)
            return False

        self._log_response(text)
        return True

    def dispatch(self, visit_id: int, appointment_id: int):
        """Schedule a release without waiting for it."""
        return self.tasks.spawn(
            self.release(visit_id, appointment_id), name=f"release-slot-{appointment_id}"
        )

    @staticmethod
    def _log_response(text: Optional[str]) -> None:
        if not text or not text.strip():
            logger.info("Slot released (empty response)")
            return

        try:
            payload: Any = parse_json_text(text)
            shape = classify(payload)
        except BookingFlowError:
            logger.info(f"Slot released, response (text): {text[:200]}")
            return

        record = decode(payload).unwrap_or(payload)
        logger.info(f"Slot released, response ({shape.value}): {record!r}")
