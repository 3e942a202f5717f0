"""Free-text reason-for-contact search.

A newer search cancels the one still in flight; only the latest search may
change the patient's complaint selection.
"""

import asyncio
from typing import Any, List, Optional

from loguru import logger

from ...constants.workflows import WorkflowType
from ...core.exceptions import GatewayError, MalformedResponse

MIN_QUERY_LENGTH = 3


def extract_suggested_complaints(payload: Any) -> List[dict]:
    """Pull complaint rows out of the three response layouts the search returns."""
    if isinstance(payload, dict):
        message = payload.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, dict) and isinstance(content.get("Complaints"), list):
            return content["Complaints"]
        if isinstance(payload.get("Complaints"), list):
            return payload["Complaints"]
        return []
    if isinstance(payload, list):
        return payload
    return []


def merge_selections(current: List[str], suggested_ids: List[str]) -> List[str]:
    """Append suggested ids that are not already selected, keeping order."""
    merged = list(current)
    for complaint_id in suggested_ids:
        if complaint_id not in merged:
            merged.append(complaint_id)
    return merged


class ReasonSearch:
    """Debounced, cancellable complaint suggestion search."""

    def __init__(self, gateway):
        self.gateway = gateway
        self._pending: Optional["asyncio.Task[Any]"] = None

    async def suggest(self, text: str) -> Optional[List[str]]:
        """
        Ask the gateway which complaints match a free-text reason.

        Args:
            text: Reason typed by the patient

        Returns:
            Suggested ComplaintID strings; an empty list for short or failed
            searches; None when a newer search superseded this one
        """
        query = (text or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return []

        if self._pending is not None and not self._pending.done():
            logger.debug("Cancelling superseded reason search")
            self._pending.cancel()

        task = asyncio.ensure_future(
            self.gateway.post_json({"workflowtype": WorkflowType.LOOKUPS, "reasoninput": query})
        )
        self._pending = task
        try:
            payload = await task
        except asyncio.CancelledError:
            if self._pending is not task:
                logger.debug(f"Reason search for {query!r} superseded")
                return None
            raise
        except (GatewayError, MalformedResponse) as e:
            logger.warning(f"Reason search failed: {e}")
            return []
        finally:
            if self._pending is task:
                self._pending = None

        suggested = []
        for row in extract_suggested_complaints(payload):
            if isinstance(row, dict) and row.get("ComplaintID") is not None:
                suggested.append(str(row["ComplaintID"]))
        logger.info(f"Reason search suggested {len(suggested)} complaints")
        return suggested

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
