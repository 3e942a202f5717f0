"""Treatment centre lookup by patient location."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from ...constants.workflows import RequestType, WorkflowType
from ...core.config.settings import BookingSettings, get_settings
from ...core.retry import get_gateway_read_retry
from ...gateway.normalizer import normalize
from .models import TreatmentCentre

_NON_DIGITS = re.compile(r"[^0-9]")


def parse_advance_payment(
    value: Union[str, int, float, None], fallback: Optional[float] = None
) -> Optional[float]:
    """
    Read an advance payment published as ``"€ 20"`` or a bare number.

    Args:
        value: Raw AdvPayment value
        fallback: Returned when the value carries no amount

    Returns:
        Amount in major currency units
    """
    if isinstance(value, bool) or value is None:
        return fallback
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else fallback
    digits = _NON_DIGITS.sub("", str(value))
    return float(int(digits)) if digits and int(digits) > 0 else fallback


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_centre(raw: Dict[str, Any]) -> Optional[TreatmentCentre]:
    """Build a TreatmentCentre from a gateway row; rows without an id are dropped."""
    centre_id = raw.get("TrCenterID") or raw.get("TrCentreID")
    if not centre_id:
        return None
    return TreatmentCentre(
        id=int(centre_id),
        name=raw.get("TrCentreName") or "Unknown Centre",
        address=raw.get("Address") or "",
        distance_km=_to_float(raw.get("DistanceKMs")),
        direction=raw.get("Direction") or "",
        advance_payment=parse_advance_payment(raw.get("AdvPayment")),
        latitude=_to_float(raw.get("Latitude")),
        longitude=_to_float(raw.get("Longitude")),
    )


@dataclass
class CentreListing:
    """Centres near the patient plus the default advance payment."""

    centres: List[TreatmentCentre] = field(default_factory=list)
    advance_payment: float = 35.0

    def find(self, centre_id: int) -> Optional[TreatmentCentre]:
        for centre in self.centres:
            if centre.id == centre_id:
                return centre
        return None


class TreatmentCentreDirectory:
    """Fetches treatment centres for a pair of coordinates."""

    def __init__(self, gateway, settings: Optional[BookingSettings] = None, retry_attempts: int = 3):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.retry_attempts = retry_attempts

    async def fetch(self, latitude: float, longitude: float) -> CentreListing:
        """
        Load the centres closest to a location.

        Returns:
            CentreListing; empty when the gateway knows no centres nearby

        Raises:
            GatewayError: If the gateway is unreachable after retries
            MalformedResponse: If the response cannot be decoded
        """
        retrying = get_gateway_read_retry(attempts=self.retry_attempts)
        payload = await retrying(self._request)(
            {
                "workflowtype": WorkflowType.TREATMENT_CENTRES,
                "type": RequestType.GET_TREATMENT_CENTRES,
                "latitude": latitude,
                "longitude": longitude,
            }
        )

        default_fee = self.settings.default_consultation_fee
        if payload is None:
            logger.warning("Empty treatment centre response")
            return CentreListing(advance_payment=default_fee)

        record = normalize(payload, expected_keys=("TrCentres",))
        centres = [
            centre
            for centre in (parse_centre(row) for row in record.get("TrCentres") or [])
            if centre is not None
        ]

        adv = record.get("AdvPayment")
        if isinstance(adv, dict):
            adv = adv.get("AdvPayment")
        advance_payment = parse_advance_payment(adv, fallback=default_fee)

        logger.info(
            f"Found {len(centres)} treatment centres near ({latitude}, {longitude}), "
            f"advance payment {advance_payment}"
        )
        return CentreListing(centres=centres, advance_payment=advance_payment)

    async def _request(self, payload: Dict[str, Any]) -> Any:
        return await self.gateway.post_json(payload)
