"""Decode the workflow gateway's heterogeneous response shapes.

The gateway wraps the same logical record in several envelopes depending on
which workflow node produced it::

    [{"data": "<json string>"}]      ARRAY_NESTED_STRING
    [{...record...}]                 ARRAY_DIRECT
    {"data": "<json string>"}        NESTED_STRING
    {"data": {...record...}}         NESTED_OBJECT
    {...record...}                   DIRECT

Nested JSON strings are sometimes emitted with stray commas or an unclosed
array, so every parse failure gets one pass through :func:`repair_json`
before the payload is rejected.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..constants.workflows import REPAIRABLE_ARRAY_FIELDS
from ..core.exceptions import MalformedResponse
from ..core.result import Failure, Result, Success

logger = logging.getLogger(__name__)

_DOUBLE_COMMA = re.compile(r",\s*,")
_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")


class PayloadShape(str, Enum):
    """Envelope a gateway payload arrived in."""

    ARRAY_NESTED_STRING = "array_nested_string"
    ARRAY_DIRECT = "array_direct"
    NESTED_STRING = "nested_string"
    NESTED_OBJECT = "nested_object"
    DIRECT = "direct"


def repair_json(text: str, array_fields: Sequence[str] = REPAIRABLE_ARRAY_FIELDS) -> str:
    """
    Sanitize a JSON-like string so it has a chance of parsing.

    Pure string transformation; it never parses.

    Args:
        text: Raw text that failed to parse
        array_fields: Keys whose array value may be missing or left open

    Returns:
        Repaired text
    """
    repaired = _DOUBLE_COMMA.sub(",", text)
    repaired = _TRAILING_COMMA_OBJECT.sub("}", repaired)
    repaired = _TRAILING_COMMA_ARRAY.sub("]", repaired)

    for field in array_fields:
        # "Doctors":, -> "Doctors":[],
        repaired = re.sub(rf'"{field}":\s*,', f'"{field}":[],', repaired)

    # An array left open right before the next known array field
    for current, following in zip(array_fields, array_fields[1:]):
        if re.search(rf'"{current}":\s*\[', repaired) and not re.search(
            rf'\]\s*,\s*"{following}"', repaired
        ):
            repaired = re.sub(
                rf'("{current}":\s*\[.*?),\s*("{following}")',
                r"\1],\2",
                repaired,
                count=1,
                flags=re.DOTALL,
            )

    return repaired


def parse_json_text(text: str, array_fields: Sequence[str] = REPAIRABLE_ARRAY_FIELDS) -> Any:
    """
    Parse JSON text, retrying once after :func:`repair_json`.

    Args:
        text: JSON text
        array_fields: Passed through to the repair step

    Returns:
        Parsed JSON value

    Raises:
        MalformedResponse: If the text does not parse even after repair
    """
    try:
        return json.loads(text)
    except (TypeError, ValueError) as first_error:
        logger.warning(f"Gateway JSON did not parse ({first_error}), attempting repair")

    try:
        value = json.loads(repair_json(text, array_fields))
    except (TypeError, ValueError) as e:
        raise MalformedResponse(f"Unparseable gateway payload: {e}", raw=text) from e

    logger.info("Gateway JSON parsed after repair")
    return value


def parse_body(text: Optional[str]) -> Any:
    """
    Parse a raw response body.

    Args:
        text: Response body text

    Returns:
        Parsed JSON, or None for an empty body. Whether an empty body is an
        implicit success is the caller's decision.

    Raises:
        MalformedResponse: If the body is not JSON even after repair
    """
    if text is None or not text.strip():
        return None
    return parse_json_text(text)


def _has_expected_keys(candidate: Dict[str, Any], expected_keys: Iterable[str]) -> bool:
    keys = list(expected_keys)
    return not keys or any(key in candidate for key in keys)


def classify(payload: Any, expected_keys: Iterable[str] = ()) -> PayloadShape:
    """
    Determine which envelope a payload arrived in.

    Args:
        payload: Parsed JSON value
        expected_keys: Top-level keys that identify a bare canonical record

    Returns:
        The matching PayloadShape, checked in priority order

    Raises:
        MalformedResponse: If no shape matches
    """
    if isinstance(payload, list):
        if payload and isinstance(payload[0], dict):
            if isinstance(payload[0].get("data"), str):
                return PayloadShape.ARRAY_NESTED_STRING
            return PayloadShape.ARRAY_DIRECT
        raise MalformedResponse("Gateway returned an empty or non-object array")

    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, str):
            return PayloadShape.NESTED_STRING
        if isinstance(data, dict):
            return PayloadShape.NESTED_OBJECT
        if _has_expected_keys(payload, expected_keys):
            return PayloadShape.DIRECT

    raise MalformedResponse(f"Unrecognized gateway payload of type {type(payload).__name__}")


def _unwrap(payload: Any, shape: PayloadShape) -> Any:
    if shape is PayloadShape.ARRAY_NESTED_STRING:
        return parse_json_text(payload[0]["data"])
    if shape is PayloadShape.ARRAY_DIRECT:
        first = payload[0]
        # Some nodes still wrap the record in a data object inside the array
        return first["data"] if isinstance(first.get("data"), dict) else first
    if shape is PayloadShape.NESTED_STRING:
        return parse_json_text(payload["data"])
    if shape is PayloadShape.NESTED_OBJECT:
        return payload["data"]
    return payload


def decode(payload: Any, expected_keys: Iterable[str] = ()) -> Result[Dict[str, Any], str]:
    """
    Decode a payload into its canonical record without raising.

    Args:
        payload: Parsed JSON value (see module docstring for accepted shapes)
        expected_keys: Top-level keys that identify a bare canonical record

    Returns:
        Success with the canonical dict, or Failure carrying MalformedResponse
    """
    expected = tuple(expected_keys)
    try:
        shape = classify(payload, expected)
        record = _unwrap(payload, shape)
    except MalformedResponse as e:
        return Failure(e.message, e)

    if isinstance(record, list) and record and isinstance(record[0], dict):
        record = record[0]
    if not isinstance(record, dict):
        error = MalformedResponse(f"Decoded {shape.value} payload is not an object")
        return Failure(error.message, error)

    logger.debug(f"Normalized gateway payload from shape {shape.value}")
    return Success(record)


def normalize(payload: Any, expected_keys: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Decode a payload into its canonical record.

    Raises:
        MalformedResponse: If the payload matches no known shape
    """
    return decode(payload, expected_keys).unwrap()


def normalize_list(payload: Any) -> List[Any]:
    """
    Extract a list of records (slot lists and the like).

    Accepted: a bare array, ``{"data": [...]}`` and ``{"data": "<json array>"}``.

    Raises:
        MalformedResponse: If no list can be extracted
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, str):
            data = parse_json_text(data)
        if isinstance(data, list):
            return data
    raise MalformedResponse("Expected a list of records from the gateway")


def require_fields(record: Dict[str, Any], *names: str) -> List[str]:
    """
    Return the names of fields that are absent or empty in a record.

    Zero and empty strings count as missing: the gateway uses both as
    "not assigned".
    """
    return [name for name in names if not record.get(name)]
