"""Workflow gateway transport and response normalization."""

from .client import WorkflowGatewayClient
from .normalizer import (
    PayloadShape,
    classify,
    decode,
    normalize,
    normalize_list,
    parse_body,
    parse_json_text,
    repair_json,
    require_fields,
)

__all__ = [
    "WorkflowGatewayClient",
    "PayloadShape",
    "classify",
    "decode",
    "normalize",
    "normalize_list",
    "parse_body",
    "parse_json_text",
    "repair_json",
    "require_fields",
]
