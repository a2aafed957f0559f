"""
Input checks shared by the BondLedger services.

Every failure raises ValidationIssue carrying the offending field and a
machine-readable error_type.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional, Sequence

from core.config import MAX_METADATA_BYTES
from core.errors import ValidationIssue


def _fail(field: str, message: str, error_type: str) -> None:
    raise ValidationIssue(f"{field} {message}", field=field, error_type=error_type)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_length(value: str, field: str, max_len: int) -> None:
    if len(value) > max_len:
        _fail(field, f"is longer than {max_len} characters", "max_length")


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        _fail(field, "is required and may not be blank", "required")
    _check_length(value, field, max_len)


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        _fail(field, "must be text", "invalid_type")
    _check_length(value, field, max_len)


def validate_int_range(value: int, field: str, min_value: int, max_value: int) -> None:
    if not _is_int(value):
        _fail(field, "must be an integer", "invalid_type")
    if not min_value <= value <= max_value:
        _fail(field, f"must be between {min_value} and {max_value}", "out_of_range")


def validate_limit(value: int, field: str, max_value: int) -> None:
    validate_int_range(value, field, 1, max_value)


def validate_page(value: int, field: str = "page") -> None:
    if not _is_int(value) or value < 1:
        _fail(field, "must be 1 or greater", "out_of_range")


def validate_id(value: int, field: str) -> None:
    if not _is_int(value) or value <= 0:
        _fail(field, "must be a positive integer id", "invalid_id")


def validate_choice(value: Optional[str], field: str, choices: Sequence[str], required: bool = True) -> None:
    if value is None:
        if required:
            _fail(field, "is required", "required")
        return
    if value not in choices:
        _fail(field, f"must be one of: {', '.join(choices)}", "invalid_value")


def validate_list(values: Optional[Sequence], field: str, max_items: int) -> None:
    if values is not None and len(values) > max_items:
        _fail(field, f"holds more than {max_items} items", "max_items")


def validate_string_list(
    values: Optional[Sequence[str]],
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    validate_list(values, field, max_items)
    for item in values or ():
        if not isinstance(item, str):
            _fail(field, "may only contain text items", "invalid_type")
        _check_length(item, field, max_item_length)


def validate_metadata(metadata: Optional[dict], field: str) -> None:
    """Free-form JSON blobs (evidence metadata, certificate design) are size-capped."""
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        _fail(field, "must be an object", "invalid_type")
    try:
        encoded = json.dumps(metadata)
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(
            f"{field} must be JSON-serializable", field=field, error_type="invalid_type"
        ) from exc
    if len(encoded) > MAX_METADATA_BYTES:
        _fail(field, f"is larger than {MAX_METADATA_BYTES} bytes", "max_bytes")


def validate_optional_datetime(value: Optional[datetime], field: str) -> None:
    if value is not None and not isinstance(value, datetime):
        _fail(field, "must be a datetime", "invalid_type")


def normalize_email(email: str) -> str:
    validate_required_text(email, "email", 255)
    value = email.strip().lower()
    local, at, domain = value.partition("@")
    if not at or not local or "." not in domain:
        _fail("email", "must be a valid address", "invalid_value")
    return value
