"""
Field-level rules.

Each rule returns a ValidationError describing the problem, or None when
the value is acceptable.  Callers collect the non-None results so a form
reports every bad field at once.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from signup.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
FORMATTING_PATTERN = re.compile(r"[\s\-]")


def required_text(value: str | None, field: str, min_length: int = 1) -> ValidationError | None:
    """Non-empty text of at least ``min_length`` characters after trimming."""
    normalized = (value or "").strip()
    if not normalized:
        return ValidationError(f"{field} is required", field=field)
    if len(normalized) < min_length:
        return ValidationError(
            f"{field} must be at least {min_length} characters",
            field=field,
        )
    return None


def optional_email(value: str | None, field: str = "email") -> ValidationError | None:
    """Empty, or a plausible e-mail address."""
    normalized = (value or "").strip()
    if normalized and not EMAIL_PATTERN.match(normalized):
        return ValidationError("Invalid email address", field=field)
    return None


def digits_in_range(
    value: Any,
    field: str,
    min_length: int,
    max_length: int,
) -> ValidationError | None:
    """Required digit string (spaces/dashes ignored) with a bounded length."""
    normalized = FORMATTING_PATTERN.sub("", str(value or ""))
    if not normalized:
        return ValidationError(f"{field} is required", field=field)
    if not (normalized.isascii() and normalized.isdigit()):
        return ValidationError(f"{field} must contain digits only", field=field)
    if not min_length <= len(normalized) <= max_length:
        return ValidationError(
            f"{field} must be {min_length}-{max_length} digits",
            field=field,
        )
    return None


def to_decimal(value: Any) -> Decimal | None:
    """Parse numbers and numeric strings; None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def positive_amount(value: Any, field: str) -> ValidationError | None:
    """A number strictly greater than zero."""
    amount = to_decimal(value)
    if amount is None:
        return ValidationError(f"{field} is required", field=field)
    if amount <= 0:
        return ValidationError(f"{field} must be greater than 0", field=field)
    return None


def int_in_range(value: Any, field: str, low: int, high: int) -> ValidationError | None:
    """An integer within ``[low, high]``."""
    if value is None or value == "":
        return ValidationError(f"{field} is required", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        return ValidationError(f"{field} must be a whole number", field=field)
    if not low <= number <= high:
        return ValidationError(f"{field} must be between {low} and {high}", field=field)
    return None


def collect(*results: ValidationError | None) -> list[ValidationError]:
    """Drop the passing rules, keep the errors."""
    return [error for error in results if error is not None]
