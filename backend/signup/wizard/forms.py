"""
Form parsing for the wizard steps.

Each ``parse_*`` function accepts either a record instance or a mapping
with snake_case keys, and returns ``(record, errors)``.  The record is
None whenever errors is non-empty, so a failed form never leaks a
half-built record into the session.

Dates of birth are derived from a valid national ID; an explicit date
is only used when no ID is given.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from datetime import date
from decimal import Decimal
from typing import Any

from signup.core.constants import Frequency, PaymentMethod, Relationship
from signup.errors import DecodeError, ValidationError
from signup.validation import identity
from signup.validation.business_rules import normalize_phone
from signup.validation.field_rules import (
    collect,
    optional_email,
    positive_amount,
    required_text,
    to_decimal,
)
from signup.wizard.records import (
    INSTRUMENT_TYPES,
    Applicant,
    Beneficiary,
    Dependent,
    PaymentInstrument,
    PolicyDraft,
)

MIN_NAME_LENGTH = 2
MAX_PERCENTAGE = Decimal("100")

FormErrors = list[ValidationError]


def _value(data: Any, name: str, default: Any = None) -> Any:
    if isinstance(data, Mapping):
        return data.get(name, default)
    return getattr(data, name, default)


def _text(data: Any, name: str) -> str:
    value = _value(data, name)
    if value is None:
        return ""
    return str(value).strip()


def _date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _decode_optional_id(
    id_number: str,
    errors: FormErrors,
    today: date | None,
) -> identity.IdentityFacts | None:
    """Decode a present ID, recording a field error when it is invalid."""
    if not id_number:
        return None
    try:
        return identity.decode(id_number, today)
    except DecodeError as exc:
        errors.append(exc)
        return None


# ─── Applicant ─────────────────────────────────────────

def parse_applicant(data: Any, today: date | None = None) -> tuple[Applicant | None, FormErrors]:
    """Main-member form: name, valid ID, valid phone, address, optional email."""
    if data is None:
        return None, [ValidationError("Applicant details are required", field="applicant")]

    name = _text(data, "name")
    id_number = _text(data, "id_number")
    address = _text(data, "address")
    email = _text(data, "email")

    errors = collect(
        required_text(name, "name", min_length=MIN_NAME_LENGTH),
        required_text(id_number, "id_number"),
        required_text(address, "address"),
        optional_email(email),
    )
    facts = _decode_optional_id(id_number, errors, today)

    phone = normalize_phone(_text(data, "phone"))
    if phone is None:
        errors.append(ValidationError(
            "Enter a valid phone number (e.g. 082 123 4567)",
            field="phone",
        ))

    date_of_birth = facts.date_of_birth if facts else _date(_value(data, "date_of_birth"))
    if date_of_birth is None:
        errors.append(ValidationError("date_of_birth is required", field="date_of_birth"))

    if errors:
        return None, errors
    return Applicant(
        name=name,
        id_number=id_number,
        phone=phone,
        address=address,
        email=email,
        date_of_birth=date_of_birth,
        gender=facts.gender if facts else None,
        citizen=facts.citizen if facts else None,
    ), []


# ─── Dependents and beneficiaries ─────────────────────

def parse_dependent(
    data: Any,
    relationship: Relationship | str | None = None,
    today: date | None = None,
) -> tuple[Dependent | None, FormErrors]:
    """Add-dependent form; ``relationship`` overrides the form's own value."""
    name = _text(data, "name")
    id_number = _text(data, "id_number")
    errors = collect(required_text(name, "name", min_length=MIN_NAME_LENGTH))

    raw_relationship = relationship if relationship is not None else _value(data, "relationship")
    parsed_relationship: Relationship | None = None
    try:
        parsed_relationship = Relationship(raw_relationship)
    except ValueError:
        errors.append(ValidationError(
            f"Unknown relationship '{raw_relationship}'",
            field="relationship",
        ))

    facts = _decode_optional_id(id_number, errors, today)
    if errors:
        return None, errors
    return Dependent(
        name=name,
        relationship=parsed_relationship,
        id_number=id_number or None,
        date_of_birth=facts.date_of_birth if facts else _date(_value(data, "date_of_birth")),
    ), []


def parse_beneficiary(data: Any, today: date | None = None) -> tuple[Beneficiary | None, FormErrors]:
    """Add-beneficiary form; the percentage must be in (0, 100]."""
    name = _text(data, "name")
    relationship = _text(data, "relationship")
    id_number = _text(data, "id_number")
    raw_phone = _text(data, "phone")

    errors = collect(
        required_text(name, "name", min_length=MIN_NAME_LENGTH),
        required_text(relationship, "relationship"),
    )

    percentage = to_decimal(_value(data, "percentage"))
    if percentage is None or not Decimal("0") < percentage <= MAX_PERCENTAGE:
        errors.append(ValidationError(
            "percentage must be greater than 0 and at most 100",
            field="percentage",
        ))

    phone = None
    if raw_phone:
        phone = normalize_phone(raw_phone)
        if phone is None:
            errors.append(ValidationError("Invalid phone number", field="phone"))

    facts = _decode_optional_id(id_number, errors, today)
    if errors:
        return None, errors
    return Beneficiary(
        name=name,
        relationship=relationship,
        percentage=percentage,
        id_number=id_number or None,
        date_of_birth=facts.date_of_birth if facts else _date(_value(data, "date_of_birth")),
        phone=phone,
        address=_text(data, "address") or None,
    ), []


# ─── Payment ───────────────────────────────────────────

def parse_payment(data: Any) -> tuple[PaymentInstrument | None, FormErrors]:
    """
    Build the instrument variant named by ``method``.

    Only the fields of the active variant are read; fields belonging to
    other methods are ignored.  Field validity is checked separately by
    ``validate_payment_instrument``.
    """
    if data is None:
        return None, [ValidationError("Select a payment method", field="method")]
    if isinstance(data, tuple(INSTRUMENT_TYPES.values())):
        return data, []

    try:
        method = PaymentMethod(_value(data, "method"))
    except ValueError:
        return None, [ValidationError("Select a payment method", field="method")]

    instrument_type = INSTRUMENT_TYPES[method]
    values: dict[str, Any] = {}
    for f in fields(instrument_type):
        raw = _value(data, f.name)
        if raw is None:
            continue
        values[f.name] = _optional_int(raw) if f.name == "debit_day" else str(raw).strip()
    return instrument_type(**values), []


# ─── Policy ────────────────────────────────────────────

def parse_policy(data: Any) -> tuple[PolicyDraft | None, FormErrors]:
    """Policy form: type, premium > 0 and frequency are required."""
    if data is None:
        return None, [ValidationError("Policy details are required", field="policy")]

    errors: FormErrors = []

    policy_type_id = _optional_int(_value(data, "policy_type_id"))
    if policy_type_id is None:
        errors.append(ValidationError("Select a policy type", field="policy_type_id"))

    premium_error = positive_amount(_value(data, "premium"), "premium")
    if premium_error:
        errors.append(premium_error)

    frequency: Frequency | None = None
    try:
        frequency = Frequency(_value(data, "frequency"))
    except ValueError:
        errors.append(ValidationError("Select a payment frequency", field="frequency"))

    raw_cover = _value(data, "cover_amount")
    cover_amount = None
    if raw_cover not in (None, ""):
        cover_error = positive_amount(raw_cover, "cover_amount")
        if cover_error:
            errors.append(cover_error)
        else:
            cover_amount = to_decimal(raw_cover)

    raw_agent = _value(data, "agent_id")
    agent_id = _optional_int(raw_agent)
    if raw_agent not in (None, "") and agent_id is None:
        errors.append(ValidationError("agent_id must be a whole number", field="agent_id"))

    if errors:
        return None, errors
    return PolicyDraft(
        policy_type_id=policy_type_id,
        premium=to_decimal(_value(data, "premium")),
        frequency=frequency,
        cover_amount=cover_amount,
        agent_id=agent_id,
        policy_number=_text(data, "policy_number"),
    ), []
