"""
Domain business rules for the policy signup.

Phone normalization, relationship caps, the beneficiary percentage
rule, payment-method-specific required fields and default coverage.
Limits and coverage are passed in (see ``settings.relationship_limits``);
nothing here hard-codes a cap.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import fields as dataclass_fields
from decimal import Decimal
from typing import Any

from signup.core.constants import PaymentMethod, Relationship
from signup.errors import BusinessRuleViolation, ValidationError
from signup.validation.field_rules import (
    collect,
    digits_in_range,
    int_in_range,
    required_text,
    to_decimal,
)
from signup.wizard.records import INSTRUMENT_TYPES, PaymentInstrument

PHONE_FORMATTING = re.compile(r"[\s\-.()]")
SIGNIFICANT_PHONE_DIGITS = 9
COUNTRY_CODE = "27"
FULL_PERCENTAGE = Decimal("100")
ACCOUNT_TYPES = frozenset({"savings", "cheque", "transmission"})

# Parents are capped together with the rest of the extended family
CAP_CATEGORIES: dict[Relationship, str] = {
    Relationship.SPOUSE: "spouse",
    Relationship.CHILD: "child",
    Relationship.PARENT: "extended_family",
    Relationship.EXTENDED_FAMILY: "extended_family",
}

REQUIRED_PAYMENT_FIELDS: dict[PaymentMethod, frozenset[str]] = {
    method: frozenset(f.name for f in dataclass_fields(instrument_type))
    for method, instrument_type in INSTRUMENT_TYPES.items()
}


# ─── Phone ─────────────────────────────────────────────

def normalize_phone(raw: str | None) -> str | None:
    """
    Normalize a local mobile/landline number to ``+27XXXXXXXXX``.

    Accepts ``0XXXXXXXXX``, ``27XXXXXXXXX`` and ``+27XXXXXXXXX`` with any
    spaces, dashes, dots or parentheses.  Returns None when the number
    does not have exactly 9 significant digits after the prefix.
    """
    if not raw:
        return None
    cleaned = PHONE_FORMATTING.sub("", raw.strip())

    if cleaned.startswith("+"):
        if not cleaned.startswith("+" + COUNTRY_CODE):
            return None
        significant = cleaned[1 + len(COUNTRY_CODE):]
    elif cleaned.startswith(COUNTRY_CODE) and len(cleaned) == len(COUNTRY_CODE) + SIGNIFICANT_PHONE_DIGITS:
        significant = cleaned[len(COUNTRY_CODE):]
    elif cleaned.startswith("0"):
        significant = cleaned[1:]
    else:
        return None

    if len(significant) != SIGNIFICANT_PHONE_DIGITS:
        return None
    if not (significant.isascii() and significant.isdigit()):
        return None
    return f"+{COUNTRY_CODE}{significant}"


# ─── Relationship caps ─────────────────────────────────

def cap_category(relationship: Relationship | str) -> str:
    """Cap category a relationship counts towards."""
    return CAP_CATEGORIES[Relationship(relationship)]


def relationship_counts(dependents: Iterable[Any]) -> dict[str, int]:
    """Count dependents per cap category."""
    counts: dict[str, int] = {category: 0 for category in set(CAP_CATEGORIES.values())}
    for dependent in dependents:
        counts[cap_category(_get(dependent, "relationship"))] += 1
    return counts


def cap_allows(
    relationship: Relationship | str,
    current_counts: Mapping[str, int],
    limits: Mapping[str, int],
) -> bool:
    """
    True when one more dependent of ``relationship`` fits under its cap.

    ``current_counts`` and ``limits`` are keyed by cap category
    (``spouse``, ``child``, ``extended_family``).  A category without a
    configured limit is uncapped.
    """
    category = cap_category(relationship)
    limit = limits.get(category)
    if limit is None:
        return True
    return current_counts.get(category, 0) < limit


def check_cap(
    relationship: Relationship | str,
    current_counts: Mapping[str, int],
    limits: Mapping[str, int],
) -> BusinessRuleViolation | None:
    """``cap_allows`` with a user-facing error."""
    if cap_allows(relationship, current_counts, limits):
        return None
    category = cap_category(relationship)
    label = category.replace("_", " ")
    return BusinessRuleViolation(
        f"Maximum {label} limit reached ({limits[category]} allowed)",
        rule="relationship_cap",
        field="relationship",
        details={"category": category, "limit": limits[category]},
    )


# ─── Beneficiaries ─────────────────────────────────────

def percentage_total(beneficiaries: Iterable[Any]) -> Decimal:
    """Sum of beneficiary percentages (unparseable values count as 0)."""
    return sum(
        (to_decimal(_get(b, "percentage")) or Decimal("0") for b in beneficiaries),
        Decimal("0"),
    )


def percentage_sum_valid(beneficiaries: Iterable[Any]) -> bool:
    """True for no beneficiaries, or percentages summing to exactly 100."""
    items = list(beneficiaries)
    if not items:
        return True
    return percentage_total(items) == FULL_PERCENTAGE


# ─── Payment ───────────────────────────────────────────

def required_fields_for(payment_method: PaymentMethod | str) -> frozenset[str]:
    """Mandatory field names of the instrument variant for ``payment_method``."""
    return REQUIRED_PAYMENT_FIELDS[PaymentMethod(payment_method)]


def validate_payment_instrument(
    instrument: PaymentInstrument | None,
    selected_method: PaymentMethod | str | None = None,
) -> list[ValidationError]:
    """Check that every required field of the active variant is present and valid."""
    if instrument is None:
        return [BusinessRuleViolation(
            "Payment details are required",
            rule="payment_fields",
            field="payment_method",
        )]

    method = instrument.method
    if selected_method is not None and PaymentMethod(selected_method) != method:
        return [BusinessRuleViolation(
            f"Payment details do not match the selected method '{selected_method}'",
            rule="payment_method_mismatch",
            field="payment_method",
        )]

    if method == PaymentMethod.BANK:
        account_type = (instrument.account_type or "").strip().lower()
        errors = collect(
            required_text(instrument.bank_name, "bank_name", min_length=2),
            digits_in_range(instrument.account_number, "account_number", 5, 20),
            required_text(instrument.account_type, "account_type"),
            digits_in_range(instrument.branch_code, "branch_code", 4, 8),
            required_text(instrument.account_holder, "account_holder", min_length=2),
            int_in_range(instrument.debit_day, "debit_day", 1, 31),
        )
        if account_type and account_type not in ACCOUNT_TYPES:
            errors.append(ValidationError(
                f"account_type must be one of {', '.join(sorted(ACCOUNT_TYPES))}",
                field="account_type",
            ))
    elif method == PaymentMethod.SASSA:
        errors = collect(digits_in_range(instrument.grant_number, "grant_number", 5, 20))
    else:
        errors = collect(required_text(instrument.preferred_store, "preferred_store"))

    return [
        BusinessRuleViolation(e.message, rule="payment_fields", field=e.field)
        for e in errors
    ]


# ─── Coverage ──────────────────────────────────────────

def default_coverage_for(
    relationship: Relationship | str,
    coverage: Mapping[str, int],
) -> int:
    """Default coverage percentage for a dependent's relationship."""
    return coverage[cap_category(relationship)]


def _get(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)
