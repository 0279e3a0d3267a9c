"""Build backend request payloads (camelCase JSON) from session records."""

from __future__ import annotations

import random
from dataclasses import fields
from datetime import date
from decimal import Decimal
from typing import Any

from signup.core.config import settings
from signup.core.constants import BENEFICIARY_RELATIONSHIP, PolicyStatus
from signup.wizard.records import (
    Applicant,
    Beneficiary,
    Dependent,
    PaymentInstrument,
    PolicyDraft,
)


def to_camel(name: str) -> str:
    """``account_number`` -> ``accountNumber``."""
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _json_value(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def generate_policy_number(today: date | None = None, prefix: str | None = None) -> str:
    """``<prefix>-<YYYY>-<6 random digits>``, e.g. ``CS-2026-483920``."""
    year = (today or date.today()).year
    return f"{prefix or settings.POLICY_NUMBER_PREFIX}-{year}-{random.randint(100000, 999999)}"


def build_client_payload(applicant: Applicant) -> dict[str, Any]:
    return {
        "name": applicant.name,
        "idNumber": applicant.id_number,
        "dateOfBirth": _json_value(applicant.date_of_birth),
        "gender": _json_value(applicant.gender),
        "phone": applicant.phone,
        "email": applicant.email or None,
        "address": applicant.address,
    }


def build_dependent_payload(dependent: Dependent, client_id: Any) -> dict[str, Any]:
    return {
        "clientId": client_id,
        "name": dependent.name,
        "idNumber": dependent.id_number or None,
        "dateOfBirth": _json_value(dependent.date_of_birth),
        "relationship": str(dependent.relationship),
    }


def build_beneficiary_payload(beneficiary: Beneficiary, client_id: Any) -> dict[str, Any]:
    """Beneficiaries are stored as dependents tagged with the beneficiary relationship."""
    return {
        "clientId": client_id,
        "name": beneficiary.name,
        "idNumber": beneficiary.id_number or None,
        "dateOfBirth": _json_value(beneficiary.date_of_birth),
        "relationship": BENEFICIARY_RELATIONSHIP,
    }


def build_payment_payload(instrument: PaymentInstrument, client_id: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "clientId": client_id,
        "method": str(instrument.method),
        "isDefault": True,
    }
    for f in fields(instrument):
        payload[to_camel(f.name)] = _json_value(getattr(instrument, f.name))
    return payload


def build_policy_payload(policy: PolicyDraft, client_id: Any) -> dict[str, Any]:
    return {
        "clientId": client_id,
        "policyNumber": policy.policy_number,
        "policyTypeId": policy.policy_type_id,
        "premium": _json_value(policy.premium),
        "frequency": _json_value(policy.frequency),
        "coverAmount": _json_value(policy.cover_amount),
        "agentId": policy.agent_id,
        "status": str(PolicyStatus.PENDING),
    }


def build_policy_dependent_payload(
    policy_id: Any,
    dependent_id: Any,
    coverage_percentage: int | Decimal,
) -> dict[str, Any]:
    return {
        "policyId": policy_id,
        "dependentId": dependent_id,
        "coveragePercentage": _json_value(coverage_percentage),
    }


def extract_id(response: Any) -> Any:
    """Server ID from a create response: ``{"id": ...}`` or ``{"data": {"id": ...}}``."""
    if not isinstance(response, dict):
        return None
    if response.get("id") is not None:
        return response["id"]
    data = response.get("data")
    if isinstance(data, dict):
        return data.get("id")
    return None
