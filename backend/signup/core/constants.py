"""Shared constants and enums used across the application."""

import re
from enum import StrEnum


class WizardStep(StrEnum):
    """Steps of the policy signup wizard."""

    MAIN_MEMBER = "MAIN_MEMBER"
    CHILDREN = "CHILDREN"
    SPOUSE = "SPOUSE"
    FAMILY = "FAMILY"
    EXTENDED_FAMILY = "EXTENDED_FAMILY"
    BENEFICIARY = "BENEFICIARY"
    PAYMENT = "PAYMENT"
    SUMMARY = "SUMMARY"
    POLICY_DETAILS = "POLICY_DETAILS"
    SUBMITTED = "SUBMITTED"


class WizardLayout(StrEnum):
    """Step layouts: separate spouse/children steps, or one family step."""

    SPLIT = "split"
    COMBINED = "combined"


class SubView(StrEnum):
    """The one add-form that may be open on top of a step."""

    NONE = "NONE"
    ADD_CHILD = "ADD_CHILD"
    ADD_SPOUSE = "ADD_SPOUSE"
    ADD_EXTENDED_FAMILY = "ADD_EXTENDED_FAMILY"
    ADD_BENEFICIARY = "ADD_BENEFICIARY"


class Relationship(StrEnum):
    """Relationship of a dependent to the main member."""

    SPOUSE = "spouse"
    CHILD = "child"
    PARENT = "parent"
    EXTENDED_FAMILY = "extended_family"

    @classmethod
    def _missing_(cls, value):
        # Accept "extended-family", "Extended Family" and "extendedFamily".
        if not isinstance(value, str):
            return None
        text = value.strip()
        if not text.isupper():
            text = re.sub(r"(?<=[a-z])([A-Z])", r"_\1", text)
        normalized = re.sub(r"[\s\-]+", "_", text.lower())
        for member in cls:
            if member.value == normalized:
                return member
        return None


class PaymentMethod(StrEnum):
    """Premium collection methods."""

    BANK = "bank"
    SASSA = "sassa"
    PAY_AT_STORE = "pay_at_store"


class Frequency(StrEnum):
    """Premium payment frequency."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class Gender(StrEnum):
    """Gender encoded in the national ID sequence number."""

    FEMALE = "female"
    MALE = "male"


class PolicyStatus(StrEnum):
    """Status assigned to newly created policies."""

    PENDING = "pending"


class OrchestrationStatus(StrEnum):
    """Overall status of an entity-creation run."""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class StepStatus(StrEnum):
    """Status of an individual creation step."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class NotificationKind(StrEnum):
    """Kinds accepted by the notification collaborator."""

    INFO = "info"
    ERROR = "error"


class APIRequestMethod(StrEnum):
    """HTTP methods used by the transport."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class Endpoint(StrEnum):
    """Backend resource paths."""

    CLIENTS = "/api/clients"
    DEPENDENTS = "/api/dependents"
    PAYMENT_INSTRUMENTS = "/api/bank-details"
    POLICIES = "/api/policies"
    POLICY_DEPENDENTS = "/api/policy-dependents"
    POLICY_TYPES = "/api/policy-types"
    AGENTS = "/api/agents"


BENEFICIARY_RELATIONSHIP = "beneficiary"
