"""Wizard request/response schemas."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, RootModel

from signup.core.constants import Relationship, SubView, WizardStep


# ─── Requests ─────────────────────────────────────────────

class ApplicantRequest(BaseModel):
    """Main-member form."""

    name: str = ""
    id_number: str = ""
    phone: str = ""
    address: str = ""
    email: str = ""


class DependentRequest(BaseModel):
    """Add-dependent form; relationship defaults to the open sub-view's."""

    name: str = ""
    relationship: Relationship | None = None
    id_number: str | None = None
    date_of_birth: date | None = None


class BeneficiaryRequest(BaseModel):
    name: str = ""
    relationship: str = ""
    percentage: Decimal | None = None
    id_number: str | None = None
    phone: str | None = None
    address: str | None = None


class BankPaymentRequest(BaseModel):
    method: Literal["bank"] = "bank"
    bank_name: str = ""
    account_number: str = ""
    account_type: str = ""
    branch_code: str = ""
    account_holder: str = ""
    debit_day: int | None = None


class SassaPaymentRequest(BaseModel):
    method: Literal["sassa"] = "sassa"
    grant_number: str = ""


class PayAtStorePaymentRequest(BaseModel):
    method: Literal["pay_at_store"] = "pay_at_store"
    preferred_store: str = ""


class PaymentRequest(RootModel[Annotated[
    Union[BankPaymentRequest, SassaPaymentRequest, PayAtStorePaymentRequest],
    Field(discriminator="method"),
]]):
    """Exactly one payment variant, selected by ``method``."""


class PolicyRequest(BaseModel):
    policy_type_id: int | None = None
    premium: Decimal | None = None
    frequency: str | None = None
    cover_amount: Decimal | None = None
    agent_id: int | None = None
    policy_number: str = ""


class SubViewRequest(BaseModel):
    view: SubView


# ─── Responses ────────────────────────────────────────────

class DependentView(BaseModel):
    index: int
    name: str
    relationship: Relationship
    id_number: str | None = None
    date_of_birth: date | None = None


class BeneficiaryView(BaseModel):
    index: int
    name: str
    relationship: str
    percentage: Decimal
    id_number: str | None = None


class WizardStateResponse(BaseModel):
    """Everything the UI needs to render the current step."""

    session_id: str
    current_state: WizardStep
    steps: list[WizardStep]
    sub_view: SubView
    can_advance: bool
    can_go_back: bool
    can_skip: bool
    progress_percent: int
    relationship_counts: dict[str, int]
    beneficiary_percentage_total: Decimal
    dependents: list[DependentView] = Field(default_factory=list)
    beneficiaries: list[BeneficiaryView] = Field(default_factory=list)
    field_errors: list[dict[str, Any]] = Field(default_factory=list)
    created_ids: dict[str, Any] = Field(default_factory=dict)


class QuoteResponse(BaseModel):
    policy_type_id: int
    cover_amount: Decimal | None = None
    premium: Decimal | None = None
