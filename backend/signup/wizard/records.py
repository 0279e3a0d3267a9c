"""
Records collected by the wizard before anything is persisted.

These are plain dataclasses owned by the session; the submission layer
turns them into backend payloads once the applicant has a server ID.
Dependents and beneficiaries carry a ``local_id`` that stays fixed while
the list around them is re-indexed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import ClassVar, Union

from signup.core.constants import Frequency, Gender, PaymentMethod, Relationship


# ═══════════════════════════════════════════════════════════
#  People
# ═══════════════════════════════════════════════════════════

@dataclass
class Applicant:
    """The main member applying for the policy."""

    name: str
    id_number: str
    phone: str
    address: str
    email: str = ""
    date_of_birth: date | None = None
    gender: Gender | None = None
    citizen: bool | None = None


@dataclass
class Dependent:
    """A person covered by the policy (spouse, child, parent, ...)."""

    name: str
    relationship: Relationship
    id_number: str | None = None
    date_of_birth: date | None = None
    local_id: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False, repr=False)


@dataclass
class Beneficiary:
    """A person receiving a share of the benefit."""

    name: str
    relationship: str
    percentage: Decimal
    id_number: str | None = None
    date_of_birth: date | None = None
    phone: str | None = None
    address: str | None = None
    local_id: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False, repr=False)


# ═══════════════════════════════════════════════════════════
#  Payment instruments: exactly one variant per session
# ═══════════════════════════════════════════════════════════

@dataclass
class BankInstrument:
    """Debit order against a bank account."""

    method: ClassVar[PaymentMethod] = PaymentMethod.BANK

    bank_name: str = ""
    account_number: str = ""
    account_type: str = ""
    branch_code: str = ""
    account_holder: str = ""
    debit_day: int | None = None


@dataclass
class SassaInstrument:
    """Deduction from a social grant payment."""

    method: ClassVar[PaymentMethod] = PaymentMethod.SASSA

    grant_number: str = ""


@dataclass
class PayAtStoreInstrument:
    """Cash payment at a retail store."""

    method: ClassVar[PaymentMethod] = PaymentMethod.PAY_AT_STORE

    preferred_store: str = ""


PaymentInstrument = Union[BankInstrument, SassaInstrument, PayAtStoreInstrument]

INSTRUMENT_TYPES: dict[PaymentMethod, type] = {
    PaymentMethod.BANK: BankInstrument,
    PaymentMethod.SASSA: SassaInstrument,
    PaymentMethod.PAY_AT_STORE: PayAtStoreInstrument,
}


# ═══════════════════════════════════════════════════════════
#  Policy
# ═══════════════════════════════════════════════════════════

@dataclass
class PolicyDraft:
    """Policy details captured on the last step."""

    policy_type_id: int | None = None
    premium: Decimal | None = None
    frequency: Frequency | None = None
    cover_amount: Decimal | None = None
    agent_id: int | None = None
    policy_number: str = ""
