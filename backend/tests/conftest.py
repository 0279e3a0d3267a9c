"""
Test configuration and fixtures for the policy signup backend.

Collaborators are replaced with in-memory fakes: the transport records
every call and can be told to fail specific steps, the notifier records
every notification.
"""

import asyncio
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable

import pytest

from signup.core.constants import Endpoint, PaymentMethod, Relationship
from signup.errors import TransportError
from signup.repositories.reference_data import Agent, PolicyType, StaticReferenceData
from signup.submission.orchestrator import EntityOrchestrator
from signup.wizard.machine import WizardStateMachine
from signup.wizard.records import (
    Applicant,
    BankInstrument,
    Beneficiary,
    Dependent,
    PolicyDraft,
)
from signup.wizard.session import WizardSession

TODAY = date(2026, 10, 19)

LIMITS = {"spouse": 1, "child": 6, "extended_family": 10}
COVERAGE = {"spouse": 100, "child": 75, "extended_family": 50}

# Valid national IDs (Luhn check digit over the first 12 digits)
APPLICANT_ID = "8001015009087"       # 1980-01-01, male, citizen
SPOUSE_ID = "8505150800084"          # 1985-05-15, female
CHILD_ID = "1503105123089"           # 2015-03-10, male


@dataclass
class RecordedCall:
    method: str
    path: str
    body: dict[str, Any] | None
    idempotency_key: str | None


class FakeTransport:
    """Records calls; returns ``{"id": n, **body}`` or raises for matching calls."""

    def __init__(
        self,
        fail_when: Callable[[RecordedCall], bool] | None = None,
        delay: float = 0,
        responses: dict[str, Any] | None = None,
    ) -> None:
        self.calls: list[RecordedCall] = []
        self.fail_when = fail_when
        self.delay = delay
        self.responses = responses or {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_id = 100

    async def request(self, method, path, body=None, *, idempotency_key=None):
        call = RecordedCall(method, path, body, idempotency_key)
        self.calls.append(call)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if self.fail_when is not None and self.fail_when(call):
                raise TransportError(
                    "Backend returned HTTP 500",
                    status_code=500,
                    response_body='{"message": "boom"}',
                    payload=body,
                )
            if method == "GET":
                return self.responses.get(path, [])
            self._next_id += 1
            return {"id": self._next_id, **(body or {})}
        finally:
            self.in_flight -= 1

    @property
    def paths(self) -> list[str]:
        return [call.path for call in self.calls]

    def calls_to(self, endpoint: Endpoint) -> list[RecordedCall]:
        return [call for call in self.calls if call.path == str(endpoint)]


def fail_step(*labels: str) -> Callable[[RecordedCall], bool]:
    """Fail every call whose idempotency key ends with one of ``labels``."""
    return lambda call: any((call.idempotency_key or "").endswith(f":{label}") for label in labels)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str, str]] = []

    def notify(self, kind, title, description) -> None:
        self.messages.append((str(kind), title, description))

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.messages]


# ─── Collaborators ────────────────────────────────────────

@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reference_data() -> StaticReferenceData:
    return StaticReferenceData(
        policy_types=[
            PolicyType(id=1, name="Family Plan", cover_amount=Decimal("10000")),
            PolicyType(id=2, name="Pensioner Plan", base_premium=Decimal("250")),
        ],
        agents=[Agent(id=7, name="Thandi Mokoena")],
    )


@pytest.fixture
def orchestrator(transport) -> EntityOrchestrator:
    return EntityOrchestrator(
        transport,
        dependent_concurrency=4,
        persist_beneficiaries=False,
        coverage=COVERAGE,
    )


@pytest.fixture
def machine(orchestrator, notifier, reference_data) -> WizardStateMachine:
    return WizardStateMachine(
        orchestrator=orchestrator,
        notifier=notifier,
        reference_data=reference_data,
        layout="split",
        limits=LIMITS,
        today=TODAY,
    )


# ─── Form data ────────────────────────────────────────────

@pytest.fixture
def applicant_form() -> dict[str, Any]:
    return {
        "name": "Sipho Ndlovu",
        "id_number": APPLICANT_ID,
        "phone": "082 123 4567",
        "address": "12 Main Road, Durban",
        "email": "sipho@example.com",
    }


@pytest.fixture
def bank_form() -> dict[str, Any]:
    return {
        "method": "bank",
        "bank_name": "Capitec",
        "account_number": "1234567890",
        "account_type": "savings",
        "branch_code": "470010",
        "account_holder": "Sipho Ndlovu",
        "debit_day": 25,
    }


@pytest.fixture
def policy_form() -> dict[str, Any]:
    return {
        "policy_type_id": 1,
        "premium": "150.00",
        "frequency": "monthly",
        "agent_id": 7,
    }


# ─── Completed session ────────────────────────────────────

@pytest.fixture
def completed_session() -> WizardSession:
    """Applicant + spouse + 2 children + one beneficiary at 100% + bank payment."""
    session = WizardSession()
    session.applicant = Applicant(
        name="Sipho Ndlovu",
        id_number=APPLICANT_ID,
        phone="+27821234567",
        address="12 Main Road, Durban",
        date_of_birth=date(1980, 1, 1),
    )
    session.dependents.add(Dependent(name="Nomsa Ndlovu", relationship=Relationship.SPOUSE, id_number=SPOUSE_ID))
    session.dependents.add(Dependent(name="Lwazi Ndlovu", relationship=Relationship.CHILD, id_number=CHILD_ID))
    session.dependents.add(Dependent(name="Ayanda Ndlovu", relationship=Relationship.CHILD))
    session.beneficiaries.add(Beneficiary(name="Nomsa Ndlovu", relationship="spouse", percentage=Decimal("100")))
    session.payment = BankInstrument(
        bank_name="Capitec",
        account_number="1234567890",
        account_type="savings",
        branch_code="470010",
        account_holder="Sipho Ndlovu",
        debit_day=25,
    )
    session.policy = PolicyDraft(
        policy_type_id=1,
        premium=Decimal("150.00"),
        frequency="monthly",
        agent_id=7,
    )
    return session


async def advance_to(machine: WizardStateMachine, target, applicant_form, bank_form=None):
    """Drive a split-layout machine forward to ``target`` with minimal valid data."""
    from signup.core.constants import WizardStep

    while machine.current_state != target:
        state = machine.current_state
        if state == WizardStep.MAIN_MEMBER:
            outcome = await machine.advance(applicant_form)
        elif machine.can_skip:
            outcome = machine.skip()
        elif state == WizardStep.BENEFICIARY:
            if not len(machine.session.beneficiaries):
                machine.add_beneficiary({"name": "Nomsa Ndlovu", "relationship": "spouse", "percentage": 100})
            outcome = await machine.advance()
        elif state == WizardStep.PAYMENT:
            outcome = await machine.advance(bank_form or {"method": PaymentMethod.SASSA, "grant_number": "123456789012"})
        else:
            outcome = await machine.advance()
        assert outcome.ok, outcome.errors
