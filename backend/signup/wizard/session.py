"""
WizardSession — mutable state carried through every wizard step.

The session is the single source of truth for one application.  The
state machine is the only writer; the orchestrator reads a completed
session at submission time.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from signup.core.constants import SubView, WizardStep
from signup.errors import ValidationError
from signup.wizard.collection import CollectionStore
from signup.wizard.records import (
    Applicant,
    Beneficiary,
    Dependent,
    PaymentInstrument,
    PolicyDraft,
)


@dataclass
class WizardSession:
    """
    Carries the applicant data collected so far.

    Populated progressively: MAIN_MEMBER fills in ``applicant``, the
    family steps fill ``dependents``, and so on.  ``created_ids`` is
    filled in after a (possibly partial) submission so a retry can
    resume.
    """

    # ─── Identity ──────────────────────────────────────
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # ─── Navigation ────────────────────────────────────
    current_step: WizardStep = WizardStep.MAIN_MEMBER
    sub_view: SubView = SubView.NONE
    field_errors: list[ValidationError] = field(default_factory=list)

    # ─── Collected data ────────────────────────────────
    applicant: Applicant | None = None
    dependents: CollectionStore[Dependent] = field(default_factory=CollectionStore)
    beneficiaries: CollectionStore[Beneficiary] = field(default_factory=CollectionStore)
    payment: PaymentInstrument | None = None
    policy: PolicyDraft | None = None

    # ─── Submission ────────────────────────────────────
    created_ids: dict[str, Any] = field(default_factory=dict)
    last_orchestration: Any = None

    @property
    def client_id(self) -> Any:
        return self.created_ids.get("client")

    @property
    def is_submitted(self) -> bool:
        return self.current_step == WizardStep.SUBMITTED

    def to_summary_dict(self) -> dict[str, Any]:
        """Compact representation for logging and the summary step."""
        return {
            "session_id": self.session_id,
            "current_step": self.current_step,
            "sub_view": self.sub_view,
            "applicant": self.applicant.name if self.applicant else None,
            "dependents": len(self.dependents),
            "beneficiaries": len(self.beneficiaries),
            "payment_method": self.payment.method if self.payment else None,
            "policy_type_id": self.policy.policy_type_id if self.policy else None,
            "created_ids": dict(self.created_ids),
        }
