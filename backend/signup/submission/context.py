"""
OrchestrationContext — mutable state carried through every creation step.

Each step reads the session, issues its call through the transport and
records the server ID it obtained under its step label (``client``,
``dependent[0]``, ``policy`` ...).  ``created_ids`` is therefore the
exact record of how far a run got.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from signup.errors import IntegrityError
from signup.submission.transport import Transport
from signup.wizard.session import WizardSession

CLIENT_LABEL = "client"
PAYMENT_LABEL = "payment_instrument"
POLICY_LABEL = "policy"


def dependent_label(index: int) -> str:
    return f"dependent[{index}]"


def beneficiary_label(index: int) -> str:
    return f"beneficiary[{index}]"


def policy_dependent_label(index: int) -> str:
    return f"policy_dependent[{index}]"


def policy_beneficiary_label(index: int) -> str:
    return f"policy_beneficiary[{index}]"


_INDEXED_LABEL = re.compile(r"^(?P<kind>[a-z_]+)\[(?P<index>\d+)\]$")

# Collection behind each indexed label kind
_LABEL_COLLECTIONS = {
    "dependent": "dependents",
    "policy_dependent": "dependents",
    "beneficiary": "beneficiaries",
    "policy_beneficiary": "beneficiaries",
}


# ═══════════════════════════════════════════════════════════
#  StepResult
# ═══════════════════════════════════════════════════════════

@dataclass
class StepResult:
    """Outcome of a single creation step."""

    step_name: str
    status: str                     # StepStatus value
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "metadata": self.metadata,
        }


# ═══════════════════════════════════════════════════════════
#  OrchestrationContext
# ═══════════════════════════════════════════════════════════

@dataclass
class OrchestrationContext:
    """Carries the session, the transport and the IDs obtained so far."""

    session: WizardSession
    transport: Transport
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    persist_beneficiaries: bool = False
    dependent_concurrency: int = 4
    coverage: dict[str, int] = field(default_factory=dict)

    created_ids: dict[str, Any] = field(default_factory=dict)
    # Indexed label -> local_id of the record it was created for
    record_keys: dict[str, str] = field(default_factory=dict)
    step_results: list[StepResult] = field(default_factory=list)

    @property
    def client_id(self) -> Any:
        return self.created_ids.get(CLIENT_LABEL)

    @property
    def policy_id(self) -> Any:
        return self.created_ids.get(POLICY_LABEL)

    def require_client_id(self, step_name: str) -> Any:
        """Client ID, or IntegrityError when the applicant was never created."""
        if self.client_id is None:
            raise IntegrityError(
                f"Cannot create '{step_name}' before the applicant has a server ID",
                step_name=step_name,
            )
        return self.client_id

    def require_id(self, label: str, step_name: str) -> Any:
        if self.created_ids.get(label) is None:
            raise IntegrityError(
                f"Cannot create '{step_name}': no server ID for '{label}'",
                step_name=step_name,
            )
        return self.created_ids[label]

    def idempotency_key(self, label: str) -> str:
        """``<clientId>:<label>``; the client call itself is keyed by session."""
        if label == CLIENT_LABEL:
            return f"{self.session.session_id}:{CLIENT_LABEL}"
        return f"{self.require_client_id(label)}:{label}"

    def record(self, label: str, server_id: Any) -> None:
        self.created_ids[label] = server_id
        local_id = self._local_id_for(label)
        if local_id is not None:
            self.record_keys[label] = local_id

    def has(self, label: str) -> bool:
        return self.created_ids.get(label) is not None

    def restore(self, created_ids: dict[str, Any], record_keys: dict[str, str]) -> None:
        """
        Carry IDs over from an earlier run.

        Indexed labels are re-pointed at the current position of the
        record they were created for; IDs of records no longer in the
        session are dropped.
        """
        for label, server_id in created_ids.items():
            local_id = record_keys.get(label)
            if local_id is None:
                if _INDEXED_LABEL.match(label) is None:
                    self.created_ids[label] = server_id
                continue
            current = self._label_for_local_id(label, local_id)
            if current is not None:
                self.created_ids[current] = server_id
                self.record_keys[current] = local_id

    def _collection_for(self, label: str):
        match = _INDEXED_LABEL.match(label)
        if match is None or match["kind"] not in _LABEL_COLLECTIONS:
            return None, None
        return match, getattr(self.session, _LABEL_COLLECTIONS[match["kind"]])

    def _local_id_for(self, label: str) -> str | None:
        match, records = self._collection_for(label)
        if records is None:
            return None
        index = int(match["index"])
        if index >= len(records):
            return None
        return records[index].local_id

    def _label_for_local_id(self, label: str, local_id: str) -> str | None:
        match, records = self._collection_for(label)
        if records is None:
            return None
        for index, item in enumerate(records):
            if item.local_id == local_id:
                return f"{match['kind']}[{index}]"
        return None

    def to_summary_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "session_id": self.session.session_id,
            "created_ids": dict(self.created_ids),
            "steps_recorded": len(self.step_results),
        }
