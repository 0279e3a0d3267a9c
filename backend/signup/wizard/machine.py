"""
WizardStateMachine — the guarded, linear step flow of a policy signup.

Split layout (default)::

    MAIN_MEMBER -> CHILDREN -> SPOUSE -> EXTENDED_FAMILY -> BENEFICIARY
        -> PAYMENT -> SUMMARY -> POLICY_DETAILS -> SUBMITTED

The combined layout replaces CHILDREN and SPOUSE with one FAMILY step.

Every action returns a StepOutcome.  A blocked action leaves the state
unchanged, commits nothing and reports field-scoped errors; illegal
navigation is reported as a TransitionError in the outcome rather than
raised.  Advancing from POLICY_DETAILS runs the EntityOrchestrator and
only reaches SUBMITTED when every record was created.

After a failed submission, records that already exist in the backend
are locked: the applicant, payment and policy cannot change and created
dependents or beneficiaries cannot be removed until the retry succeeds.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any

from signup.core.config import settings
from signup.core.constants import NotificationKind, Relationship, SubView, WizardStep
from signup.core.logging import get_logger
from signup.errors import BusinessRuleViolation, TransitionError, ValidationError, WorkflowError
from signup.notifications import LoggingNotifier, Notifier
from signup.repositories.reference_data import ReferenceDataRepository, quote_premium
from signup.submission.context import CLIENT_LABEL, PAYMENT_LABEL, POLICY_LABEL
from signup.submission.orchestrator import EntityOrchestrator, OrchestrationResult
from signup.submission.payload_builder import generate_policy_number
from signup.validation import business_rules
from signup.wizard import flow, forms
from signup.wizard.records import PolicyDraft
from signup.wizard.session import WizardSession


@dataclass
class StepOutcome:
    """Result of one wizard action."""

    ok: bool
    state: WizardStep
    errors: list[WorkflowError] = field(default_factory=list)
    index: int | None = None
    orchestration: OrchestrationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "state": self.state,
            "errors": [e.to_dict() for e in self.errors],
            "index": self.index,
            "orchestration": self.orchestration.to_dict() if self.orchestration else None,
        }


class WizardStateMachine:
    """
    Owns one WizardSession and every transition on it.

    Collaborators are injected; a missing notifier defaults to the
    structured log, and a missing reference-data repository disables the
    policy-type/agent existence checks.
    """

    def __init__(
        self,
        session: WizardSession | None = None,
        *,
        orchestrator: EntityOrchestrator | None = None,
        notifier: Notifier | None = None,
        reference_data: ReferenceDataRepository | None = None,
        layout: str | None = None,
        limits: Mapping[str, int] | None = None,
        today: date | None = None,
    ) -> None:
        self.session = session or WizardSession()
        self.orchestrator = orchestrator
        self.notifier = notifier or LoggingNotifier()
        self.reference_data = reference_data
        self.limits = dict(limits if limits is not None else settings.relationship_limits)
        self.today = today
        self._steps = flow.resolve_steps(layout or settings.WIZARD_LAYOUT)

        if self.session.current_step not in self._steps:
            self.session.current_step = self._steps[0]

        self.logger = get_logger("wizard.machine").bind(session_id=self.session.session_id)

    # ═══════════════════════════════════════════════════════
    #  Read-only view for the UI
    # ═══════════════════════════════════════════════════════

    @property
    def steps(self) -> tuple[WizardStep, ...]:
        return self._steps

    @property
    def current_state(self) -> WizardStep:
        return self.session.current_step

    @property
    def sub_view(self) -> SubView:
        return self.session.sub_view

    @property
    def field_errors(self) -> tuple[ValidationError, ...]:
        return tuple(self.session.field_errors)

    @property
    def is_terminal(self) -> bool:
        return self.current_state == WizardStep.SUBMITTED

    @property
    def can_go_back(self) -> bool:
        return not self.is_terminal and self._index > 0

    @property
    def can_skip(self) -> bool:
        return not self.is_terminal and flow.is_optional(self.current_state)

    @property
    def can_advance(self) -> bool:
        """True when the data already committed satisfies the current step's guard."""
        if self.is_terminal:
            return False
        _, errors = self._check_step(self.current_state, None)
        return not errors

    @property
    def relationship_counts(self) -> dict[str, int]:
        return business_rules.relationship_counts(self.session.dependents)

    @property
    def beneficiary_percentage_total(self) -> Decimal:
        return business_rules.percentage_total(self.session.beneficiaries)

    @property
    def progress_percent(self) -> int:
        return round(self._index * 100 / (len(self._steps) - 1))

    @property
    def _index(self) -> int:
        return self._steps.index(self.current_state)

    def quote_premium(self, policy_type_id: int, cover_amount: Decimal | None = None) -> Decimal | None:
        """Premium for a policy type and cover amount; None for an unknown type."""
        if self.reference_data is None:
            return None
        policy_type = self.reference_data.get_policy_type(policy_type_id)
        if policy_type is None:
            return None
        return quote_premium(policy_type, cover_amount)

    # ═══════════════════════════════════════════════════════
    #  Navigation
    # ═══════════════════════════════════════════════════════

    async def advance(self, step_data: Any = None) -> StepOutcome:
        """
        Validate ``step_data`` (or the committed data) and move forward.

        On POLICY_DETAILS a successful validation triggers submission.
        """
        state = self.current_state
        if self.is_terminal:
            return self._refuse("The application has already been submitted")

        staged, errors = self._check_step(state, step_data)
        if errors:
            self.session.field_errors = [e for e in errors if isinstance(e, ValidationError)]
            self.logger.info(
                "Step blocked",
                step_name=state,
                fields=[getattr(e, "field", None) for e in errors],
            )
            return StepOutcome(ok=False, state=state, errors=list(errors))

        if state == WizardStep.POLICY_DETAILS and self.orchestrator is None:
            return self._refuse("No orchestrator configured; cannot submit")

        locked = self._check_locked(state, staged)
        if locked:
            self.logger.info("Step blocked, record already created", step_name=state)
            return self._reject(locked)

        self._commit(state, staged)

        if state == WizardStep.POLICY_DETAILS:
            return await self._submit()

        self._move_to(self._steps[self._index + 1])
        return StepOutcome(ok=True, state=self.current_state)

    def back(self) -> StepOutcome:
        """Step back without re-running validation."""
        if not self.can_go_back:
            return self._refuse(f"Cannot go back from {self.current_state}")
        self._move_to(self._steps[self._index - 1])
        return StepOutcome(ok=True, state=self.current_state)

    def skip(self) -> StepOutcome:
        """Move past an optional step without validation."""
        if not self.can_skip:
            return self._refuse(f"{self.current_state} cannot be skipped")
        self._move_to(self._steps[self._index + 1])
        return StepOutcome(ok=True, state=self.current_state)

    async def submit(self, policy_data: Any = None) -> StepOutcome:
        """Advance from POLICY_DETAILS, i.e. create every backend record."""
        if self.current_state != WizardStep.POLICY_DETAILS:
            return self._refuse(f"Cannot submit from {self.current_state}")
        return await self.advance(policy_data)

    # ═══════════════════════════════════════════════════════
    #  Sub-views
    # ═══════════════════════════════════════════════════════

    def open_sub_view(self, view: SubView | str) -> StepOutcome:
        """Open an add-form; at most one is open at a time."""
        try:
            view = SubView(view)
        except ValueError:
            return self._refuse(f"Unknown form '{view}'")
        if view != SubView.NONE and view not in flow.allowed_sub_views(self.current_state):
            return self._refuse(f"Form {view} is not available on {self.current_state}")
        self.session.sub_view = view
        return StepOutcome(ok=True, state=self.current_state)

    def close_sub_view(self) -> StepOutcome:
        self.session.sub_view = SubView.NONE
        return StepOutcome(ok=True, state=self.current_state)

    # ═══════════════════════════════════════════════════════
    #  Collections
    # ═══════════════════════════════════════════════════════

    def add_dependent(self, item: Any, relationship: Relationship | str | None = None) -> StepOutcome:
        """
        Validate and store a dependent.

        The relationship comes from ``relationship``, then from the open
        add-form, then from the item itself.  Only the step offering the
        matching add-form accepts it; elsewhere the outcome carries a
        TransitionError.  Caps are enforced per category; a full category
        is a BusinessRuleViolation.
        """
        if self.is_terminal:
            return self._refuse("The application has already been submitted")

        if relationship is None:
            relationship = flow.SUB_VIEW_RELATIONSHIPS.get(self.sub_view)

        dependent, errors = forms.parse_dependent(item, relationship, self.today)
        if errors:
            return self._reject(errors)

        form = flow.RELATIONSHIP_SUB_VIEWS[dependent.relationship]
        if form not in flow.allowed_sub_views(self.current_state):
            return self._refuse(f"Cannot add a {dependent.relationship} dependent on {self.current_state}")

        violation = business_rules.check_cap(
            dependent.relationship, self.relationship_counts, self.limits,
        )
        if violation is not None:
            self._notify(NotificationKind.ERROR, "Limit reached", violation.message)
            self.logger.info("Dependent rejected", rule=violation.rule, **violation.details)
            return self._reject([violation])

        index = self.session.dependents.add(dependent)
        self._after_add()
        self.logger.info(
            "Dependent added",
            index=index,
            relationship=str(dependent.relationship),
        )
        return StepOutcome(ok=True, state=self.current_state, index=index)

    def remove_dependent(self, index: int) -> StepOutcome:
        return self._remove(self.session.dependents, index, "dependent")

    def add_beneficiary(self, item: Any) -> StepOutcome:
        """Validate and store a beneficiary; the 100% total is checked on advance."""
        if self.is_terminal:
            return self._refuse("The application has already been submitted")
        if SubView.ADD_BENEFICIARY not in flow.allowed_sub_views(self.current_state):
            return self._refuse(f"Cannot add a beneficiary on {self.current_state}")

        beneficiary, errors = forms.parse_beneficiary(item, self.today)
        if errors:
            return self._reject(errors)

        index = self.session.beneficiaries.add(beneficiary)
        self._after_add()
        self.logger.info("Beneficiary added", index=index, percentage=str(beneficiary.percentage))
        return StepOutcome(ok=True, state=self.current_state, index=index)

    def remove_beneficiary(self, index: int) -> StepOutcome:
        return self._remove(self.session.beneficiaries, index, "beneficiary")

    # ═══════════════════════════════════════════════════════
    #  Step guards
    # ═══════════════════════════════════════════════════════

    def _check_step(self, state: WizardStep, step_data: Any) -> tuple[Any, list[WorkflowError]]:
        """Return ``(staged record, errors)`` for ``state``; nothing is committed here."""
        session = self.session

        if state == WizardStep.MAIN_MEMBER:
            return forms.parse_applicant(
                step_data if step_data is not None else session.applicant,
                self.today,
            )

        if flow.is_optional(state) or state == WizardStep.SUMMARY:
            return None, []

        if state == WizardStep.BENEFICIARY:
            return None, self._check_beneficiaries()

        if state == WizardStep.PAYMENT:
            instrument, errors = forms.parse_payment(
                step_data if step_data is not None else session.payment,
            )
            if errors:
                return None, errors
            selected = step_data.get("method") if isinstance(step_data, Mapping) else None
            errors = business_rules.validate_payment_instrument(instrument, selected)
            return (None, errors) if errors else (instrument, [])

        if state == WizardStep.POLICY_DETAILS:
            policy, errors = forms.parse_policy(
                step_data if step_data is not None else session.policy,
            )
            if errors:
                return None, errors
            errors = self._check_reference_data(policy)
            return (None, errors) if errors else (policy, [])

        return None, []

    def _check_beneficiaries(self) -> list[WorkflowError]:
        beneficiaries = self.session.beneficiaries
        if not len(beneficiaries):
            return [BusinessRuleViolation(
                "Add at least one beneficiary",
                rule="beneficiary_required",
                field="beneficiaries",
            )]
        if not business_rules.percentage_sum_valid(beneficiaries):
            total = business_rules.percentage_total(beneficiaries)
            return [BusinessRuleViolation(
                f"Beneficiary percentages must add up to 100% (currently {total}%)",
                rule="percentage_sum",
                field="beneficiaries",
                details={"total": str(total)},
            )]
        return []

    def _check_reference_data(self, policy: PolicyDraft) -> list[WorkflowError]:
        if self.reference_data is None:
            return []
        errors: list[WorkflowError] = []
        if self.reference_data.get_policy_type(policy.policy_type_id) is None:
            errors.append(ValidationError(
                f"Unknown policy type {policy.policy_type_id}",
                field="policy_type_id",
            ))
        if policy.agent_id is not None and self.reference_data.get_agent(policy.agent_id) is None:
            errors.append(ValidationError(f"Unknown agent {policy.agent_id}", field="agent_id"))
        return errors

    def _check_locked(self, state: WizardStep, staged: Any) -> list[WorkflowError]:
        """A record created by an earlier, failed submission cannot change before the retry."""
        session = self.session
        committed, label = {
            WizardStep.MAIN_MEMBER: (session.applicant, CLIENT_LABEL),
            WizardStep.PAYMENT: (session.payment, PAYMENT_LABEL),
            WizardStep.POLICY_DETAILS: (session.policy, POLICY_LABEL),
        }.get(state, (None, None))
        if label is None or staged is None or not self._is_created(label):
            return []
        if state == WizardStep.POLICY_DETAILS:
            staged = replace(staged, policy_number=committed.policy_number)
        if staged == committed:
            return []
        return [BusinessRuleViolation(
            f"The {label.replace('_', ' ')} record already exists and can no longer be changed",
            rule="record_locked",
            field=str(state).lower(),
            details={"label": label},
        )]

    def _commit(self, state: WizardStep, staged: Any) -> None:
        if state == WizardStep.MAIN_MEMBER:
            self.session.applicant = staged
        elif state == WizardStep.PAYMENT:
            self.session.payment = staged
        elif state == WizardStep.POLICY_DETAILS:
            if not staged.policy_number:
                previous = self.session.policy
                staged.policy_number = (
                    previous.policy_number
                    if previous is not None and previous.policy_number
                    else generate_policy_number(self.today)
                )
            self.session.policy = staged

    # ═══════════════════════════════════════════════════════
    #  Submission
    # ═══════════════════════════════════════════════════════

    async def _submit(self) -> StepOutcome:
        state = self.current_state
        previous = self.session.last_orchestration
        resume = previous if previous is not None and not previous.succeeded else None

        result = await self.orchestrator.create(self.session, resume=resume)
        self.session.last_orchestration = result
        self.session.created_ids = dict(result.created_ids)

        if not result.succeeded:
            error = result.error
            if not isinstance(error, WorkflowError):
                error = WorkflowError(str(error), step_name=result.failed_step)
            self._notify(
                NotificationKind.ERROR,
                "Submission failed",
                f"Could not complete step '{result.failed_step}': {error.message}",
            )
            self.logger.warning(
                "Submission failed",
                failed_step=result.failed_step,
                created_ids=result.created_ids,
            )
            return StepOutcome(ok=False, state=state, errors=[error], orchestration=result)

        self._move_to(WizardStep.SUBMITTED)
        policy_number = self.session.policy.policy_number if self.session.policy else ""
        self._notify(
            NotificationKind.INFO,
            "Policy created",
            f"Policy {policy_number} has been created with all dependents.",
        )
        self.logger.info("Application submitted", policy_id=result.policy_id)
        return StepOutcome(ok=True, state=self.current_state, orchestration=result)

    # ═══════════════════════════════════════════════════════
    #  Helpers
    # ═══════════════════════════════════════════════════════

    def _move_to(self, step: WizardStep) -> None:
        previous = self.current_state
        self.session.current_step = step
        self.session.sub_view = SubView.NONE
        self.session.field_errors = []
        self.logger.debug("Step changed", from_step=previous, to_step=step)

    def _after_add(self) -> None:
        self.session.sub_view = SubView.NONE
        self.session.field_errors = []

    def _refuse(self, message: str) -> StepOutcome:
        error = TransitionError(message, step_name=self.current_state)
        self.logger.info("Transition refused", reason=message)
        return StepOutcome(ok=False, state=self.current_state, errors=[error])

    def _reject(self, errors: list[ValidationError]) -> StepOutcome:
        self.session.field_errors = list(errors)
        return StepOutcome(ok=False, state=self.current_state, errors=list(errors))

    def _remove(self, store, index: int, label: str) -> StepOutcome:
        if self.is_terminal:
            return self._refuse("The application has already been submitted")
        if 0 <= index < len(store) and self._is_record_created(store[index].local_id):
            return self._reject([BusinessRuleViolation(
                f"{label.capitalize()} {index} already exists in the backend and cannot be removed",
                rule="record_locked",
                field="index",
            )])
        try:
            store.remove_at(index)
        except IndexError as exc:
            return self._reject([ValidationError(str(exc), field="index")])
        self.logger.info(f"{label.capitalize()} removed", index=index)
        return StepOutcome(ok=True, state=self.current_state, index=index)

    def _is_created(self, label: str) -> bool:
        previous = self.session.last_orchestration
        return previous is not None and previous.created_ids.get(label) is not None

    def _is_record_created(self, local_id: str) -> bool:
        previous = self.session.last_orchestration
        return previous is not None and local_id in previous.record_keys.values()

    def _notify(self, kind: NotificationKind, title: str, description: str) -> None:
        try:
            self.notifier.notify(kind, title, description)
        except Exception as exc:
            self.logger.warning("Notifier failed", error=str(exc))
