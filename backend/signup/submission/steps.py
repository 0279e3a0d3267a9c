"""
CreationStep — base class and concrete steps for entity creation.

Every backend record is created by one step.  The orchestrator calls
execute() and records timing, logging and failures; steps only build
the payload, issue the call and record the resulting server ID.

A step whose label is already in ``ctx.created_ids`` is skipped, which
is what makes a resumed run issue only the missing calls.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from signup.core.constants import APIRequestMethod, Endpoint, StepStatus
from signup.core.logging import get_logger
from signup.errors import IntegrityError, TransportError
from signup.submission import payload_builder
from signup.submission.context import (
    CLIENT_LABEL,
    PAYMENT_LABEL,
    POLICY_LABEL,
    OrchestrationContext,
    StepResult,
    beneficiary_label,
    dependent_label,
    policy_beneficiary_label,
    policy_dependent_label,
)
from signup.validation.business_rules import default_coverage_for

logger = get_logger(__name__)


class CreationStep(ABC):
    """
    Base class for every creation step.

    Subclasses MUST implement:
        - name (str)          — step label, e.g. "client" or "dependent[0]"
        - description (str)   — human-readable label for logs
        - execute(ctx)        — build the payload and create the record
    """

    name: str = "unnamed_step"
    description: str = "No description"

    @abstractmethod
    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        ...

    async def should_skip(self, ctx: OrchestrationContext) -> bool:
        """Skip when this step's record already exists."""
        return ctx.has(self.name)

    # ─── Helpers available to all steps ────────────────

    async def _create(
        self,
        ctx: OrchestrationContext,
        endpoint: Endpoint,
        payload: dict[str, Any],
        *,
        id_required: bool = True,
    ) -> Any:
        """POST ``payload``, record and return the server ID."""
        key = ctx.idempotency_key(self.name)
        try:
            response = await ctx.transport.request(
                str(APIRequestMethod.POST),
                str(endpoint),
                payload,
                idempotency_key=key,
            )
        except TransportError as exc:
            exc.step_name = self.name
            exc.payload = payload
            raise

        server_id = payload_builder.extract_id(response)
        if server_id is None and not id_required:
            # Link responses may omit an id; the link itself is the record
            ctx.record(self.name, True)
            return None
        if server_id is None:
            raise TransportError(
                f"{endpoint} response carried no id",
                step_name=self.name,
                payload=payload,
                response_body=str(response),
            )
        ctx.record(self.name, server_id)
        return server_id

    def _success(
        self,
        started_at: datetime,
        metadata: dict[str, Any] | None = None,
    ) -> StepResult:
        now = self._now()
        return StepResult(
            step_name=self.name,
            status=StepStatus.COMPLETED,
            started_at=started_at,
            completed_at=now,
            duration_ms=int((now - started_at).total_seconds() * 1000),
            metadata=metadata or {},
        )

    def _failure(self, started_at: datetime, error: str) -> StepResult:
        now = self._now()
        return StepResult(
            step_name=self.name,
            status=StepStatus.FAILED,
            started_at=started_at,
            completed_at=now,
            duration_ms=int((now - started_at).total_seconds() * 1000),
            error=error,
        )

    def _skipped(self) -> StepResult:
        now = self._now()
        return StepResult(
            step_name=self.name,
            status=StepStatus.SKIPPED,
            started_at=now,
            completed_at=now,
        )

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════
#  1. Applicant
# ═══════════════════════════════════════════════════════════

class CreateClientStep(CreationStep):
    name = CLIENT_LABEL
    description = "Create the applicant (client) record"

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        applicant = ctx.session.applicant
        if applicant is None:
            raise IntegrityError("Session has no applicant to create", step_name=self.name)

        client_id = await self._create(
            ctx, Endpoint.CLIENTS, payload_builder.build_client_payload(applicant),
        )
        return self._success(started_at, metadata={"id": client_id})


# ═══════════════════════════════════════════════════════════
#  2. Dependents (concurrent fan-out)
# ═══════════════════════════════════════════════════════════

class CreateDependentStep(CreationStep):
    description = "Create a dependent record"

    def __init__(self, index: int) -> None:
        self.index = index
        self.name = dependent_label(index)

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        client_id = ctx.require_client_id(self.name)
        dependent = ctx.session.dependents[self.index]
        server_id = await self._create(
            ctx,
            Endpoint.DEPENDENTS,
            payload_builder.build_dependent_payload(dependent, client_id),
        )
        return self._success(started_at, metadata={
            "id": server_id,
            "relationship": str(dependent.relationship),
        })


class CreateBeneficiaryStep(CreationStep):
    description = "Create a beneficiary record"

    def __init__(self, index: int) -> None:
        self.index = index
        self.name = beneficiary_label(index)

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        client_id = ctx.require_client_id(self.name)
        beneficiary = ctx.session.beneficiaries[self.index]
        server_id = await self._create(
            ctx,
            Endpoint.DEPENDENTS,
            payload_builder.build_beneficiary_payload(beneficiary, client_id),
        )
        return self._success(started_at, metadata={"id": server_id})


class DependentFanOutStep(CreationStep):
    """
    Create every dependent (and beneficiary, when persisted) concurrently.

    All calls are awaited before returning, so the link steps always see
    every dependent ID.  When several calls fail, the lowest-indexed
    failure is raised and every successful sibling is still recorded.
    """

    name = "dependents"
    description = "Create dependents concurrently"

    def __init__(self, children: list[CreationStep]) -> None:
        self.children = children

    async def should_skip(self, ctx: OrchestrationContext) -> bool:
        return all(ctx.has(child.name) for child in self.children)

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        ctx.require_client_id(self.name)
        semaphore = asyncio.Semaphore(max(1, ctx.dependent_concurrency))

        async def run_child(child: CreationStep) -> StepResult:
            if await child.should_skip(ctx):
                return child._skipped()
            async with semaphore:
                return await child.execute(ctx)

        outcomes = await asyncio.gather(
            *(run_child(child) for child in self.children),
            return_exceptions=True,
        )

        first_error: BaseException | None = None
        for child, outcome in zip(self.children, outcomes):
            if isinstance(outcome, BaseException):
                ctx.step_results.append(child._failure(started_at, str(outcome)))
                if first_error is None:
                    first_error = outcome
            else:
                ctx.step_results.append(outcome)

        if first_error is not None:
            raise first_error

        return self._success(started_at, metadata={"count": len(self.children)})


# ═══════════════════════════════════════════════════════════
#  3. Payment instrument
# ═══════════════════════════════════════════════════════════

class CreatePaymentInstrumentStep(CreationStep):
    name = PAYMENT_LABEL
    description = "Create the payment instrument"

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        client_id = ctx.require_client_id(self.name)
        instrument = ctx.session.payment
        if instrument is None:
            raise IntegrityError("Session has no payment instrument", step_name=self.name)

        server_id = await self._create(
            ctx,
            Endpoint.PAYMENT_INSTRUMENTS,
            payload_builder.build_payment_payload(instrument, client_id),
        )
        return self._success(started_at, metadata={
            "id": server_id,
            "method": str(instrument.method),
        })


# ═══════════════════════════════════════════════════════════
#  4. Policy
# ═══════════════════════════════════════════════════════════

class CreatePolicyStep(CreationStep):
    name = POLICY_LABEL
    description = "Create the policy"

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        client_id = ctx.require_client_id(self.name)
        policy = ctx.session.policy
        if policy is None:
            raise IntegrityError("Session has no policy details", step_name=self.name)

        # Fixed before the first attempt so every retry sends the same body
        if not policy.policy_number:
            policy.policy_number = payload_builder.generate_policy_number()

        payload = payload_builder.build_policy_payload(policy, client_id)
        server_id = await self._create(ctx, Endpoint.POLICIES, payload)
        return self._success(started_at, metadata={
            "id": server_id,
            "policy_number": payload["policyNumber"],
        })


# ═══════════════════════════════════════════════════════════
#  5. Policy links
# ═══════════════════════════════════════════════════════════

class LinkPolicyDependentStep(CreationStep):
    description = "Link a dependent to the policy"

    def __init__(self, index: int) -> None:
        self.index = index
        self.name = policy_dependent_label(index)

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        ctx.require_client_id(self.name)
        policy_id = ctx.require_id(POLICY_LABEL, self.name)
        dependent_id = ctx.require_id(dependent_label(self.index), self.name)
        dependent = ctx.session.dependents[self.index]
        coverage = default_coverage_for(dependent.relationship, ctx.coverage)

        server_id = await self._create(
            ctx,
            Endpoint.POLICY_DEPENDENTS,
            payload_builder.build_policy_dependent_payload(policy_id, dependent_id, coverage),
            id_required=False,
        )
        return self._success(started_at, metadata={
            "id": server_id,
            "coverage_percentage": coverage,
        })


class LinkPolicyBeneficiaryStep(LinkPolicyDependentStep):
    description = "Link a beneficiary to the policy"

    def __init__(self, index: int) -> None:
        self.index = index
        self.name = policy_beneficiary_label(index)

    async def execute(self, ctx: OrchestrationContext) -> StepResult:
        started_at = self._now()
        ctx.require_client_id(self.name)
        policy_id = ctx.require_id(POLICY_LABEL, self.name)
        beneficiary_id = ctx.require_id(beneficiary_label(self.index), self.name)
        percentage: Decimal = ctx.session.beneficiaries[self.index].percentage

        server_id = await self._create(
            ctx,
            Endpoint.POLICY_DEPENDENTS,
            payload_builder.build_policy_dependent_payload(policy_id, beneficiary_id, percentage),
            id_required=False,
        )
        return self._success(started_at, metadata={
            "id": server_id,
            "coverage_percentage": str(percentage),
        })


def resolve_creation_steps(ctx: OrchestrationContext) -> list[CreationStep]:
    """Ordered step list for the session in ``ctx``."""
    session = ctx.session
    fan_out: list[CreationStep] = [CreateDependentStep(i) for i in range(len(session.dependents))]
    links: list[CreationStep] = [LinkPolicyDependentStep(i) for i in range(len(session.dependents))]
    if ctx.persist_beneficiaries:
        fan_out += [CreateBeneficiaryStep(i) for i in range(len(session.beneficiaries))]
        links += [LinkPolicyBeneficiaryStep(i) for i in range(len(session.beneficiaries))]

    steps: list[CreationStep] = [CreateClientStep()]
    if fan_out:
        steps.append(DependentFanOutStep(fan_out))
    steps += [CreatePaymentInstrumentStep(), CreatePolicyStep()]
    steps += links
    return steps
