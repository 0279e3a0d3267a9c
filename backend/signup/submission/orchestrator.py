"""
EntityOrchestrator — creates the linked backend records for a session.

Responsibilities:
    - Resolve the creation steps for the session
    - Execute each step with timing, logging and error capture
    - Stop at the first failed step; never retry or roll back
    - Report the failed step label, every ID obtained so far, the
      payload of the failing call and the original error

Order is fixed by referential dependency:

    client -> dependents (concurrent) -> payment_instrument -> policy
           -> policy_dependent links (sequential)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from signup.core.config import settings
from signup.core.constants import OrchestrationStatus, StepStatus
from signup.core.logging import get_logger
from signup.errors import IntegrityError, TransportError
from signup.submission.context import OrchestrationContext, StepResult
from signup.submission.steps import CreationStep, resolve_creation_steps
from signup.submission.transport import Transport
from signup.wizard.session import WizardSession


@dataclass
class OrchestrationResult:
    """Final outcome of an entity-creation run."""

    run_id: str
    status: str                     # OrchestrationStatus value
    created_ids: dict[str, Any] = field(default_factory=dict)
    record_keys: dict[str, str] = field(default_factory=dict)
    failed_step: str | None = None
    payload: dict[str, Any] | None = None
    error: Exception | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_duration_ms: int = 0
    step_results: list[dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == OrchestrationStatus.COMPLETED

    @property
    def client_id(self) -> Any:
        return self.created_ids.get("client")

    @property
    def policy_id(self) -> Any:
        return self.created_ids.get("policy")

    def to_dict(self) -> dict[str, Any]:
        error = None
        if isinstance(self.error, TransportError):
            error = self.error.to_dict()
        elif self.error is not None:
            error = {"type": type(self.error).__name__, "message": str(self.error)}
        return {
            "run_id": self.run_id,
            "status": self.status,
            "failed_step": self.failed_step,
            "created_ids": dict(self.created_ids),
            "payload": self.payload,
            "error": error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
            "step_results": self.step_results,
        }


class EntityOrchestrator:
    """
    Runs the creation steps for a completed WizardSession.

    Usage::

        orchestrator = EntityOrchestrator(transport=HttpTransport())
        result = await orchestrator.create(session)
        if not result.succeeded:
            result = await orchestrator.create(session, resume=result)

    ``resume`` skips every record the previous run already created.
    Dependents and beneficiaries are matched by ``local_id``, so a list
    edited since that run still maps each server ID to the right record.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        dependent_concurrency: int | None = None,
        persist_beneficiaries: bool | None = None,
        coverage: dict[str, int] | None = None,
    ) -> None:
        self.transport = transport
        self.dependent_concurrency = dependent_concurrency or settings.DEPENDENT_CONCURRENCY
        self.persist_beneficiaries = (
            settings.PERSIST_BENEFICIARIES if persist_beneficiaries is None else persist_beneficiaries
        )
        self.coverage = coverage or settings.coverage_defaults
        self.logger = get_logger("submission.orchestrator")

    def build_context(
        self,
        session: WizardSession,
        resume: OrchestrationResult | None = None,
    ) -> OrchestrationContext:
        ctx = OrchestrationContext(
            session=session,
            transport=self.transport,
            persist_beneficiaries=self.persist_beneficiaries,
            dependent_concurrency=self.dependent_concurrency,
            coverage=dict(self.coverage),
        )
        if resume is not None:
            ctx.restore(resume.created_ids, resume.record_keys)
        return ctx

    async def create(
        self,
        session: WizardSession,
        resume: OrchestrationResult | None = None,
    ) -> OrchestrationResult:
        """Create every record for ``session``; see the module docstring for order."""
        ctx = self.build_context(session, resume)
        steps = resolve_creation_steps(ctx)

        log = self.logger.bind(session_id=session.session_id, run_id=ctx.run_id)
        log.info(
            "Entity creation started",
            total_steps=len(steps),
            dependents=len(session.dependents),
            resumed=resume is not None,
            already_created=sorted(ctx.created_ids),
        )

        result = await self.run_steps(ctx, steps)
        log.info(
            "Entity creation finished",
            status=result.status,
            failed_step=result.failed_step,
            duration_ms=result.total_duration_ms,
        )
        return result

    async def run_steps(
        self,
        ctx: OrchestrationContext,
        steps: list[CreationStep],
    ) -> OrchestrationResult:
        """
        Execute an ordered list of steps against a context.

        Can be called directly with a pre-built step list.  Raises
        IntegrityError when a step needs an ID that does not exist yet.
        """
        started_at = datetime.now(timezone.utc)
        log = self.logger.bind(session_id=ctx.session.session_id, run_id=ctx.run_id)

        status = OrchestrationStatus.RUNNING
        failed_step: str | None = None
        failed_payload: dict[str, Any] | None = None
        error: Exception | None = None

        for step in steps:
            step_log = log.bind(step_name=step.name, step_description=step.description)

            if await step.should_skip(ctx):
                step_log.info("Step skipped, record already exists")
                ctx.step_results.append(StepResult(
                    step_name=step.name,
                    status=StepStatus.SKIPPED,
                    started_at=datetime.now(timezone.utc),
                    completed_at=datetime.now(timezone.utc),
                ))
                continue

            step_started = datetime.now(timezone.utc)
            try:
                result = await step.execute(ctx)

            except IntegrityError:
                step_log.error("Integrity violation, aborting")
                raise

            except TransportError as exc:
                failed_step = exc.step_name or step.name
                failed_payload = exc.payload
                exc.created_ids = dict(ctx.created_ids)
                error = exc
                step_log.error(
                    "Step failed, stopping",
                    failed_step=failed_step,
                    status_code=exc.status_code,
                    error=exc.message,
                )

            except Exception as exc:
                # Unexpected error; reported like a failed call
                step_log.exception("Unexpected error in step", error=str(exc))
                failed_step = step.name
                error = exc

            else:
                ctx.step_results.append(result)
                step_log.info("Step completed", duration_ms=result.duration_ms)
                continue

            now = datetime.now(timezone.utc)
            ctx.step_results.append(StepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                started_at=step_started,
                completed_at=now,
                duration_ms=int((now - step_started).total_seconds() * 1000),
                error=str(error),
            ))
            status = OrchestrationStatus.FAILED
            break

        if status != OrchestrationStatus.FAILED:
            status = OrchestrationStatus.COMPLETED

        completed_at = datetime.now(timezone.utc)
        return OrchestrationResult(
            run_id=ctx.run_id,
            status=status,
            created_ids=dict(ctx.created_ids),
            record_keys=dict(ctx.record_keys),
            failed_step=failed_step,
            payload=failed_payload,
            error=error,
            started_at=started_at,
            completed_at=completed_at,
            total_duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            step_results=[sr.to_dict() for sr in ctx.step_results],
        )
