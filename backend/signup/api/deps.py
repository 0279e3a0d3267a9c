"""Shared dependencies for API routes."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status

from signup.core.logging import get_logger
from signup.notifications import LoggingNotifier, Notifier
from signup.repositories.reference_data import ReferenceDataRepository, RemoteReferenceData
from signup.submission.orchestrator import EntityOrchestrator
from signup.submission.transport import HttpTransport, Transport
from signup.wizard.machine import WizardStateMachine

logger = get_logger(__name__)


class SessionRegistry:
    """
    In-memory wizard sessions keyed by session ID.

    One machine per applicant interaction; the registry only hands them
    out, it never mutates them.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        reference_data: ReferenceDataRepository | None = None,
        notifier: Notifier | None = None,
        orchestrator: EntityOrchestrator | None = None,
        layout: str | None = None,
    ) -> None:
        self.transport = transport
        self.reference_data = reference_data
        self.notifier = notifier or LoggingNotifier()
        self.orchestrator = orchestrator or EntityOrchestrator(transport)
        self.layout = layout
        self._machines: dict[str, WizardStateMachine] = {}

    async def reference(self) -> ReferenceDataRepository | None:
        """Reference data, fetched on first use when it lives in the backend."""
        if isinstance(self.reference_data, RemoteReferenceData):
            await self.reference_data.load()
        return self.reference_data

    async def create(self) -> WizardStateMachine:
        machine = WizardStateMachine(
            orchestrator=self.orchestrator,
            notifier=self.notifier,
            reference_data=await self.reference(),
            layout=self.layout,
        )
        self._machines[machine.session.session_id] = machine
        logger.info("Wizard session created", session_id=machine.session.session_id)
        return machine

    def get(self, session_id: str) -> WizardStateMachine | None:
        return self._machines.get(session_id)

    def discard(self, session_id: str) -> None:
        self._machines.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._machines)

    async def aclose(self) -> None:
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()


@lru_cache
def get_registry() -> SessionRegistry:
    """Process-wide registry backed by the HTTP transport."""
    transport = HttpTransport()
    return SessionRegistry(transport, reference_data=RemoteReferenceData(transport))


async def get_machine(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> WizardStateMachine:
    """Resolve the wizard for ``session_id`` or 404."""
    machine = registry.get(session_id)
    if machine is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Wizard session '{session_id}' not found",
        )
    return machine
