"""
Wizard endpoints — session lifecycle, step transitions and collections.

Blocked actions are answered with the wizard state plus the outcome:
422 for validation errors, 409 for illegal navigation and 502 when a
backend create call failed during submission.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from signup.api.deps import SessionRegistry, get_machine, get_registry
from signup.api.schemas.wizard import (
    ApplicantRequest,
    BeneficiaryRequest,
    BeneficiaryView,
    DependentRequest,
    DependentView,
    PaymentRequest,
    PolicyRequest,
    QuoteResponse,
    SubViewRequest,
    WizardStateResponse,
)
from signup.core.constants import WizardStep
from signup.errors import TransitionError, TransportError, WorkflowError
from signup.wizard.machine import StepOutcome, WizardStateMachine

router = APIRouter(prefix="/wizard", tags=["Wizard"])


def build_state(machine: WizardStateMachine) -> WizardStateResponse:
    session = machine.session
    return WizardStateResponse(
        session_id=session.session_id,
        current_state=machine.current_state,
        steps=list(machine.steps),
        sub_view=machine.sub_view,
        can_advance=machine.can_advance,
        can_go_back=machine.can_go_back,
        can_skip=machine.can_skip,
        progress_percent=machine.progress_percent,
        relationship_counts=machine.relationship_counts,
        beneficiary_percentage_total=machine.beneficiary_percentage_total,
        dependents=[
            DependentView(
                index=i,
                name=d.name,
                relationship=d.relationship,
                id_number=d.id_number,
                date_of_birth=d.date_of_birth,
            )
            for i, d in enumerate(session.dependents)
        ],
        beneficiaries=[
            BeneficiaryView(
                index=i,
                name=b.name,
                relationship=b.relationship,
                percentage=b.percentage,
                id_number=b.id_number,
            )
            for i, b in enumerate(session.beneficiaries)
        ],
        field_errors=[e.to_dict() for e in machine.field_errors],
        created_ids=dict(session.created_ids),
    )


def _status_for(errors: list[WorkflowError]) -> int:
    if any(isinstance(e, TransportError) for e in errors):
        return status.HTTP_502_BAD_GATEWAY
    if any(isinstance(e, TransitionError) for e in errors):
        return status.HTTP_409_CONFLICT
    return status.HTTP_422_UNPROCESSABLE_ENTITY


def _respond(machine: WizardStateMachine, outcome: StepOutcome) -> JSONResponse:
    body = {
        "outcome": outcome.to_dict(),
        "state": build_state(machine).model_dump(mode="json"),
    }
    code = status.HTTP_200_OK if outcome.ok else _status_for(outcome.errors)
    return JSONResponse(status_code=code, content=jsonable_encoder(body))


def _require_state(machine: WizardStateMachine, expected: WizardStep) -> None:
    if machine.current_state != expected:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Wizard is on {machine.current_state}, not {expected}",
        )


# ─── Session lifecycle ────────────────────────────────────
@router.post("/sessions", status_code=status.HTTP_201_CREATED, response_model=WizardStateResponse)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    """Start a new application at the first step."""
    machine = await registry.create()
    return build_state(machine)


@router.get("/sessions/{session_id}", response_model=WizardStateResponse)
async def get_session(machine: WizardStateMachine = Depends(get_machine)):
    return build_state(machine)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
):
    """Abandon a session; records already created in the backend remain."""
    registry.discard(session_id)


# ─── Step data ────────────────────────────────────────────
@router.post("/sessions/{session_id}/main-member")
async def submit_main_member(
    body: ApplicantRequest,
    machine: WizardStateMachine = Depends(get_machine),
):
    _require_state(machine, WizardStep.MAIN_MEMBER)
    return _respond(machine, await machine.advance(body.model_dump()))


@router.post("/sessions/{session_id}/payment")
async def submit_payment(
    body: PaymentRequest,
    machine: WizardStateMachine = Depends(get_machine),
):
    _require_state(machine, WizardStep.PAYMENT)
    return _respond(machine, await machine.advance(body.root.model_dump()))


@router.post("/sessions/{session_id}/policy")
async def submit_policy(
    body: PolicyRequest,
    machine: WizardStateMachine = Depends(get_machine),
):
    """Validate policy details and create every backend record."""
    return _respond(machine, await machine.submit(body.model_dump()))


# ─── Navigation ───────────────────────────────────────────
@router.post("/sessions/{session_id}/advance")
async def advance(machine: WizardStateMachine = Depends(get_machine)):
    """Advance using the data already committed (family, beneficiary, summary steps)."""
    return _respond(machine, await machine.advance())


@router.post("/sessions/{session_id}/back")
async def back(machine: WizardStateMachine = Depends(get_machine)):
    return _respond(machine, machine.back())


@router.post("/sessions/{session_id}/skip")
async def skip(machine: WizardStateMachine = Depends(get_machine)):
    return _respond(machine, machine.skip())


@router.post("/sessions/{session_id}/submit")
async def submit(machine: WizardStateMachine = Depends(get_machine)):
    """Retry submission with the committed policy; only missing records are created."""
    return _respond(machine, await machine.submit())


# ─── Sub-views ────────────────────────────────────────────
@router.post("/sessions/{session_id}/sub-view")
async def open_sub_view(
    body: SubViewRequest,
    machine: WizardStateMachine = Depends(get_machine),
):
    return _respond(machine, machine.open_sub_view(body.view))


@router.delete("/sessions/{session_id}/sub-view")
async def close_sub_view(machine: WizardStateMachine = Depends(get_machine)):
    return _respond(machine, machine.close_sub_view())


# ─── Collections ──────────────────────────────────────────
@router.post("/sessions/{session_id}/dependents")
async def add_dependent(
    body: DependentRequest,
    machine: WizardStateMachine = Depends(get_machine),
):
    data = body.model_dump()
    relationship = data.pop("relationship")
    return _respond(machine, machine.add_dependent(data, relationship))


@router.delete("/sessions/{session_id}/dependents/{index}")
async def remove_dependent(index: int, machine: WizardStateMachine = Depends(get_machine)):
    return _respond(machine, machine.remove_dependent(index))


@router.post("/sessions/{session_id}/beneficiaries")
async def add_beneficiary(
    body: BeneficiaryRequest,
    machine: WizardStateMachine = Depends(get_machine),
):
    return _respond(machine, machine.add_beneficiary(body.model_dump()))


@router.delete("/sessions/{session_id}/beneficiaries/{index}")
async def remove_beneficiary(index: int, machine: WizardStateMachine = Depends(get_machine)):
    return _respond(machine, machine.remove_beneficiary(index))


# ─── Reference data ───────────────────────────────────────
@router.get("/sessions/{session_id}/quote", response_model=QuoteResponse)
async def quote(
    policy_type_id: int,
    cover_amount: Decimal | None = Query(default=None, gt=0),
    machine: WizardStateMachine = Depends(get_machine),
):
    """Simple rate lookup for the policy step."""
    premium = machine.quote_premium(policy_type_id, cover_amount)
    if premium is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Policy type {policy_type_id} not found",
        )
    return QuoteResponse(policy_type_id=policy_type_id, cover_amount=cover_amount, premium=premium)


@router.get("/reference-data")
async def reference_data(registry: SessionRegistry = Depends(get_registry)):
    """Policy types and agents offered on the policy step."""
    repository = await registry.reference()
    if repository is None:
        return {"policy_types": [], "agents": []}
    return jsonable_encoder({
        "policy_types": list(repository.policy_types()),
        "agents": list(repository.agents()),
    })
