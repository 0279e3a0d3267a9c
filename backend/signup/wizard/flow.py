"""
Step flow layouts.

One wizard, parameterised by layout: ``split`` asks for children and
spouse on separate steps, ``combined`` asks for both on a single FAMILY
step.  Everything else about the flow is shared.
"""

from __future__ import annotations

from signup.core.constants import Relationship, SubView, WizardLayout, WizardStep

SPLIT_STEPS: tuple[WizardStep, ...] = (
    WizardStep.MAIN_MEMBER,
    WizardStep.CHILDREN,
    WizardStep.SPOUSE,
    WizardStep.EXTENDED_FAMILY,
    WizardStep.BENEFICIARY,
    WizardStep.PAYMENT,
    WizardStep.SUMMARY,
    WizardStep.POLICY_DETAILS,
    WizardStep.SUBMITTED,
)

COMBINED_STEPS: tuple[WizardStep, ...] = (
    WizardStep.MAIN_MEMBER,
    WizardStep.FAMILY,
    WizardStep.EXTENDED_FAMILY,
    WizardStep.BENEFICIARY,
    WizardStep.PAYMENT,
    WizardStep.SUMMARY,
    WizardStep.POLICY_DETAILS,
    WizardStep.SUBMITTED,
)

LAYOUTS: dict[WizardLayout, tuple[WizardStep, ...]] = {
    WizardLayout.SPLIT: SPLIT_STEPS,
    WizardLayout.COMBINED: COMBINED_STEPS,
}

OPTIONAL_STEPS = frozenset({
    WizardStep.CHILDREN,
    WizardStep.SPOUSE,
    WizardStep.FAMILY,
    WizardStep.EXTENDED_FAMILY,
})

# Relationship recorded by each dependent add-form
SUB_VIEW_RELATIONSHIPS: dict[SubView, Relationship] = {
    SubView.ADD_CHILD: Relationship.CHILD,
    SubView.ADD_SPOUSE: Relationship.SPOUSE,
    SubView.ADD_EXTENDED_FAMILY: Relationship.EXTENDED_FAMILY,
}

# Add-form that records each relationship
RELATIONSHIP_SUB_VIEWS: dict[Relationship, SubView] = {
    Relationship.CHILD: SubView.ADD_CHILD,
    Relationship.SPOUSE: SubView.ADD_SPOUSE,
    Relationship.PARENT: SubView.ADD_EXTENDED_FAMILY,
    Relationship.EXTENDED_FAMILY: SubView.ADD_EXTENDED_FAMILY,
}

# Add-forms that may be opened on each step
STEP_SUB_VIEWS: dict[WizardStep, frozenset[SubView]] = {
    WizardStep.CHILDREN: frozenset({SubView.ADD_CHILD}),
    WizardStep.SPOUSE: frozenset({SubView.ADD_SPOUSE}),
    WizardStep.FAMILY: frozenset({SubView.ADD_CHILD, SubView.ADD_SPOUSE}),
    WizardStep.EXTENDED_FAMILY: frozenset({SubView.ADD_EXTENDED_FAMILY}),
    WizardStep.BENEFICIARY: frozenset({SubView.ADD_BENEFICIARY}),
}


def resolve_steps(layout: WizardLayout | str) -> tuple[WizardStep, ...]:
    """Ordered steps for ``layout``; raises ValueError for an unknown layout."""
    return LAYOUTS[WizardLayout(layout)]


def is_optional(step: WizardStep) -> bool:
    return step in OPTIONAL_STEPS


def allowed_sub_views(step: WizardStep) -> frozenset[SubView]:
    return STEP_SUB_VIEWS.get(step, frozenset())
