"""API schema package."""

from signup.api.schemas.wizard import (
    ApplicantRequest,
    BeneficiaryRequest,
    DependentRequest,
    PaymentRequest,
    PolicyRequest,
    QuoteResponse,
    SubViewRequest,
    WizardStateResponse,
)

__all__ = [
    "ApplicantRequest",
    "BeneficiaryRequest",
    "DependentRequest",
    "PaymentRequest",
    "PolicyRequest",
    "QuoteResponse",
    "SubViewRequest",
    "WizardStateResponse",
]
