"""
Domain-specific exception hierarchy for the signup workflow.

All workflow exceptions inherit from WorkflowError so callers can
catch broadly or narrowly as needed.  Each exception carries structured
context (step name, field, details) for logging and for the UI.

Validation-type errors are usually *returned* (collected per field) by
the wizard rather than raised; TransportError and IntegrityError are
raised from the submission layer.
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base exception for all signup workflow errors."""

    def __init__(
        self,
        message: str,
        *,
        step_name: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.step_name = step_name
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for API responses and logs."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "step_name": self.step_name,
            "details": self.details,
        }


class ValidationError(WorkflowError):
    """A field failed validation; blocks a step transition."""

    def __init__(self, message: str, *, field: str | None = None, **kwargs) -> None:
        self.field = field
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class BusinessRuleViolation(ValidationError):
    """A policy rule was broken (cap exceeded, percentages, payment fields)."""

    def __init__(self, message: str, *, rule: str, **kwargs) -> None:
        self.rule = rule
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["rule"] = self.rule
        return data


class DecodeError(ValidationError):
    """A national ID could not be decoded."""
    pass


class TransitionError(WorkflowError):
    """back()/skip()/submit() is not legal from the current step."""
    pass


class TransportError(WorkflowError):
    """A backend call failed (non-2xx response or network failure)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        payload: dict | None = None,
        created_ids: dict[str, Any] | None = None,
        **kwargs,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        self.payload = payload
        self.created_ids = dict(created_ids or {})
        super().__init__(message, **kwargs)

    @property
    def retryable(self) -> bool:
        """Network failures and server errors may succeed when retried."""
        return self.status_code is None or self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            status_code=self.status_code,
            response_body=self.response_body,
            retryable=self.retryable,
        )
        return data


class IntegrityError(WorkflowError):
    """A dependent record was about to be created before its client ID existed."""
    pass
