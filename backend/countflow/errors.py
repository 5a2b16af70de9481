# Overview: Error taxonomy for the counting workflow; each class maps to one HTTP status.

"""
Workflow errors.

Every error is recoverable and local: services raise them before anything is
committed, routes roll back and report {"error": message, "code": CODE}.
"""

from __future__ import annotations


class InventoryWorkflowError(Exception):
    """Base class for workflow errors surfaced to API callers."""
    code = "WORKFLOW_ERROR"
    status_code = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class ValidationError(InventoryWorkflowError):
    """400-level input problem (malformed or missing required input)."""
    code = "VALIDATION_ERROR"


class CommentRequired(ValidationError):
    """A rejection was attempted without a reason."""
    code = "COMMENT_REQUIRED"


class NotFound(InventoryWorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(InventoryWorkflowError):
    """Role, location or ownership mismatch."""
    code = "FORBIDDEN"
    status_code = 403


class OutOfScope(Forbidden):
    """Caller is not scoped to the location it is acting on."""
    code = "OUT_OF_SCOPE"


class NotAssignee(Forbidden):
    code = "NOT_ASSIGNEE"


class NotEligibleApprover(Forbidden):
    code = "NOT_ELIGIBLE_APPROVER"


class InvalidTransition(InventoryWorkflowError):
    """State precondition not met (includes re-issuing an applied transition)."""
    code = "INVALID_TRANSITION"
    status_code = 409


class ConcurrencyConflict(InvalidTransition):
    """Row changed between read and write."""
    code = "CONCURRENCY_CONFLICT"


class AlreadyDecided(InventoryWorkflowError):
    code = "ALREADY_DECIDED"
    status_code = 409


class EmptyFilterResult(InventoryWorkflowError):
    """The catalog filter matched no products."""
    code = "EMPTY_FILTER_RESULT"
    status_code = 422


class EmptyInventoryResult(InventoryWorkflowError):
    """No target location produced inventory rows (or nothing left to act on)."""
    code = "EMPTY_INVENTORY_RESULT"
    status_code = 422
