"""
Workflow exceptions.

Services raise these; the API layer turns them into JSON error responses
(see erp_receiving.main). Every request runs in one transaction, so raising
any of them guarantees a rollback of the work done so far.

    ValidationError       400  malformed input, nothing written
    NotFoundError         404  PO / GRN / Approval / VendorReturn missing
    StateConflictError    409  wrong status for the requested transition
    PersistenceError      503  database constraint/driver failure, retryable
"""
from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for all receiving-workflow errors."""

    status_code: int = 400
    code: str = "WorkflowError"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class ValidationError(WorkflowError):
    """Missing or malformed input. Raised before anything is written."""

    status_code = 400
    code = "ValidationError"


class NotFoundError(WorkflowError):
    """A referenced entity does not exist."""

    status_code = 404
    code = "NotFound"

    def __init__(self, entity: str, entity_id: Any, code: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found",
            code=code or f"{entity.replace(' ', '')}NotFound",
            details={"entity_id": str(entity_id)},
        )


class StateConflictError(WorkflowError):
    """The entity is not in a state that allows the requested transition."""

    status_code = 409
    code = "StateConflict"

    def __init__(
        self,
        message: str,
        current_state: Any = None,
        expected_state: Any = None,
        code: Optional[str] = None,
    ):
        self.current_state = current_state
        self.expected_state = expected_state
        details = {}
        if current_state is not None:
            details["current_state"] = _state_repr(current_state)
        if expected_state is not None:
            details["expected_state"] = _state_repr(expected_state)
        super().__init__(message, code=code, details=details)


class InvalidPOStatusError(StateConflictError):
    code = "InvalidPOStatus"


class GRNAlreadyExistsError(StateConflictError):
    code = "GRNAlreadyExists"


class AlreadyVerifiedError(StateConflictError):
    code = "AlreadyVerified"


class NotInDiscrepancyStateError(StateConflictError):
    code = "NotInDiscrepancyState"


class NotYetVerifiedError(StateConflictError):
    code = "NotYetVerified"


class AlreadyAddedError(StateConflictError):
    code = "AlreadyAdded"


class AlreadyProcessedError(StateConflictError):
    code = "AlreadyProcessed"


class PersistenceError(WorkflowError):
    """
    Database write failed (constraint violation, lost connection, duplicate
    document number). Safe to retry; the message never carries driver output.
    """

    status_code = 503
    code = "PersistenceError"

    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__(
            "The operation could not be saved. Please retry.",
            details={"retryable": True, **(details or {})},
        )


def _state_repr(state: Any) -> Any:
    if isinstance(state, (list, tuple, set, frozenset)):
        return [_state_repr(s) for s in state]
    return getattr(state, "value", state)
