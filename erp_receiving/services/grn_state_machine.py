"""
GRN State Machine

A GRN has two orthogonal status axes, ``status`` and
``verification_status``. Not every combination is reachable; this module
declares the reachable pairs and every legal move between them in one table.
All GRN state changes go through apply_grn_transition().

    (draft, pending)
        | SUBMIT_RECEIVED
    (received, pending) ----------------- REQUEST_VENDOR_REVERT ---> (vendor_revert_requested, *)
        | VERIFY                 | FLAG_DISCREPANCY
    (inspected, verified)    (received, discrepancy)
        |                        | APPROVE_DISCREPANCY       | REJECT_DISCREPANCY
        |                    (approved, approved)         (rejected, rejected)
        | POST_INVENTORY         | POST_INVENTORY
    (approved, verified)     (approved, approved)

Excess handling moves (received, pending|discrepancy) to (received, approved)
when the excess is rejected, or (excess_received, approved) when accepted.
"""

from enum import Enum
from typing import Dict, List, Tuple

from erp_receiving.exceptions import StateConflictError
from erp_receiving.models.purchase import GRNStatus as S, VerificationStatus as V


GRNState = Tuple[str, str]


class GRNAction(str, Enum):
    """Operations that change GRN state."""
    SUBMIT_RECEIVED = "submit_received"
    VERIFY = "verify"
    FLAG_DISCREPANCY = "flag_discrepancy"
    APPROVE_DISCREPANCY = "approve_discrepancy"
    REJECT_DISCREPANCY = "reject_discrepancy"
    REQUEST_VENDOR_REVERT = "request_vendor_revert"
    REJECT_EXCESS = "reject_excess"
    ACCEPT_EXCESS = "accept_excess"
    POST_INVENTORY = "post_inventory"


def _state(status: S, verification: V) -> GRNState:
    return (status.value, verification.value)


RECEIVED_PENDING = _state(S.RECEIVED, V.PENDING)
RECEIVED_DISCREPANCY = _state(S.RECEIVED, V.DISCREPANCY)
REVERT_PENDING = _state(S.VENDOR_REVERT_REQUESTED, V.PENDING)
REVERT_DISCREPANCY = _state(S.VENDOR_REVERT_REQUESTED, V.DISCREPANCY)


# (action, from_state) -> to_state
GRN_TRANSITIONS: Dict[Tuple[GRNAction, GRNState], GRNState] = {
    (GRNAction.SUBMIT_RECEIVED, _state(S.DRAFT, V.PENDING)): RECEIVED_PENDING,

    (GRNAction.VERIFY, RECEIVED_PENDING): _state(S.INSPECTED, V.VERIFIED),
    (GRNAction.VERIFY, REVERT_PENDING): _state(S.INSPECTED, V.VERIFIED),

    (GRNAction.FLAG_DISCREPANCY, RECEIVED_PENDING): RECEIVED_DISCREPANCY,
    (GRNAction.FLAG_DISCREPANCY, REVERT_PENDING): REVERT_DISCREPANCY,

    (GRNAction.APPROVE_DISCREPANCY, RECEIVED_DISCREPANCY): _state(S.APPROVED, V.APPROVED),
    (GRNAction.APPROVE_DISCREPANCY, REVERT_DISCREPANCY): _state(S.APPROVED, V.APPROVED),

    (GRNAction.REJECT_DISCREPANCY, RECEIVED_DISCREPANCY): _state(S.REJECTED, V.REJECTED),
    (GRNAction.REJECT_DISCREPANCY, REVERT_DISCREPANCY): _state(S.REJECTED, V.REJECTED),

    (GRNAction.REQUEST_VENDOR_REVERT, RECEIVED_PENDING): REVERT_PENDING,
    (GRNAction.REQUEST_VENDOR_REVERT, RECEIVED_DISCREPANCY): REVERT_DISCREPANCY,

    (GRNAction.REJECT_EXCESS, RECEIVED_PENDING): _state(S.RECEIVED, V.APPROVED),
    (GRNAction.REJECT_EXCESS, RECEIVED_DISCREPANCY): _state(S.RECEIVED, V.APPROVED),

    (GRNAction.ACCEPT_EXCESS, RECEIVED_PENDING): _state(S.EXCESS_RECEIVED, V.APPROVED),
    (GRNAction.ACCEPT_EXCESS, RECEIVED_DISCREPANCY): _state(S.EXCESS_RECEIVED, V.APPROVED),

    (GRNAction.POST_INVENTORY, _state(S.INSPECTED, V.VERIFIED)): _state(S.APPROVED, V.VERIFIED),
    (GRNAction.POST_INVENTORY, _state(S.APPROVED, V.APPROVED)): _state(S.APPROVED, V.APPROVED),
    (GRNAction.POST_INVENTORY, _state(S.RECEIVED, V.APPROVED)): _state(S.APPROVED, V.APPROVED),
    (GRNAction.POST_INVENTORY, _state(S.EXCESS_RECEIVED, V.APPROVED)): _state(S.APPROVED, V.APPROVED),
}

REACHABLE_STATES = frozenset(
    [state for (_, state) in GRN_TRANSITIONS] + list(GRN_TRANSITIONS.values())
)


def allowed_from_states(action: GRNAction) -> List[GRNState]:
    """States from which ``action`` may be applied."""
    return [state for (a, state) in GRN_TRANSITIONS if a == action]


def can_apply(state: GRNState, action: GRNAction) -> bool:
    return (action, tuple(state)) in GRN_TRANSITIONS


def next_state(state: GRNState, action: GRNAction) -> GRNState:
    """
    Resolve the state reached by applying ``action``.

    Raises:
        StateConflictError: naming the current state and the states the
            action is allowed from
    """
    target = GRN_TRANSITIONS.get((action, tuple(state)))
    if target is None:
        expected = [f"{s}/{v}" for (s, v) in allowed_from_states(action)]
        raise StateConflictError(
            f"Cannot {action.value.replace('_', ' ')} a GRN in state "
            f"status='{state[0]}', verification_status='{state[1]}'",
            current_state=f"{state[0]}/{state[1]}",
            expected_state=expected,
        )
    return target


def apply_grn_transition(grn, action: GRNAction) -> GRNState:
    """Validate and apply ``action`` to a GoodsReceiptNote instance."""
    status, verification_status = next_state(grn.state, action)
    grn.status = status
    grn.verification_status = verification_status
    return status, verification_status
