"""
Purchase Order State Machine

This module is the SINGLE SOURCE OF TRUTH for PO status transitions driven
by the receiving workflow. GRN creation, discrepancy decisions, inventory
posting and approval side effects all move the PO through transition_po().

    sent / grn_approved -> received -> grn_requested -> reopened -> completed
    received -> rejected (discrepancy rejected)
"""

import logging
from typing import List, Dict
from datetime import datetime, timezone

from erp_receiving.exceptions import InvalidPOStatusError
from erp_receiving.models.purchase import POStatus


logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
PO_TRANSITIONS: Dict[str, List[str]] = {
    POStatus.DRAFT.value: [
        POStatus.SENT.value,            # Released to vendor
    ],
    POStatus.SENT.value: [
        POStatus.GRN_REQUESTED.value,   # Procurement asks inventory to receive
        POStatus.RECEIVED.value,        # First GRN created
        POStatus.REJECTED.value,
    ],
    POStatus.GRN_REQUESTED.value: [
        POStatus.GRN_APPROVED.value,    # Inventory accepted the request
        POStatus.RECEIVED.value,        # GRN created against the request
    ],
    POStatus.GRN_APPROVED.value: [
        POStatus.RECEIVED.value,        # First GRN created
    ],
    POStatus.RECEIVED.value: [
        POStatus.GRN_REQUESTED.value,   # Follow-up GRN requested
        POStatus.REOPENED.value,        # Shortage complaint approved
        POStatus.EXCESS_RECEIVED.value, # Excess accepted
        POStatus.COMPLETED.value,       # Stock posted
        POStatus.REJECTED.value,        # Discrepancy rejected
    ],
    POStatus.EXCESS_RECEIVED.value: [
        POStatus.REOPENED.value,
        POStatus.COMPLETED.value,
    ],
    POStatus.REOPENED.value: [
        POStatus.GRN_REQUESTED.value,
        POStatus.RECEIVED.value,        # Follow-up GRN created
        POStatus.COMPLETED.value,
    ],
    POStatus.COMPLETED.value: [
        POStatus.REOPENED.value,        # Shortage complaint approved after posting
        POStatus.GRN_REQUESTED.value,   # Follow-up GRN for an open shortage request
    ],
    POStatus.REJECTED.value: [
        POStatus.GRN_REQUESTED.value,   # Corrective GRN explicitly requested
    ],
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (POStatus.DRAFT.value, POStatus.SENT.value): "Send to Vendor",
    (POStatus.SENT.value, POStatus.GRN_REQUESTED.value): "Request GRN",
    (POStatus.SENT.value, POStatus.RECEIVED.value): "Receive Goods",
    (POStatus.SENT.value, POStatus.REJECTED.value): "Reject",
    (POStatus.GRN_REQUESTED.value, POStatus.GRN_APPROVED.value): "Approve GRN Request",
    (POStatus.GRN_REQUESTED.value, POStatus.RECEIVED.value): "Receive Goods",
    (POStatus.GRN_APPROVED.value, POStatus.RECEIVED.value): "Receive Goods",
    (POStatus.RECEIVED.value, POStatus.GRN_REQUESTED.value): "Request Follow-up GRN",
    (POStatus.RECEIVED.value, POStatus.REOPENED.value): "Reopen for Shortage",
    (POStatus.RECEIVED.value, POStatus.EXCESS_RECEIVED.value): "Accept Excess",
    (POStatus.RECEIVED.value, POStatus.COMPLETED.value): "Post to Inventory",
    (POStatus.RECEIVED.value, POStatus.REJECTED.value): "Reject Discrepancy",
    (POStatus.EXCESS_RECEIVED.value, POStatus.REOPENED.value): "Reopen for Shortage",
    (POStatus.EXCESS_RECEIVED.value, POStatus.COMPLETED.value): "Post to Inventory",
    (POStatus.REOPENED.value, POStatus.GRN_REQUESTED.value): "Request Follow-up GRN",
    (POStatus.REOPENED.value, POStatus.RECEIVED.value): "Receive Shortage",
    (POStatus.REOPENED.value, POStatus.COMPLETED.value): "Post to Inventory",
    (POStatus.COMPLETED.value, POStatus.REOPENED.value): "Reopen for Shortage",
    (POStatus.COMPLETED.value, POStatus.GRN_REQUESTED.value): "Request Follow-up GRN",
    (POStatus.REJECTED.value, POStatus.GRN_REQUESTED.value): "Request Corrective GRN",
}

# Statuses from which a GRN may be created
FIRST_GRN_STATUSES = [POStatus.GRN_APPROVED.value, POStatus.SENT.value]
FOLLOW_UP_GRN_STATUSES = [POStatus.REOPENED.value, POStatus.GRN_REQUESTED.value]


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _value(status) -> str:
    return getattr(status, "value", status)


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return _value(new_status) in PO_TRANSITIONS.get(_value(current_status), [])


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return PO_TRANSITIONS.get(_value(current_status), [])


def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    current, new = _value(current_status), _value(new_status)
    return TRANSITION_ACTIONS.get((current, new), f"{current} -> {new}")


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition.

    Raises:
        InvalidPOStatusError: naming the current status and the allowed targets
    """
    current, new = _value(current_status), _value(new_status)
    if current == new:
        return

    if not can_transition(current, new):
        allowed = get_allowed_transitions(current)
        raise InvalidPOStatusError(
            f"Cannot change PO from '{current}' to '{new}'. "
            f"Allowed transitions: {', '.join(allowed) or 'none'}",
            current_state=current,
            expected_state=allowed,
        )


def can_create_grn(status: str, has_existing_grn: bool) -> bool:
    """Can a GRN be created against a PO in this status?"""
    if has_existing_grn:
        return _value(status) in FOLLOW_UP_GRN_STATUSES
    return _value(status) in FIRST_GRN_STATUSES + FOLLOW_UP_GRN_STATUSES


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_po(po, new_status: str, user_id=None) -> None:
    """
    Transition a PO to a new status.

    Validates the transition, updates the status and stamps the audit field
    matching the new status.

    Args:
        po: PurchaseOrder model instance
        new_status: Target status
        user_id: ID of user performing the action (for audit)

    Raises:
        InvalidPOStatusError: If transition is not allowed
    """
    new_status = _value(new_status)
    validate_transition(po.status, new_status)

    if po.status != new_status:
        logger.info(
            f"PO {po.po_number}: {get_transition_action(po.status, new_status)} "
            f"({po.status} -> {new_status}) by {user_id}"
        )
    po.status = new_status
    po.status_changed_by = user_id

    now = datetime.now(timezone.utc)

    if new_status == POStatus.SENT.value:
        po.sent_at = now

    elif new_status == POStatus.GRN_REQUESTED.value:
        po.grn_requested_at = now

    elif new_status == POStatus.RECEIVED.value:
        po.received_date = now.date()

    elif new_status == POStatus.REOPENED.value:
        po.reopened_at = now

    elif new_status == POStatus.COMPLETED.value:
        po.completed_at = now


def revert_po_receipt(po, previous_status: str, user_id=None) -> None:
    """
    Put a PO back where it was before a GRN that is being deleted.

    Only statuses a GRN can be raised from are valid targets; this is the one
    way back that bypasses PO_TRANSITIONS.

    Raises:
        InvalidPOStatusError: previous_status does not allow a GRN
    """
    previous_status = _value(previous_status)
    allowed = FIRST_GRN_STATUSES + FOLLOW_UP_GRN_STATUSES
    if previous_status not in allowed:
        raise InvalidPOStatusError(
            f"Cannot restore PO {po.po_number} to '{previous_status}'",
            current_state=po.status,
            expected_state=allowed,
        )
    if po.status == previous_status:
        return

    logger.info(
        f"PO {po.po_number}: Undo Receipt ({po.status} -> {previous_status}) by {user_id}"
    )
    po.status = previous_status
    po.status_changed_by = user_id
    if previous_status in FIRST_GRN_STATUSES:
        po.received_date = None
