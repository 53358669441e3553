"""
Invoice lifecycle rules

Which actions are allowed from which status, and what status they lead to.
Authorization and persistence are handled by the service layer.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from invex.errors import BusinessRuleError, InvalidTransitionError
from invex.models.invoice import InvoiceStatus


class InvoiceAction(str, Enum):
    EDIT = "edit"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PAID = "mark_paid"
    POST_TO_GL = "post_to_gl"
    PROCESS_OCR = "process_ocr"
    ASSIGN_ACCOUNT = "assign_account"


_NOT_PAID = frozenset(s for s in InvoiceStatus if s != InvoiceStatus.PAID)

ALLOWED_FROM: Dict[InvoiceAction, FrozenSet[InvoiceStatus]] = {
    InvoiceAction.EDIT: _NOT_PAID,
    InvoiceAction.DELETE: _NOT_PAID,
    InvoiceAction.PROCESS_OCR: _NOT_PAID,
    InvoiceAction.ASSIGN_ACCOUNT: frozenset(InvoiceStatus),
    InvoiceAction.APPROVE: frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PENDING_APPROVAL}),
    InvoiceAction.REJECT: frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PENDING_APPROVAL, InvoiceStatus.APPROVED}),
    InvoiceAction.MARK_PAID: frozenset({InvoiceStatus.APPROVED}),
    InvoiceAction.POST_TO_GL: frozenset({InvoiceStatus.APPROVED, InvoiceStatus.PAID}),
}

RESULTING_STATUS: Dict[InvoiceAction, InvoiceStatus] = {
    InvoiceAction.APPROVE: InvoiceStatus.APPROVED,
    InvoiceAction.REJECT: InvoiceStatus.REJECTED,
    InvoiceAction.MARK_PAID: InvoiceStatus.PAID,
}

# Actions refused once the invoice has been posted to the ledger
BLOCKED_WHEN_POSTED = frozenset({
    InvoiceAction.EDIT,
    InvoiceAction.DELETE,
    InvoiceAction.PROCESS_OCR,
    InvoiceAction.ASSIGN_ACCOUNT,
    InvoiceAction.REJECT,
})


def _message(action: InvoiceAction, status: InvoiceStatus) -> str:
    if action == InvoiceAction.MARK_PAID:
        return "Only approved invoices can be marked as paid"
    if action == InvoiceAction.POST_TO_GL:
        return "Invoice must be Approved or Paid before posting to GL"
    if action in (InvoiceAction.EDIT, InvoiceAction.DELETE, InvoiceAction.PROCESS_OCR):
        return f"Cannot {action.value.replace('_', ' ')} a paid invoice"
    return f"Cannot {action.value.replace('_', ' ')} invoice with status: {status.value}"


def can(action: InvoiceAction, status: InvoiceStatus, is_posted: bool = False) -> bool:
    if is_posted and action in BLOCKED_WHEN_POSTED:
        return False
    return InvoiceStatus(status) in ALLOWED_FROM[action]


def ensure_allowed(action: InvoiceAction, status: InvoiceStatus, is_posted: bool = False) -> None:
    """
    Raise if ``action`` may not be taken on an invoice in ``status``

    Raises:
        BusinessRuleError: the invoice has been posted to GL
        InvalidTransitionError: the status does not allow the action
    """
    status = InvoiceStatus(status)
    if is_posted and action in BLOCKED_WHEN_POSTED:
        raise BusinessRuleError("Invoice has already been posted to GL and can no longer be changed")
    if status not in ALLOWED_FROM[action]:
        raise InvalidTransitionError(_message(action, status), current_status=status.value, action=action.value)


def next_status(action: InvoiceAction, status: InvoiceStatus, is_posted: bool = False) -> Optional[InvoiceStatus]:
    """Validate the action and return the resulting status (None when status is unchanged)"""
    ensure_allowed(action, status, is_posted)
    return RESULTING_STATUS.get(action)
