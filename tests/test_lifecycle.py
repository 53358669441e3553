"""
Tests for invoice lifecycle rules
"""

import pytest

from invex.errors import BusinessRuleError, InvalidTransitionError
from invex.models.invoice import InvoiceStatus
from invex.processors.invoice.lifecycle import InvoiceAction, can, ensure_allowed, next_status


class TestTransitions:

    def test_approve(self):
        """Draft and pending invoices can be approved"""
        assert next_status(InvoiceAction.APPROVE, InvoiceStatus.DRAFT) == InvoiceStatus.APPROVED
        assert next_status(InvoiceAction.APPROVE, InvoiceStatus.PENDING_APPROVAL) == InvoiceStatus.APPROVED

    def test_reject(self):
        """Rejection is possible up to approval"""
        for status in (InvoiceStatus.DRAFT, InvoiceStatus.PENDING_APPROVAL, InvoiceStatus.APPROVED):
            assert next_status(InvoiceAction.REJECT, status) == InvoiceStatus.REJECTED
        assert can(InvoiceAction.REJECT, InvoiceStatus.PAID) is False

    def test_mark_paid_requires_approved(self):
        """Only approved invoices can be paid"""
        assert next_status(InvoiceAction.MARK_PAID, InvoiceStatus.APPROVED) == InvoiceStatus.PAID
        for status in InvoiceStatus:
            if status != InvoiceStatus.APPROVED:
                with pytest.raises(InvalidTransitionError, match="Only approved invoices can be marked as paid"):
                    next_status(InvoiceAction.MARK_PAID, status)

    def test_approve_from_rejected_fails(self):
        """Rejected is terminal for approval"""
        with pytest.raises(InvalidTransitionError) as excinfo:
            ensure_allowed(InvoiceAction.APPROVE, InvoiceStatus.REJECTED)
        assert excinfo.value.current_status == 'Rejected'
        assert excinfo.value.action == 'approve'
        assert 'Rejected' in str(excinfo.value)

    def test_posting_requires_approved_or_paid(self):
        """Posting is open to approved and paid invoices"""
        assert can(InvoiceAction.POST_TO_GL, InvoiceStatus.APPROVED)
        assert can(InvoiceAction.POST_TO_GL, InvoiceStatus.PAID)
        with pytest.raises(InvalidTransitionError, match="Approved or Paid"):
            ensure_allowed(InvoiceAction.POST_TO_GL, InvoiceStatus.DRAFT)

    def test_non_status_actions_keep_status(self):
        """Edits and reprocessing leave the status unchanged"""
        assert next_status(InvoiceAction.EDIT, InvoiceStatus.DRAFT) is None
        assert next_status(InvoiceAction.PROCESS_OCR, InvoiceStatus.APPROVED) is None

    def test_status_given_as_string(self):
        """Stored status strings are accepted"""
        assert next_status(InvoiceAction.APPROVE, 'Draft') == InvoiceStatus.APPROVED


class TestPaidAndPosted:

    def test_paid_invoices_are_frozen(self):
        """Paid invoices cannot be edited, deleted or reprocessed"""
        for action, word in [(InvoiceAction.EDIT, 'edit'), (InvoiceAction.DELETE, 'delete'),
                             (InvoiceAction.PROCESS_OCR, 'process ocr')]:
            with pytest.raises(InvalidTransitionError, match=f"Cannot {word} a paid invoice"):
                ensure_allowed(action, InvoiceStatus.PAID)

    def test_account_assignment_allowed_on_paid(self):
        """Accounts may still be assigned to a paid invoice that is not posted"""
        assert can(InvoiceAction.ASSIGN_ACCOUNT, InvoiceStatus.PAID) is True

    def test_posted_invoices_are_frozen(self):
        """Nothing but posting checks pass once posted"""
        for action in (InvoiceAction.EDIT, InvoiceAction.DELETE, InvoiceAction.PROCESS_OCR,
                       InvoiceAction.ASSIGN_ACCOUNT, InvoiceAction.REJECT):
            assert can(action, InvoiceStatus.APPROVED, is_posted=True) is False
            with pytest.raises(BusinessRuleError, match="already been posted"):
                ensure_allowed(action, InvoiceStatus.APPROVED, is_posted=True)

    def test_mark_paid_after_posting(self):
        """A posted approved invoice can still be paid"""
        assert next_status(InvoiceAction.MARK_PAID, InvoiceStatus.APPROVED, is_posted=True) == InvoiceStatus.PAID
