"""
GL Posting Validator

Decides whether an invoice may be posted to the general ledger. The checks
run in a fixed order and the first failure is reported; the validator never
changes the invoice.
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from invex.models.invoice import (
    InvoiceStatus,
    JournalEntry,
    LineItemData,
    PostingDecision,
    PostingReason,
    VendorTemplateData,
    ZERO,
    to_money,
)

logger = logging.getLogger(__name__)

POSTABLE_STATUSES = frozenset({InvoiceStatus.APPROVED, InvoiceStatus.PAID})


class PostingSnapshot:
    """The invoice fields the validator reads"""

    def __init__(
        self,
        status: InvoiceStatus,
        is_posted_to_gl: bool,
        sub_total: Decimal,
        total_amount: Decimal,
        advance_tax_amount: Decimal = ZERO,
        sales_tax_input_amount: Decimal = ZERO,
        advance_tax_account_id: Optional[str] = None,
        sales_tax_input_account_id: Optional[str] = None,
        line_items: Sequence[LineItemData] = (),
    ):
        self.status = InvoiceStatus(status)
        self.is_posted_to_gl = bool(is_posted_to_gl)
        self.sub_total = to_money(sub_total)
        self.total_amount = to_money(total_amount)
        self.advance_tax_amount = to_money(advance_tax_amount)
        self.sales_tax_input_amount = to_money(sales_tax_input_amount)
        self.advance_tax_account_id = advance_tax_account_id
        self.sales_tax_input_account_id = sales_tax_input_account_id
        self.line_items = tuple(line_items)

    @classmethod
    def from_invoice(cls, invoice) -> 'PostingSnapshot':
        return cls(
            status=invoice.status,
            is_posted_to_gl=invoice.is_posted_to_gl,
            sub_total=invoice.sub_total,
            total_amount=invoice.total_amount,
            advance_tax_amount=invoice.advance_tax_amount,
            sales_tax_input_amount=invoice.sales_tax_input_amount,
            advance_tax_account_id=invoice.advance_tax_account_id,
            sales_tax_input_account_id=invoice.sales_tax_input_account_id,
            line_items=[LineItemData.model_validate(item) for item in invoice.line_items],
        )

    @property
    def line_amount_total(self) -> Decimal:
        return to_money(sum((item.amount for item in self.line_items), ZERO))

    @property
    def total_debits(self) -> Decimal:
        return to_money(self.line_amount_total + self.advance_tax_amount + self.sales_tax_input_amount)


def _fmt(amount: Decimal) -> str:
    return f"{amount:,.2f}"


class GLPostingValidator:
    """
    Ordered posting checks

    1. not already posted
    2. status is Approved or Paid
    3. every line item has an account
    4. line amounts add up to the sub total
    5. advance tax account present when required
    6. sales tax input account present when required
    7. vendor template names a payable account
    8. debits equal credits
    """

    def __init__(self):
        self.checks: List[Callable[[PostingSnapshot, Optional[VendorTemplateData]], Optional[PostingDecision]]] = [
            self._check_not_posted,
            self._check_status,
            self._check_line_accounts,
            self._check_sub_total,
            self._check_advance_tax_account,
            self._check_sales_tax_input_account,
            self._check_payable_account,
            self._check_balanced,
        ]

    def validate(self, invoice: PostingSnapshot, template: Optional[VendorTemplateData]) -> PostingDecision:
        for check in self.checks:
            decision = check(invoice, template)
            if decision is not None:
                logger.debug(f"Posting rejected: {decision.reason.value}")
                return decision
        return PostingDecision.allow()

    @staticmethod
    def _check_not_posted(invoice, template):
        if invoice.is_posted_to_gl:
            return PostingDecision.reject(PostingReason.ALREADY_POSTED, "Invoice has already been posted to GL")

    @staticmethod
    def _check_status(invoice, template):
        if invoice.status not in POSTABLE_STATUSES:
            return PostingDecision.reject(
                PostingReason.INVALID_STATUS, "Invoice must be Approved or Paid before posting to GL")

    @staticmethod
    def _check_line_accounts(invoice, template):
        missing = sum(1 for item in invoice.line_items if not item.chart_of_account_id)
        if missing:
            return PostingDecision.reject(
                PostingReason.LINE_ITEM_ACCOUNT_MISSING,
                f"{missing} line item(s) are missing a GL account assignment.")

    @staticmethod
    def _check_sub_total(invoice, template):
        if invoice.line_amount_total != invoice.sub_total:
            return PostingDecision.reject(
                PostingReason.SUBTOTAL_MISMATCH,
                f"Line item amounts ({_fmt(invoice.line_amount_total)}) do not match the sub total "
                f"({_fmt(invoice.sub_total)}).")

    @staticmethod
    def _check_advance_tax_account(invoice, template):
        required = template is None or template.has_advance_tax_account
        if required and invoice.advance_tax_amount > 0 and not invoice.advance_tax_account_id:
            return PostingDecision.reject(
                PostingReason.ADVANCE_TAX_ACCOUNT_MISSING,
                "Advance Tax account must be assigned when Advance Tax amount is set.")

    @staticmethod
    def _check_sales_tax_input_account(invoice, template):
        required = template is None or template.has_sales_tax_input_account
        if required and invoice.sales_tax_input_amount > 0 and not invoice.sales_tax_input_account_id:
            return PostingDecision.reject(
                PostingReason.SALES_TAX_INPUT_ACCOUNT_MISSING,
                "Sales Tax Input account must be assigned when Sales Tax Input amount is set.")

    @staticmethod
    def _check_payable_account(invoice, template):
        if template is None or not template.default_payable_vendors_account_id:
            return PostingDecision.reject(
                PostingReason.PAYABLE_ACCOUNT_MISSING,
                "Payable Vendors account must be configured in the vendor template before posting to GL.")

    @staticmethod
    def _check_balanced(invoice, template):
        debits = invoice.total_debits
        credits = invoice.total_amount
        if debits != credits:
            return PostingDecision.reject(
                PostingReason.UNBALANCED,
                f"Accounting equation not balanced. Total Debits ({_fmt(debits)}) ≠ "
                f"Total Credits ({_fmt(credits)})")


def build_journal_entries(
    invoice: PostingSnapshot,
    template: Optional[VendorTemplateData],
    accounts: Dict[str, object],
    invoice_number: str = '',
) -> List[JournalEntry]:
    """
    Journal lines for the invoice: one debit per line-item account, debits
    for the document-level taxes and one payables credit of the total.

    ``accounts`` maps account ids to objects with ``code`` and ``name``.
    """
    def describe(account_id):
        account = accounts.get(account_id) if account_id else None
        return {
            'account_id': account_id,
            'account_code': getattr(account, 'code', None),
            'account_name': getattr(account, 'name', None),
        }

    per_account: 'OrderedDict[Optional[str], Decimal]' = OrderedDict()
    for item in invoice.line_items:
        per_account[item.chart_of_account_id] = per_account.get(item.chart_of_account_id, ZERO) + item.amount

    entries = [
        JournalEntry(description=f"Invoice {invoice_number} expenses", debit=to_money(amount), **describe(account_id))
        for account_id, amount in per_account.items()
    ]
    if invoice.advance_tax_amount > 0:
        entries.append(JournalEntry(description=f"Invoice {invoice_number} advance tax",
                                    debit=invoice.advance_tax_amount,
                                    **describe(invoice.advance_tax_account_id)))
    if invoice.sales_tax_input_amount > 0:
        entries.append(JournalEntry(description=f"Invoice {invoice_number} sales tax input",
                                    debit=invoice.sales_tax_input_amount,
                                    **describe(invoice.sales_tax_input_account_id)))

    payable_id = template.default_payable_vendors_account_id if template else None
    entries.append(JournalEntry(description=f"Invoice {invoice_number} payable",
                                credit=invoice.total_amount, **describe(payable_id)))
    return entries
