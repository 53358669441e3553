"""
Reconciliation of parsed invoice data with the stored invoice

``reconcile`` is a pure function: it takes the current header state, the
current line items, a parse result and the resolved template, and returns a
new ``ReconciliationResult``. Applying the result is the caller's job.

Manually entered line items always survive; only line items a previous
extraction produced are replaced.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

from invex.models.invoice import (
    InvoiceState,
    LineItemData,
    ParseResult,
    ParsedLineItem,
    ReconciliationResult,
    VendorTemplateData,
    ZERO,
    to_money,
)

logger = logging.getLogger(__name__)


def compute_totals(state: InvoiceState, line_items: Iterable[LineItemData]) -> InvoiceState:
    """Recompute sub total, line tax and invoice total from the line items"""
    items = list(line_items)
    sub_total = to_money(sum((item.amount for item in items), ZERO))
    tax_amount = to_money(sum((item.tax_amount for item in items), ZERO))
    total = to_money(sub_total + state.advance_tax_amount + state.sales_tax_input_amount)
    return state.model_copy(update={
        'sub_total': sub_total,
        'tax_amount': tax_amount,
        'total_amount': total,
    })


def renumber(items: Sequence[LineItemData]) -> Tuple[LineItemData, ...]:
    return tuple(item.model_copy(update={'line_number': n}) for n, item in enumerate(items, start=1))


def line_item_from_parsed(parsed: ParsedLineItem, template: Optional[VendorTemplateData]) -> LineItemData:
    tax_rate = ZERO
    account_id = None
    if template is not None:
        if template.default_tax_rate is not None:
            tax_rate = Decimal(template.default_tax_rate)
        account_id = template.default_chart_of_account_id
    # Amount is recomputed from quantity and unit price, not the printed amount
    return LineItemData(
        description=parsed.description,
        quantity=parsed.quantity,
        unit_price=parsed.unit_price,
        tax_rate=tax_rate,
        chart_of_account_id=account_id,
        is_ocr_extracted=True,
        ocr_confidence_score=parsed.confidence,
    )


def reconcile(
    state: InvoiceState,
    existing_lines: Sequence[LineItemData],
    parsed: ParseResult,
    template: Optional[VendorTemplateData] = None,
    resolved_vendor_id: Optional[str] = None,
) -> ReconciliationResult:
    """
    Merge a parse result into the invoice

    Args:
        state: Current invoice header
        existing_lines: Current line items (manual and extracted)
        parsed: Parse result for the invoice document
        template: Resolved vendor template, if any
        resolved_vendor_id: Vendor matched for the invoice, if any

    Returns:
        New header state and the complete replacement line-item set
    """
    updates = {}
    if parsed.invoice_number:
        updates['invoice_number'] = parsed.invoice_number
    if parsed.invoice_date is not None:
        updates['invoice_date'] = parsed.invoice_date
    if parsed.due_date is not None:
        updates['due_date'] = parsed.due_date

    vendor_assigned = False
    if state.vendor_id is None and resolved_vendor_id:
        updates['vendor_id'] = resolved_vendor_id
        vendor_assigned = True

    if parsed.advance_tax_amount is not None:
        updates['advance_tax_amount'] = to_money(parsed.advance_tax_amount)
    if parsed.sales_tax_input_amount is not None:
        updates['sales_tax_input_amount'] = to_money(parsed.sales_tax_input_amount)

    if template is not None:
        if state.advance_tax_account_id is None and template.default_advance_tax_account_id:
            updates['advance_tax_account_id'] = template.default_advance_tax_account_id
        if state.sales_tax_input_account_id is None and template.default_sales_tax_input_account_id:
            updates['sales_tax_input_account_id'] = template.default_sales_tax_input_account_id

    manual = [item for item in existing_lines if not item.is_ocr_extracted]
    removed = len(existing_lines) - len(manual)
    manual.sort(key=lambda item: item.line_number)
    extracted = [line_item_from_parsed(p, template) for p in parsed.line_items]
    line_items = renumber(manual + extracted)

    new_state = compute_totals(state.model_copy(update=updates), line_items)

    logger.debug(
        f"Reconciled invoice {new_state.invoice_number}: kept {len(manual)} manual lines, "
        f"replaced {removed} extracted lines with {len(extracted)}"
    )
    return ReconciliationResult(
        state=new_state,
        line_items=line_items,
        vendor_assigned=vendor_assigned,
        template_applied=template is not None,
        removed_ocr_lines=removed,
    )
