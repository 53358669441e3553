"""
Tests for reconciling parse results into invoices
"""

from datetime import date
from decimal import Decimal

from invex.models.invoice import (
    InvoiceState,
    LineItemData,
    ParsedLineItem,
    ParseResult,
    VendorTemplateData,
)
from invex.processors.invoice.reconciliation import compute_totals, reconcile


def make_state(**overrides):
    values = dict(
        invoice_number='DRAFT-0001',
        invoice_date=date(2024, 1, 1),
        due_date=date(2024, 1, 31),
    )
    values.update(overrides)
    return InvoiceState(**values)


def manual_line(number, description, quantity, price, **extra):
    return LineItemData(line_number=number, description=description, quantity=quantity,
                        unit_price=price, is_ocr_extracted=False, **extra)


def ocr_line(number, description, quantity, price):
    return LineItemData(line_number=number, description=description, quantity=quantity,
                        unit_price=price, is_ocr_extracted=True)


def parsed_line(description, quantity, price, amount=None):
    quantity = Decimal(str(quantity))
    price = Decimal(str(price))
    return ParsedLineItem(description=description, quantity=quantity, unit_price=price,
                          amount=amount if amount is not None else quantity * price)


class TestLineItemMerge:
    """Manual lines survive, extracted lines are replaced"""

    def test_two_manual_three_extracted_one_new(self):
        """2 manual + 3 prior extracted lines with 1 new extracted line gives 3 lines"""
        existing = [
            manual_line(1, 'Freight', 1, '500'),
            ocr_line(2, 'Old A', 1, '10'),
            manual_line(3, 'Handling', 2, '100'),
            ocr_line(4, 'Old B', 1, '20'),
            ocr_line(5, 'Old C', 1, '30'),
        ]
        parsed = ParseResult(line_items=(parsed_line('Chairs', 2, '1500'),))

        result = reconcile(make_state(), existing, parsed)

        assert len(result.line_items) == 3
        assert [item.description for item in result.line_items] == ['Freight', 'Handling', 'Chairs']
        assert [item.line_number for item in result.line_items] == [1, 2, 3]
        assert [item.is_ocr_extracted for item in result.line_items] == [False, False, True]
        assert result.removed_ocr_lines == 3

    def test_manual_lines_keep_their_data(self):
        """Account and tax of a manual line are untouched"""
        existing = [manual_line(1, 'Consulting', 1, '1000', tax_rate=Decimal('16'), chart_of_account_id='acc-1')]

        result = reconcile(make_state(), existing, ParseResult())

        item = result.line_items[0]
        assert item.chart_of_account_id == 'acc-1'
        assert item.tax_amount == Decimal('160.00')

    def test_sub_total_equals_sum_of_line_amounts(self):
        """Sub total is recomputed from every line, manual and extracted"""
        mixes = [
            ([manual_line(1, 'A item', 3, '33.33')], [parsed_line('B item', 1, '0.01')]),
            ([], [parsed_line('C item', 7, '19.99'), parsed_line('D item', 2, '0.5')]),
            ([manual_line(1, 'E item', 1, '1'), ocr_line(2, 'F item', 9, '9')], []),
        ]
        for manual, new in mixes:
            result = reconcile(make_state(), manual, ParseResult(line_items=tuple(new)))
            assert result.state.sub_total == sum((item.amount for item in result.line_items), Decimal('0'))

    def test_amount_recomputed_from_quantity_and_price(self):
        """The printed amount is not trusted"""
        parsed = ParseResult(line_items=(parsed_line('Desk', 2, '100', amount=Decimal('999.00')),))

        result = reconcile(make_state(), [], parsed)

        assert result.line_items[0].amount == Decimal('200.00')


class TestTemplateDefaults:
    """Template defaults fill gaps only"""

    def test_default_tax_rate_and_account_applied_to_new_lines(self):
        """New extracted lines take the template tax rate and account"""
        template = VendorTemplateData(default_tax_rate=Decimal('17'), default_chart_of_account_id='exp-1')
        existing = [manual_line(1, 'Manual line', 1, '100')]
        parsed = ParseResult(line_items=(parsed_line('Paper', 10, '50'),))

        result = reconcile(make_state(), existing, parsed, template)

        manual, extracted = result.line_items
        assert manual.tax_rate == Decimal('0')
        assert manual.chart_of_account_id is None
        assert extracted.tax_rate == Decimal('17')
        assert extracted.tax_amount == Decimal('85.00')
        assert extracted.chart_of_account_id == 'exp-1'
        assert result.state.tax_amount == Decimal('85.00')

    def test_tax_accounts_only_when_unset(self):
        """Template tax accounts never overwrite assigned ones"""
        template = VendorTemplateData(default_advance_tax_account_id='adv-t',
                                      default_sales_tax_input_account_id='sti-t')
        state = make_state(advance_tax_account_id='adv-own')

        result = reconcile(state, [], ParseResult(), template)

        assert result.state.advance_tax_account_id == 'adv-own'
        assert result.state.sales_tax_input_account_id == 'sti-t'
        assert result.template_applied is True


class TestHeaderFields:

    def test_extracted_fields_overwrite(self):
        """Extracted number and dates replace placeholders"""
        parsed = ParseResult(invoice_number='INV-9', invoice_date=date(2024, 5, 1), due_date=date(2024, 6, 1))

        result = reconcile(make_state(), [], parsed)

        assert result.state.invoice_number == 'INV-9'
        assert result.state.invoice_date == date(2024, 5, 1)
        assert result.state.due_date == date(2024, 6, 1)

    def test_absent_fields_keep_current_values(self):
        """Fields the parse did not find are left alone"""
        result = reconcile(make_state(), [], ParseResult())

        assert result.state.invoice_number == 'DRAFT-0001'
        assert result.state.due_date == date(2024, 1, 31)

    def test_vendor_assigned_only_when_unset(self):
        """A resolved vendor never replaces an assigned one"""
        assigned = reconcile(make_state(vendor_id='v-1'), [], ParseResult(), resolved_vendor_id='v-2')
        unassigned = reconcile(make_state(), [], ParseResult(), resolved_vendor_id='v-2')

        assert assigned.state.vendor_id == 'v-1'
        assert assigned.vendor_assigned is False
        assert unassigned.state.vendor_id == 'v-2'
        assert unassigned.vendor_assigned is True

    def test_total_includes_document_level_taxes(self):
        """Total is sub total plus advance tax plus sales tax input"""
        state = make_state(advance_tax_amount=Decimal('50.00'))
        parsed = ParseResult(sales_tax_input_amount=Decimal('25.50'),
                             line_items=(parsed_line('Item one', 1, '100'),))

        result = reconcile(state, [], parsed)

        assert result.state.sub_total == Decimal('100.00')
        assert result.state.advance_tax_amount == Decimal('50.00')
        assert result.state.sales_tax_input_amount == Decimal('25.50')
        assert result.state.total_amount == Decimal('175.50')

    def test_inputs_are_not_mutated(self):
        """Reconciliation returns new objects"""
        state = make_state()
        existing = [ocr_line(1, 'Old line', 1, '10')]

        reconcile(state, existing, ParseResult(invoice_number='NEW-1'))

        assert state.invoice_number == 'DRAFT-0001'
        assert existing[0].line_number == 1


class TestComputeTotals:

    def test_rounding(self):
        """Money is rounded half up to two places"""
        lines = [LineItemData(description='Odd cents', quantity=Decimal('3'), unit_price=Decimal('0.335'),
                              tax_rate=Decimal('10'))]
        state = compute_totals(make_state(), lines)

        assert lines[0].amount == Decimal('1.01')
        assert state.sub_total == Decimal('1.01')
        assert state.tax_amount == Decimal('0.10')
        assert state.total_amount == Decimal('1.01')
