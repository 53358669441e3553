"""
Invoice Parser

Locates invoice fields and line items in raw document text.

Scalar fields are found through an ordered list of ``FieldRule`` objects:
each rule names the field, the label tokens that introduce it, the pattern
its value must match and a converter. A vendor template can put its own
label in front of the defaults, or switch a field off entirely. Anything
that cannot be located or converted is left absent.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from invex.config.invex_config import InvexConfig
from invex.models.invoice import ParsedLineItem, ParseResult, VendorTemplateData, to_money

logger = logging.getLogger(__name__)

NO_TEXT_MESSAGE = "No text could be extracted from the file"
MISSING_FIELDS_MESSAGE = "OCR extraction completed but some required fields are missing"

DEFAULT_DATE_FORMATS = ['%Y-%m-%d', '%d/%m/%Y', '%d-%m-%Y', '%m/%d/%Y', '%d %b %Y', '%b %d %Y']

ID_VALUE = r"[A-Za-z0-9][A-Za-z0-9\-/_.]*"
DATE_VALUE = (
    r"\d{4}-\d{1,2}-\d{1,2}"
    r"|\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}"
    r"|\d{1,2}[ \-][A-Za-z]{3,9}\.?[ \-,]+\d{4}"
    r"|[A-Za-z]{3,9}\.?[ ]\d{1,2},?[ ]\d{4}"
)
AMOUNT_VALUE = r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?"
TEXT_VALUE = r"\S[^\n]*"
CURRENCY_PREFIX = r"(?:(?:Rs\.?|PKR|USD|\$)[ \t]*)?"

# Weights of located fields in the confidence score
CONFIDENCE_WEIGHTS = {
    'invoice_number': 20,
    'invoice_date': 15,
    'due_date': 10,
    'vendor_name': 15,
    'sub_total': 10,
    'tax_amount': 10,
    'total_amount': 20,
}
LINE_ITEM_WEIGHT = 5
LINE_ITEM_MAX_WEIGHT = 20

SECTION_START = re.compile(r"(?<![A-Za-z])(Item|Description|Product|S\.?[ \t]?No)(?![A-Za-z])", re.IGNORECASE)
SECTION_END = re.compile(r"^(Sub[ \-]?total|Total|Tax|Amount[ \t]+Due)", re.IGNORECASE)
HEADER_TOKEN = re.compile(r"^(Item|Desc|Product|Qty)", re.IGNORECASE)
LINE_ITEM_ROW = re.compile(
    r"^(?P<description>.*?[^\d\s,.].*?)[ \t]+"
    r"(?P<quantity>\d+(?:\.\d+)?)[ \t]+"
    + CURRENCY_PREFIX +
    r"(?P<unit_price>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)[ \t]+"
    + CURRENCY_PREFIX +
    r"(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)[ \t]*$"
)


def convert_identifier(value: str) -> Optional[str]:
    value = value.strip().rstrip('.-/_')
    if not value or not any(ch.isdigit() for ch in value):
        return None
    return value[:100]


def convert_amount(value: str) -> Optional[Decimal]:
    try:
        return to_money(Decimal(value.replace(',', '').strip()))
    except (InvalidOperation, ValueError):
        return None


def convert_text(value: str) -> Optional[str]:
    value = value.strip().strip(':,;').strip()
    return value[:255] or None


def make_date_converter(formats: Sequence[str]) -> Callable[[str], Optional[date]]:
    def convert_date(value: str) -> Optional[date]:
        # "Jan. 15, 2024" -> "Jan 15 2024"
        normalized = re.sub(r"(?<=[A-Za-z])\.", '', value)
        normalized = ' '.join(normalized.replace(',', ' ').split())
        for fmt in formats:
            try:
                return datetime.strptime(normalized, fmt).date()
            except ValueError:
                continue
        return None
    return convert_date


@dataclass(frozen=True)
class FieldRule:
    """
    How to locate one scalar field

    ``template_label`` and ``template_toggle`` name the vendor template
    attributes holding the label override and the on/off switch.
    ``not_preceded_by`` lists words which, directly before a default label,
    mean the label belongs to another field (``Due`` before ``Date``).
    """
    name: str
    labels: Tuple[str, ...]
    value_pattern: str
    converter: Callable[[str], Any]
    not_preceded_by: Tuple[str, ...] = ()
    template_label: Optional[str] = None
    template_toggle: Optional[str] = None
    value_prefix: str = ''
    allow_next_line: bool = False


def default_field_rules(date_formats: Sequence[str]) -> List[FieldRule]:
    convert_date = make_date_converter(date_formats)
    return [
        FieldRule(
            name='invoice_number',
            labels=('Invoice Number', 'Invoice No', 'Invoice #', 'Inv No', 'Inv #', 'Bill Number', 'Bill No',
                    'Invoice', 'Inv'),
            value_pattern=ID_VALUE,
            converter=convert_identifier,
            template_label='invoice_number_label',
            template_toggle='has_invoice_number',
        ),
        FieldRule(
            name='invoice_date',
            labels=('Invoice Date', 'Bill Date', 'Dated', 'Date'),
            value_pattern=DATE_VALUE,
            converter=convert_date,
            not_preceded_by=('Due', 'Payment', 'Delivery', 'Order'),
            template_label='invoice_date_label',
            template_toggle='has_invoice_date',
        ),
        FieldRule(
            name='due_date',
            labels=('Due Date', 'Payment Due', 'Due By', 'Due On'),
            value_pattern=DATE_VALUE,
            converter=convert_date,
            template_label='due_date_label',
            template_toggle='has_due_date',
        ),
        FieldRule(
            name='vendor_name',
            labels=('Vendor Name', 'Supplier Name', 'Vendor', 'Supplier', 'Seller', 'From'),
            value_pattern=TEXT_VALUE,
            converter=convert_text,
            allow_next_line=True,
        ),
        FieldRule(
            name='sub_total',
            labels=('Sub Total', 'Sub-Total', 'Subtotal'),
            value_pattern=AMOUNT_VALUE,
            converter=convert_amount,
            template_label='sub_total_label',
            template_toggle='has_sub_total',
            value_prefix=CURRENCY_PREFIX,
        ),
        FieldRule(
            name='tax_amount',
            labels=('Tax Amount', 'Total Tax', 'Tax', 'GST', 'VAT'),
            value_pattern=AMOUNT_VALUE,
            converter=convert_amount,
            not_preceded_by=('Advance', 'Sales', 'Income', 'Withholding'),
            template_label='tax_label',
            value_prefix=CURRENCY_PREFIX,
        ),
        FieldRule(
            name='total_amount',
            labels=('Total Amount', 'Grand Total', 'Invoice Total', 'Net Total', 'Amount Due', 'Total'),
            value_pattern=AMOUNT_VALUE,
            converter=convert_amount,
            not_preceded_by=('Sub', 'Sub-'),
            template_label='total_label',
            value_prefix=CURRENCY_PREFIX,
        ),
        # Document-level taxes are only read through vendor template labels
        FieldRule(
            name='advance_tax_amount',
            labels=(),
            value_pattern=AMOUNT_VALUE,
            converter=convert_amount,
            template_label='advance_tax_amount_label',
            value_prefix=CURRENCY_PREFIX,
        ),
        FieldRule(
            name='sales_tax_input_amount',
            labels=(),
            value_pattern=AMOUNT_VALUE,
            converter=convert_amount,
            template_label='sales_tax_input_amount_label',
            value_prefix=CURRENCY_PREFIX,
        ),
    ]


def _label_pattern(label: str) -> str:
    tokens = [re.escape(token) for token in label.split()]
    return r"(?<![A-Za-z])" + r"[ \t]*".join(tokens) + r"(?![A-Za-z])"


def _preceded_by(text: str, position: int, words: Sequence[str]) -> bool:
    before = text[:position].rstrip(' \t')
    lowered = before.lower()
    for word in words:
        w = word.lower()
        if lowered.endswith(w):
            start = len(lowered) - len(w)
            if start == 0 or not lowered[start - 1].isalpha():
                return True
    return False


class InvoiceParser:
    """
    Turns raw invoice text into a ``ParseResult``

    Never raises for content problems: fields that cannot be found stay
    absent and the result reports whether the parse is usable.
    """

    def __init__(self, config: Optional[InvexConfig] = None, rules: Optional[List[FieldRule]] = None):
        self.config = config or InvexConfig()
        date_formats = self.config.get('parser.date_formats') or DEFAULT_DATE_FORMATS
        self.rules = rules if rules is not None else default_field_rules(date_formats)
        self.line_item_confidence = Decimal(str(self.config.get('parser.line_item_confidence', 75)))

    def parse(self, text: Optional[str], template: Optional[VendorTemplateData] = None) -> ParseResult:
        if not text or not text.strip():
            return ParseResult(raw_text=text or '', success=False, error=NO_TEXT_MESSAGE)

        fields: Dict[str, Any] = {}
        for rule in self.rules:
            if not self._rule_enabled(rule, template):
                continue
            value = self._match_rule(text, rule, template)
            if value is not None:
                fields[rule.name] = value

        line_items: Tuple[ParsedLineItem, ...] = ()
        if template is None or template.has_line_items:
            line_items = tuple(self.extract_line_items(text))

        confidence = self.calculate_confidence(fields, len(line_items))
        result = ParseResult(
            **fields,
            line_items=line_items,
            confidence=confidence,
            raw_text=text,
        )

        if result.is_usable:
            result = result.model_copy(update={'success': True})
        else:
            missing = [name for name in ('invoice_number', 'invoice_date', 'total_amount') if fields.get(name) is None]
            logger.warning(f"Parsed invoice text is missing required fields: {', '.join(missing)}")
            result = result.model_copy(update={'success': False, 'error': MISSING_FIELDS_MESSAGE})

        logger.debug(f"Parsed invoice text: {len(fields)} fields, {len(line_items)} line items, confidence {confidence}")
        return result

    def _rule_enabled(self, rule: FieldRule, template: Optional[VendorTemplateData]) -> bool:
        if template is None or rule.template_toggle is None:
            return True
        return bool(getattr(template, rule.template_toggle, True))

    def _labels_for(self, rule: FieldRule, template: Optional[VendorTemplateData]) -> List[Tuple[str, bool]]:
        """Labels to try in order, flagged True when they are defaults"""
        labels = []
        if template is not None and rule.template_label:
            override = getattr(template, rule.template_label, None)
            if override and override.strip():
                labels.append((override.strip(), False))
        labels.extend((label, True) for label in rule.labels)
        return labels

    def _match_rule(self, text: str, rule: FieldRule, template: Optional[VendorTemplateData]) -> Any:
        separator = r"\.?[ \t]*[:#]?" + (r"\s*" if rule.allow_next_line else r"[ \t]*")
        for label, is_default in self._labels_for(rule, template):
            pattern = re.compile(
                _label_pattern(label) + separator + rule.value_prefix + r"(" + rule.value_pattern + r")",
                re.IGNORECASE
            )
            for match in pattern.finditer(text):
                if is_default and rule.not_preceded_by and _preceded_by(text, match.start(), rule.not_preceded_by):
                    continue
                value = rule.converter(match.group(1))
                if value is not None:
                    return value
        return None

    def extract_line_items(self, text: str) -> List[ParsedLineItem]:
        """Extract ``description qty unit-price amount`` rows from the items section"""
        items = []
        in_section = False
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            if not in_section:
                if SECTION_START.search(line):
                    in_section = True
                continue
            if SECTION_END.match(line):
                break

            match = LINE_ITEM_ROW.match(line)
            if not match:
                continue
            description = match.group('description').strip()
            if len(description) < 3 or HEADER_TOKEN.match(description):
                continue

            quantity = convert_amount(match.group('quantity'))
            unit_price = convert_amount(match.group('unit_price'))
            amount = convert_amount(match.group('amount'))
            if quantity is None or unit_price is None or amount is None:
                continue

            items.append(ParsedLineItem(
                description=description[:500],
                quantity=Decimal(match.group('quantity')),
                unit_price=unit_price,
                amount=amount,
                confidence=self.line_item_confidence,
            ))
        return items

    @staticmethod
    def calculate_confidence(fields: Dict[str, Any], line_item_count: int) -> Decimal:
        score = sum(weight for name, weight in CONFIDENCE_WEIGHTS.items() if fields.get(name) is not None)
        score += min(LINE_ITEM_MAX_WEIGHT, LINE_ITEM_WEIGHT * line_item_count)
        return Decimal(min(100, score))
