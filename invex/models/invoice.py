"""
Invoice Data Models with Pydantic Validation

Value objects exchanged between the parser, the reconciliation engine, the
posting validator and the service layer. Persisted state lives in
``invex.db.models``; these models are the immutable views of it.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, List, Optional, Tuple
import math
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value: Any) -> Decimal:
    """Quantize to two decimal places, rounding half up"""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse decimal values from various formats; None when unparseable"""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        # Remove currency symbols, commas, spaces
        cleaned = re.sub(r'[^\d.\-]', '', value.strip())
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status"""
    DRAFT = "Draft"
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PAID = "Paid"
    CANCELLED = "Cancelled"
    OVERDUE = "Overdue"


class ParsedLineItem(BaseModel):
    """Line item row found in extracted text"""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    confidence: Decimal = Decimal('75')


class ParseResult(BaseModel):
    """Fields located in raw invoice text; absent fields stay None"""
    model_config = ConfigDict(frozen=True)

    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    vendor_name: Optional[str] = None
    sub_total: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    advance_tax_amount: Optional[Decimal] = None
    sales_tax_input_amount: Optional[Decimal] = None
    line_items: Tuple[ParsedLineItem, ...] = ()
    confidence: Decimal = ZERO
    raw_text: str = ''
    success: bool = False
    error: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return bool(
            self.invoice_number
            and self.invoice_date is not None
            and self.total_amount is not None
            and self.total_amount > 0
        )


class LineItemData(BaseModel):
    """
    Invoice line item with derived amounts

    When built from keyword data, ``amount``, ``tax_amount`` and
    ``total_amount`` are always recomputed from quantity, unit price and tax
    rate. When read from an ORM row the stored values are taken as they are.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True, str_strip_whitespace=True)

    id: Optional[str] = None
    line_number: int = 0
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Decimal('1')
    unit_price: Decimal = ZERO
    tax_rate: Decimal = ZERO
    amount: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    chart_of_account_id: Optional[str] = None
    account_code: Optional[str] = None
    is_ocr_extracted: bool = False
    ocr_confidence_score: Optional[Decimal] = None

    @model_validator(mode='before')
    @classmethod
    def derive_amounts(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        quantity = parse_decimal(data.get('quantity'))
        unit_price = parse_decimal(data.get('unit_price'))
        tax_rate = parse_decimal(data.get('tax_rate'))
        quantity = Decimal('1') if quantity is None else quantity
        unit_price = ZERO if unit_price is None else unit_price
        tax_rate = ZERO if tax_rate is None else tax_rate

        amount = to_money(quantity * unit_price)
        tax_amount = to_money(amount * tax_rate / Decimal('100'))
        data.update(
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=tax_rate,
            amount=amount,
            tax_amount=tax_amount,
            total_amount=amount + tax_amount,
        )
        return data


class LineItemInput(BaseModel):
    """Manually entered line item"""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(Decimal('1'), gt=0)
    unit_price: Decimal = Field(ZERO, ge=0)
    tax_rate: Decimal = Field(ZERO, ge=0, le=100)
    chart_of_account_id: Optional[str] = None
    account_code: Optional[str] = Field(None, max_length=50)

    @field_validator('quantity', 'unit_price', 'tax_rate', mode='before')
    @classmethod
    def parse_amounts(cls, v: Any) -> Any:
        parsed = parse_decimal(v)
        return v if parsed is None else parsed


class CreateInvoiceRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    invoice_number: str = Field(..., min_length=1, max_length=100)
    invoice_date: date
    due_date: Optional[date] = None
    vendor_id: Optional[str] = None
    currency: Optional[str] = Field(None, max_length=10)
    description: Optional[str] = None
    notes: Optional[str] = None
    advance_tax_amount: Decimal = Field(ZERO, ge=0)
    sales_tax_input_amount: Decimal = Field(ZERO, ge=0)
    advance_tax_account_id: Optional[str] = None
    sales_tax_input_account_id: Optional[str] = None
    line_items: List[LineItemInput] = Field(default_factory=list)

    @model_validator(mode='after')
    def check_dates(self) -> 'CreateInvoiceRequest':
        if self.due_date is not None and self.due_date < self.invoice_date:
            raise ValueError("Due date cannot be before invoice date")
        return self


class UpdateInvoiceRequest(CreateInvoiceRequest):
    """Full replacement of invoice fields and line items"""
    expected_version: Optional[int] = None


class VendorTemplateData(BaseModel):
    """Read-only view of a vendor invoice template"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[str] = None
    vendor_id: Optional[str] = None
    has_invoice_number: bool = True
    has_invoice_date: bool = True
    has_due_date: bool = True
    has_description: bool = True
    has_line_items: bool = True
    has_sub_total: bool = True
    invoice_number_label: Optional[str] = None
    invoice_date_label: Optional[str] = None
    due_date_label: Optional[str] = None
    sub_total_label: Optional[str] = None
    tax_label: Optional[str] = None
    total_label: Optional[str] = None
    advance_tax_amount_label: Optional[str] = None
    sales_tax_input_amount_label: Optional[str] = None
    default_tax_rate: Optional[Decimal] = None
    default_chart_of_account_id: Optional[str] = None
    has_advance_tax_account: bool = False
    has_sales_tax_input_account: bool = False
    default_advance_tax_account_id: Optional[str] = None
    default_sales_tax_input_account_id: Optional[str] = None
    default_payable_vendors_account_id: Optional[str] = None
    is_active: bool = True


class VendorCandidate(BaseModel):
    """Vendor considered during template resolution"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    name: str
    template: Optional[VendorTemplateData] = None


class InvoiceState(BaseModel):
    """Header fields the reconciliation engine reads and rewrites"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    invoice_number: str
    invoice_date: date
    due_date: date
    vendor_id: Optional[str] = None
    sub_total: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    advance_tax_amount: Decimal = ZERO
    sales_tax_input_amount: Decimal = ZERO
    advance_tax_account_id: Optional[str] = None
    sales_tax_input_account_id: Optional[str] = None


class ReconciliationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: InvoiceState
    line_items: Tuple[LineItemData, ...] = ()
    vendor_assigned: bool = False
    template_applied: bool = False
    removed_ocr_lines: int = 0


class PostingReason(str, Enum):
    """Why a GL posting was refused"""
    ALREADY_POSTED = "ALREADY_POSTED"
    INVALID_STATUS = "INVALID_STATUS"
    LINE_ITEM_ACCOUNT_MISSING = "LINE_ITEM_ACCOUNT_MISSING"
    SUBTOTAL_MISMATCH = "SUBTOTAL_MISMATCH"
    ADVANCE_TAX_ACCOUNT_MISSING = "ADVANCE_TAX_ACCOUNT_MISSING"
    SALES_TAX_INPUT_ACCOUNT_MISSING = "SALES_TAX_INPUT_ACCOUNT_MISSING"
    PAYABLE_ACCOUNT_MISSING = "PAYABLE_ACCOUNT_MISSING"
    UNBALANCED = "UNBALANCED"


class PostingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[PostingReason] = None
    message: str = ''

    @classmethod
    def allow(cls) -> 'PostingDecision':
        return cls(allowed=True, message="Invoice can be posted to GL")

    @classmethod
    def reject(cls, reason: PostingReason, message: str) -> 'PostingDecision':
        return cls(allowed=False, reason=reason, message=message)


class JournalEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: Optional[str] = None
    account_code: Optional[str] = None
    account_name: Optional[str] = None
    description: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO


class GLPreview(BaseModel):
    invoice_id: str
    invoice_number: str
    decision: PostingDecision
    entries: List[JournalEntry] = Field(default_factory=list)

    @property
    def can_post(self) -> bool:
        return self.decision.allowed

    @property
    def total_debits(self) -> Decimal:
        return sum((e.debit for e in self.entries), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((e.credit for e in self.entries), ZERO)


class InvoiceRecord(BaseModel):
    """Full invoice read model"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    invoice_number: str
    invoice_date: date
    due_date: date
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    advance_tax_amount: Decimal
    sales_tax_input_amount: Decimal
    currency: str
    status: InvoiceStatus
    description: Optional[str] = None
    notes: Optional[str] = None
    original_file_name: Optional[str] = None
    file_storage_path: Optional[str] = None
    file_url: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    is_ocr_processed: bool = False
    ocr_processed_at: Optional[datetime] = None
    ocr_confidence_score: Optional[Decimal] = None
    ocr_raw_text: Optional[str] = None
    ocr_error_message: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    paid_by: Optional[str] = None
    advance_tax_account_id: Optional[str] = None
    sales_tax_input_account_id: Optional[str] = None
    is_posted_to_gl: bool = False
    posted_to_gl_at: Optional[datetime] = None
    posted_to_gl_by: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    version: int
    line_items: List[LineItemData] = Field(default_factory=list)
    is_overdue: bool = False
    days_until_due: Optional[int] = None


class InvoiceSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    invoice_date: date
    due_date: date
    total_amount: Decimal
    currency: str
    status: InvoiceStatus
    is_ocr_processed: bool = False
    is_posted_to_gl: bool = False
    created_at: datetime


class InvoicePage(BaseModel):
    items: List[InvoiceSummary] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0


class OcrOutcome(BaseModel):
    """Result of an OCR reprocessing request"""
    invoice_id: str
    success: bool
    confidence: Decimal = ZERO
    message: Optional[str] = None
    vendor_assigned: bool = False
    line_items_extracted: int = 0
    invoice: Optional[InvoiceRecord] = None


class ProviderAccount(BaseModel):
    """Account as delivered by the external ledger provider"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    recno: int
    code: str
    name: str
    description: Optional[str] = None
    account_type: Optional[str] = None
    parent_code: Optional[str] = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.code} - {self.name}"


class AccountRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recno: int
    code: str
    name: str
    description: Optional[str] = None
    account_type: Optional[str] = None
    parent_code: Optional[str] = None
    is_active: bool = True
    synced_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.code} - {self.name}"


class CoaSyncResult(BaseModel):
    success: bool
    total_accounts: int = 0
    new_accounts: int = 0
    updated_accounts: int = 0
    synced_at: Optional[datetime] = None
    error: Optional[str] = None


class StoredFile(BaseModel):
    """Descriptor of a stored upload"""
    model_config = ConfigDict(frozen=True)

    storage_path: str
    public_url: str
    file_name: str
    file_type: str
    size: int
