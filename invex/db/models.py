from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, Date, ForeignKey, Integer, JSON, Numeric, String, Text,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from invex.db.connection import Base
from invex.models.invoice import InvoiceStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


def Money(**kwargs) -> Column:
    return Column(Numeric(18, 2), nullable=False, default=0, **kwargs)


class Company(Base):
    """Tenant owning vendors, accounts and invoices."""
    __tablename__ = 'companies'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    ledger_access_token = Column(String(500))
    last_coa_sync_at = Column(DateTime)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    vendors = relationship("Vendor", back_populates="company", cascade="all, delete-orphan")
    accounts = relationship("ChartOfAccount", back_populates="company", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Company(id={self.id}, name='{self.name}')>"


class UserCompany(Base):
    """Membership of a user in a company, with the role they hold there."""
    __tablename__ = 'user_companies'
    __table_args__ = (UniqueConstraint('user_id', 'company_id', name='uq_user_company'),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(100), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    role = Column(String(50), nullable=False, default='Viewer')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserCompany(user_id={self.user_id}, company_id={self.company_id}, role='{self.role}')>"


class Vendor(Base):
    __tablename__ = 'vendors'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    company = relationship("Company", back_populates="vendors")
    template = relationship("VendorInvoiceTemplate", back_populates="vendor", uselist=False,
                            cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Vendor(id={self.id}, name='{self.name}')>"


class ChartOfAccount(Base):
    """Ledger account cached locally from the external accounts provider."""
    __tablename__ = 'chart_of_accounts'
    __table_args__ = (UniqueConstraint('company_id', 'recno', name='uq_coa_company_recno'),)

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    recno = Column(Integer, nullable=False)
    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    account_type = Column(String(100))
    parent_code = Column(String(50))
    is_active = Column(Boolean, nullable=False, default=True)
    synced_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    company = relationship("Company", back_populates="accounts")

    def __repr__(self):
        return f"<ChartOfAccount(code='{self.code}', name='{self.name}')>"


class VendorInvoiceTemplate(Base):
    """Per-vendor parsing hints and default ledger accounts."""
    __tablename__ = 'vendor_invoice_templates'

    id = Column(String(36), primary_key=True, default=new_id)
    vendor_id = Column(String(36), ForeignKey('vendors.id', ondelete='CASCADE'), nullable=False, unique=True)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)

    has_invoice_number = Column(Boolean, nullable=False, default=True)
    has_invoice_date = Column(Boolean, nullable=False, default=True)
    has_due_date = Column(Boolean, nullable=False, default=True)
    has_description = Column(Boolean, nullable=False, default=True)
    has_line_items = Column(Boolean, nullable=False, default=True)
    has_sub_total = Column(Boolean, nullable=False, default=True)

    invoice_number_label = Column(String(100))
    invoice_date_label = Column(String(100))
    due_date_label = Column(String(100))
    sub_total_label = Column(String(100))
    tax_label = Column(String(100))
    total_label = Column(String(100))
    advance_tax_amount_label = Column(String(100))
    sales_tax_input_amount_label = Column(String(100))

    default_tax_rate = Column(Numeric(5, 2))
    default_chart_of_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))
    has_advance_tax_account = Column(Boolean, nullable=False, default=False)
    has_sales_tax_input_account = Column(Boolean, nullable=False, default=False)
    default_advance_tax_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))
    default_sales_tax_input_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))
    default_payable_vendors_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    vendor = relationship("Vendor", back_populates="template")

    def __repr__(self):
        return f"<VendorInvoiceTemplate(vendor_id={self.vendor_id}, active={self.is_active})>"


class Invoice(Base):
    """Vendor invoice and its processing, approval, payment and posting state."""
    __tablename__ = 'invoices'
    __table_args__ = (
        UniqueConstraint('company_id', 'invoice_number', name='uq_invoice_company_number'),
        Index('ix_invoices_company_status', 'company_id', 'status'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    vendor_id = Column(String(36), ForeignKey('vendors.id', ondelete='SET NULL'))

    invoice_number = Column(String(100), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)

    sub_total = Money()
    tax_amount = Money()
    total_amount = Money()
    advance_tax_amount = Money()
    sales_tax_input_amount = Money()
    currency = Column(String(10), nullable=False, default='PKR')

    status = Column(String(30), nullable=False, default=InvoiceStatus.DRAFT.value)
    description = Column(Text)
    notes = Column(Text)

    original_file_name = Column(String(255))
    file_storage_path = Column(String(500))
    file_url = Column(String(500))
    file_type = Column(String(20))
    file_size = Column(Integer)

    is_ocr_processed = Column(Boolean, nullable=False, default=False)
    ocr_processed_at = Column(DateTime)
    ocr_confidence_score = Column(Numeric(5, 2))
    ocr_raw_text = Column(Text)
    ocr_error_message = Column(Text)

    approved_by = Column(String(100))
    approved_at = Column(DateTime)
    approval_notes = Column(Text)

    paid_at = Column(DateTime)
    payment_reference = Column(String(100))
    paid_by = Column(String(100))

    advance_tax_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))
    sales_tax_input_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))

    is_posted_to_gl = Column(Boolean, nullable=False, default=False)
    posted_to_gl_at = Column(DateTime)
    posted_to_gl_by = Column(String(100))

    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_by = Column(String(100))
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False, default=1)

    vendor = relationship("Vendor")
    line_items = relationship("InvoiceLineItem", back_populates="invoice",
                              cascade="all, delete-orphan", order_by="InvoiceLineItem.line_number")

    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.invoice_number}', status='{self.status}')>"


class InvoiceLineItem(Base):
    __tablename__ = 'invoice_line_items'
    __table_args__ = (UniqueConstraint('invoice_id', 'line_number', name='uq_line_item_invoice_line'),)

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_id = Column(String(36), ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)
    description = Column(String(500), nullable=False)
    quantity = Column(Numeric(18, 4), nullable=False, default=1)
    unit_price = Column(Numeric(18, 2), nullable=False, default=0)
    amount = Money()
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Money()
    total_amount = Money()
    chart_of_account_id = Column(String(36), ForeignKey('chart_of_accounts.id', ondelete='SET NULL'))
    account_code = Column(String(50))
    is_ocr_extracted = Column(Boolean, nullable=False, default=False)
    ocr_confidence_score = Column(Numeric(5, 2))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="line_items")

    def __repr__(self):
        return f"<InvoiceLineItem(invoice_id={self.invoice_id}, line={self.line_number}, amount={self.amount})>"


class InvoiceEvent(Base):
    """Audit trail of invoice lifecycle events; kept after the invoice is deleted."""
    __tablename__ = 'invoice_events'

    id = Column(String(36), primary_key=True, default=new_id)
    invoice_id = Column(String(36), nullable=False, index=True)
    company_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    user_id = Column(String(100))
    data = Column(JSON)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<InvoiceEvent(invoice_id={self.invoice_id}, type='{self.event_type}')>"
