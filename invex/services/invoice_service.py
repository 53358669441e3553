"""
Invoice Service

Entry point for everything done to an invoice:
- upload and manual creation
- OCR reprocessing (extract -> parse -> resolve template -> reconcile)
- editing, line-item account assignment and deletion
- approval, rejection and payment
- GL posting preview and posting

Every operation checks the caller's capability in the invoice's company,
runs in its own transaction and records an invoice event afterwards.
"""

import io
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, Optional, Sequence, Union
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from invex.auth import Authorizer, DatabaseMembershipProvider, MembershipProvider, Permission, load_role_permissions
from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import Invoice, InvoiceEvent, InvoiceLineItem, utcnow
from invex.db.repository import AccountRepository, InvoiceRepository, VendorRepository
from invex.errors import (
    BusinessRuleError,
    ConflictError,
    InputValidationError,
    NotFoundError,
    PostingRejectedError,
)
from invex.models.invoice import (
    CreateInvoiceRequest,
    GLPreview,
    InvoicePage,
    InvoiceRecord,
    InvoiceState,
    InvoiceStatus,
    InvoiceSummary,
    LineItemData,
    OcrOutcome,
    UpdateInvoiceRequest,
    VendorCandidate,
    VendorTemplateData,
    ZERO,
    to_money,
)
from invex.processors.invoice.lifecycle import InvoiceAction, ensure_allowed, next_status
from invex.processors.invoice.parser import InvoiceParser
from invex.processors.invoice.posting import GLPostingValidator, PostingSnapshot, build_journal_entries
from invex.processors.invoice.reconciliation import compute_totals, reconcile, renumber
from invex.processors.invoice.template_resolver import VendorTemplateResolver
from invex.processors.text_extraction import TextExtractor, default_extractor
from invex.services.notification_service import LoggingNotifier, Notifier
from invex.storage.abstract_storage import BlobStore

logger = logging.getLogger(__name__)

INVOICE_NOT_FOUND = "Invoice not found"
OCR_FAILED_PREFIX = "OCR processing failed"

# Statuses for which a past due date no longer matters
SETTLED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.REJECTED})


class InvoiceService:
    """
    Service for the invoice lifecycle.

    Usage:
        service = InvoiceService(db, storage)

        record = await service.upload_invoice(user_id, company_id, stream, "bill.pdf")
        service.approve(user_id, record.id, notes="ok")
        preview = service.preview_gl_posting(user_id, record.id)
        service.post_to_gl(user_id, record.id)
    """

    def __init__(
        self,
        db: Database,
        storage: BlobStore,
        extractor: Optional[TextExtractor] = None,
        membership: Optional[MembershipProvider] = None,
        notifier: Optional[Notifier] = None,
        parser: Optional[InvoiceParser] = None,
        config: Optional[InvexConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.storage = storage
        self.config = config or db.config
        self.extractor = extractor or default_extractor(storage)
        self.authorizer = Authorizer(
            membership or DatabaseMembershipProvider(db),
            load_role_permissions(self.config)
        )
        self.notifier = notifier or LoggingNotifier()
        self.parser = parser or InvoiceParser(self.config)
        self.resolver = VendorTemplateResolver()
        self.validator = GLPostingValidator()
        self.clock = clock or utcnow

        self.currency = self.config.get('invoice.currency', 'PKR')
        self.default_due_days = int(self.config.get('invoice.default_due_days', 30))
        self.draft_prefix = self.config.get('invoice.draft_prefix', 'DRAFT-')
        self.default_page_size = int(self.config.get('invoice.page_size', 20))
        self.max_page_size = int(self.config.get('invoice.max_page_size', 100))
        self.max_file_size = int(self.config.get('storage.max_file_size', 10 * 1024 * 1024))
        self.allowed_extensions = [ext.lower() for ext in self.config.get('storage.allowed_extensions', [])]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_invoice(self, user_id: str, company_id: str, request: CreateInvoiceRequest) -> InvoiceRecord:
        """Create a Draft invoice from manually entered data"""
        self.authorizer.require(user_id, company_id, Permission.CREATE_INVOICE)

        with self._unit_of_work() as session:
            invoices = InvoiceRepository(session)
            if invoices.number_exists(company_id, request.invoice_number):
                raise BusinessRuleError(f"Invoice number '{request.invoice_number}' already exists")
            self._check_references(session, company_id, request)

            line_items = self._line_items_from_request(request)
            state = compute_totals(self._state_from_request(request), line_items)

            invoice = Invoice(
                company_id=company_id,
                currency=request.currency or self.currency,
                status=InvoiceStatus.DRAFT.value,
                description=request.description,
                notes=request.notes,
                created_by=user_id,
                **state.model_dump(),
            )
            self._set_line_items(invoice, line_items)
            invoices.add(invoice)
            session.flush()
            record = self._to_record(invoice)

        logger.info(f"Created invoice {record.invoice_number} ({record.id}) for company {company_id}")
        self._emit_event(record.id, company_id, 'invoice_created', user_id,
                         {'invoice_number': record.invoice_number, 'total_amount': str(record.total_amount)})
        return record

    async def upload_invoice(
        self,
        user_id: str,
        company_id: str,
        content: Union[bytes, BinaryIO],
        file_name: str,
        vendor_id: Optional[str] = None,
        run_ocr: bool = True,
    ) -> InvoiceRecord:
        """
        Store an uploaded invoice file and create a Draft for it

        The draft gets a placeholder invoice number and today's date until
        OCR fills them in. OCR failures never fail the upload; they are
        recorded on the invoice.
        """
        self.authorizer.require(user_id, company_id, Permission.CREATE_INVOICE)

        # at most one byte past the limit
        data = content if isinstance(content, bytes) else content.read(self.max_file_size + 1)
        file_type = self._validate_upload(file_name, data)

        with self.db.session() as session:
            if vendor_id and VendorRepository(session).get_for_company(company_id, vendor_id) is None:
                raise NotFoundError("Vendor not found")

        stored = self.storage.store(io.BytesIO(data), file_name, file_type)

        today = self.clock().date()
        try:
            with self._unit_of_work() as session:
                invoice = Invoice(
                    company_id=company_id,
                    vendor_id=vendor_id,
                    invoice_number=f"{self.draft_prefix}{uuid4().hex[:8].upper()}",
                    invoice_date=today,
                    due_date=today + timedelta(days=self.default_due_days),
                    currency=self.currency,
                    status=InvoiceStatus.DRAFT.value,
                    original_file_name=file_name,
                    file_storage_path=stored.storage_path,
                    file_url=stored.public_url,
                    file_type=file_type,
                    file_size=stored.size,
                    created_by=user_id,
                )
                InvoiceRepository(session).add(invoice)
                session.flush()
                invoice_id = invoice.id
        except Exception:
            self._discard_file(stored.storage_path)
            raise

        logger.info(f"Uploaded {file_name} as invoice {invoice_id}")
        self._emit_event(invoice_id, company_id, 'invoice_uploaded', user_id,
                         {'file_name': file_name, 'file_size': stored.size})

        if run_ocr:
            outcome = await self.process_ocr(user_id, invoice_id)
            if outcome.invoice is not None:
                return outcome.invoice
        return self.get_invoice(user_id, invoice_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_invoice(self, user_id: str, invoice_id: str) -> InvoiceRecord:
        with self.db.session() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.VIEW_INVOICE)
            return self._to_record(invoice)

    def list_invoices(
        self,
        user_id: str,
        company_id: str,
        status: Optional[InvoiceStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> InvoicePage:
        """Company invoices, newest first, optionally filtered by status and number/vendor search"""
        self.authorizer.require(user_id, company_id, Permission.VIEW_INVOICE)

        page_size = page_size or self.default_page_size
        if page < 1:
            raise InputValidationError("Page must be 1 or greater", field='page')
        if page_size < 1 or page_size > self.max_page_size:
            raise InputValidationError(f"Page size must be between 1 and {self.max_page_size}", field='page_size')

        status_value = InvoiceStatus(status).value if status else None
        with self.db.session() as session:
            rows, total = InvoiceRepository(session).search(company_id, status_value, search, page, page_size)
            items = [
                InvoiceSummary.model_validate(row).model_copy(
                    update={'vendor_name': row.vendor.name if row.vendor else None})
                for row in rows
            ]
        return InvoicePage(items=items, total_count=total, page=page, page_size=page_size)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def update_invoice(self, user_id: str, invoice_id: str, request: UpdateInvoiceRequest) -> InvoiceRecord:
        """Replace the invoice's fields and line items"""
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.EDIT_INVOICE)
            ensure_allowed(InvoiceAction.EDIT, invoice.status, invoice.is_posted_to_gl)
            self._check_version(invoice, request.expected_version)

            if InvoiceRepository(session).number_exists(invoice.company_id, request.invoice_number, invoice.id):
                raise BusinessRuleError(f"Invoice number '{request.invoice_number}' already exists")
            self._check_references(session, invoice.company_id, request)

            line_items = self._line_items_from_request(request)
            state = compute_totals(self._state_from_request(request), line_items)
            self._replace_line_items(session, invoice, line_items)
            for key, value in state.model_dump().items():
                setattr(invoice, key, value)
            if request.currency:
                invoice.currency = request.currency
            invoice.description = request.description
            invoice.notes = request.notes
            self._touch(invoice, user_id)
            session.flush()
            session.expire(invoice, ['vendor'])
            record = self._to_record(invoice)

        self._emit_event(invoice_id, record.company_id, 'invoice_updated', user_id,
                         {'total_amount': str(record.total_amount), 'line_items': len(record.line_items)})
        return record

    def assign_line_item_account(
        self,
        user_id: str,
        invoice_id: str,
        line_item_id: str,
        account_id: Optional[str],
        expected_version: Optional[int] = None,
    ) -> InvoiceRecord:
        """Set (or clear, with None) the GL account of one line item"""
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.EDIT_INVOICE)
            ensure_allowed(InvoiceAction.ASSIGN_ACCOUNT, invoice.status, invoice.is_posted_to_gl)
            self._check_version(invoice, expected_version)

            line = next((item for item in invoice.line_items if item.id == line_item_id), None)
            if line is None:
                raise NotFoundError("Line item not found")

            account = self._require_account(session, invoice.company_id, account_id, 'chart_of_account_id')
            line.chart_of_account_id = account.id if account else None
            line.account_code = account.code if account else None
            self._touch(invoice, user_id)
            session.flush()
            record = self._to_record(invoice)

        self._emit_event(invoice_id, record.company_id, 'line_item_account_assigned', user_id,
                         {'line_item_id': line_item_id, 'account_id': account_id})
        return record

    def set_invoice_tax_accounts(
        self,
        user_id: str,
        invoice_id: str,
        advance_tax_account_id: Optional[str] = None,
        sales_tax_input_account_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> InvoiceRecord:
        """Assign the advance tax and/or sales tax input accounts; None leaves an account unchanged"""
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.EDIT_INVOICE)
            ensure_allowed(InvoiceAction.ASSIGN_ACCOUNT, invoice.status, invoice.is_posted_to_gl)
            self._check_version(invoice, expected_version)

            if advance_tax_account_id is not None:
                account = self._require_account(session, invoice.company_id, advance_tax_account_id,
                                                'advance_tax_account_id')
                invoice.advance_tax_account_id = account.id
            if sales_tax_input_account_id is not None:
                account = self._require_account(session, invoice.company_id, sales_tax_input_account_id,
                                                'sales_tax_input_account_id')
                invoice.sales_tax_input_account_id = account.id
            self._touch(invoice, user_id)
            session.flush()
            record = self._to_record(invoice)

        self._emit_event(invoice_id, record.company_id, 'tax_accounts_assigned', user_id, {
            'advance_tax_account_id': record.advance_tax_account_id,
            'sales_tax_input_account_id': record.sales_tax_input_account_id,
        })
        return record

    def delete_invoice(self, user_id: str, invoice_id: str, expected_version: Optional[int] = None) -> bool:
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.DELETE_INVOICE)
            ensure_allowed(InvoiceAction.DELETE, invoice.status, invoice.is_posted_to_gl)
            self._check_version(invoice, expected_version)
            company_id = invoice.company_id
            invoice_number = invoice.invoice_number
            storage_path = invoice.file_storage_path
            session.delete(invoice)

        if storage_path:
            self._discard_file(storage_path)
        logger.info(f"Deleted invoice {invoice_number} ({invoice_id})")
        self._emit_event(invoice_id, company_id, 'invoice_deleted', user_id, {'invoice_number': invoice_number})
        return True

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def approve(self, user_id: str, invoice_id: str, notes: Optional[str] = None,
                expected_version: Optional[int] = None) -> InvoiceRecord:
        return self._decide(user_id, invoice_id, InvoiceAction.APPROVE, notes, expected_version)

    def reject(self, user_id: str, invoice_id: str, reason: Optional[str] = None,
               expected_version: Optional[int] = None) -> InvoiceRecord:
        return self._decide(user_id, invoice_id, InvoiceAction.REJECT, reason, expected_version)

    def _decide(self, user_id, invoice_id, action, notes, expected_version) -> InvoiceRecord:
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.APPROVE_INVOICE)
            self._check_version(invoice, expected_version)
            status = next_status(action, invoice.status, invoice.is_posted_to_gl)

            previous = invoice.status
            invoice.status = status.value
            invoice.approved_by = user_id
            invoice.approved_at = self.clock()
            invoice.approval_notes = notes
            self._touch(invoice, user_id)
            session.flush()
            record = self._to_record(invoice)

        event_type = 'invoice_approved' if action == InvoiceAction.APPROVE else 'invoice_rejected'
        logger.info(f"Invoice {record.invoice_number} {previous} -> {status.value} by {user_id}")
        self._emit_event(invoice_id, record.company_id, event_type, user_id,
                         {'from_status': previous, 'to_status': status.value, 'notes': notes})
        return record

    def mark_as_paid(
        self,
        user_id: str,
        invoice_id: str,
        payment_reference: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> InvoiceRecord:
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.PAY_INVOICE)
            self._check_version(invoice, expected_version)
            status = next_status(InvoiceAction.MARK_PAID, invoice.status, invoice.is_posted_to_gl)

            invoice.status = status.value
            invoice.paid_at = paid_at or self.clock()
            invoice.payment_reference = payment_reference
            invoice.paid_by = user_id
            self._touch(invoice, user_id)
            session.flush()
            record = self._to_record(invoice)

        logger.info(f"Invoice {record.invoice_number} marked as paid by {user_id}")
        self._emit_event(invoice_id, record.company_id, 'invoice_paid', user_id,
                         {'payment_reference': payment_reference})
        return record

    # ------------------------------------------------------------------
    # GL posting
    # ------------------------------------------------------------------

    def preview_gl_posting(self, user_id: str, invoice_id: str) -> GLPreview:
        """Posting decision and, when posting is allowed, the journal it would create"""
        with self.db.session() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.VIEW_INVOICE)
            template = self._template_for(session, invoice.vendor_id)
            snapshot = PostingSnapshot.from_invoice(invoice)
            decision = self.validator.validate(snapshot, template)

            entries = []
            if decision.allowed:
                account_ids = [item.chart_of_account_id for item in snapshot.line_items]
                account_ids += [invoice.advance_tax_account_id, invoice.sales_tax_input_account_id,
                                template.default_payable_vendors_account_id]
                accounts = AccountRepository(session).by_ids(account_ids)
                entries = build_journal_entries(snapshot, template, accounts, invoice.invoice_number)

            return GLPreview(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                decision=decision,
                entries=entries,
            )

    def post_to_gl(self, user_id: str, invoice_id: str, expected_version: Optional[int] = None) -> InvoiceRecord:
        """
        Mark the invoice as posted to the general ledger

        Raises:
            PostingRejectedError: a posting check failed; carries the reason code
        """
        with self._unit_of_work() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.POST_INVOICE)
            self._check_version(invoice, expected_version)

            template = self._template_for(session, invoice.vendor_id)
            decision = self.validator.validate(PostingSnapshot.from_invoice(invoice), template)
            if not decision.allowed:
                logger.info(f"GL posting of invoice {invoice.invoice_number} rejected: {decision.reason.value}")
                raise PostingRejectedError(decision)

            invoice.is_posted_to_gl = True
            invoice.posted_to_gl_at = self.clock()
            invoice.posted_to_gl_by = user_id
            self._touch(invoice, user_id)
            session.flush()
            record = self._to_record(invoice)

        logger.info(f"Invoice {record.invoice_number} posted to GL by {user_id}")
        self._emit_event(invoice_id, record.company_id, 'invoice_posted_to_gl', user_id,
                         {'total_amount': str(record.total_amount)})
        return record

    # ------------------------------------------------------------------
    # OCR
    # ------------------------------------------------------------------

    async def process_ocr(self, user_id: str, invoice_id: str) -> OcrOutcome:
        """
        Extract text from the invoice file and reconcile it into the invoice

        Extraction runs outside any database transaction. The reconciled
        result is applied in one transaction, and only if the invoice has not
        changed since extraction started. Any failure after the checks below
        leaves the previously committed data untouched and records the error
        on the invoice.

        Raises:
            NotFoundError, PermissionDeniedError: caller may not process the invoice
            BusinessRuleError: invoice is paid or posted
            InputValidationError: invoice has no uploaded file
            ConflictError: invoice changed while OCR was running
        """
        with self.db.session() as session:
            invoice = self._load_authorized(session, user_id, invoice_id, Permission.PROCESS_INVOICE)
            ensure_allowed(InvoiceAction.PROCESS_OCR, invoice.status, invoice.is_posted_to_gl)
            if not invoice.file_storage_path:
                raise InputValidationError("No file found for OCR processing", field='file_storage_path')
            captured_version = invoice.version
            storage_path = invoice.file_storage_path
            file_type = invoice.file_type or Path(storage_path).suffix

        try:
            extraction = await self.extractor.extract(storage_path, file_type)
            if not extraction.success:
                message = extraction.error or f"{OCR_FAILED_PREFIX}: no text extracted"
                return self._record_ocr_failure(user_id, invoice_id, message)
            return self._apply_ocr(user_id, invoice_id, captured_version, extraction.content)
        except ConflictError as e:
            self._record_ocr_failure(user_id, invoice_id, f"{OCR_FAILED_PREFIX}: {str(e)}")
            raise
        except Exception as e:
            logger.exception(f"OCR processing failed for invoice {invoice_id}")
            return self._record_ocr_failure(user_id, invoice_id, f"{OCR_FAILED_PREFIX}: {str(e)}")

    def _apply_ocr(self, user_id: str, invoice_id: str, captured_version: int, text: str) -> OcrOutcome:
        with self._unit_of_work() as session:
            invoice = InvoiceRepository(session).get_for_company(invoice_id)
            if invoice is None or invoice.version != captured_version:
                raise ConflictError("Invoice was modified while OCR was running; reload and retry")

            vendors = VendorRepository(session)
            candidates = [VendorCandidate.model_validate(v) for v in vendors.active_for_company(invoice.company_id)]
            if invoice.vendor_id and all(c.id != invoice.vendor_id for c in candidates):
                assigned = vendors.get_for_company(invoice.company_id, invoice.vendor_id)
                if assigned is not None:
                    candidates.append(VendorCandidate.model_validate(assigned))

            # An assigned vendor decides the template before parsing; otherwise
            # the parsed vendor name does, and the text is parsed again with it
            if invoice.vendor_id:
                resolution = self.resolver.resolve(candidates, vendor_id=invoice.vendor_id)
                parsed = self.parser.parse(text, resolution.template)
            else:
                parsed = self.parser.parse(text)
                resolution = self.resolver.resolve(candidates, parsed_vendor_name=parsed.vendor_name)
                if resolution.template is not None:
                    parsed = self.parser.parse(text, resolution.template)

            if parsed.invoice_number and InvoiceRepository(session).number_exists(
                    invoice.company_id, parsed.invoice_number, invoice.id):
                raise BusinessRuleError(f"Invoice number '{parsed.invoice_number}' already exists")

            result = reconcile(
                InvoiceState.model_validate(invoice),
                [LineItemData.model_validate(item) for item in invoice.line_items],
                parsed,
                resolution.template,
                resolution.vendor_id,
            )

            self._replace_line_items(session, invoice, result.line_items)
            for key, value in result.state.model_dump().items():
                setattr(invoice, key, value)
            invoice.is_ocr_processed = True
            invoice.ocr_processed_at = self.clock()
            invoice.ocr_confidence_score = parsed.confidence
            invoice.ocr_raw_text = parsed.raw_text
            invoice.ocr_error_message = parsed.error
            self._touch(invoice, user_id)
            session.flush()
            session.expire(invoice, ['vendor'])
            record = self._to_record(invoice)

        if parsed.success:
            message = f"OCR processing completed successfully. Confidence: {parsed.confidence:.2f}%"
        else:
            message = f"OCR extracted partial data (Confidence: {parsed.confidence:.2f}%). {parsed.error}"
        logger.info(f"Invoice {invoice_id}: {message}")

        self._emit_event(invoice_id, record.company_id, 'invoice_ocr_processed', user_id, {
            'confidence': str(parsed.confidence),
            'vendor_assigned': result.vendor_assigned,
            'line_items_extracted': len(parsed.line_items),
        })
        return OcrOutcome(
            invoice_id=invoice_id,
            success=True,
            confidence=parsed.confidence,
            message=message,
            vendor_assigned=result.vendor_assigned,
            line_items_extracted=len(parsed.line_items),
            invoice=record,
        )

    def _record_ocr_failure(self, user_id: str, invoice_id: str, message: str) -> OcrOutcome:
        """Persist the OCR error state in a fresh session; prior data is left as committed"""
        record = None
        try:
            with self._unit_of_work() as session:
                invoice = InvoiceRepository(session).get_for_company(invoice_id)
                if invoice is not None:
                    invoice.is_ocr_processed = True
                    invoice.ocr_processed_at = self.clock()
                    invoice.ocr_confidence_score = ZERO
                    invoice.ocr_error_message = message
                    self._touch(invoice, user_id)
                    session.flush()
                    record = self._to_record(invoice)
        except Exception:
            logger.exception(f"Failed to save OCR error state for invoice {invoice_id}")

        if record is not None:
            self._emit_event(invoice_id, record.company_id, 'invoice_ocr_failed', user_id, {'error': message})
        return OcrOutcome(invoice_id=invoice_id, success=False, message=message, invoice=record)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self):
        try:
            with self.db.transaction() as session:
                yield session
        except StaleDataError as e:
            raise ConflictError("Invoice was modified by another request; reload and retry") from e
        except IntegrityError as e:
            raise BusinessRuleError(f"Change conflicts with existing data: {e.orig}") from e

    def _load_authorized(self, session: Session, user_id: str, invoice_id: str, permission: Permission) -> Invoice:
        invoice = InvoiceRepository(session).get_for_company(invoice_id)
        if invoice is None:
            raise NotFoundError(INVOICE_NOT_FOUND)
        self.authorizer.require(user_id, invoice.company_id, permission, not_found_message=INVOICE_NOT_FOUND)
        return invoice

    @staticmethod
    def _check_version(invoice: Invoice, expected_version: Optional[int]) -> None:
        if expected_version is not None and invoice.version != expected_version:
            raise ConflictError(
                f"Invoice has been modified (expected version {expected_version}, found {invoice.version})")

    def _touch(self, invoice: Invoice, user_id: str) -> None:
        invoice.updated_by = user_id
        invoice.updated_at = self.clock()

    def _template_for(self, session: Session, vendor_id: Optional[str]) -> Optional[VendorTemplateData]:
        template = VendorRepository(session).get_template(vendor_id)
        return VendorTemplateData.model_validate(template) if template is not None else None

    def _require_account(self, session: Session, company_id: str, account_id: Optional[str], field: str):
        if not account_id:
            return None
        account = AccountRepository(session).get_for_company(company_id, account_id)
        if account is None:
            raise InputValidationError(f"Account {account_id} does not belong to this company", field=field)
        return account

    def _check_references(self, session: Session, company_id: str, request: CreateInvoiceRequest) -> None:
        if request.vendor_id and VendorRepository(session).get_for_company(company_id, request.vendor_id) is None:
            raise NotFoundError("Vendor not found")
        self._require_account(session, company_id, request.advance_tax_account_id, 'advance_tax_account_id')
        self._require_account(session, company_id, request.sales_tax_input_account_id, 'sales_tax_input_account_id')
        for item in request.line_items:
            self._require_account(session, company_id, item.chart_of_account_id, 'chart_of_account_id')

    def _state_from_request(self, request: CreateInvoiceRequest) -> InvoiceState:
        return InvoiceState(
            invoice_number=request.invoice_number,
            invoice_date=request.invoice_date,
            due_date=request.due_date or request.invoice_date + timedelta(days=self.default_due_days),
            vendor_id=request.vendor_id,
            advance_tax_amount=to_money(request.advance_tax_amount),
            sales_tax_input_amount=to_money(request.sales_tax_input_amount),
            advance_tax_account_id=request.advance_tax_account_id,
            sales_tax_input_account_id=request.sales_tax_input_account_id,
        )

    @staticmethod
    def _line_items_from_request(request: CreateInvoiceRequest) -> Sequence[LineItemData]:
        return renumber([LineItemData(**item.model_dump()) for item in request.line_items])

    @staticmethod
    def _set_line_items(invoice: Invoice, line_items: Iterable[LineItemData]) -> None:
        for item in line_items:
            invoice.line_items.append(InvoiceLineItem(**item.model_dump(exclude={'id'})))

    def _replace_line_items(self, session: Session, invoice: Invoice, line_items: Iterable[LineItemData]) -> None:
        invoice.line_items.clear()
        # Old rows must be gone before renumbered rows reuse their line numbers
        session.flush()
        self._set_line_items(invoice, line_items)

    def _to_record(self, invoice: Invoice) -> InvoiceRecord:
        today = self.clock().date()
        status = InvoiceStatus(invoice.status)
        return InvoiceRecord.model_validate(invoice).model_copy(update={
            'vendor_name': invoice.vendor.name if invoice.vendor is not None else None,
            'is_overdue': status not in SETTLED_STATUSES and invoice.due_date < today,
            'days_until_due': (invoice.due_date - today).days,
        })

    def _validate_upload(self, file_name: str, data: bytes) -> str:
        if not file_name:
            raise InputValidationError("File name is required", field='file_name')
        file_type = Path(file_name).suffix.lower()
        if file_type not in self.allowed_extensions:
            raise InputValidationError(
                f"Invalid file type '{file_type or file_name}'. Allowed types: {', '.join(self.allowed_extensions)}",
                field='file')
        if not data:
            raise InputValidationError("Uploaded file is empty", field='file')
        if len(data) > self.max_file_size:
            raise InputValidationError(
                f"File size exceeds the maximum allowed size of {self.max_file_size // (1024 * 1024)} MB",
                field='file')
        return file_type

    def _discard_file(self, storage_path: str) -> None:
        try:
            self.storage.delete(storage_path)
        except Exception as e:
            logger.warning(f"Failed to delete stored file {storage_path}: {e}")

    def _emit_event(
        self,
        invoice_id: str,
        company_id: str,
        event_type: str,
        user_id: Optional[str],
        data: Dict[str, Any],
    ) -> None:
        """Record an invoice event and notify; failures are only logged"""
        try:
            with self.db.transaction() as session:
                InvoiceRepository(session).add_event(InvoiceEvent(
                    invoice_id=invoice_id,
                    company_id=company_id,
                    event_type=event_type,
                    user_id=user_id,
                    data=data,
                ))
        except Exception as e:
            logger.warning(f"Failed to record event {event_type} for invoice {invoice_id}: {e}")

        try:
            self.notifier.notify(event_type, {'invoice_id': invoice_id, 'company_id': company_id,
                                              'user_id': user_id, **data})
        except Exception as e:
            logger.warning(f"Failed to send notification {event_type} for invoice {invoice_id}: {e}")
