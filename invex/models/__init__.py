from invex.models.invoice import (
    InvoiceStatus,
    ParsedLineItem,
    ParseResult,
    LineItemData,
    LineItemInput,
    CreateInvoiceRequest,
    UpdateInvoiceRequest,
    VendorTemplateData,
    VendorCandidate,
    InvoiceState,
    ReconciliationResult,
    PostingReason,
    PostingDecision,
    JournalEntry,
    GLPreview,
    InvoiceRecord,
    InvoiceSummary,
    InvoicePage,
    OcrOutcome,
    ProviderAccount,
    AccountRecord,
    CoaSyncResult,
    StoredFile,
    to_money,
    parse_decimal,
)
