from invex.services.invoice_service import InvoiceService
from invex.services.coa_sync_service import (
    ChartOfAccountSyncService,
    HttpLedgerAccountsProvider,
    LedgerAccountsProvider,
)
from invex.services.notification_service import LoggingNotifier, Notifier, RecordingNotifier
from invex.services.vendor_service import VendorService

__all__ = [
    'InvoiceService',
    'ChartOfAccountSyncService',
    'HttpLedgerAccountsProvider',
    'LedgerAccountsProvider',
    'LoggingNotifier',
    'Notifier',
    'RecordingNotifier',
    'VendorService',
]
