"""
Invoice processing components

parser -> template_resolver -> reconciliation, with lifecycle rules and the
GL posting validator used by the service layer.
"""

from invex.processors.invoice.parser import InvoiceParser, FieldRule
from invex.processors.invoice.template_resolver import VendorTemplateResolver, TemplateResolution
from invex.processors.invoice.reconciliation import reconcile, compute_totals
from invex.processors.invoice.lifecycle import InvoiceAction, ensure_allowed, next_status
from invex.processors.invoice.posting import GLPostingValidator, PostingSnapshot, build_journal_entries

__all__ = [
    'InvoiceParser',
    'FieldRule',
    'VendorTemplateResolver',
    'TemplateResolution',
    'reconcile',
    'compute_totals',
    'InvoiceAction',
    'ensure_allowed',
    'next_status',
    'GLPostingValidator',
    'PostingSnapshot',
    'build_journal_entries',
]
