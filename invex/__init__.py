"""
invex - invoice extraction, reconciliation and ledger posting
"""

__version__ = '1.0.0'
