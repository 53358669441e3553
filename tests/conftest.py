from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import ChartOfAccount, Company, UserCompany, Vendor, VendorInvoiceTemplate

NOW = datetime(2024, 3, 1, 12, 0, 0)

ADMIN = 'u-admin'
ACCOUNTANT = 'u-accountant'
OUTSIDER = 'u-outsider'


def fixed_clock():
    return NOW


@pytest.fixture
def config(tmp_path):
    """Standalone configuration with an in-memory database and temporary storage"""
    return InvexConfig.from_dict({
        'database': {'type': 'sqlite', 'path': ':memory:'},
        'storage': {'path': str(tmp_path / 'storage')},
        'logging': {'level': 'DEBUG'},
    })


@pytest.fixture
def db(config):
    database = Database(config)
    database.create_tables()
    yield database
    database.drop_tables()
    database.dispose()


@pytest.fixture
def seeded(db):
    """A company with two members, a vendor with a template and four accounts"""
    with db.transaction() as session:
        company = Company(name='Test Company', ledger_access_token='token-123')
        other = Company(name='Other Company')
        session.add_all([company, other])
        session.flush()

        session.add_all([
            UserCompany(user_id=ADMIN, company_id=company.id, role='Admin'),
            UserCompany(user_id=ACCOUNTANT, company_id=company.id, role='Accountant'),
            UserCompany(user_id=OUTSIDER, company_id=other.id, role='Admin'),
        ])

        expense = ChartOfAccount(company_id=company.id, recno=1, code='5001', name='Office Expense',
                                 account_type='Expense')
        payable = ChartOfAccount(company_id=company.id, recno=2, code='2001', name='Payable Vendors',
                                 account_type='Liability')
        advance = ChartOfAccount(company_id=company.id, recno=3, code='1401', name='Advance Tax',
                                 account_type='Asset')
        sales_tax = ChartOfAccount(company_id=company.id, recno=4, code='1402', name='Sales Tax Input',
                                   account_type='Asset')
        foreign = ChartOfAccount(company_id=other.id, recno=1, code='9999', name='Other Expense',
                                 account_type='Expense')
        session.add_all([expense, payable, advance, sales_tax, foreign])

        vendor = Vendor(company_id=company.id, name='ABC Traders')
        plain_vendor = Vendor(company_id=company.id, name='Plain Supplies')
        session.add_all([vendor, plain_vendor])
        session.flush()

        session.add(VendorInvoiceTemplate(
            vendor_id=vendor.id,
            company_id=company.id,
            default_tax_rate=Decimal('16'),
            default_chart_of_account_id=expense.id,
            default_payable_vendors_account_id=payable.id,
        ))
        session.flush()

        ids = SimpleNamespace(
            company_id=company.id,
            other_company_id=other.id,
            vendor_id=vendor.id,
            plain_vendor_id=plain_vendor.id,
            expense_id=expense.id,
            payable_id=payable.id,
            advance_id=advance.id,
            sales_tax_id=sales_tax.id,
            foreign_account_id=foreign.id,
        )
    return ids
