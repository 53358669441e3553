"""
Tests for chart of accounts sync
"""

import asyncio
from datetime import timedelta

import pytest
from aiohttp import test_utils, web

from conftest import ACCOUNTANT, ADMIN, NOW, OUTSIDER
from invex.config.invex_config import InvexConfig
from invex.db.models import Company
from invex.errors import ExternalServiceError, NotFoundError, PermissionDeniedError
from invex.models.invoice import ProviderAccount
from invex.services.coa_sync_service import (
    ChartOfAccountSyncService,
    HttpLedgerAccountsProvider,
    LedgerAccountsProvider,
)


def provider_account(recno, code, name, account_type='Expense', is_active=True):
    return ProviderAccount(recno=recno, code=code, name=name, account_type=account_type, is_active=is_active)


FETCHED = [
    provider_account(1, '5001', 'Office Expense'),
    provider_account(2, '2001', 'Vendors Payable', account_type='Liability'),
    provider_account(5, '1001', 'Main Bank', account_type='Bank Account'),
    provider_account(6, '5999', 'Closed Expense', is_active=False),
]


class FakeProvider(LedgerAccountsProvider):

    def __init__(self, accounts=None, error=None):
        self.accounts = list(accounts or [])
        self.error = error
        self.calls = 0

    async def fetch_accounts(self, access_token):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.accounts

    async def test_credentials(self, access_token):
        return access_token == 'token-123'


class Clock:

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make_service(db, provider=None, clock=None):
    return ChartOfAccountSyncService(db, provider=provider or FakeProvider(FETCHED), clock=clock or Clock(NOW))


class TestSyncChartOfAccounts:

    def test_first_sync_inserts_and_updates(self, db, seeded):
        """New keys are inserted, changed ones updated and inactive ones skipped"""
        service = make_service(db)

        result = asyncio.run(service.sync_chart_of_accounts(ADMIN, seeded.company_id))

        assert result.success is True
        assert result.total_accounts == 4
        assert result.new_accounts == 1
        assert result.updated_accounts == 1
        assert result.synced_at == NOW

        accounts = {a.code: a for a in service.get_local_accounts(ADMIN, seeded.company_id)}
        assert accounts['2001'].name == 'Vendors Payable'
        assert accounts['1001'].display_name == '1001 - Main Bank'
        assert '5999' not in accounts

    def test_sync_gate(self, db, seeded):
        """A second sync within seven days is refused"""
        clock = Clock(NOW)
        provider = FakeProvider(FETCHED)
        service = make_service(db, provider, clock)
        assert service.can_sync(seeded.company_id) is True
        assert service.days_since_last_sync(seeded.company_id) is None

        asyncio.run(service.sync_chart_of_accounts(ADMIN, seeded.company_id))

        assert service.can_sync(seeded.company_id, now=NOW + timedelta(days=3)) is False
        assert service.can_sync(seeded.company_id, now=NOW + timedelta(days=8)) is True
        assert service.can_sync(seeded.company_id, now=NOW + timedelta(days=7)) is True
        assert service.days_since_last_sync(seeded.company_id, now=NOW + timedelta(days=3)) == 3

        clock.now = NOW + timedelta(days=3)
        refused = asyncio.run(service.sync_chart_of_accounts(ADMIN, seeded.company_id))
        assert refused.success is False
        assert refused.error == "Cannot sync. Last sync was less than 7 days ago"
        assert provider.calls == 1

        clock.now = NOW + timedelta(days=8)
        again = asyncio.run(service.sync_chart_of_accounts(ADMIN, seeded.company_id))
        assert again.success is True
        assert again.new_accounts == 0
        assert again.updated_accounts == 0

    def test_missing_token(self, db, seeded):
        """Companies without a ledger token cannot sync"""
        service = make_service(db)

        result = asyncio.run(service.sync_chart_of_accounts(OUTSIDER, seeded.other_company_id))

        assert result.success is False
        assert result.error == "Ledger access token not configured"

    def test_provider_failure_is_reported(self, db, seeded):
        """Provider errors come back in the result and do not start the gate"""
        service = make_service(db, FakeProvider(error=ExternalServiceError("HTTP error 503: unavailable")))

        result = asyncio.run(service.sync_chart_of_accounts(ADMIN, seeded.company_id))

        assert result.success is False
        assert result.error == "Sync failed: HTTP error 503: unavailable"
        assert service.can_sync(seeded.company_id) is True

    def test_sync_requires_permission(self, db, seeded):
        """Accountants may view accounts but not sync them"""
        service = make_service(db)

        with pytest.raises(PermissionDeniedError):
            asyncio.run(service.sync_chart_of_accounts(ACCOUNTANT, seeded.company_id))
        with pytest.raises(NotFoundError):
            asyncio.run(service.sync_chart_of_accounts(OUTSIDER, seeded.company_id))
        assert len(service.get_local_accounts(ACCOUNTANT, seeded.company_id)) == 4

    def test_unknown_company(self, db, seeded):
        """Gate checks on unknown companies raise not found"""
        with pytest.raises(NotFoundError):
            make_service(db).can_sync('no-such-company')

    def test_account_type_filters(self, db, seeded):
        """Expense and bank/cash lists filter on account type"""
        service = make_service(db)
        asyncio.run(service.sync_chart_of_accounts(ADMIN, seeded.company_id))

        expense = [a.code for a in service.get_expense_accounts(ADMIN, seeded.company_id)]
        bank_cash = [a.code for a in service.get_bank_cash_accounts(ADMIN, seeded.company_id)]

        assert expense == ['5001']
        assert bank_cash == ['1001']

    def test_set_token_and_test_connection(self, db, seeded):
        """Stored tokens are checked against the provider"""
        service = make_service(db)

        assert asyncio.run(service.test_connection(ADMIN, seeded.company_id)) is True
        service.set_access_token(ADMIN, seeded.company_id, 'wrong')
        assert asyncio.run(service.test_connection(ADMIN, seeded.company_id)) is False

        with db.session() as session:
            assert session.get(Company, seeded.company_id).ledger_access_token == 'wrong'


async def serve(handler, call):
    app = web.Application()
    app.router.add_get('/api/GetDetailedCoas', handler)
    async with test_utils.TestServer(app) as server:
        config = InvexConfig.from_dict({'ledger': {'base_url': str(server.make_url('/api'))}})
        return await call(HttpLedgerAccountsProvider(config))


class TestHttpLedgerAccountsProvider:

    def test_envelope_parsed(self):
        """Accounts are read from the data list with camel-case keys"""
        seen_tokens = []

        async def handler(request):
            seen_tokens.append(request.headers.get('AccessTokenCode'))
            return web.json_response({
                'message': 'OK',
                'status': 200,
                'isSuccessFull': True,
                'data': [
                    {'recno': 7, 'code': '5001', 'name': 'Office Expense', 'accountType': 'Expense',
                     'parentCode': '5000', 'isActive': True},
                    {'recno': 8, 'code': '1001', 'name': 'Main Bank', 'isActive': False},
                ],
            })

        accounts = asyncio.run(serve(handler, lambda provider: provider.fetch_accounts('tok-1')))

        assert seen_tokens == ['tok-1']
        assert [(a.recno, a.code, a.account_type, a.parent_code, a.is_active) for a in accounts] == [
            (7, '5001', 'Expense', '5000', True),
            (8, '1001', None, None, False),
        ]

    def test_unsuccessful_envelope(self):
        """A refused request raises with the provider's message"""
        async def handler(request):
            return web.json_response({'message': 'Invalid token', 'status': 401, 'isSuccessFull': False})

        with pytest.raises(ExternalServiceError, match="Invalid token"):
            asyncio.run(serve(handler, lambda provider: provider.fetch_accounts('bad')))

    def test_http_error(self):
        """HTTP failures raise with the status code"""
        async def handler(request):
            return web.Response(status=500, text='boom')

        with pytest.raises(ExternalServiceError, match="HTTP error 500"):
            asyncio.run(serve(handler, lambda provider: provider.fetch_accounts('tok')))
        assert asyncio.run(serve(handler, lambda provider: provider.test_credentials('tok'))) is False
