"""
Chart of Accounts Sync

Keeps each company's local copy of its ledger accounts in step with the
external ledger provider. Accounts are matched on the provider's numeric
key (``recno``); unseen keys are inserted, changed ones updated. A company
may sync at most once every ``ledger.min_days_between_sync`` days.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional

import aiohttp
from pydantic import ValidationError

from invex.auth import Authorizer, DatabaseMembershipProvider, MembershipProvider, Permission, load_role_permissions
from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import ChartOfAccount, Company, utcnow
from invex.db.repository import AccountRepository, CompanyRepository
from invex.errors import ExternalServiceError, NotFoundError
from invex.models.invoice import AccountRecord, CoaSyncResult, ProviderAccount

logger = logging.getLogger(__name__)

EXPENSE_TYPES = ('Expense', 'Cost')
BANK_CASH_TYPES = ('Bank', 'Cash')
SYNCED_FIELDS = ('code', 'name', 'description', 'account_type', 'parent_code', 'is_active')


class LedgerAccountsProvider(ABC):
    """External source of a company's chart of accounts"""

    @abstractmethod
    async def fetch_accounts(self, access_token: str) -> List[ProviderAccount]:
        """
        Raises:
            ExternalServiceError: the provider could not be reached or refused the request
        """
        pass

    @abstractmethod
    async def test_credentials(self, access_token: str) -> bool:
        pass


class HttpLedgerAccountsProvider(LedgerAccountsProvider):
    """
    Accounts provider over HTTP

    ``GET {base_url}/{accounts_endpoint}`` with the access token in the
    ``AccessTokenCode`` header; the body is an envelope
    ``{message, status, isSuccessFull, data: [...]}``.
    """

    def __init__(self, config: Optional[InvexConfig] = None):
        config = config or InvexConfig()
        self.base_url = config.get('ledger.base_url', '').rstrip('/')
        self.endpoint = config.get('ledger.accounts_endpoint', 'GetDetailedCoas')
        self.timeout = aiohttp.ClientTimeout(total=config.get('ledger.timeout', 30))

    @property
    def accounts_url(self) -> str:
        return f"{self.base_url}/{self.endpoint}"

    def _headers(self, access_token: str) -> dict:
        return {'AccessTokenCode': access_token, 'Accept': 'application/json'}

    async def fetch_accounts(self, access_token: str) -> List[ProviderAccount]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(self.accounts_url, headers=self._headers(access_token)) as response:
                    if response.status >= 400:
                        raise ExternalServiceError(f"HTTP error {response.status}: {await response.text()}")
                    body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ExternalServiceError(f"Ledger provider request failed: {e}") from e

        if not isinstance(body, dict) or not body.get('isSuccessFull') or body.get('data') is None:
            message = body.get('message') if isinstance(body, dict) else None
            raise ExternalServiceError(message or "Failed to fetch accounts from ledger provider")

        try:
            return [ProviderAccount.model_validate(item) for item in body['data']]
        except ValidationError as e:
            raise ExternalServiceError(f"Unexpected account data from ledger provider: {e}") from e

    async def test_credentials(self, access_token: str) -> bool:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(self.accounts_url, headers=self._headers(access_token)) as response:
                    return response.status < 400
        except aiohttp.ClientError as e:
            logger.error(f"Failed to test ledger provider connection: {e}")
            return False


class ChartOfAccountSyncService:

    def __init__(
        self,
        db: Database,
        provider: Optional[LedgerAccountsProvider] = None,
        membership: Optional[MembershipProvider] = None,
        config: Optional[InvexConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.config = config or db.config
        self.provider = provider or HttpLedgerAccountsProvider(self.config)
        self.authorizer = Authorizer(
            membership or DatabaseMembershipProvider(db),
            load_role_permissions(self.config)
        )
        self.clock = clock or utcnow
        self.min_days_between_sync = int(self.config.get('ledger.min_days_between_sync', 7))

    def _get_company(self, session, company_id: str) -> Company:
        company = CompanyRepository(session).get(company_id)
        if company is None:
            raise NotFoundError("Company not found")
        return company

    def days_since_last_sync(self, company_id: str, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days since the last sync, None if the company never synced"""
        with self.db.session() as session:
            last = self._get_company(session, company_id).last_coa_sync_at
        if last is None:
            return None
        return int(((now or self.clock()) - last).total_seconds() // 86400)

    def can_sync(self, company_id: str, now: Optional[datetime] = None) -> bool:
        with self.db.session() as session:
            last = self._get_company(session, company_id).last_coa_sync_at
        if last is None:
            return True
        elapsed_days = ((now or self.clock()) - last).total_seconds() / 86400
        return elapsed_days >= self.min_days_between_sync

    def set_access_token(self, user_id: str, company_id: str, access_token: Optional[str]) -> None:
        self.authorizer.require(user_id, company_id, Permission.SYNC_ACCOUNTS)
        with self.db.transaction() as session:
            self._get_company(session, company_id).ledger_access_token = access_token or None
        logger.info(f"Ledger access token updated for company {company_id}")

    async def test_connection(self, user_id: str, company_id: str, access_token: Optional[str] = None) -> bool:
        """Check the given token, or the company's stored token, against the provider"""
        self.authorizer.require(user_id, company_id, Permission.SYNC_ACCOUNTS)
        if access_token is None:
            with self.db.session() as session:
                access_token = self._get_company(session, company_id).ledger_access_token
        if not access_token:
            return False
        return await self.provider.test_credentials(access_token)

    async def sync_chart_of_accounts(self, user_id: str, company_id: str) -> CoaSyncResult:
        """
        Pull the company's accounts from the provider and update the local copy

        Provider failures and refused syncs are reported in the result, not raised.
        """
        self.authorizer.require(user_id, company_id, Permission.SYNC_ACCOUNTS)
        started = self.clock()

        with self.db.session() as session:
            access_token = self._get_company(session, company_id).ledger_access_token
        if not access_token:
            return CoaSyncResult(success=False, synced_at=started, error="Ledger access token not configured")
        if not self.can_sync(company_id, now=started):
            return CoaSyncResult(
                success=False,
                synced_at=started,
                error=f"Cannot sync. Last sync was less than {self.min_days_between_sync} days ago"
            )

        logger.info(f"Starting chart of accounts sync for company {company_id}")
        try:
            fetched = await self.provider.fetch_accounts(access_token)
        except Exception as e:
            logger.exception(f"Failed to fetch chart of accounts for company {company_id}")
            return CoaSyncResult(success=False, synced_at=started, error=f"Sync failed: {str(e)}")

        new_count = 0
        updated_count = 0
        with self.db.transaction() as session:
            company = self._get_company(session, company_id)
            accounts = AccountRepository(session)
            existing = accounts.by_recno(company_id)

            for item in fetched:
                if not item.is_active:
                    continue
                account = existing.get(item.recno)
                if account is None:
                    account = ChartOfAccount(
                        company_id=company_id,
                        recno=item.recno,
                        synced_at=started,
                        **{field: getattr(item, field) for field in SYNCED_FIELDS}
                    )
                    accounts.add(account)
                    existing[item.recno] = account
                    new_count += 1
                    continue

                changed = False
                for field in SYNCED_FIELDS:
                    value = getattr(item, field)
                    if getattr(account, field) != value:
                        setattr(account, field, value)
                        changed = True
                if changed:
                    account.synced_at = started
                    updated_count += 1

            company.last_coa_sync_at = started

        logger.info(
            f"Chart of accounts sync completed for company {company_id}. "
            f"Total: {len(fetched)}, New: {new_count}, Updated: {updated_count}"
        )
        return CoaSyncResult(
            success=True,
            total_accounts=len(fetched),
            new_accounts=new_count,
            updated_accounts=updated_count,
            synced_at=started,
        )

    def get_local_accounts(self, user_id: str, company_id: str) -> List[AccountRecord]:
        return self._accounts(user_id, company_id)

    def get_expense_accounts(self, user_id: str, company_id: str) -> List[AccountRecord]:
        return self._accounts(user_id, company_id, EXPENSE_TYPES)

    def get_bank_cash_accounts(self, user_id: str, company_id: str) -> List[AccountRecord]:
        return self._accounts(user_id, company_id, BANK_CASH_TYPES)

    def _accounts(self, user_id: str, company_id: str, type_keywords=()) -> List[AccountRecord]:
        self.authorizer.require(user_id, company_id, Permission.VIEW_INVOICE)
        with self.db.session() as session:
            rows = AccountRepository(session).active_for_company(company_id, type_keywords)
            return [AccountRecord.model_validate(row) for row in rows]
