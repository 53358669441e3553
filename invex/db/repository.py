from typing import Any, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from invex.db.connection import Base
from invex.db.models import (
    ChartOfAccount,
    Company,
    Invoice,
    InvoiceEvent,
    UserCompany,
    Vendor,
    VendorInvoiceTemplate,
)

T = TypeVar('T', bound=Base)


def contains_pattern(text: str) -> str:
    """LIKE pattern matching ``text`` literally anywhere, escaped with ``\\``"""
    escaped = text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"


class BaseRepository(Generic[T]):
    """Common queries for one model within a caller-owned session"""

    def __init__(self, model_class: Type[T], session: Session):
        self.model_class = model_class
        self.session = session

    def get(self, id: str) -> Optional[T]:
        return self.session.get(self.model_class, id)

    def add(self, instance: T) -> T:
        self.session.add(instance)
        return instance

    def create(self, data: Dict[str, Any]) -> T:
        instance = self.model_class(**data)
        self.session.add(instance)
        self.session.flush()
        return instance

    def delete(self, instance: T) -> None:
        self.session.delete(instance)

    def list(self, **filters) -> List[T]:
        query = select(self.model_class)
        for key, value in filters.items():
            query = query.where(getattr(self.model_class, key) == value)
        return list(self.session.execute(query).scalars())


class CompanyRepository(BaseRepository[Company]):

    def __init__(self, session: Session):
        super().__init__(Company, session)

    def add_member(self, company_id: str, user_id: str, role: str) -> UserCompany:
        membership = UserCompany(company_id=company_id, user_id=user_id, role=role)
        self.session.add(membership)
        self.session.flush()
        return membership


class VendorRepository(BaseRepository[Vendor]):

    def __init__(self, session: Session):
        super().__init__(Vendor, session)

    def get_for_company(self, company_id: str, vendor_id: str) -> Optional[Vendor]:
        vendor = self.session.get(Vendor, vendor_id)
        if vendor is None or vendor.company_id != company_id:
            return None
        return vendor

    def active_for_company(self, company_id: str) -> List[Vendor]:
        """Active vendors with their templates, oldest first"""
        query = (
            select(Vendor)
            .options(selectinload(Vendor.template))
            .where(Vendor.company_id == company_id, Vendor.is_active.is_(True))
            .order_by(Vendor.created_at, Vendor.name)
        )
        return list(self.session.execute(query).scalars())

    def get_template(self, vendor_id: Optional[str]) -> Optional[VendorInvoiceTemplate]:
        """Active template of the vendor"""
        if not vendor_id:
            return None
        query = select(VendorInvoiceTemplate).where(
            VendorInvoiceTemplate.vendor_id == vendor_id,
            VendorInvoiceTemplate.is_active.is_(True)
        )
        return self.session.execute(query).scalar_one_or_none()


class AccountRepository(BaseRepository[ChartOfAccount]):

    def __init__(self, session: Session):
        super().__init__(ChartOfAccount, session)

    def get_for_company(self, company_id: str, account_id: str) -> Optional[ChartOfAccount]:
        account = self.session.get(ChartOfAccount, account_id)
        if account is None or account.company_id != company_id:
            return None
        return account

    def by_recno(self, company_id: str) -> Dict[int, ChartOfAccount]:
        query = select(ChartOfAccount).where(ChartOfAccount.company_id == company_id)
        return {account.recno: account for account in self.session.execute(query).scalars()}

    def by_ids(self, account_ids: Iterable[str]) -> Dict[str, ChartOfAccount]:
        ids = {account_id for account_id in account_ids if account_id}
        if not ids:
            return {}
        query = select(ChartOfAccount).where(ChartOfAccount.id.in_(ids))
        return {account.id: account for account in self.session.execute(query).scalars()}

    def active_for_company(self, company_id: str, type_keywords: Iterable[str] = ()) -> List[ChartOfAccount]:
        """Active accounts ordered by code, optionally limited to account types containing a keyword"""
        query = select(ChartOfAccount).where(
            ChartOfAccount.company_id == company_id,
            ChartOfAccount.is_active.is_(True)
        )
        keywords = list(type_keywords)
        if keywords:
            query = query.where(or_(*[
                ChartOfAccount.account_type.ilike(contains_pattern(k), escape='\\') for k in keywords
            ]))
        return list(self.session.execute(query.order_by(ChartOfAccount.code)).scalars())


class InvoiceRepository(BaseRepository[Invoice]):

    def __init__(self, session: Session):
        super().__init__(Invoice, session)

    def get_for_company(self, invoice_id: str, company_id: Optional[str] = None) -> Optional[Invoice]:
        query = (
            select(Invoice)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.vendor))
            .where(Invoice.id == invoice_id)
        )
        if company_id is not None:
            query = query.where(Invoice.company_id == company_id)
        return self.session.execute(query).scalar_one_or_none()

    def number_exists(self, company_id: str, invoice_number: str, exclude_id: Optional[str] = None) -> bool:
        query = select(func.count(Invoice.id)).where(
            Invoice.company_id == company_id,
            Invoice.invoice_number == invoice_number
        )
        if exclude_id:
            query = query.where(Invoice.id != exclude_id)
        return self.session.execute(query).scalar_one() > 0

    def search(
        self,
        company_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Invoice], int]:
        """Page of a company's invoices, newest first, with the total count"""
        conditions = [Invoice.company_id == company_id]
        if status:
            conditions.append(Invoice.status == status)
        if search:
            pattern = contains_pattern(search.strip())
            conditions.append(or_(
                Invoice.invoice_number.ilike(pattern, escape='\\'),
                Vendor.name.ilike(pattern, escape='\\'),
            ))

        total = self.session.execute(
            select(func.count(Invoice.id))
            .select_from(Invoice)
            .outerjoin(Vendor, Invoice.vendor_id == Vendor.id)
            .where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(Invoice)
            .outerjoin(Vendor, Invoice.vendor_id == Vendor.id)
            .where(*conditions)
            .options(selectinload(Invoice.vendor))
            .order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()
        return list(rows), total

    def add_event(self, event: InvoiceEvent) -> InvoiceEvent:
        self.session.add(event)
        return event

    def events(self, invoice_id: str) -> List[InvoiceEvent]:
        query = select(InvoiceEvent).where(InvoiceEvent.invoice_id == invoice_id).order_by(InvoiceEvent.created_at)
        return list(self.session.execute(query).scalars())
