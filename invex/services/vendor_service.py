"""
Vendor and vendor invoice template management
"""

import logging
from typing import List, Optional

from invex.auth import Authorizer, DatabaseMembershipProvider, MembershipProvider, Permission, load_role_permissions
from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import Vendor, VendorInvoiceTemplate
from invex.db.repository import AccountRepository, VendorRepository
from invex.errors import BusinessRuleError, InputValidationError, NotFoundError
from invex.models.invoice import VendorCandidate, VendorTemplateData

logger = logging.getLogger(__name__)

TEMPLATE_ACCOUNT_FIELDS = (
    'default_chart_of_account_id',
    'default_advance_tax_account_id',
    'default_sales_tax_input_account_id',
    'default_payable_vendors_account_id',
)


class VendorService:

    def __init__(
        self,
        db: Database,
        membership: Optional[MembershipProvider] = None,
        config: Optional[InvexConfig] = None,
    ):
        self.db = db
        self.config = config or db.config
        self.authorizer = Authorizer(
            membership or DatabaseMembershipProvider(db),
            load_role_permissions(self.config)
        )

    def create_vendor(self, user_id: str, company_id: str, name: str) -> VendorCandidate:
        self.authorizer.require(user_id, company_id, Permission.MANAGE_TEMPLATES)
        name = (name or '').strip()
        if not name:
            raise InputValidationError("Vendor name is required", field='name')

        with self.db.transaction() as session:
            vendors = VendorRepository(session)
            if any(v.name.lower() == name.lower() for v in vendors.list(company_id=company_id)):
                raise BusinessRuleError(f"Vendor '{name}' already exists")
            vendor = vendors.create({'company_id': company_id, 'name': name})
            result = VendorCandidate(id=vendor.id, name=vendor.name)

        logger.info(f"Created vendor {name} ({result.id}) for company {company_id}")
        return result

    def list_vendors(self, user_id: str, company_id: str) -> List[VendorCandidate]:
        self.authorizer.require(user_id, company_id, Permission.VIEW_INVOICE)
        with self.db.session() as session:
            return [VendorCandidate.model_validate(v) for v in VendorRepository(session).active_for_company(company_id)]

    def deactivate_vendor(self, user_id: str, vendor_id: str) -> None:
        with self.db.transaction() as session:
            vendor = self._load_vendor(session, user_id, vendor_id)
            vendor.is_active = False

    def get_template(self, user_id: str, vendor_id: str) -> Optional[VendorTemplateData]:
        with self.db.session() as session:
            vendor = self._load_vendor(session, user_id, vendor_id, Permission.VIEW_INVOICE)
            template = vendor.template
            return VendorTemplateData.model_validate(template) if template is not None else None

    def save_template(self, user_id: str, vendor_id: str, data: VendorTemplateData) -> VendorTemplateData:
        """Create or replace the vendor's invoice template"""
        values = data.model_dump(exclude={'id', 'vendor_id'})

        with self.db.transaction() as session:
            vendor = self._load_vendor(session, user_id, vendor_id)
            accounts = AccountRepository(session)
            for field in TEMPLATE_ACCOUNT_FIELDS:
                account_id = values.get(field)
                if account_id and accounts.get_for_company(vendor.company_id, account_id) is None:
                    raise InputValidationError(f"Account {account_id} does not belong to this company", field=field)

            template = vendor.template
            if template is None:
                template = VendorInvoiceTemplate(vendor_id=vendor.id, company_id=vendor.company_id)
                vendor.template = template
            for key, value in values.items():
                setattr(template, key, value)
            session.flush()
            result = VendorTemplateData.model_validate(template)

        logger.info(f"Saved invoice template for vendor {vendor_id}")
        return result

    def _load_vendor(self, session, user_id: str, vendor_id: str,
                     permission: Permission = Permission.MANAGE_TEMPLATES) -> Vendor:
        vendor = VendorRepository(session).get(vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor not found")
        self.authorizer.require(user_id, vendor.company_id, permission, not_found_message="Vendor not found")
        return vendor
