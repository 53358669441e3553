"""
Tests for vendors and vendor invoice templates
"""

from decimal import Decimal

import pytest

from conftest import ACCOUNTANT, ADMIN, OUTSIDER
from invex.errors import BusinessRuleError, InputValidationError, NotFoundError, PermissionDeniedError
from invex.models.invoice import VendorTemplateData
from invex.services.vendor_service import VendorService


class TestVendorService:

    def test_create_and_list(self, db, seeded):
        """New vendors are listed with the company's others"""
        service = VendorService(db)

        created = service.create_vendor(ADMIN, seeded.company_id, '  Delta Office  ')

        assert created.name == 'Delta Office'
        names = [v.name for v in service.list_vendors(ACCOUNTANT, seeded.company_id)]
        assert sorted(names) == ['ABC Traders', 'Delta Office', 'Plain Supplies']

    def test_duplicate_name(self, db, seeded):
        """Vendor names are unique per company, ignoring case"""
        with pytest.raises(BusinessRuleError, match="already exists"):
            VendorService(db).create_vendor(ADMIN, seeded.company_id, 'abc traders')

    def test_template_management_needs_permission(self, db, seeded):
        """Accountants cannot manage vendors or templates"""
        service = VendorService(db)

        with pytest.raises(PermissionDeniedError):
            service.create_vendor(ACCOUNTANT, seeded.company_id, 'Nope Ltd')
        with pytest.raises(PermissionDeniedError):
            service.save_template(ACCOUNTANT, seeded.vendor_id, VendorTemplateData())
        with pytest.raises(NotFoundError, match="Vendor not found"):
            service.get_template(OUTSIDER, seeded.vendor_id)

    def test_save_template_creates_and_replaces(self, db, seeded):
        """Templates are upserted per vendor"""
        service = VendorService(db)

        created = service.save_template(ADMIN, seeded.plain_vendor_id, VendorTemplateData(
            invoice_number_label='Bill Ref',
            default_tax_rate=Decimal('17'),
            default_payable_vendors_account_id=seeded.payable_id,
        ))
        replaced = service.save_template(ADMIN, seeded.plain_vendor_id, VendorTemplateData(total_label='Net Payable'))

        assert created.vendor_id == seeded.plain_vendor_id
        assert created.invoice_number_label == 'Bill Ref'
        assert replaced.id == created.id
        assert replaced.invoice_number_label is None
        assert replaced.total_label == 'Net Payable'
        assert service.get_template(ACCOUNTANT, seeded.plain_vendor_id).total_label == 'Net Payable'

    def test_template_accounts_must_belong_to_company(self, db, seeded):
        """Default accounts of another company are refused"""
        data = VendorTemplateData(default_chart_of_account_id=seeded.foreign_account_id)

        with pytest.raises(InputValidationError, match="does not belong to this company"):
            VendorService(db).save_template(ADMIN, seeded.vendor_id, data)

    def test_deactivated_vendor_not_listed(self, db, seeded):
        """Inactive vendors drop out of the list"""
        service = VendorService(db)

        service.deactivate_vendor(ADMIN, seeded.plain_vendor_id)

        assert [v.id for v in service.list_vendors(ADMIN, seeded.company_id)] == [seeded.vendor_id]
