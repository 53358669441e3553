"""
Tests for company-scoped authorization
"""

import pytest

from invex.auth import Authorizer, MembershipProvider, Permission, load_role_permissions
from invex.config.invex_config import InvexConfig
from invex.errors import NotFoundError, PermissionDeniedError


class StaticMembership(MembershipProvider):

    def __init__(self, roles):
        self.roles = roles

    def get_role(self, user_id, company_id):
        return self.roles.get((user_id, company_id))


class TestAuthorizer:

    def setup_method(self):
        membership = StaticMembership({
            ('alice', 'c-1'): 'Admin',
            ('bob', 'c-1'): 'Viewer',
            ('carol', 'c-1'): 'Auditor',
        })
        self.authorizer = Authorizer(membership, load_role_permissions(InvexConfig.from_dict()))

    def test_member_with_permission(self):
        """The caller's role is returned"""
        assert self.authorizer.require('alice', 'c-1', Permission.SYNC_ACCOUNTS) == 'Admin'

    def test_non_member_gets_not_found(self):
        """Non-members cannot tell whether the company exists"""
        with pytest.raises(NotFoundError, match="Company not found"):
            self.authorizer.require('alice', 'c-2', Permission.VIEW_INVOICE)
        with pytest.raises(NotFoundError, match="Invoice not found"):
            self.authorizer.require('', 'c-1', Permission.VIEW_INVOICE, not_found_message="Invoice not found")

    def test_member_without_permission(self):
        """Members lacking the capability are denied"""
        with pytest.raises(PermissionDeniedError, match="template.manage"):
            self.authorizer.require('bob', 'c-1', Permission.MANAGE_TEMPLATES)

    def test_unknown_role_has_no_permissions(self):
        """Roles missing from the table grant nothing"""
        with pytest.raises(PermissionDeniedError):
            self.authorizer.require('carol', 'c-1', Permission.VIEW_INVOICE)


class TestRolePermissions:

    def test_default_table(self):
        """Every role may work with invoices; only admins manage templates and sync"""
        table = load_role_permissions(InvexConfig.from_dict())

        for role in ('SuperAdmin', 'Admin', 'Manager', 'Accountant', 'Approver', 'Viewer'):
            assert Permission.POST_INVOICE in table[role]
        assert Permission.SYNC_ACCOUNTS in table['Admin']
        assert Permission.SYNC_ACCOUNTS not in table['Manager']

    def test_configured_table(self):
        """Unknown permission names are ignored"""
        config = InvexConfig.from_dict()
        config.set('authorization.role_permissions', {'Clerk': ['invoice.view', 'invoice.fly']})

        table = load_role_permissions(config)

        assert table == {'Clerk': frozenset({Permission.VIEW_INVOICE})}
