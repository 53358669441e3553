"""
Company-scoped authorization

Each service operation declares the ``Permission`` it needs; the caller's
role in the owning company is looked up once and checked against the
role -> permissions table from configuration.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from sqlalchemy import select

from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import UserCompany
from invex.errors import NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    VIEW_INVOICE = "invoice.view"
    CREATE_INVOICE = "invoice.create"
    EDIT_INVOICE = "invoice.edit"
    DELETE_INVOICE = "invoice.delete"
    APPROVE_INVOICE = "invoice.approve"
    PAY_INVOICE = "invoice.pay"
    POST_INVOICE = "invoice.post"
    PROCESS_INVOICE = "invoice.process"
    MANAGE_TEMPLATES = "template.manage"
    SYNC_ACCOUNTS = "accounts.sync"


class MembershipProvider(ABC):
    """Answers which role (if any) a user holds in a company"""

    @abstractmethod
    def get_role(self, user_id: str, company_id: str) -> Optional[str]:
        pass


class DatabaseMembershipProvider(MembershipProvider):
    """Membership read from the ``user_companies`` table"""

    def __init__(self, db: Database):
        self.db = db

    def get_role(self, user_id: str, company_id: str) -> Optional[str]:
        with self.db.session() as session:
            membership = session.execute(
                select(UserCompany).where(
                    UserCompany.user_id == user_id,
                    UserCompany.company_id == company_id,
                    UserCompany.is_active.is_(True)
                )
            ).scalar_one_or_none()
            return membership.role if membership else None


def load_role_permissions(config: Optional[InvexConfig] = None) -> Dict[str, FrozenSet[Permission]]:
    """Build the role table from the ``authorization.role_permissions`` section"""
    config = config or InvexConfig()
    raw: Mapping[str, Iterable[str]] = config.get('authorization.role_permissions', {}) or {}
    table = {}
    for role, names in raw.items():
        perms = set()
        for name in names or []:
            try:
                perms.add(Permission(name))
            except ValueError:
                logger.warning(f"Ignoring unknown permission '{name}' for role {role}")
        table[role] = frozenset(perms)
    return table


class Authorizer:
    """Checks a user's capability within a company"""

    def __init__(self, membership: MembershipProvider, role_permissions: Dict[str, FrozenSet[Permission]]):
        self.membership = membership
        self.role_permissions = role_permissions

    def require(self, user_id: str, company_id: str, permission: Permission,
                not_found_message: str = "Company not found") -> str:
        """
        Ensure ``user_id`` may perform ``permission`` in ``company_id``

        Returns:
            The caller's role

        Raises:
            NotFoundError: the user is not a member of the company
            PermissionDeniedError: the user's role lacks the permission
        """
        if not user_id:
            raise NotFoundError(not_found_message)
        role = self.membership.get_role(user_id, company_id)
        if role is None:
            # Non-members learn nothing about the company's existence
            raise NotFoundError(not_found_message)
        if permission not in self.role_permissions.get(role, frozenset()):
            logger.info(f"User {user_id} with role {role} denied {permission.value} in company {company_id}")
            raise PermissionDeniedError(f"Role '{role}' is not allowed to perform {permission.value}")
        return role
