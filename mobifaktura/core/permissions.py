"""
Role to capability mapping.

Routes declare the capability they need once, through
``mobifaktura.core.dependencies.require``.
"""
import enum
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from mobifaktura.core.exceptions import ForbiddenError
from mobifaktura.models.company import UserCompanyPermission
from mobifaktura.models.user import User, UserRole


class Capability(str, enum.Enum):
    submit_invoice = "submit_invoice"
    review_invoice = "review_invoice"
    delete_invoice = "delete_invoice"
    create_correction = "create_correction"
    request_budget = "request_budget"
    review_budget_request = "review_budget_request"
    purge_budget_requests = "purge_budget_requests"
    view_all_saldo = "view_all_saldo"
    adjust_saldo = "adjust_saldo"
    manage_users = "manage_users"
    manage_companies = "manage_companies"
    view_all_companies = "view_all_companies"
    manage_advances = "manage_advances"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.user: frozenset({
        Capability.submit_invoice,
        Capability.request_budget,
    }),
    UserRole.accountant: frozenset({
        Capability.submit_invoice,
        Capability.review_invoice,
        Capability.create_correction,
        Capability.review_budget_request,
        Capability.view_all_saldo,
        Capability.adjust_saldo,
        Capability.view_all_companies,
        Capability.manage_advances,
    }),
    UserRole.admin: frozenset(Capability),
}


def has_capability(user: User, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def ensure_capability(user: User, capability: Capability) -> None:
    if not has_capability(user, capability):
        raise ForbiddenError("You don't have permission to perform this action")


def permitted_company_ids(db: Session, user: User) -> Optional[set[str]]:
    """Company ids the user may work with, or None when the user sees every company."""
    if has_capability(user, Capability.view_all_companies):
        return None
    rows = (
        db.query(UserCompanyPermission.company_id)
        .filter(UserCompanyPermission.user_id == user.id)
        .all()
    )
    return {row.company_id for row in rows}


def has_company_access(db: Session, user: User, company_id: str) -> bool:
    allowed = permitted_company_ids(db, user)
    return allowed is None or company_id in allowed


def ensure_company_access(db: Session, user: User, company_id: str) -> None:
    if not has_company_access(db, user, company_id):
        raise ForbiddenError("You don't have access to this company")


def roles_with(capability: Capability) -> Iterable[UserRole]:
    return [role for role, caps in ROLE_CAPABILITIES.items() if capability in caps]
