"""Role capabilities and company scoping."""
import pytest

from mobifaktura.core.exceptions import ForbiddenError
from mobifaktura.core.permissions import (
    Capability,
    ROLE_CAPABILITIES,
    ensure_capability,
    ensure_company_access,
    has_capability,
    permitted_company_ids,
    roles_with,
)
from mobifaktura.models import UserRole

from tests.conftest import make_company, make_user


class TestCapabilities:
    def test_admin_holds_everything(self) -> None:
        assert ROLE_CAPABILITIES[UserRole.admin] == frozenset(Capability)

    @pytest.mark.parametrize(
        "role, capability, expected",
        [
            (UserRole.user, Capability.submit_invoice, True),
            (UserRole.user, Capability.review_invoice, False),
            (UserRole.user, Capability.view_all_saldo, False),
            (UserRole.accountant, Capability.submit_invoice, True),
            (UserRole.accountant, Capability.review_invoice, True),
            (UserRole.accountant, Capability.adjust_saldo, True),
            (UserRole.accountant, Capability.delete_invoice, False),
            (UserRole.accountant, Capability.manage_users, False),
            (UserRole.admin, Capability.purge_budget_requests, True),
        ],
    )
    def test_matrix(self, db, role, capability, expected) -> None:
        user = make_user(db, role)
        assert has_capability(user, capability) is expected

    def test_ensure_capability_raises(self, db) -> None:
        with pytest.raises(ForbiddenError):
            ensure_capability(make_user(db), Capability.adjust_saldo)

    def test_roles_with(self) -> None:
        assert set(roles_with(Capability.review_invoice)) == {UserRole.accountant, UserRole.admin}


class TestCompanyAccess:
    def test_user_sees_granted_companies(self, db, employee, company) -> None:
        make_company(db)
        assert permitted_company_ids(db, employee) == {company.id}

    def test_staff_sees_all(self, db, accountant) -> None:
        assert permitted_company_ids(db, accountant) is None
        ensure_company_access(db, accountant, make_company(db).id)

    def test_ungranted_company_is_forbidden(self, db, employee) -> None:
        with pytest.raises(ForbiddenError):
            ensure_company_access(db, employee, make_company(db).id)
