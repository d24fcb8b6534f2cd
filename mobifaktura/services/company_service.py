from typing import List, Optional

from sqlalchemy.orm import Session

from mobifaktura.core.exceptions import NotFoundError, ValidationError
from mobifaktura.core.permissions import permitted_company_ids
from mobifaktura.logger_config import logger
from mobifaktura.models.company import Company, UserCompanyPermission
from mobifaktura.models.user import User, UserRole


def get_company_by_id(db: Session, company_id: str) -> Optional[Company]:
    return db.query(Company).filter(Company.id == company_id).first()


def list_companies(db: Session, user: User) -> List[Company]:
    """Active companies the user may submit against."""
    query = db.query(Company).filter(Company.active.is_(True))
    allowed = permitted_company_ids(db, user)
    if allowed is not None:
        if not allowed:
            return []
        query = query.filter(Company.id.in_(allowed))
    return query.order_by(Company.name).all()


def list_all_companies(db: Session, include_inactive: bool = True) -> List[Company]:
    query = db.query(Company)
    if not include_inactive:
        query = query.filter(Company.active.is_(True))
    return query.order_by(Company.name).all()


def create_company(
    db: Session,
    name: str,
    nip: Optional[str] = None,
    address: Optional[str] = None,
) -> Company:
    company = Company(name=name.strip(), nip=nip, address=address)
    db.add(company)
    try:
        db.commit()
        db.refresh(company)
        logger.info(f"Company {company.name} created")
        return company
    except Exception:
        db.rollback()
        logger.exception("Error creating company")
        raise


def update_company(
    db: Session,
    company_id: str,
    name: Optional[str] = None,
    nip: Optional[str] = None,
    address: Optional[str] = None,
    active: Optional[bool] = None,
) -> Company:
    company = get_company_by_id(db, company_id)
    if not company:
        raise NotFoundError("Company not found")

    if name is not None:
        company.name = name.strip()
    if nip is not None:
        company.nip = nip
    if address is not None:
        company.address = address
    if active is not None:
        company.active = active

    try:
        db.commit()
        db.refresh(company)
        return company
    except Exception:
        db.rollback()
        logger.exception(f"Error updating company {company_id}")
        raise


def get_user_company_ids(db: Session, user_id: str) -> List[str]:
    rows = (
        db.query(UserCompanyPermission.company_id)
        .filter(UserCompanyPermission.user_id == user_id)
        .all()
    )
    return [row.company_id for row in rows]


def set_user_company_permissions(db: Session, user_id: str, company_ids: List[str]) -> List[str]:
    """
    Replace the set of companies a regular user may work with.
    Accountants and admins already see every company.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    if user.role != UserRole.user:
        raise ValidationError("Company permissions apply only to regular users")

    wanted = set(company_ids)
    if wanted:
        found = {row.id for row in db.query(Company.id).filter(Company.id.in_(wanted)).all()}
        missing = wanted - found
        if missing:
            raise NotFoundError(f"Company not found: {', '.join(sorted(missing))}")

    try:
        db.query(UserCompanyPermission).filter(
            UserCompanyPermission.user_id == user_id
        ).delete(synchronize_session=False)
        for company_id in sorted(wanted):
            db.add(UserCompanyPermission(user_id=user_id, company_id=company_id))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Error setting company permissions for {user_id}")
        raise

    logger.info(f"User {user_id} now has access to {len(wanted)} companies")
    return sorted(wanted)
