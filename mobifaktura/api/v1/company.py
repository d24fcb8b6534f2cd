from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from mobifaktura.core.dependencies import get_current_user, get_db, require
from mobifaktura.core.permissions import Capability
from mobifaktura.logger_config import logger
from mobifaktura.models.user import User
from mobifaktura.schemas.company import CompanyCreate, CompanyResponse, CompanyUpdate
from mobifaktura.services import company_service

router = APIRouter()


@router.get("", response_model=list[CompanyResponse])
def list_companies(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Active companies the current user may submit against.
    """
    return company_service.list_companies(db, current_user)


@router.get("/all", response_model=list[CompanyResponse])
def list_all_companies(
    current_user: User = Depends(require(Capability.manage_companies)),
    db: Session = Depends(get_db)
):
    return company_service.list_all_companies(db)


@router.post("", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
def create_company(
    data: CompanyCreate,
    current_user: User = Depends(require(Capability.manage_companies)),
    db: Session = Depends(get_db)
):
    company = company_service.create_company(db, name=data.name, nip=data.nip, address=data.address)
    logger.info(f"Company {company.id} created by {current_user.email}")
    return company


@router.put("/{company_id}", response_model=CompanyResponse)
def update_company(
    company_id: str,
    data: CompanyUpdate,
    current_user: User = Depends(require(Capability.manage_companies)),
    db: Session = Depends(get_db)
):
    return company_service.update_company(
        db,
        company_id,
        name=data.name,
        nip=data.nip,
        address=data.address,
        active=data.active,
    )
