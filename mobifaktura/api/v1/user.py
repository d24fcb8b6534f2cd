from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from mobifaktura.core.dependencies import get_db, require, write_rate_limit
from mobifaktura.core.exceptions import ValidationError
from mobifaktura.core.permissions import Capability
from mobifaktura.logger_config import logger
from mobifaktura.models.user import User, UserRole
from mobifaktura.schemas.user import (
    CompanyPermissionsResponse,
    CompanyPermissionsUpdate,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from mobifaktura.services.company_service import get_user_company_ids, set_user_company_permissions
from mobifaktura.services.user_service import (
    create_user,
    delete_user,
    get_all_users,
    update_user,
)

router = APIRouter()

manage_users = require(Capability.manage_users)


@router.get("", response_model=UserListResponse)
def get_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    role: Optional[UserRole] = Query(None),
    search: Optional[str] = Query(None),
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db)
):
    users, total = get_all_users(db, skip=skip, limit=limit, role=role, search=search)
    return UserListResponse(
        total=total,
        users=[UserResponse.model_validate(user) for user in users]
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user_route(
    user_data: UserCreate,
    current_user: User = Depends(manage_users),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    """
    Create a new account (admin only).
    """
    user = create_user(
        db=db,
        email=user_data.email,
        password=user_data.password,
        name=user_data.name,
        role=user_data.role,
    )
    logger.info(f"User {user.email} created by {current_user.email}")
    return UserResponse.model_validate(user)


@router.put("/{user_id}", response_model=UserResponse)
def update_user_route(
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db)
):
    if user_id == current_user.id and user_data.role not in (None, UserRole.admin):
        raise ValidationError("You cannot remove your own admin role")

    user = update_user(
        db=db,
        user_id=user_id,
        name=user_data.name,
        email=user_data.email,
        role=user_data.role,
        password=user_data.password,
    )
    logger.info(f"User {user_id} updated by {current_user.email}")
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user_route(
    user_id: str,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db)
):
    """
    Delete an account. Admins cannot delete themselves.
    """
    if user_id == current_user.id:
        raise ValidationError("You cannot delete yourself")

    delete_user(db, user_id)
    logger.info(f"User {user_id} deleted by {current_user.email}")
    return None


@router.get("/{user_id}/companies", response_model=CompanyPermissionsResponse)
def get_company_permissions(
    user_id: str,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db)
):
    return CompanyPermissionsResponse(user_id=user_id, company_ids=get_user_company_ids(db, user_id))


@router.put("/{user_id}/companies", response_model=CompanyPermissionsResponse)
def set_company_permissions(
    user_id: str,
    data: CompanyPermissionsUpdate,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db)
):
    company_ids = set_user_company_permissions(db, user_id, data.company_ids)
    return CompanyPermissionsResponse(user_id=user_id, company_ids=company_ids)
