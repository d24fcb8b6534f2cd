from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from mobifaktura.core.dependencies import get_db, read_rate_limit, require, write_rate_limit
from mobifaktura.core.exceptions import AppError, InternalError
from mobifaktura.core.permissions import Capability
from mobifaktura.logger_config import logger
from mobifaktura.models.advance import Advance, AdvanceStatus
from mobifaktura.models.user import User
from mobifaktura.schemas.advance import (
    AdvanceCreate,
    AdvanceDelete,
    AdvanceDeleteResponse,
    AdvanceDetailResponse,
    AdvanceListResponse,
    AdvanceResponse,
    AdvanceTransfer,
    PreviousAdvance,
)
from mobifaktura.services.advance_service import AdvanceService

router = APIRouter()

manage_advances = require(Capability.manage_advances)


def _to_response(advance: Advance, schema=AdvanceResponse):
    response = schema.model_validate(advance)
    response.user_name = advance.user.name if advance.user else None
    response.user_email = advance.user.email if advance.user else None
    response.company_name = advance.company.name if advance.company else None
    return response


@router.get("", response_model=AdvanceListResponse, dependencies=[Depends(read_rate_limit)])
def get_advances(
    status_filter: Optional[AdvanceStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=255),
    cursor: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(manage_advances),
    db: Session = Depends(get_db)
):
    items, next_cursor = AdvanceService(db).get_all(
        status=status_filter,
        user_id=user_id,
        search=search,
        cursor=cursor,
        limit=limit,
    )
    return AdvanceListResponse(items=[_to_response(a) for a in items], next_cursor=next_cursor)


@router.post("", response_model=AdvanceResponse, status_code=status.HTTP_201_CREATED)
def create_advance(
    data: AdvanceCreate,
    current_user: User = Depends(manage_advances),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    """
    Record an advance for an employee. The saldo is credited on transfer.
    """
    try:
        advance = AdvanceService(db).create_manual(
            current_user,
            user_id=data.user_id,
            company_id=data.company_id,
            amount=data.amount,
            description=data.description,
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error creating advance: {str(e)}")
        raise InternalError("Failed to create advance")
    return _to_response(AdvanceService(db).get_by_id(advance.id))


@router.get("/{advance_id}", response_model=AdvanceDetailResponse)
def get_advance(
    advance_id: str,
    current_user: User = Depends(manage_advances),
    db: Session = Depends(get_db)
):
    service = AdvanceService(db)
    advance = service.get_by_id(advance_id)
    response = _to_response(advance, AdvanceDetailResponse)
    response.user_saldo = advance.user.saldo if advance.user else None
    response.created_by_name = advance.creator.name if advance.creator else None
    response.transferred_by_name = advance.transferrer.name if advance.transferrer else None
    response.settled_by_name = advance.settler.name if advance.settler else None
    previous = service.get_previous(advance)
    response.previous_advance = PreviousAdvance.model_validate(previous) if previous else None
    return response


@router.post("/{advance_id}/transfer", response_model=AdvanceResponse)
def transfer_advance(
    advance_id: str,
    data: AdvanceTransfer,
    current_user: User = Depends(manage_advances),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    """
    Confirm the payout and credit the saldo. Returns 409 unless pending.
    """
    try:
        advance = AdvanceService(db).transfer(advance_id, current_user, transfer_number=data.transfer_number)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error transferring advance {advance_id}: {str(e)}")
        raise InternalError("Failed to transfer advance")
    return _to_response(advance)


@router.post("/{advance_id}/settle", response_model=AdvanceResponse)
def settle_advance(
    advance_id: str,
    current_user: User = Depends(manage_advances),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    return _to_response(AdvanceService(db).settle(advance_id, current_user))


@router.post("/{advance_id}/delete", response_model=AdvanceDeleteResponse)
def delete_advance(
    advance_id: str,
    data: AdvanceDelete,
    current_user: User = Depends(manage_advances),
    db: Session = Depends(get_db)
):
    """
    Delete an advance. Requires the caller's password again.
    """
    reversed_credit = AdvanceService(db).delete(advance_id, current_user, data.password)
    return AdvanceDeleteResponse(message="Advance deleted", reversed=reversed_credit)
