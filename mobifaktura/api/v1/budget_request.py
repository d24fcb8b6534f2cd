from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Literal, Optional

from mobifaktura.core.dependencies import get_current_user, get_db, read_rate_limit, require, write_rate_limit
from mobifaktura.core.exceptions import AppError, InternalError
from mobifaktura.core.permissions import Capability
from mobifaktura.logger_config import logger
from mobifaktura.models.budget_request import BudgetRequestStatus
from mobifaktura.models.user import User
from mobifaktura.schemas.budget_request import (
    BudgetRequestCreate,
    BudgetRequestListResponse,
    BudgetRequestResponse,
    BudgetRequestReview,
    BulkDeleteRequest,
    BulkDeleteResponse,
    PendingCountResponse,
)
from mobifaktura.services.budget_request_service import BudgetRequestService

router = APIRouter()

review_requests = require(Capability.review_budget_request)


@router.post("", response_model=BudgetRequestResponse, status_code=status.HTTP_201_CREATED)
def create_budget_request(
    data: BudgetRequestCreate,
    current_user: User = Depends(require(Capability.request_budget)),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    """
    Ask for a saldo top-up. One pending request per company at a time.
    """
    try:
        return BudgetRequestService(db).create(
            current_user,
            company_id=data.company_id,
            requested_amount=data.requested_amount,
            justification=data.justification,
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error creating budget request: {str(e)}")
        raise InternalError("Failed to create budget request")


@router.get("/mine", response_model=list[BudgetRequestResponse], dependencies=[Depends(read_rate_limit)])
def my_requests(
    status_filter: Optional[BudgetRequestStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return BudgetRequestService(db).my_requests(current_user, status=status_filter)


@router.get("", response_model=BudgetRequestListResponse, dependencies=[Depends(read_rate_limit)])
def get_all_requests(
    status_filter: Optional[BudgetRequestStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: Literal["created_at", "requested_amount", "status"] = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    cursor: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(review_requests),
    db: Session = Depends(get_db)
):
    items, next_cursor = BudgetRequestService(db).get_all(
        status=status_filter,
        user_id=user_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        cursor=cursor,
        limit=limit,
    )
    return BudgetRequestListResponse(items=items, next_cursor=next_cursor)


@router.get("/pending-count", response_model=PendingCountResponse)
def pending_count(
    current_user: User = Depends(review_requests),
    db: Session = Depends(get_db)
):
    return PendingCountResponse(count=BudgetRequestService(db).get_pending_count())


@router.post("/bulk-delete", response_model=BulkDeleteResponse)
def bulk_delete(
    data: BulkDeleteRequest,
    current_user: User = Depends(require(Capability.purge_budget_requests)),
    db: Session = Depends(get_db)
):
    """
    Purge old requests. Requires the admin's password again.
    """
    deleted = BudgetRequestService(db).bulk_delete(
        current_user,
        password=data.password,
        statuses=data.statuses,
        user_id=data.user_id,
        older_than_months=data.older_than_months,
        year=data.year,
        month=data.month,
    )
    return BulkDeleteResponse(deleted=deleted)


@router.get("/{request_id}", response_model=BudgetRequestResponse)
def get_request(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return BudgetRequestService(db).get_by_id(current_user, request_id)


@router.post("/{request_id}/review", response_model=BudgetRequestResponse)
def review_request(
    request_id: str,
    data: BudgetRequestReview,
    current_user: User = Depends(review_requests),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    """
    Approve (credits the saldo) or reject. Returns 409 if already reviewed.
    """
    try:
        return BudgetRequestService(db).review(
            request_id,
            action=data.action,
            reviewer=current_user,
            rejection_reason=data.rejection_reason,
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error reviewing budget request {request_id}: {str(e)}")
        raise InternalError("Failed to review budget request")


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_request(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    BudgetRequestService(db).cancel(current_user, request_id)
    return None
