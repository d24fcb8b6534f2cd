from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from mobifaktura.core.dependencies import get_current_user, get_db, read_rate_limit, require, write_rate_limit
from mobifaktura.core.exceptions import AppError, InternalError
from mobifaktura.core.permissions import Capability
from mobifaktura.logger_config import logger
from mobifaktura.models.user import User, UserRole
from mobifaktura.schemas.saldo import (
    ReconcileResponse,
    SaldoAdjust,
    SaldoHistoryExportRow,
    SaldoHistoryResponse,
    SaldoResponse,
    SaldoStatsResponse,
    SaldoTransactionResponse,
    UserSaldoResponse,
)
from mobifaktura.services.ledger_service import LedgerService

router = APIRouter()

view_all_saldo = require(Capability.view_all_saldo)


@router.get("/me", response_model=SaldoResponse)
def get_my_saldo(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return SaldoResponse(user_id=current_user.id, saldo=LedgerService(db).get_saldo(current_user.id))


@router.get("/history", response_model=SaldoHistoryResponse, dependencies=[Depends(read_rate_limit)])
def get_saldo_history(
    user_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Ledger entries, newest first. Regular users only see their own.
    """
    rows, total = LedgerService(db).get_saldo_history(current_user, user_id=user_id, limit=limit, offset=offset)
    items = []
    for entry, creator_name in rows:
        item = SaldoTransactionResponse.model_validate(entry)
        item.created_by_name = creator_name
        items.append(item)
    return SaldoHistoryResponse(total=total, items=items)


@router.get("/history/export", response_model=list[SaldoHistoryExportRow])
def export_saldo_history(
    user_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    current_user: User = Depends(view_all_saldo),
    db: Session = Depends(get_db)
):
    return LedgerService(db).export_saldo_history(user_id=user_id, start_date=start_date, end_date=end_date)


@router.get("/users", response_model=list[UserSaldoResponse])
def get_all_users_saldo(
    search: Optional[str] = Query(None),
    role: Optional[UserRole] = Query(None),
    current_user: User = Depends(view_all_saldo),
    db: Session = Depends(get_db)
):
    return LedgerService(db).get_all_users_saldo(search=search, role=role)


@router.get("/users/export", response_model=list[UserSaldoResponse])
def export_all_users_saldo(
    current_user: User = Depends(view_all_saldo),
    db: Session = Depends(get_db)
):
    return LedgerService(db).export_all_users_saldo()


@router.get("/users/{user_id}", response_model=UserSaldoResponse)
def get_user_saldo(
    user_id: str,
    current_user: User = Depends(view_all_saldo),
    db: Session = Depends(get_db)
):
    return LedgerService(db).get_user_saldo(user_id)


@router.get("/users/{user_id}/reconcile", response_model=ReconcileResponse)
def reconcile_user_saldo(
    user_id: str,
    current_user: User = Depends(view_all_saldo),
    db: Session = Depends(get_db)
):
    """
    Compare the cached saldo with a replay of the ledger.
    """
    return LedgerService(db).reconcile_user(user_id)


@router.post("/adjust", response_model=SaldoTransactionResponse, status_code=status.HTTP_201_CREATED)
def adjust_saldo(
    data: SaldoAdjust,
    current_user: User = Depends(require(Capability.adjust_saldo)),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    try:
        entry = LedgerService(db).adjust_saldo(data.user_id, data.amount, data.notes, current_user)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error adjusting saldo: {str(e)}")
        raise InternalError("Failed to adjust saldo")

    logger.info(f"Saldo of {data.user_id} adjusted by {data.amount} by {current_user.email}")
    item = SaldoTransactionResponse.model_validate(entry)
    item.created_by_name = current_user.name
    return item


@router.get("/stats", response_model=SaldoStatsResponse)
def get_saldo_stats(
    current_user: User = Depends(view_all_saldo),
    db: Session = Depends(get_db)
):
    return LedgerService(db).get_saldo_stats()
