from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from mobifaktura.models.saldo_transaction import TransactionType
from mobifaktura.models.user import UserRole


class SaldoResponse(BaseModel):
    user_id: str
    saldo: Decimal


class SaldoTransactionResponse(BaseModel):
    id: str
    user_id: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    transaction_type: TransactionType
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SaldoHistoryResponse(BaseModel):
    total: int
    items: list[SaldoTransactionResponse]


class SaldoAdjust(BaseModel):
    user_id: str
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    notes: str = Field(..., min_length=5, max_length=500)


class UserSaldoResponse(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    saldo: Decimal

    model_config = ConfigDict(from_attributes=True)


class SaldoStatsResponse(BaseModel):
    total_users: int
    total_saldo: Decimal
    average_saldo: Decimal
    positive_count: int
    negative_count: int
    zero_count: int


class SaldoHistoryExportRow(BaseModel):
    id: str
    created_at: datetime
    user_name: str
    user_email: str
    transaction_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    created_by_name: Optional[str] = None


class ReconcileResponse(BaseModel):
    user_id: str
    cached_saldo: Decimal
    ledger_saldo: Decimal
    drift: Decimal
    consistent: bool
    checked_at: datetime
