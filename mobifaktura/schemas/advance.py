from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from mobifaktura.models.advance import AdvanceStatus


class AdvanceCreate(BaseModel):
    user_id: str
    company_id: str
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=5, max_length=2000)


class AdvanceTransfer(BaseModel):
    transfer_number: Optional[str] = Field(None, max_length=255)


class AdvanceDelete(BaseModel):
    password: str = Field(..., min_length=1)


class AdvanceResponse(BaseModel):
    id: str
    user_id: str
    company_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    company_name: Optional[str] = None
    amount: Decimal
    status: AdvanceStatus
    description: str
    transfer_number: Optional[str] = None
    transferred_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PreviousAdvance(BaseModel):
    amount: Decimal
    status: AdvanceStatus

    model_config = ConfigDict(from_attributes=True)


class AdvanceDetailResponse(AdvanceResponse):
    user_saldo: Optional[Decimal] = None
    created_by_name: Optional[str] = None
    transferred_by_name: Optional[str] = None
    settled_by_name: Optional[str] = None
    previous_advance: Optional[PreviousAdvance] = None


class AdvanceListResponse(BaseModel):
    items: list[AdvanceResponse]
    next_cursor: Optional[int] = None


class AdvanceDeleteResponse(BaseModel):
    message: str
    reversed: bool
