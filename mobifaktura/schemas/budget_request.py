from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from mobifaktura.models.budget_request import BudgetRequestStatus


class BudgetRequestCreate(BaseModel):
    company_id: str
    requested_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    justification: str = Field(..., min_length=1, max_length=1000)


class BudgetRequestReview(BaseModel):
    action: Literal["approve", "reject"]
    rejection_reason: Optional[str] = Field(None, max_length=1000)


class BudgetRequestResponse(BaseModel):
    id: str
    user_id: str
    company_id: str
    requested_amount: Decimal
    current_balance_at_request: Decimal
    justification: str
    status: BudgetRequestStatus
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BudgetRequestListResponse(BaseModel):
    items: list[BudgetRequestResponse]
    next_cursor: Optional[int] = None


class PendingCountResponse(BaseModel):
    count: int


class BulkDeleteRequest(BaseModel):
    password: str = Field(..., min_length=1)
    statuses: Optional[list[BudgetRequestStatus]] = None
    user_id: Optional[str] = None
    older_than_months: Optional[int] = Field(None, ge=1)
    year: Optional[int] = Field(None, ge=2000, le=2100)
    month: Optional[int] = Field(None, ge=1, le=12)


class BulkDeleteResponse(BaseModel):
    deleted: int
