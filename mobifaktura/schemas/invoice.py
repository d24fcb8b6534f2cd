from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from mobifaktura.models.invoice import InvoiceStatus, InvoiceType


class InvoiceSubmit(BaseModel):
    company_id: str
    invoice_type: InvoiceType = InvoiceType.einvoice
    invoice_number: str = Field(..., min_length=1, max_length=100)
    justification: str = Field(..., min_length=10, max_length=2000)
    kwota: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    ksef_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    # data:image/...;base64,...
    image: Optional[str] = None


class InvoiceUpdate(BaseModel):
    invoice_number: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    kwota: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)


class InvoiceReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class InvoiceReReview(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class CorrectionCreate(BaseModel):
    original_invoice_id: str
    correction_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    justification: str = Field(..., min_length=10, max_length=2000)
    invoice_number: Optional[str] = Field(None, max_length=100)
    image: Optional[str] = None


class InvoiceResponse(BaseModel):
    id: str
    user_id: str
    company_id: str
    invoice_type: InvoiceType
    invoice_number: str
    ksef_number: Optional[str] = None
    kwota: Optional[Decimal] = None
    description: Optional[str] = None
    justification: Optional[str] = None
    image_key: Optional[str] = None
    status: InvoiceStatus
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    current_reviewer: Optional[str] = None
    review_started_at: Optional[datetime] = None
    last_edited_by: Optional[str] = None
    last_edited_at: Optional[datetime] = None
    original_invoice_id: Optional[str] = None
    correction_amount: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceEditHistoryResponse(BaseModel):
    id: str
    edited_by: Optional[str] = None
    previous_invoice_number: Optional[str] = None
    new_invoice_number: Optional[str] = None
    previous_description: Optional[str] = None
    new_description: Optional[str] = None
    previous_kwota: Optional[Decimal] = None
    new_kwota: Optional[Decimal] = None
    edited_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceDetailResponse(InvoiceResponse):
    user_name: Optional[str] = None
    company_name: Optional[str] = None
    edit_history: list[InvoiceEditHistoryResponse] = []


class InvoiceListResponse(BaseModel):
    items: list[InvoiceResponse]
    next_cursor: Optional[int] = None


class DuplicateGroup(BaseModel):
    kwota: Decimal
    ksef_number: str
    company_id: str
    invoices: list[InvoiceResponse]


class DuplicateListResponse(BaseModel):
    total_groups: int
    groups: list[DuplicateGroup]


class InvoiceDeleteResponse(BaseModel):
    message: str
    refunded: bool
