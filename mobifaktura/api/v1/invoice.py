import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from mobifaktura.core.dependencies import get_current_user, get_db, read_rate_limit, require, write_rate_limit
from mobifaktura.core.exceptions import AppError, InternalError, ValidationError
from mobifaktura.core.permissions import Capability
from mobifaktura.logger_config import logger
from mobifaktura.models.invoice import InvoiceStatus
from mobifaktura.models.user import User
from mobifaktura.schemas.invoice import (
    CorrectionCreate,
    DuplicateGroup,
    DuplicateListResponse,
    InvoiceDeleteResponse,
    InvoiceDetailResponse,
    InvoiceListResponse,
    InvoiceReject,
    InvoiceResponse,
    InvoiceReReview,
    InvoiceSubmit,
    InvoiceUpdate,
)
from mobifaktura.services.correction_service import CorrectionService
from mobifaktura.services.invoice_service import InvoiceService
from mobifaktura.services.storage_service import ObjectStorage, get_storage
from mobifaktura.utils.duplicate_detection import duplicate_key
from mobifaktura.utils.image import decode_image_data_url

router = APIRouter()

review_invoices = require(Capability.review_invoice)


def _store_image(storage: ObjectStorage, user_id: str, data_url: str) -> str:
    try:
        image = decode_image_data_url(data_url)
    except ValueError as e:
        raise ValidationError(str(e))
    key = f"{user_id}/{int(time.time() * 1000)}.{image.extension}"
    try:
        return storage.upload(key, image.content, image.content_type)
    except Exception as e:
        logger.error(f"Error uploading invoice image: {str(e)}")
        raise InternalError("Failed to upload image")


def _discard_image(storage: ObjectStorage, key: Optional[str]) -> None:
    if not key:
        return
    try:
        storage.delete(key)
    except Exception as e:
        logger.error(f"Failed to delete image {key}: {str(e)}")


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def submit_invoice(
    data: InvoiceSubmit,
    current_user: User = Depends(require(Capability.submit_invoice)),
    _: User = Depends(write_rate_limit),
    storage: ObjectStorage = Depends(get_storage),
    db: Session = Depends(get_db)
):
    """
    Upload an invoice for review. The image is stored first and removed
    again if the record cannot be saved.
    """
    image_key = _store_image(storage, current_user.id, data.image) if data.image else None
    try:
        return InvoiceService(db).submit(
            current_user,
            company_id=data.company_id,
            invoice_number=data.invoice_number,
            justification=data.justification,
            invoice_type=data.invoice_type,
            kwota=data.kwota,
            ksef_number=data.ksef_number,
            description=data.description,
            image_key=image_key,
        )
    except AppError:
        _discard_image(storage, image_key)
        raise
    except Exception as e:
        _discard_image(storage, image_key)
        logger.error(f"Error submitting invoice: {str(e)}")
        raise InternalError("Failed to submit invoice")


@router.get("/mine", response_model=InvoiceListResponse, dependencies=[Depends(read_rate_limit)])
def my_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    company_id: Optional[str] = Query(None),
    cursor: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    items, next_cursor = InvoiceService(db).my_invoices(
        current_user, status=status_filter, company_id=company_id, cursor=cursor, limit=limit
    )
    return InvoiceListResponse(items=items, next_cursor=next_cursor)


@router.get("/pending", response_model=InvoiceListResponse, dependencies=[Depends(read_rate_limit)])
def pending_invoices(
    company_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    cursor: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    items, next_cursor = InvoiceService(db).pending_invoices(
        company_id=company_id, search=search, cursor=cursor, limit=limit
    )
    return InvoiceListResponse(items=items, next_cursor=next_cursor)


@router.get("/reviewed", response_model=InvoiceListResponse, dependencies=[Depends(read_rate_limit)])
def reviewed_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    company_id: Optional[str] = Query(None),
    reviewer_id: Optional[str] = Query(None),
    cursor: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    items, next_cursor = InvoiceService(db).reviewed_invoices(
        status=status_filter, company_id=company_id, reviewer_id=reviewer_id, cursor=cursor, limit=limit
    )
    return InvoiceListResponse(items=items, next_cursor=next_cursor)


@router.get("/duplicates", response_model=DuplicateListResponse)
def duplicate_invoices(
    company_id: Optional[str] = Query(None),
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    """
    Invoices sharing amount, KSeF number and company.
    """
    groups = InvoiceService(db).find_duplicates(company_id=company_id)
    result = []
    for group in groups:
        kwota, ksef_number, group_company_id = duplicate_key(group[0])
        result.append(DuplicateGroup(
            kwota=kwota,
            ksef_number=ksef_number,
            company_id=group_company_id,
            invoices=group,
        ))
    return DuplicateListResponse(total_groups=len(result), groups=result)


@router.get("/corrections", response_model=InvoiceListResponse)
def correction_invoices(
    company_id: Optional[str] = Query(None),
    cursor: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    items, next_cursor = CorrectionService(db).get_correction_invoices(
        company_id=company_id, cursor=cursor, limit=limit
    )
    return InvoiceListResponse(items=items, next_cursor=next_cursor)


@router.get("/correctable", response_model=list[InvoiceResponse])
def correctable_invoices(
    company_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require(Capability.create_correction)),
    db: Session = Depends(get_db)
):
    return CorrectionService(db).get_correctable_invoices(company_id=company_id, search=search, limit=limit)


@router.post("/corrections", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def create_correction(
    data: CorrectionCreate,
    current_user: User = Depends(require(Capability.create_correction)),
    _: User = Depends(write_rate_limit),
    storage: ObjectStorage = Depends(get_storage),
    db: Session = Depends(get_db)
):
    """
    Issue a correction against an accepted invoice and refund its owner.
    """
    image_key = _store_image(storage, current_user.id, data.image) if data.image else None
    try:
        return CorrectionService(db).create_correction(
            original_invoice_id=data.original_invoice_id,
            correction_amount=data.correction_amount,
            justification=data.justification,
            actor=current_user,
            invoice_number=data.invoice_number,
            image_key=image_key,
        )
    except AppError:
        _discard_image(storage, image_key)
        raise
    except Exception as e:
        _discard_image(storage, image_key)
        logger.error(f"Error creating correction: {str(e)}")
        raise InternalError("Failed to create correction")


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
def get_invoice(
    invoice_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    invoice = InvoiceService(db).get_by_id(current_user, invoice_id)
    response = InvoiceDetailResponse.model_validate(invoice)
    response.user_name = invoice.user.name if invoice.user else None
    response.company_name = invoice.company.name if invoice.company else None
    return response


@router.post("/{invoice_id}/claim", response_model=InvoiceResponse)
def claim_invoice(
    invoice_id: str,
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    """
    Start reviewing. Fails with 409 if another accountant holds the invoice.
    """
    return InvoiceService(db).claim(invoice_id, current_user)


@router.post("/{invoice_id}/heartbeat", response_model=InvoiceResponse)
def heartbeat(
    invoice_id: str,
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    return InvoiceService(db).heartbeat(invoice_id, current_user)


@router.post("/{invoice_id}/release", response_model=InvoiceResponse)
def release_invoice(
    invoice_id: str,
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    return InvoiceService(db).release(invoice_id, current_user)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
def update_invoice(
    invoice_id: str,
    data: InvoiceUpdate,
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    return InvoiceService(db).update_data(
        invoice_id,
        current_user,
        invoice_number=data.invoice_number,
        description=data.description,
        kwota=data.kwota,
    )


@router.post("/{invoice_id}/accept", response_model=InvoiceResponse)
def accept_invoice(
    invoice_id: str,
    current_user: User = Depends(review_invoices),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    try:
        return InvoiceService(db).accept(invoice_id, current_user)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error accepting invoice {invoice_id}: {str(e)}")
        raise InternalError("Failed to accept invoice")


@router.post("/{invoice_id}/reject", response_model=InvoiceResponse)
def reject_invoice(
    invoice_id: str,
    data: InvoiceReject,
    current_user: User = Depends(review_invoices),
    _: User = Depends(write_rate_limit),
    db: Session = Depends(get_db)
):
    try:
        return InvoiceService(db).reject(invoice_id, current_user, data.reason)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error rejecting invoice {invoice_id}: {str(e)}")
        raise InternalError("Failed to reject invoice")


@router.post("/{invoice_id}/re-review", response_model=InvoiceResponse)
def request_re_review(
    invoice_id: str,
    data: InvoiceReReview,
    current_user: User = Depends(review_invoices),
    db: Session = Depends(get_db)
):
    """
    Reopen an invoice you decided. Reopening an accepted invoice refunds it.
    """
    return InvoiceService(db).request_re_review(invoice_id, current_user, data.reason)


@router.delete("/{invoice_id}", response_model=InvoiceDeleteResponse)
def delete_invoice(
    invoice_id: str,
    current_user: User = Depends(require(Capability.delete_invoice)),
    storage: ObjectStorage = Depends(get_storage),
    db: Session = Depends(get_db)
):
    image_key, refunded = InvoiceService(db).delete(invoice_id, current_user)
    _discard_image(storage, image_key)
    return InvoiceDeleteResponse(message="Invoice deleted", refunded=refunded)
