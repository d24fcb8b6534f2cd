from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from mobifaktura.core.dependencies import get_current_user, get_db
from mobifaktura.core.exceptions import ForbiddenError, NotFoundError
from mobifaktura.core.permissions import Capability, has_capability
from mobifaktura.models.invoice import Invoice
from mobifaktura.models.user import User
from mobifaktura.services.storage_service import ObjectStorage, get_storage

router = APIRouter()


@router.get("/image")
def get_image(
    key: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
    db: Session = Depends(get_db)
):
    """
    Stream an invoice image. Only the submitter and reviewers may read it.
    """
    invoice = db.query(Invoice).filter(Invoice.image_key == key).first()
    if not invoice:
        raise NotFoundError("Image not found")
    if invoice.user_id != current_user.id and not has_capability(current_user, Capability.review_invoice):
        raise ForbiddenError("You don't have access to this image")

    stored = storage.get(key)
    return Response(
        content=stored.content,
        media_type=stored.content_type,
        headers={"Cache-Control": "private, max-age=3600"},
    )
