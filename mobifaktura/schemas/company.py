from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    nip: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    nip: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    active: Optional[bool] = None


class CompanyResponse(BaseModel):
    id: str
    name: str
    nip: Optional[str] = None
    address: Optional[str] = None
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
