from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Literal, Optional

from medbill.schemas.common import reject_null

DoctorDocumentType = Literal["CC", "CE", "TI", "RC", "PA", "MS", "AS", "PE", "PPT", "CNV", "SC"]


class DoctorBase(BaseModel):
    document_type: DoctorDocumentType
    document_number: str = Field(min_length=1, max_length=30)
    first_name: str = Field(min_length=1, max_length=100)
    second_name: Optional[str] = Field(default=None, max_length=100)
    first_last_name: str = Field(min_length=1, max_length=100)
    second_last_name: Optional[str] = Field(default=None, max_length=100)
    professional_card: str = Field(min_length=1, max_length=50)
    specialty: str = Field(min_length=1, max_length=150)
    specialty_code: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=30)
    company_id: Optional[int] = None

    @field_validator("document_number", "professional_card")
    @classmethod
    def strip(cls, v: str) -> str:
        return v.strip()


class DoctorCreate(DoctorBase):
    pass


class DoctorUpdate(BaseModel):
    document_type: Optional[DoctorDocumentType] = None
    document_number: Optional[str] = Field(default=None, min_length=1, max_length=30)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    second_name: Optional[str] = Field(default=None, max_length=100)
    first_last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    second_last_name: Optional[str] = Field(default=None, max_length=100)
    professional_card: Optional[str] = Field(default=None, min_length=1, max_length=50)
    specialty: Optional[str] = Field(default=None, min_length=1, max_length=150)
    specialty_code: Optional[str] = Field(default=None, max_length=20)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=30)
    company_id: Optional[int] = None

    @field_validator(
        "document_type", "document_number", "first_name", "first_last_name", "professional_card", "specialty"
    )
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class DoctorResponse(DoctorBase):
    id: int
    full_name: str
    active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
