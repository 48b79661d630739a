from pydantic import BaseModel, Field, field_validator
from datetime import date, datetime
from typing import Literal, Optional

from medbill.schemas.common import reject_null

PatientDocumentType = Literal["CC", "TI", "CE", "RC", "PT", "PA"]
Zone = Literal["U", "R"]

_GENDERS = {"M": "M", "F": "F", "MASCULINO": "M", "FEMENINO": "F", "": ""}


def normalize_gender(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    key = value.strip().upper()
    if key not in _GENDERS:
        raise ValueError("gender must be M or F")
    return _GENDERS[key]


def normalize_zone(value: Optional[str]) -> Optional[str]:
    return value.strip().upper() if isinstance(value, str) else value


class PatientBase(BaseModel):
    document_type: PatientDocumentType
    document_number: str = Field(min_length=1, max_length=30)
    first_name: str = Field(min_length=1, max_length=100)
    second_name: Optional[str] = Field(default=None, max_length=100)
    first_last_name: str = Field(min_length=1, max_length=100)
    second_last_name: Optional[str] = Field(default=None, max_length=100)
    birth_date: Optional[date] = None
    gender: Optional[str] = ""
    municipality: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)
    regimen: Optional[str] = Field(default=None, max_length=50)
    eps: Optional[str] = Field(default=None, max_length=100)
    zone: Optional[Zone] = "U"

    @field_validator("document_number")
    @classmethod
    def strip_document(cls, v: str) -> str:
        return v.strip()

    @field_validator("gender")
    @classmethod
    def check_gender(cls, v: Optional[str]) -> Optional[str]:
        return normalize_gender(v)

    @field_validator("zone", mode="before")
    @classmethod
    def upper_zone(cls, v):
        return normalize_zone(v)


class PatientCreate(PatientBase):
    pass


class PatientUpdate(BaseModel):
    document_type: Optional[PatientDocumentType] = None
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    second_name: Optional[str] = Field(default=None, max_length=100)
    first_last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    second_last_name: Optional[str] = Field(default=None, max_length=100)
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    municipality: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)
    regimen: Optional[str] = Field(default=None, max_length=50)
    eps: Optional[str] = Field(default=None, max_length=100)
    zone: Optional[Zone] = None

    @field_validator("document_type", "first_name", "first_last_name")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)

    @field_validator("gender")
    @classmethod
    def check_gender(cls, v: Optional[str]) -> Optional[str]:
        return normalize_gender(v)

    @field_validator("zone", mode="before")
    @classmethod
    def upper_zone(cls, v):
        return normalize_zone(v)


class PatientResponse(PatientBase):
    id: int
    full_name: str
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
