from pydantic import BaseModel, Field, field_validator
from datetime import date, datetime
from typing import Literal, Optional

ServiceStatus = Literal["pending", "prebilled", "billed", "cancelled"]


class ServiceRecordCreate(BaseModel):
    patient_id: int
    company_id: Optional[int] = None
    contract_id: Optional[int] = None
    cups_code: str = Field(min_length=1, max_length=20)
    service_date: date
    value: float = Field(default=0, ge=0)
    description: Optional[str] = None
    authorization: Optional[str] = None
    diagnosis: Optional[str] = None

    @field_validator("cups_code")
    @classmethod
    def strip_cups(cls, v: str) -> str:
        return v.strip()


class ServiceStatusUpdate(BaseModel):
    status: ServiceStatus


class AssignContract(BaseModel):
    company_id: int
    contract_id: int
    value: Optional[float] = Field(default=None, ge=0)


class ServiceRecordResponse(BaseModel):
    id: int
    patient_id: int
    company_id: Optional[int] = None
    contract_id: Optional[int] = None
    document_number: str
    cups_code: str
    service_date: date
    value: float
    description: Optional[str] = None
    authorization: Optional[str] = None
    diagnosis: Optional[str] = None
    status: str
    is_prebilled: bool
    prebilled_at: Optional[datetime] = None
    active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
