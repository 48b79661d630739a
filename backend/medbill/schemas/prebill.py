from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional


class PreBillServiceItem(BaseModel):
    service_id: Optional[int] = None
    cups_code: str = Field(min_length=1)
    value: float = Field(default=0, ge=0)
    service_date: date
    authorization: Optional[str] = None
    diagnosis: Optional[str] = None
    description: Optional[str] = None


class PreBillCreate(BaseModel):
    patient_id: int
    company_id: int
    contract_id: Optional[int] = None
    authorization: Optional[str] = None
    diagnosis: Optional[str] = None
    services: list[PreBillServiceItem] = Field(min_length=1)


class PreBillResponse(BaseModel):
    id: int
    company_id: int
    contract_id: Optional[int] = None
    patient_id: int
    patient_data: dict
    services: list[dict] = []
    total_value: float
    authorization: Optional[str] = None
    diagnosis: Optional[str] = None
    status: str
    finalized_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
