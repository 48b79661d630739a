from datetime import date, datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from medbill.schemas.common import reject_null


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    nit: str = Field(min_length=1, max_length=30)
    code: Optional[str] = Field(default=None, max_length=30)
    billing_config: dict = {}


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    nit: Optional[str] = Field(default=None, min_length=1, max_length=30)
    code: Optional[str] = Field(default=None, max_length=30)
    status: Optional[Literal["active", "inactive"]] = None
    billing_config: Optional[dict] = None

    @field_validator("name", "nit", "status")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class CompanyResponse(BaseModel):
    id: int
    name: str
    nit: str
    code: Optional[str] = None
    status: str
    billing_config: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContractCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_value: float = 0


class ContractResponse(BaseModel):
    id: int
    company_id: int
    name: str
    code: Optional[str] = None
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_value: Optional[float] = None

    class Config:
        from_attributes = True
