from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

ReportColumn = Literal[
    "document_number",
    "full_name",
    "service_date",
    "cups_code",
    "value",
    "authorization",
    "diagnosis",
    "regimen",
    "municipality",
    "department",
    "company_name",
    "contract_name",
]

DEFAULT_COLUMNS: list[str] = ["document_number", "full_name", "service_date", "cups_code", "value", "company_name"]


class ReportFilters(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    companies: list[int] = Field(default_factory=list)
    contracts: list[int] = Field(default_factory=list)
    municipalities: list[str] = Field(default_factory=list)
    regimens: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ReportRequest(BaseModel):
    filters: ReportFilters = Field(default_factory=ReportFilters)
    columns: list[ReportColumn] = Field(default_factory=lambda: list(DEFAULT_COLUMNS))
