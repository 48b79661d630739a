from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Literal, Optional


class Cie11Base(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    description: str = Field(min_length=1)
    description_en: Optional[str] = None
    chapter: str = Field(min_length=1, max_length=200)
    chapter_code: Optional[str] = Field(default=None, max_length=20)
    subcategory: Optional[str] = Field(default=None, max_length=200)
    billable: bool = True
    gender: Literal["M", "F", "U"] = "U"
    min_age: int = Field(default=0, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    related_codes: list[str] = []
    notes: Optional[str] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class Cie11Create(Cie11Base):
    @model_validator(mode="after")
    def check_age_range(self):
        if self.max_age is not None and self.max_age < self.min_age:
            raise ValueError("max_age must be greater than or equal to min_age")
        return self


class Cie11Update(BaseModel):
    description: Optional[str] = None
    description_en: Optional[str] = None
    chapter: Optional[str] = Field(default=None, min_length=1, max_length=200)
    chapter_code: Optional[str] = Field(default=None, max_length=20)
    subcategory: Optional[str] = Field(default=None, max_length=200)
    billable: Optional[bool] = None
    gender: Optional[Literal["M", "F", "U"]] = None
    min_age: Optional[int] = Field(default=None, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    related_codes: Optional[list[str]] = None
    notes: Optional[str] = None


class Cie11Response(Cie11Base):
    id: int
    active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Cie11Suggestion(BaseModel):
    code: str
    description: str
    chapter: str

    class Config:
        from_attributes = True
