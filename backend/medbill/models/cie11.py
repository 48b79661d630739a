from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean, Text, JSON
from sqlalchemy.sql import func
from medbill.database import Base


class Cie11Code(Base):
    __tablename__ = "cie11_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, index=True, nullable=False)
    description = Column(Text, nullable=False)
    description_en = Column(Text)
    chapter = Column(String(200), nullable=False, index=True)
    chapter_code = Column(String(20))
    subcategory = Column(String(200))
    billable = Column(Boolean, nullable=False, default=True)
    gender = Column(String(1), nullable=False, default="U")  # M | F | U
    min_age = Column(Integer, nullable=False, default=0)
    max_age = Column(Integer)
    active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(Date)
    valid_until = Column(Date)
    related_codes = Column(JSON, default=list)
    notes = Column(Text)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
