from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Boolean, Float, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.sql import func
from medbill.database import Base


class ServiceRecord(Base):
    __tablename__ = "service_records"
    __table_args__ = (
        UniqueConstraint("patient_id", "cups_code", "service_date", "contract_id", name="uq_service_record"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), index=True)
    document_number = Column(String(30), nullable=False, index=True)
    cups_code = Column(String(20), nullable=False, index=True)
    service_date = Column(Date, nullable=False, index=True)
    value = Column(Float, nullable=False, default=0)
    description = Column(Text)
    authorization = Column(String(100))
    diagnosis = Column(String(20))
    status = Column(String(20), nullable=False, default="pending")  # pending | prebilled | billed | cancelled
    is_prebilled = Column(Boolean, nullable=False, default=False)
    prebilled_at = Column(DateTime(timezone=True))
    active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
