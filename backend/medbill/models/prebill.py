from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, JSON, ForeignKey
from sqlalchemy.sql import func
from medbill.database import Base


class PreBill(Base):
    __tablename__ = "prebills"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    patient_data = Column(JSON, nullable=False)  # snapshot taken when the pre-bill is created
    services = Column(JSON, default=list)
    total_value = Column(Float, nullable=False, default=0)
    authorization = Column(String(100))
    diagnosis = Column(String(20))
    status = Column(String(20), nullable=False, default="partial")  # partial | finalized | cancelled
    finalized_at = Column(DateTime(timezone=True))
    active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
