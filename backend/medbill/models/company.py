from sqlalchemy import Column, Integer, String, Date, DateTime, Float, JSON, ForeignKey
from sqlalchemy.sql import func
from medbill.database import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    nit = Column(String(30), unique=True, nullable=False, index=True)
    code = Column(String(30), unique=True, index=True)
    status = Column(String(20), nullable=False, default="active")  # active | inactive
    billing_config = Column(JSON, default=dict)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(50), index=True)
    status = Column(String(20), nullable=False, default="active")
    start_date = Column(Date)
    end_date = Column(Date)
    total_value = Column(Float, default=0)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
