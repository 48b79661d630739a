from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from medbill.database import Base


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    document_type = Column(String(4), nullable=False)
    document_number = Column(String(30), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    second_name = Column(String(100))
    first_last_name = Column(String(100), nullable=False)
    second_last_name = Column(String(100))
    professional_card = Column(String(50), unique=True, index=True, nullable=False)
    specialty = Column(String(150), nullable=False, index=True)
    specialty_code = Column(String(20))
    email = Column(String(200))
    phone = Column(String(30))
    company_id = Column(Integer, ForeignKey("companies.id"), index=True)
    active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.second_name, self.first_last_name, self.second_last_name]
        return " ".join(p for p in parts if p)
