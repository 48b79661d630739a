from sqlalchemy import Column, Integer, String, Date, DateTime, Boolean
from sqlalchemy.sql import func
from medbill.database import Base


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    document_type = Column(String(4), nullable=False)  # CC | TI | CE | RC | PT | PA
    document_number = Column(String(30), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    second_name = Column(String(100))
    first_last_name = Column(String(100), nullable=False)
    second_last_name = Column(String(100))
    birth_date = Column(Date)
    gender = Column(String(1), default="")
    municipality = Column(String(100))
    department = Column(String(100))
    regimen = Column(String(50))
    eps = Column(String(100))
    zone = Column(String(1), default="U")
    active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.second_name, self.first_last_name, self.second_last_name]
        return " ".join(p for p in parts if p)
