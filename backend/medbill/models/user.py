from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from medbill.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(200), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(200), nullable=False)
    # superadmin | admin | biller | auditor | reports | rips | custom
    role = Column(String(20), nullable=False, default="biller")
    custom_permissions = Column(JSON, default=list)   # [{"module": ..., "actions": [...]}]
    assigned_companies = Column(JSON, default=list)   # company ids
    can_view_all_companies = Column(Boolean, nullable=False, default=False)
    department = Column(String(100))
    phone = Column(String(30))

    active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime(timezone=True))
    login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True))

    password_changed_at = Column(DateTime(timezone=True))
    password_reset_token = Column(String(64), index=True)
    password_reset_expires = Column(DateTime(timezone=True))

    created_by = Column(Integer)
    updated_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_locked(self) -> bool:
        if self.locked_until is None:
            return False
        locked_until = self.locked_until
        # SQLite hands back naive datetimes
        if locked_until.tzinfo is None:
            locked_until = locked_until.replace(tzinfo=timezone.utc)
        return locked_until > datetime.now(timezone.utc)
