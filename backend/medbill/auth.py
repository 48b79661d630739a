"""
Auth module: password hashing, JWT creation/validation and the request
dependencies that guard every route.

Every protected request goes through ``get_current_user`` (token + user row
checks, 401 on failure) and then ``require_permission`` (static permission
table, 403 on failure). Company scoping is read from the resolved principal.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Optional

import structlog
from fastapi import Depends, Request
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbill.access import CompanyScope, has_permission, permission_table, resolve_company_scope
from medbill.config import get_settings
from medbill.database import get_db
from medbill.exceptions import AuthenticationFailed, PermissionDenied, ValidationFailed
from medbill.models.user import User

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PASSWORD_SPECIALS = "@$!%*?&"
_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one digit"),
    (re.compile(f"[{re.escape(PASSWORD_SPECIALS)}]"), f"one special character ({PASSWORD_SPECIALS})"),
)
PASSWORD_MIN_LENGTH = 12


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        return False


def validate_password_strength(password: str) -> None:
    """Raise ValidationFailed unless the password meets the policy."""
    missing = [label for pattern, label in _PASSWORD_RULES if not pattern.search(password or "")]
    if len(password or "") < PASSWORD_MIN_LENGTH:
        missing.insert(0, f"at least {PASSWORD_MIN_LENGTH} characters")
    if missing:
        raise ValidationFailed(
            "Password must contain " + ", ".join(missing),
            code="WEAK_PASSWORD",
        )


@dataclass
class UserPrincipal:
    """Resolved identity attached to each request."""
    id: int
    username: str
    full_name: str
    role: str
    assigned_companies: list = field(default_factory=list)
    can_view_all_companies: bool = False
    custom_permissions: list = field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "UserPrincipal":
        return cls(
            id=user.id,
            username=user.username,
            full_name=user.full_name,
            role=user.role,
            assigned_companies=list(user.assigned_companies or []),
            can_view_all_companies=bool(user.can_view_all_companies),
            custom_permissions=list(user.custom_permissions or []),
        )

    @property
    def is_superadmin(self) -> bool:
        return self.role == "superadmin"

    @property
    def company_scope(self) -> CompanyScope:
        return resolve_company_scope(self.role, self.can_view_all_companies, self.assigned_companies)

    def has_permission(self, module: str, action: str) -> bool:
        return has_permission(self.role, module, action, self.custom_permissions)

    def can_access_company(self, company_id: Optional[int]) -> bool:
        return self.company_scope.allows(company_id)

    def permissions(self) -> dict[str, list[str]]:
        table = permission_table(self.role, self.custom_permissions)
        return {module: sorted(actions) for module, actions in table.items() if actions}


def create_token(user: User) -> str:
    """Create a signed JWT for the given User model instance."""
    settings = get_settings()
    now = int(time.time())
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "iat": now,
        "exp": now + settings.jwt_expire_minutes * 60,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises AuthenticationFailed if invalid/expired."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise AuthenticationFailed("Token expired", code="EXPIRED_TOKEN")
    except JWTError:
        raise AuthenticationFailed("Invalid token", code="INVALID_TOKEN")


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> UserPrincipal:
    """FastAPI dependency. Resolves the bearer token to an active, unlocked user."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise AuthenticationFailed("Not authorized, no token", code="NO_TOKEN")

    payload = decode_token(auth_header[7:].strip())
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationFailed("Invalid token", code="INVALID_TOKEN")

    user = await db.scalar(select(User).where(User.id == user_id))
    if not user:
        raise AuthenticationFailed("User not found", code="USER_NOT_FOUND")
    if not user.active:
        raise AuthenticationFailed("User is inactive", code="USER_INACTIVE")
    if user.is_locked:
        raise AuthenticationFailed("User is temporarily locked", code="USER_LOCKED")

    principal = UserPrincipal.from_user(user)
    structlog.contextvars.bind_contextvars(user_id=principal.id, role=principal.role)
    return principal


def require_permission(module: str, action: str):
    """Dependency factory: 403 unless the current user may do ``action`` on ``module``."""

    async def dependency(current_user: UserPrincipal = Depends(get_current_user)) -> UserPrincipal:
        if not current_user.has_permission(module, action):
            logger.warning(
                "permission.denied",
                username=current_user.username,
                module=module,
                action=action,
            )
            raise PermissionDenied(
                f"You do not have permission to {action} in {module}",
                errors=[{"module": module, "action": action}],
            )
        return current_user

    return dependency


def require_company_access(current_user: UserPrincipal, company_id: Optional[int]) -> None:
    if company_id is None:
        raise ValidationFailed("Company id is required", code="COMPANY_REQUIRED")
    if not current_user.can_access_company(company_id):
        logger.warning("company_access.denied", username=current_user.username, company_id=company_id)
        raise PermissionDenied("You do not have access to this company", code="COMPANY_ACCESS_DENIED")
