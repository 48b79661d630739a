import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbill.auth import (
    create_token,
    hash_password,
    validate_password_strength,
    verify_password,
)
from medbill.config import get_settings
from medbill.exceptions import AuthenticationFailed, NotFound, ValidationFailed
from medbill.models.user import User
from medbill.services.email_service import email_service

logger = structlog.get_logger(__name__)

FORGOT_PASSWORD_MESSAGE = "If the email is registered you will receive reset instructions"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class AuthService:
    async def login(self, db: AsyncSession, username: str, password: str) -> dict:
        """
        Verify credentials and issue a token.

        Failed attempts are committed before the 401 is raised, since the
        request session rolls back on errors.
        """
        settings = get_settings()
        user = await db.scalar(select(User).where(User.username == username.strip().lower()))
        if not user:
            logger.info("auth.failed", username=username, reason="unknown_user")
            raise AuthenticationFailed("Invalid credentials", code="INVALID_CREDENTIALS")

        if not user.active:
            logger.info("auth.failed", username=user.username, reason="inactive")
            raise AuthenticationFailed("User is inactive", code="USER_INACTIVE")

        if user.is_locked:
            logger.info("auth.failed", username=user.username, reason="locked")
            raise AuthenticationFailed(
                "Account locked after too many failed attempts, try again later",
                code="USER_LOCKED",
            )

        if user.locked_until is not None:
            # lock window has passed
            user.locked_until = None
            user.login_attempts = 0

        if not verify_password(password, user.password_hash):
            user.login_attempts = (user.login_attempts or 0) + 1
            locked = user.login_attempts >= settings.lockout_threshold
            if locked:
                user.locked_until = _now() + timedelta(minutes=settings.lockout_minutes)
            await db.commit()
            logger.warning(
                "auth.failed",
                username=user.username,
                reason="bad_password",
                attempts=user.login_attempts,
                locked=locked,
            )
            if locked:
                raise AuthenticationFailed(
                    "Account locked after too many failed attempts, try again later",
                    code="USER_LOCKED",
                )
            raise AuthenticationFailed("Invalid credentials", code="INVALID_CREDENTIALS")

        user.login_attempts = 0
        user.locked_until = None
        user.last_login = _now()
        await db.flush()
        await db.refresh(user)
        logger.info("auth.login", username=user.username, role=user.role)
        return {"token": create_token(user), "token_type": "bearer", "user": user}

    async def forgot_password(self, db: AsyncSession, email: str, background_tasks: BackgroundTasks) -> Optional[str]:
        """Create a reset token when the email exists. Returns the raw token (None otherwise).

        The mail goes out after the response, so the reply time is the same whether or
        not the address is registered.
        """
        settings = get_settings()
        user = await db.scalar(select(User).where(User.email == email.strip().lower()))
        if not user or not user.active:
            logger.info("auth.reset_requested", found=False)
            return None

        token = secrets.token_hex(32)
        user.password_reset_token = _hash_reset_token(token)
        user.password_reset_expires = _now() + timedelta(minutes=settings.password_reset_minutes)
        await db.flush()
        background_tasks.add_task(
            email_service.send_password_reset, user.email, user.full_name, token, settings.password_reset_minutes
        )
        logger.info("auth.reset_requested", found=True, user_id=user.id)
        return token

    async def reset_password(self, db: AsyncSession, token: str, new_password: str) -> User:
        user = await db.scalar(select(User).where(User.password_reset_token == _hash_reset_token(token)))
        expires = user.password_reset_expires if user else None
        if expires is not None and expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        if not user or expires is None or expires < _now():
            raise ValidationFailed("Reset token is invalid or has expired", code="INVALID_RESET_TOKEN")

        validate_password_strength(new_password)
        user.password_hash = hash_password(new_password)
        user.password_changed_at = _now()
        user.password_reset_token = None
        user.password_reset_expires = None
        user.login_attempts = 0
        user.locked_until = None
        await db.flush()
        logger.info("auth.password_reset", user_id=user.id)
        return user

    async def change_password(
        self,
        db: AsyncSession,
        user_id: int,
        new_password: str,
        current_password: Optional[str],
        require_current: bool,
        changed_by: int,
    ) -> User:
        user = await db.scalar(select(User).where(User.id == user_id))
        if not user:
            raise NotFound(f"User {user_id} not found")
        if require_current:
            if not current_password or not verify_password(current_password, user.password_hash):
                raise ValidationFailed("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")

        validate_password_strength(new_password)
        user.password_hash = hash_password(new_password)
        user.password_changed_at = _now()
        user.updated_by = changed_by
        await db.flush()
        logger.info("auth.password_changed", user_id=user.id, changed_by=changed_by)
        return user

    async def ensure_bootstrap_admin(self, db: AsyncSession) -> Optional[User]:
        """Create the configured superadmin if no superadmin exists yet. Idempotent."""
        settings = get_settings()
        if not (settings.bootstrap_admin_username and settings.bootstrap_admin_password):
            return None
        existing = await db.scalar(select(User).where(User.role == "superadmin"))
        if existing:
            return None

        validate_password_strength(settings.bootstrap_admin_password)
        user = User(
            username=settings.bootstrap_admin_username.strip().lower(),
            email=(settings.bootstrap_admin_email or f"{settings.bootstrap_admin_username}@localhost").lower(),
            password_hash=hash_password(settings.bootstrap_admin_password),
            full_name="Super Administrator",
            role="superadmin",
            can_view_all_companies=True,
            assigned_companies=[],
            custom_permissions=[],
        )
        db.add(user)
        await db.flush()
        logger.info("auth.bootstrap_admin_created", username=user.username)
        return user


auth_service = AuthService()
