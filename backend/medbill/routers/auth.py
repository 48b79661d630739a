from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from medbill.database import get_db
from medbill.auth import get_current_user, UserPrincipal
from medbill.schemas.common import ok
from medbill.schemas.user import (
    ForgotPasswordRequest,
    LoginRequest,
    PasswordChange,
    ResetPasswordRequest,
    UserResponse,
)
from medbill.models.user import User
from medbill.services.auth_service import auth_service, FORGOT_PASSWORD_MESSAGE

router = APIRouter()


@router.post("/login")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange username + password for a bearer token."""
    result = await auth_service.login(db, body.username, body.password)
    user = result["user"]
    principal = UserPrincipal.from_user(user)
    return ok({
        "token": result["token"],
        "token_type": result["token_type"],
        "user": UserResponse.model_validate(user),
        "permissions": principal.permissions(),
    })


@router.get("/me")
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    """Current user with effective permissions and accessible companies."""
    user = await db.get(User, current_user.id)
    scope = current_user.company_scope
    return ok({
        "user": UserResponse.model_validate(user),
        "permissions": current_user.permissions(),
        "accessible_companies": "all" if scope.unrestricted else scope.as_list(),
    })


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    await auth_service.forgot_password(db, body.email, background_tasks)
    return ok(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    await auth_service.reset_password(db, body.token, body.new_password)
    return ok(message="Password updated")


@router.post("/change-password")
async def change_password(
    body: PasswordChange,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    await auth_service.change_password(
        db,
        user_id=current_user.id,
        new_password=body.new_password,
        current_password=body.current_password,
        require_current=True,
        changed_by=current_user.id,
    )
    return ok(message="Password updated")
