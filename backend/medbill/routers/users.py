from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from medbill.database import get_db
from medbill.access import ACTIONS, MODULES, ROLES, permission_table
from medbill.auth import get_current_user, hash_password, require_permission, validate_password_strength, UserPrincipal
from medbill.exceptions import PermissionDenied
from medbill.models.user import User
from medbill.schemas.common import ok, pagination
from medbill.schemas.user import PasswordChange, UserCreate, UserResponse, UserUpdate
from medbill.services.auth_service import auth_service

router = APIRouter()


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return user


@router.get("")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    search: str = Query("", description="Search by username, name or email"),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("users", "read")),
):
    query = select(User)
    if role:
        query = query.where(User.role == role)
    if active is not None:
        query = query.where(User.active.is_(active))
    if search:
        query = query.where(
            or_(
                User.username.ilike(f"%{search}%"),
                User.full_name.ilike(f"%{search}%"),
                User.email.ilike(f"%{search}%"),
            )
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    query = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)
    users = (await db.execute(query)).scalars().all()

    data = []
    for user in users:
        item = UserResponse.model_validate(user).model_dump(mode="json")
        item["permissions"] = UserPrincipal.from_user(user).permissions()
        data.append(item)
    return ok(data, pagination=pagination(page, limit, total))


@router.get("/system-info")
async def system_info(current_user: UserPrincipal = Depends(require_permission("users", "read"))):
    """Roles, modules, actions and the default permission table."""
    return ok({
        "roles": list(ROLES),
        "modules": list(MODULES),
        "actions": list(ACTIONS),
        "role_permissions": {
            role: {module: sorted(actions) for module, actions in permission_table(role).items()}
            for role in ROLES
            if role != "custom"
        },
    })


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    """Users may always read their own record; anyone else needs users:read."""
    if user_id != current_user.id and not current_user.has_permission("users", "read"):
        raise PermissionDenied(
            "You do not have permission to read in users",
            errors=[{"module": "users", "action": "read"}],
        )
    user = await _get_user(db, user_id)
    data = UserResponse.model_validate(user).model_dump(mode="json")
    data["permissions"] = UserPrincipal.from_user(user).permissions()
    return ok(data)


@router.post("", status_code=201)
async def create_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("users", "create")),
):
    existing = await db.scalar(
        select(User).where(or_(User.username == data.username, User.email == data.email))
    )
    if existing:
        field = "username" if existing.username == data.username else "email"
        raise HTTPException(status_code=400, detail=f"A user with that {field} already exists")
    validate_password_strength(data.password)

    payload = data.model_dump(exclude={"password"})
    if data.can_view_all_companies:
        payload["assigned_companies"] = []
    user = User(**payload, password_hash=hash_password(data.password), created_by=current_user.id)
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return ok(UserResponse.model_validate(user), message="User created")


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("users", "update")),
):
    user = await _get_user(db, user_id)

    update_data = data.model_dump(exclude_unset=True)
    if "email" in update_data and update_data["email"] != user.email:
        taken = await db.scalar(select(User.id).where(User.email == update_data["email"], User.id != user_id))
        if taken:
            raise HTTPException(status_code=400, detail="A user with that email already exists")
    if update_data.get("can_view_all_companies"):
        update_data["assigned_companies"] = []

    for key, value in update_data.items():
        setattr(user, key, value)
    user.updated_by = current_user.id

    await db.flush()
    await db.refresh(user)
    return ok(UserResponse.model_validate(user), message="User updated")


@router.put("/{user_id}/password")
async def change_user_password(
    user_id: int,
    body: PasswordChange,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("users", "update")),
):
    await auth_service.change_password(
        db,
        user_id=user_id,
        new_password=body.new_password,
        current_password=body.current_password,
        require_current=user_id == current_user.id,
        changed_by=current_user.id,
    )
    return ok(message="Password updated")


@router.put("/{user_id}/toggle-status")
async def toggle_user_status(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("users", "update")),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    user = await _get_user(db, user_id)
    user.active = not user.active
    if user.active:
        user.login_attempts = 0
        user.locked_until = None
    user.updated_by = current_user.id
    await db.flush()
    return ok({"id": user.id, "active": user.active},
              message="User activated" if user.active else "User deactivated")
