from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.database import get_db
from blogcms.dependencies import get_current_user, require_roles
from blogcms.models import ROLE_ADMIN, User
from blogcms.schemas import ProfileUpdate, RoleUpdate, UserCreate, UserDetail, UserResponse
from blogcms.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("", response_model=list[UserResponse], dependencies=[Depends(require_roles(ROLE_ADMIN))])
async def list_users(
    role: str | None = Query(None, pattern="^(ADMIN|EDITOR|USER)$"),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_users(db, role)


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    return user


@router.put("/me", response_model=UserResponse)
async def update_me(
    data: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_profile(db, user, data)


@router.get("/{user_id}", response_model=UserDetail)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post(
    "",
    status_code=201,
    response_model=UserResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await user_service.create_user(db, data)
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail="A user with this username or email already exists",
        )


@router.post("/{user_id}/role", response_model=UserResponse)
async def change_role(
    user_id: int,
    data: RoleUpdate,
    admin: User = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.change_role(db, admin, user_id, data.role)
