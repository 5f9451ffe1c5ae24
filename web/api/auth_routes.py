"""Auth API routes: login, holder sign-up, current user, user management."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy import select

import config
from affiliation.models import Family, User
from affiliation.models.base import async_session_factory
from web.auth import (
    ROLES,
    create_access_token,
    get_current_user,
    get_user_by_username,
    hash_password,
    require_admin_user,
    require_user,
    verify_password,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    username: str
    role: str


class UserResponse(BaseModel):
    id: int
    username: str
    role: str
    family_id: Optional[int] = None


class RegisterRequest(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def username_not_blank(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("username must have at least 3 characters")
        return v

    @field_validator("password")
    @classmethod
    def password_length(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("password must have at least 8 characters")
        return v


class CreateUserRequest(BaseModel):
    username: str
    password: str
    role: str = "user"  # user, admin


async def _create_account(username: str, password: str, role: str) -> UserResponse:
    """Create a user; every non-admin account is a holder and gets its own family."""
    async with async_session_factory() as session:
        existing = await session.execute(select(User).where(User.username == username))
        if existing.scalar_one_or_none():
            raise HTTPException(400, "Username already exists")
        user = User(username=username, password_hash=hash_password(password), role=role)
        session.add(user)
        await session.flush()
        family = None
        if role == "user":
            family = Family(holder_id=user.id)
            session.add(family)
        await session.commit()
        return UserResponse(id=user.id, username=user.username, role=user.role, family_id=family.id if family else None)


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest):
    """Authenticate and return JWT."""
    user = await get_user_by_username(body.username)
    if not user:
        # Bootstrap: if INITIAL_ADMIN_PASSWORD is set and matches, create admin
        if (
            config.INITIAL_ADMIN_PASSWORD
            and body.username == config.INITIAL_ADMIN_USERNAME
            and body.password == config.INITIAL_ADMIN_PASSWORD
        ):
            created = await _create_account(config.INITIAL_ADMIN_USERNAME, config.INITIAL_ADMIN_PASSWORD, "admin")
            token = create_access_token(created.id, created.username, created.role)
            return LoginResponse(access_token=token, username=created.username, role=created.role)
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token = create_access_token(user.id, user.username, user.role)
    return LoginResponse(access_token=token, username=user.username, role=user.role)


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(body: RegisterRequest):
    """Sign up as a family holder."""
    return await _create_account(body.username, body.password, "user")


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(require_user)):
    """Get current authenticated user."""
    async with async_session_factory() as session:
        family = await session.execute(select(Family.id).where(Family.holder_id == user.id))
        return UserResponse(id=user.id, username=user.username, role=user.role, family_id=family.scalar_one_or_none())


@router.get("/me/optional")
async def get_me_optional(user: Optional[User] = Depends(get_current_user)):
    """Get current user if logged in, else null. For frontend auth check."""
    if not user:
        return None
    return {"username": user.username, "role": user.role}


@router.get("/users", response_model=list[UserResponse])
async def list_users(admin: User = Depends(require_admin_user)):
    """List all users (admin only)."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(User, Family.id).outerjoin(Family, Family.holder_id == User.id).order_by(User.username)
        )
        return [
            UserResponse(id=u.id, username=u.username, role=u.role, family_id=family_id)
            for u, family_id in result.all()
        ]


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(body: CreateUserRequest, admin: User = Depends(require_admin_user)):
    """Create a new user (admin only)."""
    if body.role not in ROLES:
        raise HTTPException(400, "Invalid role")
    return await _create_account(body.username, body.password, body.role)
