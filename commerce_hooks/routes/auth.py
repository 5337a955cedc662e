"""
Authentication routes: login and current user.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.middleware.rate_limit import DEFAULT_LIMIT, limiter
from commerce_hooks.models.database import get_db
from commerce_hooks.models.entities import User
from commerce_hooks.models.schemas import LoginRequest, TokenResponse, UserResponse
from commerce_hooks.services.auth_service import authenticate, create_access_token, get_current_user

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
@limiter.limit(DEFAULT_LIMIT)
async def login(request: Request, req: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await authenticate(db, req.email, req.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account deactivated")

    token = create_access_token({"sub": user.id, "admin": user.is_admin, "org": user.organization_id})
    return TokenResponse(access_token=token, user_id=user.id, is_admin=user.is_admin)


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(get_current_user)):
    return user
