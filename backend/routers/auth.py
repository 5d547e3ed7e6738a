# routers/auth.py — Login and current-user endpoints
from fastapi import APIRouter, Depends, HTTPException

from auth import (
    AuthService, UserLogin, TokenResponse, ACCESS_TOKEN_EXPIRE_MINUTES,
    get_current_user, get_ops, CurrentUser,
)
from operations import OpsService

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin, ops: OpsService = Depends(get_ops)):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(ops, credentials.email, credentials.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    profile = {"id": user.id, "email": user.email, "role": user.role.value}
    if user.role.value == "ambassador":
        ambassador = await ops.get_ambassador_for_user(user.id)
        profile["ambassador_id"] = ambassador.id if ambassador else None
    elif user.role.value == "client_user":
        client = await ops.get_client_for_user(user.id)
        profile["client_id"] = client.id if client else None

    return TokenResponse(
        access_token=AuthService.create_access_token(user),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=profile,
    )


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated user information"""
    return {"id": user.id, "email": user.email, "role": user.role}
