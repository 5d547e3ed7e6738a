# auth.py — Authentication & role checks for OpsDesk
# Features:
# - JWT access tokens (HS256) carrying user id and role
# - 3 roles (admin, ambassador, client_user)
# - Brute force protection on login
# - Token subject re-checked against the snapshot on every request
# - Authenticated users become the audit Actor for mutations

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from collections import defaultdict

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from entities import Actor, User
from models import UserRole
from operations import OpsService

logger = logging.getLogger("opsdesk.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key; tokens will not "
        "survive a restart. Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer()

# In-memory brute force tracker, per process
_login_attempts: Dict[str, list] = defaultdict(list)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserLogin(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    role: str

    def as_actor(self) -> Actor:
        return Actor(user_id=self.id, role=self.role)


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Token issue/verification and login throttling"""

    @staticmethod
    def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        claims = {
            "sub": user.id,
            "email": user.email,
            "role": user.role.value,
            "exp": now + delta,
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def _check_brute_force(email: str) -> None:
        """Check if login attempts exceed threshold"""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[email] = [t for t in _login_attempts[email] if t > cutoff]
        if len(_login_attempts[email]) >= MAX_LOGIN_ATTEMPTS:
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes.",
            )

    @staticmethod
    def _record_failed_attempt(email: str) -> None:
        _login_attempts[email].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(email: str) -> None:
        _login_attempts.pop(email, None)

    @staticmethod
    async def authenticate_user(ops: OpsService, email: str, password: str) -> Optional[User]:
        key = email.strip().lower()
        AuthService._check_brute_force(key)
        user = await ops.authenticate(key, password)
        if user is None:
            AuthService._record_failed_attempt(key)
            logger.info(f"Failed login for {key}")
            return None
        AuthService._clear_attempts(key)
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_ops(request: Request) -> OpsService:
    """The OpsService built by the application lifespan"""
    return request.app.state.ops


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    ops: OpsService = Depends(get_ops),
) -> CurrentUser:
    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    # Deleted ambassadors lose access immediately
    user = await ops.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    return CurrentUser(id=user.id, email=user.email, role=user.role.value)


def require_role(*roles: UserRole):
    """Dependency factory: require user to have one of the specified roles"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if UserRole(user.role) not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role privileges")
        return user
    return _check


require_admin = require_role(UserRole.ADMIN)


async def check_ambassador_access(user: CurrentUser, ambassador_id: str, ops: OpsService) -> None:
    """Admins see every ambassador; an ambassador only sees itself"""
    if user.role == UserRole.ADMIN.value:
        return
    if user.role == UserRole.AMBASSADOR.value:
        own = await ops.get_ambassador_for_user(user.id)
        if own is not None and own.id == ambassador_id:
            return
    raise HTTPException(status_code=403, detail="Not allowed to access this ambassador")
