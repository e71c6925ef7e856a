# auth.py — Session layer for Workspace Hub
# Features:
# - JWT with JTI for revocation
# - bcrypt password hashing
# - Resolves bearer tokens into a tenancy Principal
# - Super admin bootstrap from environment

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, Tenant, TenantStatus, UserRole, RevokedToken
from tenancy import Principal

logger = logging.getLogger("workspace-hub.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key; "
        "tokens will not survive a restart. Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = 8

security = HTTPBearer()


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, token issuance and verification"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        role = user.role.value if isinstance(user.role, UserRole) else user.role
        to_encode = {
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "role": role,
            "type": "access",
            "exp": now + delta,
            "iat": now,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        result = await db.execute(select(RevokedToken).where(RevokedToken.jti == jti))
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def revoke_token(payload: Dict[str, Any], db: AsyncSession) -> None:
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        db.add(RevokedToken(jti=payload["jti"], user_id=payload["sub"], expires_at=expires_at))
        await db.commit()

    @staticmethod
    async def authenticate(
        email: str,
        password: str,
        tenant: Optional[Tenant],
        db: AsyncSession,
    ) -> Optional[User]:
        """Find an active user by (tenant, email) and check the password.

        Without a tenant only super admins can match.
        """
        stmt = select(User).where(User.email == email)
        if tenant is not None:
            stmt = stmt.where(User.tenant_id == tenant.id)
        else:
            stmt = stmt.where(User.tenant_id.is_(None), User.role == UserRole.SUPER_ADMIN)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not user.is_active:
            return None
        if not AuthService.verify_password(password, user.password_hash):
            return None
        return user

    @staticmethod
    async def ensure_super_admin(db: AsyncSession) -> Optional[User]:
        email = os.getenv("SUPER_ADMIN_EMAIL")
        password = os.getenv("SUPER_ADMIN_PASSWORD")
        if not email or not password:
            return None

        stmt = select(User).where(User.email == email, User.tenant_id.is_(None))
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()
        if not user:
            user = User(
                email=email,
                full_name="Super Admin",
                password_hash=AuthService.hash_password(password),
                tenant_id=None,
                role=UserRole.SUPER_ADMIN,
                is_active=True,
            )
            db.add(user)
            await db.commit()
            await db.refresh(user)
            logger.info(f"Bootstrapped super admin {email}")
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_token_payload(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Dict[str, Any]:
    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    jti = payload.get("jti")
    if not jti or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    if await AuthService.is_token_revoked(jti, db):
        raise HTTPException(status_code=401, detail="Token has been revoked")
    return payload


async def get_current_principal(
    payload: Dict[str, Any] = Depends(get_token_payload),
    db: AsyncSession = Depends(get_db_session),
) -> Principal:
    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    role = UserRole(user.role)
    if role != UserRole.SUPER_ADMIN:
        tenant_result = await db.execute(select(Tenant.status).where(Tenant.id == user.tenant_id))
        status = tenant_result.scalar_one_or_none()
        if status != TenantStatus.ACTIVE:
            raise HTTPException(status_code=403, detail="Tenant not found or inactive")

    return Principal(
        user_id=user.id,
        tenant_id=user.tenant_id,
        role=role,
        email=user.email,
    )
