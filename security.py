import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from motor.motor_asyncio import AsyncIOMotorDatabase
from passlib.context import CryptContext

import config
from database import USERS, get_db, parse_object_id

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

USER_TOKEN = "user"
ADMIN_TOKEN = "admin"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(claims: dict, expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    to_encode.update({"exp": datetime.utcnow() + expires_delta})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def create_user_token(user: dict) -> str:
    return _encode(
        {
            "sub": str(user["_id"]),
            "email": user["email"],
            "isAdmin": bool(user.get("isAdmin")),
            "typ": USER_TOKEN,
        },
        timedelta(minutes=config.USER_TOKEN_EXPIRE_MINUTES),
    )


def create_admin_token(admin: dict) -> str:
    company_id = admin.get("companyId")
    return _encode(
        {
            "sub": str(admin["_id"]),
            "email": admin["email"],
            "isAdmin": True,
            "adminRole": admin.get("adminRole") or "main",
            "companyId": str(company_id) if company_id else None,
            "typ": ADMIN_TOKEN,
        },
        timedelta(minutes=config.ADMIN_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: str) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized, token failed",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise credentials_exception
    if not payload.get("sub"):
        raise credentials_exception
    return payload


async def _load_identity(db: AsyncIOMotorDatabase, payload: dict) -> dict:
    try:
        user_id = parse_object_id(payload["sub"])
    except HTTPException:
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    user = await db[USERS].find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if user.get("status") == "suspended":
        raise HTTPException(status_code=401, detail="User account is suspended")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    payload = decode_token(credentials.credentials)
    return await _load_identity(db, payload)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> Optional[dict]:
    """Like get_current_user but anonymous callers get None instead of 401."""
    if credentials is None:
        return None
    try:
        payload = decode_token(credentials.credentials)
        return await _load_identity(db, payload)
    except HTTPException:
        return None


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    payload = decode_token(credentials.credentials)
    if payload.get("typ") != ADMIN_TOKEN or payload.get("isAdmin") is not True:
        raise HTTPException(status_code=403, detail="Not authorized as admin")
    admin = await _load_identity(db, payload)
    if not admin.get("isAdmin"):
        raise HTTPException(status_code=403, detail="Not authorized as admin")
    # Role and company are read from the stored account, not the token.
    admin["adminRole"] = admin.get("adminRole") or "main"
    if admin["adminRole"] == "company" and not admin.get("companyId"):
        logger.warning("Company admin %s has no company assigned", admin["email"])
        raise HTTPException(status_code=403, detail="Admin is not assigned to a company")
    return admin


async def get_main_admin(admin: dict = Depends(get_current_admin)) -> dict:
    if admin["adminRole"] != "main":
        raise HTTPException(status_code=403, detail="Insufficient permissions for this operation")
    return admin


def is_company_admin(admin: dict) -> bool:
    return admin.get("adminRole") == "company"
