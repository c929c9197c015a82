import logging
import secrets
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

import config
from access import public_user
from database import USERS, create_document, get_db
from envelope import ok
from mail_service import Mailer, get_mailer
from schemas import EmailRequest, LoginRequest, ResetPasswordRequest, SignupRequest, VerifyCodeRequest
from security import create_user_token, get_password_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def new_user_document(name: str, surname: str, email: str, password: str, **extra) -> dict:
    return {
        "name": name,
        "surname": surname,
        "email": email.strip().lower(),
        "password": get_password_hash(password),
        "isAdmin": False,
        "adminRole": None,
        "companyId": None,
        "status": "active",
        "image": None,
        "resetCode": None,
        "resetCodeExpiry": None,
        "purchasedCourses": [],
        "courseProgress": [],
        **extra,
    }


async def insert_user(db: AsyncIOMotorDatabase, document: dict) -> dict:
    if await db[USERS].find_one({"email": document["email"]}):
        raise HTTPException(status_code=409, detail="Email already registered")
    try:
        return await create_document(db, USERS, document)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered")


async def _user_with_valid_code(db: AsyncIOMotorDatabase, email: str, code: str) -> dict:
    user = await db[USERS].find_one({"email": email.lower()})
    if not user or not user.get("resetCode") or user["resetCode"] != code:
        raise HTTPException(status_code=400, detail="Invalid code. Please try again.")
    if not user.get("resetCodeExpiry") or user["resetCodeExpiry"] < datetime.utcnow():
        raise HTTPException(status_code=400, detail="Code has expired. Please request a new one.")
    return user


@router.post("/signup", status_code=201)
async def signup(body: SignupRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await insert_user(db, new_user_document(body.name, body.surname, body.email, body.password))
    logger.info("New user registered: %s", user["email"])
    return ok(public_user(user), message="User registered successfully")


@router.post("/login")
async def login(body: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db[USERS].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.get("status") == "suspended":
        raise HTTPException(status_code=401, detail="User account is suspended")
    return ok({"token": create_user_token(user), "user": public_user(user)}, message="Login successful")


@router.post("/send-reset-code")
async def send_reset_code(
    body: EmailRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    email = body.email.lower()
    user = await db[USERS].find_one({"email": email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    code = generate_code()
    await db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "resetCode": code,
            "resetCodeExpiry": datetime.utcnow() + timedelta(minutes=config.CODE_EXPIRE_MINUTES),
        }},
    )
    await mailer.send_reset_code(email, code)
    return ok(message=f"Code sent to {email}")


@router.post("/verify-reset-code")
async def verify_reset_code(body: VerifyCodeRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    await _user_with_valid_code(db, body.email, body.code)
    return ok(message="Code verified")


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await _user_with_valid_code(db, body.email, body.code)
    await db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "password": get_password_hash(body.new_password),
            "resetCode": None,
            "resetCodeExpiry": None,
            "updatedAt": datetime.utcnow(),
        }},
    )
    logger.info("Password reset for %s", user["email"])
    return ok(message="Password reset successfully")
