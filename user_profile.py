import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from access import public_user
from auth import generate_code
from database import USERS, get_db
from envelope import ok
from mail_service import Mailer, get_mailer
from schemas import ConfirmCodeRequest, EmailChangeRequest, PasswordChangeRequest
from security import get_current_user, get_password_hash, verify_password
from storage import ObjectStorage, discard_media, get_storage, read_upload, unique_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["profile"])


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return ok(public_user(current_user))


@router.post("/profile/update")
async def update_profile(
    name: Optional[str] = Form(None),
    surname: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    updates = {}
    if name and name.strip():
        updates["name"] = name.strip()
    if surname is not None:
        updates["surname"] = surname.strip()

    if avatar is not None and avatar.filename:
        content = await read_upload(avatar, config.ALLOWED_AVATAR_TYPES, config.MAX_IMAGE_SIZE, "image")
        updates["image"] = await run_in_threadpool(
            storage.upload, "avatars", unique_name("avatar", avatar.filename), content
        )

    updates["updatedAt"] = datetime.utcnow()
    user = await db[USERS].find_one_and_update(
        {"_id": current_user["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    if "image" in updates:
        await discard_media(storage, current_user.get("image"))
    return ok(public_user(user), message="Profile updated successfully")


@router.post("/email/request-change")
async def request_email_change(
    body: EmailChangeRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    if not verify_password(body.current_password, current_user.get("password", "")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    new_email = body.new_email.lower()
    if await db[USERS].find_one({"email": new_email}):
        raise HTTPException(status_code=409, detail="Email already in use")

    code = generate_code()
    await db[USERS].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"emailChangeRequest": {
            "newEmail": new_email,
            "verificationCode": code,
            "expiresAt": datetime.utcnow() + timedelta(minutes=config.CODE_EXPIRE_MINUTES),
        }}},
    )
    await mailer.send_email_change_code(new_email, code)
    request_id = f"{current_user['_id']}-{int(datetime.utcnow().timestamp() * 1000)}"
    return ok({"requestId": request_id}, message=f"Verification code sent to {new_email}. Check your email.")


@router.post("/email/confirm-change")
async def confirm_email_change(
    body: ConfirmCodeRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    change = current_user.get("emailChangeRequest") or {}
    if not change.get("verificationCode"):
        raise HTTPException(status_code=400, detail="No email change request found")

    if change["expiresAt"] < datetime.utcnow():
        await db[USERS].update_one({"_id": current_user["_id"]}, {"$unset": {"emailChangeRequest": ""}})
        raise HTTPException(status_code=400, detail="Verification code expired. Please request a new one.")

    if change["verificationCode"] != body.code:
        raise HTTPException(status_code=400, detail="Invalid verification code")

    try:
        user = await db[USERS].find_one_and_update(
            {"_id": current_user["_id"]},
            {"$set": {"email": change["newEmail"], "updatedAt": datetime.utcnow()},
             "$unset": {"emailChangeRequest": ""}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already in use")
    logger.info("User %s changed email to %s", current_user["email"], user["email"])
    return ok(public_user(user), message="Email updated successfully")


@router.post("/password/change")
async def change_password(
    body: PasswordChangeRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    if not verify_password(body.current_password, current_user.get("password", "")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    await db[USERS].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"password": get_password_hash(body.new_password), "updatedAt": datetime.utcnow()}},
    )
    return ok(message="Password changed successfully")
