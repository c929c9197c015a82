import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from access import (
    active_entitlements,
    grant_course_access,
    public_user,
    release_enrollments,
    resolve_course,
    revoke_course_access,
)
from auth import insert_user, new_user_document
from courses import search_filter
from database import USERS, get_db, get_documents, parse_object_id
from envelope import ok
from schemas import CourseAccessRequest, UserCreate, UserStatus
from security import get_current_admin, get_main_admin, is_company_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/users", tags=["admin users"])


async def get_site_user(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    user = await db[USERS].find_one({"_id": parse_object_id(user_id, "user ID"), "isAdmin": {"$ne": True}})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def check_course_owner(admin: dict, course: dict) -> None:
    if is_company_admin(admin) and course.get("companyId") != admin["companyId"]:
        raise HTTPException(status_code=403, detail="You can only manage access to your company's courses")


@router.get("")
async def list_users(
    search: Optional[str] = None,
    status: Optional[UserStatus] = None,
    plan: Optional[Literal["premium", "free"]] = None,
    admin: dict = Depends(get_main_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {"isAdmin": {"$ne": True}, **search_filter(search, "name", "surname", "email")}
    if status:
        query["status"] = status
    users = await get_documents(db, USERS, query, sort=[("createdAt", -1)])

    now = datetime.utcnow()
    items = []
    for user in users:
        entitlements = active_entitlements(user, now)
        user_plan = "premium" if entitlements else "free"
        if plan and plan != user_plan:
            continue
        items.append({**public_user(user, now), "plan": user_plan, "courseCount": len(entitlements)})
    return ok(items, count=len(items))


@router.post("", status_code=201)
async def add_user(body: UserCreate, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await insert_user(db, new_user_document(body.name, body.surname, body.email, body.password))
    logger.info("Admin %s created user %s", admin["email"], user["email"])
    return ok(public_user(user), message="User created successfully")


@router.post("/{user_id}/grant-course")
async def grant_course(
    user_id: str,
    body: CourseAccessRequest,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    user = await get_site_user(db, user_id)
    course = await resolve_course(db, body.course_id, body.course_slug)
    check_course_owner(admin, course)

    result = await grant_course_access(db, user["_id"], course, method=body.method)
    return ok(
        {
            "userId": user["_id"],
            "courseId": course["_id"],
            "courseTitle": course["title"],
            "entitlement": result["entitlement"],
            "paymentId": result["payment"]["_id"],
        },
        message=f"Access to {course['title']} granted",
    )


@router.post("/{user_id}/remove-course")
async def remove_course(
    user_id: str,
    body: CourseAccessRequest,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    user = await get_site_user(db, user_id)
    course = await resolve_course(db, body.course_id, body.course_slug)
    check_course_owner(admin, course)

    removed = await revoke_course_access(db, user["_id"], course)
    message = f"Access to {course['title']} removed" if removed else "User does not have this course"
    return ok({"userId": user["_id"], "courseId": course["_id"], "removed": removed}, message=message)


@router.put("/{user_id}/status")
async def toggle_status(user_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await get_site_user(db, user_id)
    new_status = "active" if user.get("status") == "suspended" else "suspended"
    updated = await db[USERS].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": {"status": new_status, "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Admin %s set %s to %s", admin["email"], user["email"], new_status)
    return ok(public_user(updated), message=f"User {new_status}")


@router.delete("/{user_id}")
async def delete_user(user_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await get_site_user(db, user_id)
    released = await release_enrollments(db, user)
    await db[USERS].delete_one({"_id": user["_id"]})
    logger.info("Admin %s deleted user %s (%d enrollments released)", admin["email"], user["email"], released)
    return ok({"id": user["_id"]}, message="User deleted successfully")
