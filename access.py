"""Course entitlements: granting, revoking, expiry and cleanup.

An entitlement lives inside the user document::

    {"course": ObjectId, "grantedAt": datetime, "durationMonths": int, "expiresAt": datetime}

and is active while ``expiresAt`` is in the future. Every entitlement still
stored on a user counts once in the course's ``studentsEnrolled``.
"""

import calendar
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

import config
from database import COMPANIES, COURSES, PAYMENTS, USERS, get_documents, get_or_404, parse_object_id
from revenue import split_amount

logger = logging.getLogger(__name__)


def add_months(start: datetime, months: int) -> datetime:
    """Calendar-month arithmetic; the day is clamped to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def is_active(entitlement: Any, now: Optional[datetime] = None) -> bool:
    if not isinstance(entitlement, dict) or not entitlement.get("expiresAt"):
        return False
    return entitlement["expiresAt"] > (now or datetime.utcnow())


def active_entitlements(user: dict, now: Optional[datetime] = None) -> List[dict]:
    now = now or datetime.utcnow()
    return [e for e in user.get("purchasedCourses") or [] if is_active(e, now)]


def has_course_access(user: dict, course_id: ObjectId, now: Optional[datetime] = None) -> bool:
    return any(e["course"] == course_id for e in active_entitlements(user, now))


def find_progress(user: dict, course_id: ObjectId) -> Optional[dict]:
    for progress in user.get("courseProgress") or []:
        if progress.get("course") == course_id:
            return progress
    return None


def public_user(user: dict, now: Optional[datetime] = None) -> dict:
    """User document as returned to clients: no secrets, only active entitlements."""
    entitlements = active_entitlements(user, now)
    held = {e["course"] for e in entitlements}
    return {
        "_id": user["_id"],
        "name": user.get("name"),
        "surname": user.get("surname", ""),
        "email": user.get("email"),
        "image": user.get("image"),
        "isAdmin": bool(user.get("isAdmin")),
        "adminRole": user.get("adminRole"),
        "companyId": user.get("companyId"),
        "status": user.get("status", "active"),
        "purchasedCourses": entitlements,
        "courseProgress": [p for p in user.get("courseProgress") or [] if p.get("course") in held],
        "createdAt": user.get("createdAt"),
    }


def new_progress(course_id: ObjectId, now: datetime) -> dict:
    return {
        "course": course_id,
        "completedVideos": [],
        "progressPercentage": 0,
        "lastWatchedVideo": None,
        "lastAccessed": now,
    }


class UnitOfWork:
    """Sequential writes with compensations run in reverse order on failure."""

    def __init__(self, name: str):
        self.name = name
        self._compensations: List[Callable[[], Awaitable[Any]]] = []

    def on_rollback(self, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
        self._compensations.append(lambda: func(*args))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None or not self._compensations:
            return False
        logger.error("%s failed (%s); rolling back %d step(s)", self.name, exc, len(self._compensations))
        for compensate in reversed(self._compensations):
            try:
                await compensate()
            except Exception:
                logger.exception("%s: compensation step failed", self.name)
        return False


async def resolve_course(
    db: AsyncIOMotorDatabase, course_id: Optional[str] = None, course_slug: Optional[str] = None
) -> dict:
    if course_id:
        return await get_or_404(db, COURSES, course_id, "Course")
    course = await db[COURSES].find_one({"slug": (course_slug or "").strip().lower()})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


async def increment_enrollment(db: AsyncIOMotorDatabase, course_id: ObjectId, amount: int = 1) -> None:
    await db[COURSES].update_one({"_id": course_id}, {"$inc": {"studentsEnrolled": amount}})


async def decrement_enrollment(db: AsyncIOMotorDatabase, course_id: ObjectId) -> bool:
    result = await db[COURSES].update_one(
        {"_id": course_id, "studentsEnrolled": {"$gt": 0}},
        {"$inc": {"studentsEnrolled": -1}},
    )
    return result.modified_count > 0


async def _pull_course(db: AsyncIOMotorDatabase, user_id: ObjectId, course_id: ObjectId) -> None:
    await db[USERS].update_one(
        {"_id": user_id},
        {"$pull": {"purchasedCourses": {"course": course_id}, "courseProgress": {"course": course_id}}},
    )


async def _delete_payment(db: AsyncIOMotorDatabase, payment_id: ObjectId) -> None:
    await db[PAYMENTS].delete_one({"_id": payment_id})


async def _company_share_percent(db: AsyncIOMotorDatabase, course: dict) -> Optional[float]:
    if not course.get("companyId"):
        return None
    company = await db[COMPANIES].find_one({"_id": course["companyId"]})
    if not company:
        logger.warning("Course %s references missing company %s", course["slug"], course["companyId"])
        return None
    return company.get("revenueSharePercent", config.DEFAULT_COMPANY_SHARE)


async def grant_course_access(
    db: AsyncIOMotorDatabase,
    user_id: Any,
    course: dict,
    method: str = config.DEFAULT_PAYMENT_METHOD,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Give a user time-bounded access to a course and record the payment.

    The entitlement plus progress record, the enrollment counter and the
    payment are written as one unit of work.
    """
    now = now or datetime.utcnow()
    user = await get_or_404(db, USERS, user_id, "User")
    course_id = course["_id"]

    if has_course_access(user, course_id, now):
        raise HTTPException(status_code=409, detail="User already has access to this course")

    stale = [e for e in user.get("purchasedCourses") or [] if isinstance(e, dict) and e.get("course") == course_id]
    if stale or find_progress(user, course_id):
        # Expired leftovers are purged up front, the same way the cleanup job would,
        # and stay purged if the grant below rolls back.
        await _pull_course(db, user["_id"], course_id)
        for _ in stale:
            await decrement_enrollment(db, course_id)

    months = int(course.get("accessDurationMonths") or config.DEFAULT_ACCESS_MONTHS)
    entitlement = {
        "course": course_id,
        "grantedAt": now,
        "durationMonths": months,
        "expiresAt": add_months(now, months),
    }
    amount = float(course.get("price") or 0)
    share_percent = await _company_share_percent(db, course)

    async with UnitOfWork(f"grant {course['slug']} to {user['email']}") as uow:
        result = await db[USERS].update_one(
            {"_id": user["_id"], "purchasedCourses.course": {"$ne": course_id}},
            {
                "$push": {"purchasedCourses": entitlement, "courseProgress": new_progress(course_id, now)},
                "$set": {"updatedAt": now},
            },
        )
        if result.modified_count == 0:
            raise HTTPException(status_code=409, detail="User already has access to this course")
        uow.on_rollback(_pull_course, db, user["_id"], course_id)

        await increment_enrollment(db, course_id)
        uow.on_rollback(decrement_enrollment, db, course_id)

        payment = {
            "userId": user["_id"],
            "userName": f"{user.get('name', '')} {user.get('surname', '')}".strip(),
            "userEmail": user["email"],
            "courseId": course_id,
            "courseSlug": course["slug"],
            "courseTitle": course["title"],
            "amount": amount,
            "companyId": None,
            "companyShare": None,
            "platformShare": amount,
            "method": method,
            "status": "completed",
            "date": now,
        }
        if share_percent is not None:
            company_share, platform_share = split_amount(amount, share_percent)
            payment.update(
                companyId=course["companyId"], companyShare=company_share, platformShare=platform_share
            )
        inserted = await db[PAYMENTS].insert_one(payment)
        payment["_id"] = inserted.inserted_id
        uow.on_rollback(_delete_payment, db, inserted.inserted_id)

    logger.info("Granted %s to %s until %s", course["slug"], user["email"], entitlement["expiresAt"].isoformat())
    return {"entitlement": entitlement, "payment": payment}


async def revoke_course_access(db: AsyncIOMotorDatabase, user_id: Any, course: dict) -> bool:
    """Remove a user's entitlement and progress for a course.

    Returns False (and writes nothing) when the user did not hold the course.
    """
    uid = parse_object_id(user_id, "user ID")
    course_id = course["_id"]
    result = await db[USERS].update_one(
        {"_id": uid, "purchasedCourses.course": course_id},
        {
            "$pull": {"purchasedCourses": {"course": course_id}, "courseProgress": {"course": course_id}},
            "$set": {"updatedAt": datetime.utcnow()},
        },
    )
    if result.modified_count == 0:
        return False
    await decrement_enrollment(db, course_id)
    logger.info("Revoked %s from user %s", course["slug"], uid)
    return True


async def remove_course_from_users(db: AsyncIOMotorDatabase, course_id: ObjectId) -> int:
    """Strip a course from every user's entitlements and progress; returns users affected."""
    holders = await db[USERS].count_documents({"purchasedCourses.course": course_id})
    await db[USERS].update_many(
        {"$or": [{"purchasedCourses.course": course_id}, {"courseProgress.course": course_id}]},
        {"$pull": {"purchasedCourses": {"course": course_id}, "courseProgress": {"course": course_id}}},
    )
    return holders


async def release_enrollments(db: AsyncIOMotorDatabase, user: dict) -> int:
    """Decrement the counter of every course a user being deleted still holds."""
    released = 0
    for entitlement in user.get("purchasedCourses") or []:
        if isinstance(entitlement, dict) and entitlement.get("course"):
            if await decrement_enrollment(db, entitlement["course"]):
                released += 1
    return released


async def cleanup_expired_entitlements(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Purge expired entitlements, their progress records and enrollment counts."""
    now = now or datetime.utcnow()
    users = await get_documents(db, USERS, {"purchasedCourses": {"$elemMatch": {"expiresAt": {"$lte": now}}}})
    logger.info("Found %d users with expired course access", len(users))

    users_updated = 0
    access_revoked = 0
    courses_touched = set()
    for user in users:
        entitlements = [e for e in user.get("purchasedCourses") or [] if isinstance(e, dict)]
        expired = [e for e in entitlements if not is_active(e, now)]
        still_held = {e["course"] for e in entitlements if is_active(e, now)}
        orphaned = list(
            {p["course"] for p in user.get("courseProgress") or [] if p.get("course") not in still_held}
        )

        result = await db[USERS].update_one(
            {"_id": user["_id"]},
            {
                "$pull": {
                    "purchasedCourses": {"expiresAt": {"$lte": now}},
                    "courseProgress": {"course": {"$in": orphaned}},
                },
                "$set": {"updatedAt": now},
            },
        )
        if result.modified_count == 0:
            continue
        users_updated += 1
        for entitlement in expired:
            logger.info("Course %s access expired for user %s", entitlement["course"], user["email"])
            await decrement_enrollment(db, entitlement["course"])
            courses_touched.add(entitlement["course"])
            access_revoked += 1

    summary = {
        "usersScanned": len(users),
        "usersUpdated": users_updated,
        "accessRevoked": access_revoked,
        "coursesUpdated": len(courses_touched),
        "timestamp": now,
    }
    logger.info("Cleanup summary: %s", summary)
    return summary


async def migrate_legacy_entitlements(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Convert slug-string entitlements into dated entitlement objects."""
    now = now or datetime.utcnow()
    users = await get_documents(db, USERS, {"purchasedCourses": {"$exists": True, "$ne": []}})
    courses_by_slug: Dict[str, Optional[dict]] = {}

    migrated = 0
    created = 0
    unknown = set()
    for user in users:
        entries = user.get("purchasedCourses") or []
        slugs = [e for e in entries if isinstance(e, str)]
        if not slugs:
            continue

        entitlements = [e for e in entries if isinstance(e, dict)]
        progress = list(user.get("courseProgress") or [])
        held = {e["course"] for e in entitlements}
        for slug in slugs:
            if slug not in courses_by_slug:
                courses_by_slug[slug] = await db[COURSES].find_one({"slug": slug})
            course = courses_by_slug[slug]
            if course is None:
                unknown.add(slug)
                logger.warning("User %s holds unknown legacy course '%s'; dropped", user["email"], slug)
                continue
            if course["_id"] in held:
                continue
            months = int(course.get("accessDurationMonths") or config.DEFAULT_ACCESS_MONTHS)
            entitlements.append(
                {"course": course["_id"], "grantedAt": now, "durationMonths": months, "expiresAt": add_months(now, months)}
            )
            if find_progress(user, course["_id"]) is None:
                progress.append(new_progress(course["_id"], now))
            held.add(course["_id"])
            await increment_enrollment(db, course["_id"])
            created += 1

        await db[USERS].update_one(
            {"_id": user["_id"]},
            {"$set": {"purchasedCourses": entitlements, "courseProgress": progress, "updatedAt": now}},
        )
        migrated += 1

    summary = {"usersMigrated": migrated, "entitlementsCreated": created, "unknownSlugs": sorted(unknown)}
    logger.info("Legacy migration summary: %s", summary)
    return summary
