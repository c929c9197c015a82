import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from access import active_entitlements, find_progress, has_course_access, new_progress
from database import COURSES, USERS, get_db, get_documents
from envelope import ok
from revenue import round_half_up
from schemas import CourseType, ProgressUpdate
from security import get_current_user

router = APIRouter(prefix="/api/courses", tags=["courses"])


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").strip().lower()).strip("-")


def search_filter(search: Optional[str], *fields: str) -> dict:
    if not search:
        return {}
    pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
    return {"$or": [{field: pattern} for field in fields]}


def with_video_count(course: dict) -> dict:
    return {**course, "videoCount": len(course.get("videos") or [])}


def public_course(course: dict) -> dict:
    """Catalog view of a course: video URLs stay hidden until purchase."""
    videos = [{k: v for k, v in video.items() if k != "url"} for video in course.get("videos") or []]
    return with_video_count({**course, "videos": videos})


async def get_active_course(db: AsyncIOMotorDatabase, slug: str) -> dict:
    course = await db[COURSES].find_one({"slug": slug.lower(), "isActive": True})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@router.get("")
async def list_courses(
    category: Optional[str] = None,
    type: Optional[CourseType] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {"isActive": True, **search_filter(search, "title", "description")}
    if category:
        query["category"] = category
    if type:
        query["type"] = type
    courses = await get_documents(db, COURSES, query, sort=[("createdAt", -1)])
    return ok([public_course(c) for c in courses], count=len(courses))


@router.get("/categories")
async def list_course_categories(db: AsyncIOMotorDatabase = Depends(get_db)):
    categories = await db[COURSES].distinct("category", {"category": {"$exists": True, "$nin": [None, ""]}})
    return ok([{"_id": name, "name": name, "slug": slugify(name)} for name in sorted(categories)])


@router.get("/my-courses")
async def my_courses(current_user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    course_ids = [e["course"] for e in active_entitlements(current_user)]
    courses = await get_documents(db, COURSES, {"_id": {"$in": course_ids}, "isActive": True}) if course_ids else []
    expiry = {e["course"]: e["expiresAt"] for e in active_entitlements(current_user)}

    items = []
    for course in courses:
        progress = find_progress(current_user, course["_id"]) or {}
        items.append({
            "id": course["_id"],
            "title": course["title"],
            "slug": course["slug"],
            "type": course.get("type"),
            "thumbnail": course.get("thumbnail"),
            "videoCount": len(course.get("videos") or []),
            "duration": course.get("totalDuration"),
            "progress": progress.get("progressPercentage", 0),
            "lastAccessed": progress.get("lastAccessed"),
            "expiresAt": expiry[course["_id"]],
            "description": course.get("description"),
            "category": course.get("category"),
        })

    # Most recently accessed first, never-accessed last.
    items.sort(key=lambda c: c["lastAccessed"] or datetime.min, reverse=True)
    return ok(items, count=len(items))


@router.get("/{slug}")
async def get_course(
    slug: str, current_user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_active_course(db, slug)
    if not has_course_access(current_user, course["_id"]):
        raise HTTPException(status_code=403, detail="You do not have access to this course")

    progress = find_progress(current_user, course["_id"]) or {}
    completed = set(progress.get("completedVideos") or [])
    data = {
        "id": course["_id"],
        "title": course["title"],
        "slug": course["slug"],
        "description": course.get("description"),
        "type": course.get("type"),
        "thumbnail": course.get("thumbnail"),
        "category": course.get("category"),
        "instructor": course.get("instructor"),
        "level": course.get("level"),
        "totalDuration": course.get("totalDuration"),
        "videos": [
            {
                "id": video["_id"],
                "title": video["title"],
                "url": video["url"],
                "duration": video.get("duration"),
                "order": video.get("order", index),
                "isCompleted": str(video["_id"]) in completed,
            }
            for index, video in enumerate(course.get("videos") or [])
        ],
        "progress": {
            "percentage": progress.get("progressPercentage", 0),
            "completedVideos": progress.get("completedVideos", []),
            "lastWatchedVideo": progress.get("lastWatchedVideo"),
            "lastAccessed": progress.get("lastAccessed"),
        },
    }

    await db[USERS].update_one(
        {"_id": current_user["_id"], "courseProgress.course": course["_id"]},
        {"$set": {"courseProgress.$.lastAccessed": datetime.utcnow()}},
    )
    return ok(data)


@router.put("/{slug}/progress")
async def update_progress(
    slug: str,
    body: ProgressUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    course = await db[COURSES].find_one({"slug": slug.lower()})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    if not has_course_access(current_user, course["_id"]):
        raise HTTPException(status_code=403, detail="You do not have access to this course")

    video_ids = [str(v["_id"]) for v in course.get("videos") or []]
    if body.video_id not in video_ids:
        raise HTTPException(status_code=404, detail="Video not found")

    now = datetime.utcnow()
    progress = find_progress(current_user, course["_id"])
    if progress is None:
        progress = new_progress(course["_id"], now)
        await db[USERS].update_one({"_id": current_user["_id"]}, {"$push": {"courseProgress": progress}})

    completed = [v for v in progress.get("completedVideos") or [] if v in video_ids]
    if body.is_completed and body.video_id not in completed:
        completed.append(body.video_id)
    elif not body.is_completed:
        completed = [v for v in completed if v != body.video_id]

    total = len(video_ids)
    percentage = round_half_up(len(completed) / total * 100) if total else 0
    await db[USERS].update_one(
        {"_id": current_user["_id"], "courseProgress.course": course["_id"]},
        {"$set": {
            "courseProgress.$.completedVideos": completed,
            "courseProgress.$.progressPercentage": percentage,
            "courseProgress.$.lastWatchedVideo": body.video_id,
            "courseProgress.$.lastAccessed": now,
        }},
    )
    return ok(
        {"progressPercentage": percentage, "completedVideos": len(completed), "totalVideos": total},
        message="Progress updated successfully",
    )
