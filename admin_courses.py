import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from access import remove_course_from_users
from courses import search_filter, slugify, with_video_count
from database import COMPANIES, COURSES, create_document, get_db, get_documents, get_or_404
from envelope import ok
from schemas import CourseLevel, CourseType, VideoOrderRequest, VideoUpdate
from security import get_current_admin, is_company_admin
from storage import ObjectStorage, discard_media, get_storage, read_upload, unique_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/courses", tags=["admin courses"])


def course_scope(admin: dict) -> dict:
    return {"companyId": admin["companyId"]} if is_company_admin(admin) else {}


async def get_scoped_course(db: AsyncIOMotorDatabase, admin: dict, course_id: str) -> dict:
    course = await get_or_404(db, COURSES, course_id, "Course")
    if is_company_admin(admin) and course.get("companyId") != admin["companyId"]:
        raise HTTPException(status_code=403, detail="Not authorized for this course")
    return course


async def resolve_owner(db: AsyncIOMotorDatabase, admin: dict, company_id: Optional[str]) -> Optional[ObjectId]:
    """Company admins always own what they create; main admins may assign a company."""
    if is_company_admin(admin):
        return admin["companyId"]
    if not company_id:
        return None
    company = await get_or_404(db, COMPANIES, company_id, "Company")
    return company["_id"]


async def ensure_unique_slug(db: AsyncIOMotorDatabase, slug: str, exclude_id: Optional[ObjectId] = None) -> None:
    if not slug:
        raise HTTPException(status_code=400, detail="Course title must contain letters or digits")
    query = {"slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db[COURSES].find_one(query):
        raise HTTPException(status_code=409, detail="Course with this title already exists")


async def upload_thumbnail(storage: ObjectStorage, thumbnail: UploadFile) -> str:
    content = await read_upload(thumbnail, config.ALLOWED_IMAGE_TYPES, config.MAX_IMAGE_SIZE, "image")
    return await run_in_threadpool(storage.upload, "thumbnails", unique_name("thumb", thumbnail.filename), content)


async def upload_video_file(storage: ObjectStorage, video: UploadFile) -> str:
    content = await read_upload(video, config.ALLOWED_VIDEO_TYPES, config.MAX_VIDEO_SIZE, "video")
    return await run_in_threadpool(storage.upload, "videos", unique_name("video", video.filename), content)


async def save_course(db: AsyncIOMotorDatabase, course_id: ObjectId, updates: dict) -> dict:
    updates["updatedAt"] = datetime.utcnow()
    try:
        return await db[COURSES].find_one_and_update(
            {"_id": course_id}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Course with this title already exists")


def find_video(course: dict, video_id: str) -> dict:
    for video in course.get("videos") or []:
        if str(video["_id"]) == video_id:
            return video
    raise HTTPException(status_code=404, detail="Video not found")


@router.get("")
async def list_courses(
    type: Optional[CourseType] = None,
    search: Optional[str] = None,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {**course_scope(admin), **search_filter(search, "title", "description")}
    if type:
        query["type"] = type
    courses = await get_documents(db, COURSES, query, sort=[("createdAt", -1)])
    return ok([with_video_count(c) for c in courses], count=len(courses))


@router.get("/{course_id}")
async def get_course(course_id: str, admin: dict = Depends(get_current_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(with_video_count(await get_scoped_course(db, admin, course_id)))


@router.post("", status_code=201)
async def create_course(
    title: str = Form(..., min_length=1),
    description: str = Form(..., min_length=1),
    type: CourseType = Form("single"),
    price: float = Form(0, ge=0),
    category: str = Form(""),
    instructor: str = Form(""),
    level: CourseLevel = Form("beginner"),
    total_duration: str = Form("0 hours", alias="totalDuration"),
    access_duration_months: int = Form(config.DEFAULT_ACCESS_MONTHS, ge=1, alias="accessDurationMonths"),
    company_id: Optional[str] = Form(None, alias="companyId"),
    video_url: Optional[str] = Form(None, alias="videoUrl"),
    video_title: Optional[str] = Form(None, alias="videoTitle"),
    video_duration: Optional[str] = Form(None, alias="videoDuration"),
    thumbnail: Optional[UploadFile] = File(None),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    slug = slugify(title)
    await ensure_unique_slug(db, slug)
    owner = await resolve_owner(db, admin, company_id)

    videos = []
    if type == "single" and video_url:
        videos.append({
            "_id": ObjectId(),
            "title": video_title or title,
            "url": video_url,
            "duration": video_duration or "0:00",
            "order": 0,
        })

    thumbnail_url = ""
    if thumbnail is not None and thumbnail.filename:
        thumbnail_url = await upload_thumbnail(storage, thumbnail)

    try:
        course = await create_document(db, COURSES, {
            "title": title.strip(),
            "slug": slug,
            "description": description.strip(),
            "type": type,
            "thumbnail": thumbnail_url,
            "videos": videos,
            "price": price,
            "isActive": True,
            "category": category.strip(),
            "instructor": instructor.strip(),
            "level": level,
            "totalDuration": total_duration,
            "studentsEnrolled": 0,
            "accessDurationMonths": access_duration_months,
            "companyId": owner,
        })
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Course with this title already exists")
    logger.info("Course %s created by %s", slug, admin["email"])
    return ok(with_video_count(course), message="Course created successfully")


@router.put("/{course_id}")
async def update_course(
    course_id: str,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    type: Optional[CourseType] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    category: Optional[str] = Form(None),
    instructor: Optional[str] = Form(None),
    level: Optional[CourseLevel] = Form(None),
    total_duration: Optional[str] = Form(None, alias="totalDuration"),
    access_duration_months: Optional[int] = Form(None, ge=1, alias="accessDurationMonths"),
    is_active: Optional[bool] = Form(None, alias="isActive"),
    company_id: Optional[str] = Form(None, alias="companyId"),
    thumbnail: Optional[UploadFile] = File(None),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    course = await get_scoped_course(db, admin, course_id)
    updates = {
        key: value
        for key, value in {
            "description": description,
            "type": type,
            "price": price,
            "category": category,
            "instructor": instructor,
            "level": level,
            "totalDuration": total_duration,
            "accessDurationMonths": access_duration_months,
            "isActive": is_active,
        }.items()
        if value is not None
    }

    if title and title.strip() != course["title"]:
        updates["title"] = title.strip()
        updates["slug"] = slugify(title)
        await ensure_unique_slug(db, updates["slug"], exclude_id=course["_id"])

    if company_id is not None and not is_company_admin(admin):
        updates["companyId"] = await resolve_owner(db, admin, company_id)

    if thumbnail is not None and thumbnail.filename:
        updates["thumbnail"] = await upload_thumbnail(storage, thumbnail)

    updated = await save_course(db, course["_id"], updates)
    if "thumbnail" in updates:
        await discard_media(storage, course.get("thumbnail"))
    return ok(with_video_count(updated), message="Course updated successfully")


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    course = await get_scoped_course(db, admin, course_id)

    users_affected = await remove_course_from_users(db, course["_id"])
    await db[COURSES].delete_one({"_id": course["_id"]})

    await discard_media(storage, course.get("thumbnail"), *[v.get("url") for v in course.get("videos") or []])

    logger.info("Course %s deleted by %s; %d users affected", course["slug"], admin["email"], users_affected)
    return ok({"usersAffected": users_affected}, message="Course deleted successfully")


@router.post("/{course_id}/videos", status_code=201)
async def add_video(
    course_id: str,
    title: Optional[str] = Form(None),
    url: Optional[str] = Form(None),
    duration: Optional[str] = Form(None),
    video: Optional[UploadFile] = File(None),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    course = await get_scoped_course(db, admin, course_id)
    if course.get("type") != "pack":
        raise HTTPException(status_code=400, detail="Can only add videos to pack courses")

    video_url = url
    if video is not None and video.filename:
        video_url = await upload_video_file(storage, video)
    if not video_url:
        raise HTTPException(status_code=400, detail="Video URL or file is required")

    videos = list(course.get("videos") or [])
    videos.append({
        "_id": ObjectId(),
        "title": title or f"Video {len(videos) + 1}",
        "url": video_url,
        "duration": duration or "0:00",
        "order": len(videos),
    })
    updated = await save_course(db, course["_id"], {"videos": videos})
    return ok(with_video_count(updated), message="Video added successfully")


@router.put("/{course_id}/videos-order")
async def reorder_videos(
    course_id: str,
    body: VideoOrderRequest,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    course = await get_scoped_course(db, admin, course_id)
    orders = {item.video_id: item.order for item in body.video_orders}
    videos = list(course.get("videos") or [])
    for video in videos:
        if str(video["_id"]) in orders:
            video["order"] = orders[str(video["_id"])]
    videos.sort(key=lambda v: v.get("order", 0))
    updated = await save_course(db, course["_id"], {"videos": videos})
    return ok(with_video_count(updated), message="Videos reordered successfully")


@router.put("/{course_id}/videos/{video_id}")
async def update_video(
    course_id: str,
    video_id: str,
    body: VideoUpdate,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    course = await get_scoped_course(db, admin, course_id)
    video = find_video(course, video_id)
    video.update(body.model_dump(exclude_none=True))
    updated = await save_course(db, course["_id"], {"videos": course["videos"]})
    return ok(with_video_count(updated), message="Video updated successfully")


@router.delete("/{course_id}/videos/{video_id}")
async def delete_video(
    course_id: str,
    video_id: str,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    course = await get_scoped_course(db, admin, course_id)
    video = find_video(course, video_id)

    videos = [v for v in course["videos"] if v["_id"] != video["_id"]]
    for index, remaining in enumerate(videos):
        remaining["order"] = index
    updated = await save_course(db, course["_id"], {"videos": videos})
    await discard_media(storage, video.get("url"))
    return ok(with_video_count(updated), message="Video deleted successfully")
