import logging
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from motor.motor_asyncio import AsyncIOMotorDatabase

import config
from access import active_entitlements
from categories import create_category
from database import CATEGORIES, COURSES, VIDEOS, create_document, get_db, get_documents, get_or_404
from envelope import ok
from schemas import VideoAccess
from security import get_current_admin, get_optional_user
from storage import ObjectStorage, discard_media, get_storage, read_upload, unique_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/videos", tags=["videos"])
admin_router = APIRouter(prefix="/api/admin/videos", tags=["admin videos"])

OPEN_VIDEOS = [{"access": "free"}, {"isPreview": True}]


async def unlocked_categories(db: AsyncIOMotorDatabase, user: Optional[dict]) -> List[ObjectId]:
    """Categories whose slug matches a course the user actively holds."""
    if user is None:
        return []
    course_ids = [e["course"] for e in active_entitlements(user)]
    if not course_ids:
        return []
    courses = await get_documents(db, COURSES, {"_id": {"$in": course_ids}}, projection={"slug": 1})
    slugs = [c["slug"] for c in courses]
    categories = await get_documents(db, CATEGORIES, {"slug": {"$in": slugs}}, projection={"_id": 1})
    return [c["_id"] for c in categories]


async def visible_videos(db: AsyncIOMotorDatabase, user: Optional[dict], category: Optional[dict] = None) -> List[dict]:
    unlocked = await unlocked_categories(db, user)
    if category is not None:
        query = {"category": category["_id"]}
        if category["_id"] not in unlocked:
            query["$or"] = OPEN_VIDEOS
    else:
        query = {"$or": OPEN_VIDEOS + [{"category": {"$in": unlocked}}]}
    return await get_documents(db, VIDEOS, query, sort=[("createdAt", -1)])


async def category_by_slug(db: AsyncIOMotorDatabase, slug: str) -> dict:
    category = await db[CATEGORIES].find_one({"slug": slug.lower()})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


async def find_category(db: AsyncIOMotorDatabase, value: str) -> Optional[dict]:
    try:
        category = await db[CATEGORIES].find_one({"_id": ObjectId(value)})
    except (InvalidId, TypeError):
        category = None
    return category or await db[CATEGORIES].find_one({"title": value.strip()})


@router.get("")
async def list_videos(
    category: Optional[str] = None,
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    selected = await category_by_slug(db, category) if category else None
    videos = await visible_videos(db, user, selected)
    return ok(videos, count=len(videos))


@router.get("/category/{slug}")
async def list_category_videos(
    slug: str,
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    category = await category_by_slug(db, slug)
    unlocked = category["_id"] in await unlocked_categories(db, user)
    videos = await visible_videos(db, user, category)
    return ok(videos, count=len(videos), category=category, hasFullAccess=unlocked)


@admin_router.post("/upload", status_code=201)
async def upload_video(
    title: str = Form(..., min_length=1),
    category: str = Form(..., min_length=1),
    description: str = Form(""),
    instructor: str = Form(""),
    duration: str = Form(""),
    price: float = Form(0, ge=0),
    access: VideoAccess = Form("premium"),
    is_preview: bool = Form(False, alias="isPreview"),
    video: UploadFile = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    category_image: Optional[UploadFile] = File(None, alias="categoryImage"),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    if video is None or not video.filename:
        raise HTTPException(status_code=400, detail="Video file is required")
    content = await read_upload(video, config.ALLOWED_VIDEO_TYPES, config.MAX_VIDEO_SIZE, "video")

    target = await find_category(db, category)
    if target is None:
        target = await create_category(db, storage, category, category_image)
        logger.info("Created category '%s' while uploading '%s'", target["title"], title)

    video_url = await run_in_threadpool(storage.upload, "videos", unique_name("video", video.filename), content)
    thumbnail_url = ""
    if thumbnail is not None and thumbnail.filename:
        image = await read_upload(thumbnail, config.ALLOWED_IMAGE_TYPES, config.MAX_IMAGE_SIZE, "image")
        thumbnail_url = await run_in_threadpool(
            storage.upload, "thumbnails", unique_name("thumb", thumbnail.filename), image
        )

    document = await create_document(db, VIDEOS, {
        "title": title.strip(),
        "description": description.strip(),
        "instructor": instructor.strip(),
        "thumbnail": thumbnail_url,
        "duration": duration,
        "price": price,
        "category": target["_id"],
        "access": access,
        "videoUrl": video_url,
        "isPreview": is_preview,
    })
    logger.info("Video '%s' uploaded by %s", document["title"], admin["email"])
    return ok(document, message="Video uploaded successfully")


@admin_router.get("")
async def list_all_videos(admin: dict = Depends(get_current_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    videos = await get_documents(db, VIDEOS, sort=[("createdAt", -1)])
    categories = {c["_id"]: c["title"] for c in await get_documents(db, CATEGORIES, projection={"title": 1})}
    items = [{**v, "categoryTitle": categories.get(v.get("category"))} for v in videos]
    return ok(items, count=len(items))


@admin_router.delete("/{video_id}")
async def delete_video(
    video_id: str,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    video = await get_or_404(db, VIDEOS, video_id, "Video")
    await db[VIDEOS].delete_one({"_id": video["_id"]})
    await discard_media(storage, video.get("videoUrl"), video.get("thumbnail"))
    return ok({"id": video["_id"]}, message="Video deleted successfully")
