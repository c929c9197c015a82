import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

import config
from courses import slugify
from database import CATEGORIES, VIDEOS, create_document, get_db, get_documents, get_or_404
from envelope import ok
from security import get_current_admin
from storage import ObjectStorage, discard_media, get_storage, read_upload, unique_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])
admin_router = APIRouter(prefix="/api/admin/video-categories", tags=["admin categories"])


async def create_category(
    db: AsyncIOMotorDatabase,
    storage: ObjectStorage,
    title: str,
    image: UploadFile,
    description: str = "",
    price: float = 0,
) -> dict:
    """Insert a category with its thumbnail; the image is required."""
    title = title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Category title is required")
    if image is None or not image.filename:
        raise HTTPException(status_code=400, detail="Category image is required")
    if await db[CATEGORIES].find_one({"title": title}):
        raise HTTPException(status_code=409, detail="Category already exists")

    content = await read_upload(image, config.ALLOWED_IMAGE_TYPES, config.MAX_IMAGE_SIZE, "image")
    thumbnail_url = await run_in_threadpool(
        storage.upload, "category-thumbnails", unique_name("category", image.filename), content
    )
    try:
        return await create_document(db, CATEGORIES, {
            "title": title,
            "slug": slugify(title),
            "description": description.strip(),
            "price": price,
            "thumbnailUrl": thumbnail_url,
        })
    except DuplicateKeyError:
        await discard_media(storage, thumbnail_url)
        raise HTTPException(status_code=409, detail="Category already exists")


@router.get("")
async def list_public_categories(db: AsyncIOMotorDatabase = Depends(get_db)):
    categories = await get_documents(db, CATEGORIES, sort=[("title", 1)])
    return ok(categories, count=len(categories))


@admin_router.get("")
async def list_categories(admin: dict = Depends(get_current_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    categories = await get_documents(db, CATEGORIES, sort=[("createdAt", -1)])
    return ok(categories, count=len(categories))


@admin_router.post("", status_code=201)
async def add_category(
    title: str = Form(...),
    description: str = Form(""),
    price: float = Form(0, ge=0),
    image: UploadFile = File(None),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    category = await create_category(db, storage, title, image, description, price)
    logger.info("Category '%s' created by %s", category["title"], admin["email"])
    return ok(category, message="Category created successfully")


@admin_router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    category = await get_or_404(db, CATEGORIES, category_id, "Category")
    in_use = await db[VIDEOS].count_documents({"category": category["_id"]})
    if in_use:
        raise HTTPException(status_code=400, detail=f"Cannot delete category: {in_use} video(s) still use it")

    await db[CATEGORIES].delete_one({"_id": category["_id"]})
    await discard_media(storage, category.get("thumbnailUrl"))
    return ok({"id": category["_id"]}, message="Category deleted successfully")
