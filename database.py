from typing import Any, Dict, List, Optional
from datetime import datetime

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

import config

USERS = "users"
COURSES = "courses"
PAYMENTS = "payments"
COMPANIES = "companies"
CATEGORIES = "categories"
VIDEOS = "videos"
ANNOUNCEMENTS = "announcements"
NOTIFICATION_STATUSES = "notification_statuses"
REVIEWS = "reviews"
PROJECTS = "projects"


def connect(url: str = config.DATABASE_URL, name: str = config.DATABASE_NAME) -> AsyncIOMotorDatabase:
    client = AsyncIOMotorClient(url)
    return client[name]


def get_db(request: Request) -> AsyncIOMotorDatabase:
    """FastAPI dependency returning the database bound to the running app."""
    return request.app.state.db


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db[USERS].create_index("email", unique=True)
    await db[USERS].create_index("purchasedCourses.course")
    await db[COURSES].create_index("slug", unique=True)
    await db[COURSES].create_index([("type", 1)])
    await db[COURSES].create_index([("isActive", 1)])
    await db[COMPANIES].create_index("name", unique=True)
    await db[CATEGORIES].create_index("title", unique=True)
    await db[PAYMENTS].create_index([("date", -1)])
    await db[PAYMENTS].create_index([("companyId", 1)])
    await db[NOTIFICATION_STATUSES].create_index(
        [("userId", 1), ("announcementId", 1)], unique=True
    )


def parse_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


def to_json(value: Any) -> Any:
    """Convert a stored document into JSON-ready data.

    ObjectIds become strings and every ``_id`` key is exposed as ``id``.
    Datetimes are left for FastAPI's encoder.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [to_json(item) for item in value]
    if isinstance(value, dict):
        return {("id" if key == "_id" else key): to_json(item) for key, item in value.items()}
    return value


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.utcnow()
    data_to_insert = {**data, "createdAt": now, "updatedAt": now}
    result = await db[collection_name].insert_one(data_to_insert)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return inserted or {}


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
    limit: int = 0,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    filter_dict = filter_dict or {}
    cursor = db[collection_name].find(filter_dict, projection, sort=sort, skip=skip, limit=limit)
    docs: List[Dict[str, Any]] = []
    async for doc in cursor:
        docs.append(doc)
    return docs


async def aggregate(db: AsyncIOMotorDatabase, collection_name: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    results: List[Dict[str, Any]] = []
    async for row in db[collection_name].aggregate(pipeline):
        results.append(row)
    return results


async def get_or_404(db: AsyncIOMotorDatabase, collection_name: str, doc_id: Any, label: str) -> Dict[str, Any]:
    doc = await db[collection_name].find_one({"_id": parse_object_id(doc_id, f"{label.lower()} ID")})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc
