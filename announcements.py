import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from access import active_entitlements
from database import ANNOUNCEMENTS, NOTIFICATION_STATUSES, create_document, get_db, get_documents, get_or_404
from envelope import ok
from notifications import Broadcaster, get_broadcaster
from schemas import AnnouncementCreate
from security import get_current_user, get_main_admin, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/announcements", tags=["announcements"])


def audiences_for(user: Optional[dict], now: datetime) -> List[str]:
    if user is None:
        return ["all", "notLoggedIn"]
    return ["all", "premium" if active_entitlements(user, now) else "free"]


def visible_query(user: Optional[dict], now: datetime) -> dict:
    return {
        "status": "active",
        "audience": {"$in": audiences_for(user, now)},
        "$or": [{"expiryDate": None}, {"expiryDate": {"$gt": now}}],
    }


async def mark_read(db: AsyncIOMotorDatabase, user_id, announcement_id) -> None:
    await db[NOTIFICATION_STATUSES].update_one(
        {"userId": user_id, "announcementId": announcement_id},
        {"$set": {"read": True, "updatedAt": datetime.utcnow()}},
        upsert=True,
    )


@router.get("")
async def list_announcements(
    user: Optional[dict] = Depends(get_optional_user), db: AsyncIOMotorDatabase = Depends(get_db)
):
    now = datetime.utcnow()
    announcements = await get_documents(db, ANNOUNCEMENTS, visible_query(user, now), sort=[("createdDate", -1)])

    read_ids = set()
    if user is not None and announcements:
        statuses = await get_documents(db, NOTIFICATION_STATUSES, {
            "userId": user["_id"],
            "announcementId": {"$in": [a["_id"] for a in announcements]},
            "read": True,
        })
        read_ids = {s["announcementId"] for s in statuses}

    items = [{**a, "read": a["_id"] in read_ids} for a in announcements]
    return ok(items, count=len(items), unread=sum(1 for i in items if not i["read"]))


@router.post("", status_code=201)
async def create_announcement(
    body: AnnouncementCreate,
    background_tasks: BackgroundTasks,
    admin: dict = Depends(get_main_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    announcement = await create_document(db, ANNOUNCEMENTS, {
        "title": body.title,
        "content": body.content,
        "audience": body.audience,
        "status": "active",
        "expiryDate": body.expiry_date,
        "createdDate": datetime.utcnow(),
    })
    background_tasks.add_task(broadcaster.broadcast, "newNotification", announcement)
    logger.info("Announcement '%s' published to %s", announcement["title"], announcement["audience"])
    return ok(announcement, message="Announcement created successfully")


@router.patch("/toggle/{announcement_id}")
async def toggle_announcement(
    announcement_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)
):
    announcement = await get_or_404(db, ANNOUNCEMENTS, announcement_id, "Announcement")
    new_status = "inactive" if announcement.get("status") == "active" else "active"
    updated = await db[ANNOUNCEMENTS].find_one_and_update(
        {"_id": announcement["_id"]},
        {"$set": {"status": new_status, "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return ok(updated, message=f"Announcement {new_status}")


@router.delete("/{announcement_id}")
async def delete_announcement(
    announcement_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)
):
    announcement = await get_or_404(db, ANNOUNCEMENTS, announcement_id, "Announcement")
    await db[ANNOUNCEMENTS].delete_one({"_id": announcement["_id"]})
    await db[NOTIFICATION_STATUSES].delete_many({"announcementId": announcement["_id"]})
    return ok({"id": announcement["_id"]}, message="Announcement deleted successfully")


@router.put("/mark-all-read")
async def mark_all_read(current_user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)):
    announcements = await get_documents(
        db, ANNOUNCEMENTS, visible_query(current_user, datetime.utcnow()), projection={"_id": 1}
    )
    for announcement in announcements:
        await mark_read(db, current_user["_id"], announcement["_id"])
    return ok({"marked": len(announcements)}, message="All announcements marked as read")


@router.put("/{announcement_id}/read")
async def mark_announcement_read(
    announcement_id: str, current_user: dict = Depends(get_current_user), db: AsyncIOMotorDatabase = Depends(get_db)
):
    announcement = await get_or_404(db, ANNOUNCEMENTS, announcement_id, "Announcement")
    await mark_read(db, current_user["_id"], announcement["_id"])
    return ok({"id": announcement["_id"], "read": True}, message="Announcement marked as read")
