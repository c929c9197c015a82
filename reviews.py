from datetime import datetime

from fastapi import APIRouter, Depends, Response
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from database import REVIEWS, aggregate, create_document, get_db, get_documents, get_or_404
from envelope import ok
from schemas import ReviewCreate, ReviewUpdate

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


@router.post("", status_code=201)
async def create_review(body: ReviewCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    review = await create_document(db, REVIEWS, {
        "name": body.name or "Guest User",
        "rating": body.rating,
        "feedback": body.feedback,
        "date": datetime.utcnow(),
    })
    return ok(review, message="Review submitted successfully")


@router.get("")
async def list_reviews(db: AsyncIOMotorDatabase = Depends(get_db)):
    reviews = await get_documents(db, REVIEWS, sort=[("date", -1)])
    return ok(reviews, count=len(reviews))


@router.get("/average")
async def average_rating(db: AsyncIOMotorDatabase = Depends(get_db)):
    rows = await aggregate(db, REVIEWS, [
        {"$group": {"_id": None, "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ])
    if not rows or not rows[0]["count"] or rows[0]["average"] is None:
        return ok({"averageRating": 0, "totalReviews": 0})
    return ok({"averageRating": round(rows[0]["average"], 1), "totalReviews": rows[0]["count"]})


@router.get("/{review_id}")
async def get_review(review_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return ok(await get_or_404(db, REVIEWS, review_id, "Review"))


@router.put("/{review_id}")
async def update_review(review_id: str, body: ReviewUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    review = await get_or_404(db, REVIEWS, review_id, "Review")
    updates = {**body.model_dump(exclude_none=True), "updatedAt": datetime.utcnow()}
    updated = await db[REVIEWS].find_one_and_update(
        {"_id": review["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    return ok(updated, message="Review updated successfully")


@router.delete("/{review_id}", status_code=204)
async def delete_review(review_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    review = await get_or_404(db, REVIEWS, review_id, "Review")
    await db[REVIEWS].delete_one({"_id": review["_id"]})
    return Response(status_code=204)
