from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

import config
from courses import search_filter
from database import PAYMENTS, aggregate, get_db, get_documents
from envelope import ok
from revenue import (
    MONTH_NAMES,
    date_filter,
    format_change,
    payment_scope,
    percent_change,
    period_bounds,
    previous_period,
    revenue_field,
    trend,
)
from schemas import PaymentStatus
from security import get_current_admin, is_company_admin

router = APIRouter(prefix="/api/admin/payments", tags=["payments"])


def payment_row(payment: dict, admin: dict) -> dict:
    row = {
        "_id": payment["_id"],
        "userId": payment.get("userId"),
        "userName": payment.get("userName"),
        "userEmail": payment.get("userEmail"),
        "courseId": payment.get("courseId"),
        "courseTitle": payment.get("courseTitle"),
        "courseSlug": payment.get("courseSlug"),
        "method": payment.get("method"),
        "status": payment.get("status"),
        "date": payment.get("date"),
        "companyId": payment.get("companyId"),
    }
    if is_company_admin(admin):
        row["amount"] = payment.get("companyShare") or 0
    else:
        row.update(
            amount=payment.get("amount", 0),
            totalAmount=payment.get("amount", 0),
            companyShare=payment.get("companyShare"),
            platformShare=payment.get("platformShare"),
        )
    return row


async def sum_revenue(db: AsyncIOMotorDatabase, query: dict, field: str) -> dict:
    rows = await aggregate(db, PAYMENTS, [
        {"$match": query},
        {"$group": {"_id": None, "total": {"$sum": field}, "count": {"$sum": 1}}},
    ])
    if not rows:
        return {"total": 0, "count": 0}
    return {"total": rows[0]["total"] or 0, "count": rows[0]["count"]}


@router.get("")
async def list_payments(
    month: Optional[int] = None,
    year: Optional[int] = None,
    status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    company_id: Optional[str] = Query(None, alias="companyId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = {
        **payment_scope(admin, company_id),
        **date_filter(period_bounds(month, year)),
        **search_filter(search, "userName", "userEmail", "courseTitle"),
    }
    if status:
        query["status"] = status

    total = await db[PAYMENTS].count_documents(query)
    payments = await get_documents(
        db, PAYMENTS, query, sort=[("date", -1)], skip=(page - 1) * limit, limit=limit
    )
    return ok(
        [payment_row(p, admin) for p in payments],
        pagination={"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    )


@router.get("/stats")
async def payment_stats(
    month: Optional[int] = None,
    year: Optional[int] = None,
    company_id: Optional[str] = Query(None, alias="companyId"),
    admin: dict = Depends(get_current_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    scope = payment_scope(admin, company_id)
    period = period_bounds(month, year)
    field = revenue_field(admin)
    query = {**scope, **date_filter(period)}
    completed = {**query, "status": "completed"}

    current = await sum_revenue(db, completed, field)
    previous = previous_period(month, year)
    change = 0
    if previous is not None:
        before = await sum_revenue(db, {**scope, **date_filter(previous), "status": "completed"}, field)
        change = percent_change(current["total"], before["total"])

    payers = await db[PAYMENTS].distinct("userId", completed)
    top_courses = await aggregate(db, PAYMENTS, [
        {"$match": completed},
        {"$group": {
            "_id": "$courseId",
            "title": {"$first": "$courseTitle"},
            "revenue": {"$sum": field},
            "sales": {"$sum": 1},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": 10},
    ])

    return ok({
        "totalRevenue": current["total"],
        "completedPayments": current["count"],
        "totalPayments": await db[PAYMENTS].count_documents(query),
        "pendingPayments": await db[PAYMENTS].count_documents({**query, "status": "pending"}),
        "failedPayments": await db[PAYMENTS].count_documents({**query, "status": "failed"}),
        "uniqueUsers": len(payers),
        "topCourses": [{"courseId": c["_id"], "title": c["title"], "revenue": c["revenue"], "sales": c["sales"]}
                       for c in top_courses],
        "revenueChange": format_change(change),
        "trend": trend(change),
        "currency": config.CURRENCY,
    })


@router.get("/months")
async def payment_months(admin: dict = Depends(get_current_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    since = datetime.utcnow() - timedelta(days=365)
    rows = await aggregate(db, PAYMENTS, [
        {"$match": {**payment_scope(admin), "date": {"$gte": since}}},
        {"$group": {"_id": {"year": {"$year": "$date"}, "month": {"$month": "$date"}}, "count": {"$sum": 1}}},
        {"$sort": {"_id.year": -1, "_id.month": -1}},
    ])
    months = [
        {
            "year": row["_id"]["year"],
            "month": row["_id"]["month"],
            "monthName": MONTH_NAMES[row["_id"]["month"] - 1],
            "displayName": f"{MONTH_NAMES[row['_id']['month'] - 1]} {row['_id']['year']}",
            "count": row["count"],
        }
        for row in rows
        if row["_id"]
    ]
    return ok(months)
