from datetime import datetime, timedelta
from typing import List, Tuple

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

import config
from database import COURSES, PAYMENTS, USERS, aggregate, get_db
from envelope import ok
from revenue import MONTH_NAMES, format_change, month_bounds, percent_change, previous_period, trend
from security import get_main_admin

router = APIRouter(prefix="/api/admin/dashboard", tags=["dashboard"])

SITE_USERS = {"isAdmin": {"$ne": True}}


def last_twelve_months(today: datetime) -> List[Tuple[int, int]]:
    """(year, month) pairs, oldest first, ending with the current month."""
    months = []
    year, month = today.year, today.month
    for _ in range(12):
        months.append((year, month))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return list(reversed(months))


async def monthly_series(db: AsyncIOMotorDatabase, collection: str, match: dict, field: str, value) -> dict:
    rows = await aggregate(db, collection, [
        {"$match": match},
        {"$group": {"_id": {"year": {"$year": f"${field}"}, "month": {"$month": f"${field}"}}, "value": {"$sum": value}}},
    ])
    return {(row["_id"]["year"], row["_id"]["month"]): row["value"] for row in rows if row["_id"]}


async def completed_revenue(db: AsyncIOMotorDatabase, start: datetime, end: datetime) -> float:
    rows = await aggregate(db, PAYMENTS, [
        {"$match": {"status": "completed", "date": {"$gte": start, "$lt": end}}},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}}},
    ])
    return (rows[0]["total"] or 0) if rows else 0


@router.get("/stats")
async def dashboard_stats(admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    now = datetime.utcnow()
    this_month = month_bounds(now.year, now.month)
    last_month = previous_period(now.month, now.year)

    total_users = await db[USERS].count_documents(SITE_USERS)
    new_this_month = await db[USERS].count_documents({**SITE_USERS, "createdAt": {"$gte": this_month[0], "$lt": this_month[1]}})
    new_last_month = await db[USERS].count_documents({**SITE_USERS, "createdAt": {"$gte": last_month[0], "$lt": last_month[1]}})
    user_growth = percent_change(new_this_month, new_last_month)

    premium_users = await db[USERS].count_documents(
        {**SITE_USERS, "purchasedCourses": {"$elemMatch": {"expiresAt": {"$gt": now}}}}
    )

    total_courses = await db[COURSES].count_documents({})
    new_courses = await db[COURSES].count_documents({"createdAt": {"$gte": now - timedelta(days=7)}})

    revenue = await completed_revenue(db, *this_month)
    revenue_change = percent_change(revenue, await completed_revenue(db, *last_month))

    months = last_twelve_months(now)
    chart_start = datetime(months[0][0], months[0][1], 1)
    registrations = await monthly_series(db, USERS, {**SITE_USERS, "createdAt": {"$gte": chart_start}}, "createdAt", 1)
    income = await monthly_series(
        db, PAYMENTS, {"status": "completed", "date": {"$gte": chart_start}}, "date", "$amount"
    )

    return ok({
        "totalUsers": {
            "value": total_users,
            "change": format_change(user_growth, "from last month"),
            "trend": trend(user_growth),
        },
        "premiumUsers": {
            "value": premium_users,
            "percentage": round(premium_users / total_users * 100, 1) if total_users else 0,
        },
        "totalCourses": {"value": total_courses, "newThisWeek": new_courses},
        "monthlyRevenue": {
            "value": revenue,
            "currency": config.CURRENCY,
            "change": format_change(revenue_change, "from last month"),
            "trend": trend(revenue_change),
        },
        "charts": {
            "userRegistrations": [
                {"month": MONTH_NAMES[m - 1], "year": y, "count": registrations.get((y, m), 0)} for y, m in months
            ],
            "revenue": [
                {"month": MONTH_NAMES[m - 1], "year": y, "amount": income.get((y, m), 0)} for y, m in months
            ],
        },
    })
