import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from courses import search_filter
from database import COMPANIES, COURSES, PAYMENTS, USERS, aggregate, create_document, get_db, get_documents, get_or_404
from envelope import ok
from schemas import CompanyCreate, CompanyUpdate
from security import get_main_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/companies", tags=["companies"])

DUPLICATE_NAME = "Company with this name already exists"


async def ensure_unique_name(db: AsyncIOMotorDatabase, name: str, exclude_id=None) -> None:
    query = {"name": name}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db[COMPANIES].find_one(query):
        raise HTTPException(status_code=409, detail=DUPLICATE_NAME)


@router.get("")
async def list_companies(
    search: Optional[str] = None,
    status: Optional[Literal["active", "inactive"]] = None,
    admin: dict = Depends(get_main_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = search_filter(search, "name", "description", "contactEmail")
    if status:
        query["isActive"] = status == "active"
    companies = await get_documents(db, COMPANIES, query, sort=[("createdAt", -1)])
    return ok(companies, count=len(companies))


@router.post("", status_code=201)
async def create_company(body: CompanyCreate, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    await ensure_unique_name(db, body.name)
    try:
        company = await create_document(db, COMPANIES, {
            "name": body.name,
            "description": body.description,
            "contactEmail": body.contact_email,
            "contactPhone": body.contact_phone,
            "isActive": True,
            "revenueSharePercent": body.revenue_share_percent,
            "createdBy": admin["_id"],
        })
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail=DUPLICATE_NAME)
    logger.info("Company %s created by %s", company["name"], admin["email"])
    return ok(company, message="Company created successfully")


@router.put("/{company_id}")
async def update_company(
    company_id: str,
    body: CompanyUpdate,
    admin: dict = Depends(get_main_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    company = await get_or_404(db, COMPANIES, company_id, "Company")
    updates = body.model_dump(exclude_none=True, by_alias=True)
    if "name" in updates and updates["name"] != company["name"]:
        await ensure_unique_name(db, updates["name"], exclude_id=company["_id"])
    updates["updatedAt"] = datetime.utcnow()
    try:
        updated = await db[COMPANIES].find_one_and_update(
            {"_id": company["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail=DUPLICATE_NAME)
    return ok(updated, message="Company updated successfully")


@router.put("/{company_id}/toggle-status")
async def toggle_company_status(
    company_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)
):
    company = await get_or_404(db, COMPANIES, company_id, "Company")
    updated = await db[COMPANIES].find_one_and_update(
        {"_id": company["_id"]},
        {"$set": {"isActive": not company.get("isActive", True), "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    state = "activated" if updated["isActive"] else "deactivated"
    return ok(updated, message=f"Company {state} successfully")


@router.get("/{company_id}/stats")
async def company_stats(company_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    company = await get_or_404(db, COMPANIES, company_id, "Company")
    revenue = await aggregate(db, PAYMENTS, [
        {"$match": {"companyId": company["_id"], "status": "completed"}},
        {"$group": {"_id": None, "total": {"$sum": "$companyShare"}, "count": {"$sum": 1}}},
    ])
    return ok({
        "company": company,
        "adminCount": await db[USERS].count_documents({"companyId": company["_id"], "isAdmin": True}),
        "courseCount": await db[COURSES].count_documents({"companyId": company["_id"]}),
        "totalRevenue": (revenue[0]["total"] or 0) if revenue else 0,
        "totalPayments": revenue[0]["count"] if revenue else 0,
    })


@router.delete("/{company_id}")
async def delete_company(company_id: str, admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    company = await get_or_404(db, COMPANIES, company_id, "Company")
    courses = await db[COURSES].count_documents({"companyId": company["_id"]})
    admins = await db[USERS].count_documents({"companyId": company["_id"], "isAdmin": True})
    if courses or admins:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete company: {courses} course(s) and {admins} admin(s) still reference it",
        )
    await db[COMPANIES].delete_one({"_id": company["_id"]})
    logger.info("Company %s deleted by %s", company["name"], admin["email"])
    return ok({"id": company["_id"]}, message="Company deleted successfully")
