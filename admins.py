import logging

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

import config
from auth import insert_user, new_user_document
from database import COMPANIES, USERS, get_db, get_documents, get_or_404
from envelope import ok
from schemas import CompanyAdminCreate, LoginRequest
from security import create_admin_token, get_main_admin, verify_password

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/admin/auth", tags=["admin auth"])
router = APIRouter(prefix="/api/admin/admins", tags=["admins"])


def admin_view(admin: dict) -> dict:
    return {
        "_id": admin["_id"],
        "name": admin.get("name"),
        "surname": admin.get("surname", ""),
        "email": admin["email"],
        "adminRole": admin.get("adminRole") or "main",
        "companyId": admin.get("companyId"),
        "status": admin.get("status", "active"),
        "createdAt": admin.get("createdAt"),
    }


async def seed_main_admin(db: AsyncIOMotorDatabase) -> None:
    """Create or promote the main administrator configured in the environment."""
    if not config.ADMIN_EMAIL or not config.ADMIN_PASSWORD:
        logger.info("ADMIN_EMAIL/ADMIN_PASSWORD not set; skipping admin seed")
        return
    email = config.ADMIN_EMAIL.strip().lower()
    existing = await db[USERS].find_one({"email": email})
    if existing:
        if not existing.get("isAdmin") or existing.get("adminRole") not in (None, "main"):
            await db[USERS].update_one({"_id": existing["_id"]}, {"$set": {"isAdmin": True, "adminRole": "main"}})
            logger.info("Promoted %s to main admin", email)
        return
    await insert_user(
        db, new_user_document(config.ADMIN_NAME, "", email, config.ADMIN_PASSWORD, isAdmin=True, adminRole="main")
    )
    logger.info("Seeded main admin %s", email)


@auth_router.post("/login")
async def admin_login(body: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    admin = await db[USERS].find_one({"email": body.email.lower(), "isAdmin": True})
    if not admin or not verify_password(body.password, admin.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid admin credentials")
    if admin.get("status") == "suspended":
        raise HTTPException(status_code=401, detail="User account is suspended")
    logger.info("Admin login: %s", admin["email"])
    return ok({"token": create_admin_token(admin), "admin": admin_view(admin)}, message="Login successful")


@router.get("")
async def list_admins(admin: dict = Depends(get_main_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    admins = await get_documents(db, USERS, {"isAdmin": True}, sort=[("createdAt", -1)])
    return ok([admin_view(a) for a in admins], count=len(admins))


@router.post("", status_code=201)
async def create_company_admin(
    body: CompanyAdminCreate,
    admin: dict = Depends(get_main_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    company = await get_or_404(db, COMPANIES, body.company_id, "Company")
    created = await insert_user(
        db,
        new_user_document(
            body.name, body.surname, body.email, body.password,
            isAdmin=True, adminRole="company", companyId=company["_id"],
        ),
    )
    logger.info("Admin %s created company admin %s for %s", admin["email"], created["email"], company["name"])
    return ok(admin_view(created), message="Company admin created successfully")

