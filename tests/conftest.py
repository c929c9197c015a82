"""
Shared fixtures: an in-memory motor database, storage and mail doubles,
document factories and a TestClient bound to a freshly built app.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from access import add_months, new_progress
from database import COMPANIES, COURSES, PAYMENTS, USERS, create_document
from envelope import ExternalServiceError
from mail_service import Mailer
from main import create_app
from security import create_admin_token, create_user_token, get_password_hash
from storage import ObjectStorage

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)


# ===== DOUBLES =====

class FakeStorage(ObjectStorage):
    """Keeps uploads in memory under the same URL scheme as the CDN."""

    def __init__(self):
        super().__init__(storage_zone="test-zone", api_key="test-key", pull_zone="cdn.test")
        self.files: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_deletes = False

    def upload(self, folder: str, filename: str, content: bytes) -> str:
        url = f"{self.public_base}/{folder}/{filename}"
        self.files[url] = content
        return url

    def delete(self, url: Optional[str]) -> bool:
        if not self.owns(url):
            return False
        if self.fail_deletes:
            raise ExternalServiceError("File delete failed")
        self.deleted.append(url)
        return self.files.pop(url, None) is not None


class FakeMailer(Mailer):
    def __init__(self):
        super().__init__(username="", password="")
        self.outbox: List[Dict[str, Any]] = []

    async def send(self, to, subject, body, reply_to=None):
        self.outbox.append({"to": to, "subject": subject, "body": body, "replyTo": reply_to})


# ===== FACTORIES =====

def entitlement(course_id: ObjectId, granted_at: datetime, months: int = 12) -> dict:
    return {"course": course_id, "grantedAt": granted_at, "durationMonths": months, "expiresAt": add_months(granted_at, months)}


def expired_entitlement(course_id: ObjectId, days_ago: int = 1) -> dict:
    expires_at = datetime.utcnow() - timedelta(days=days_ago)
    return {"course": course_id, "grantedAt": add_months(expires_at, -12), "durationMonths": 12, "expiresAt": expires_at}


class Factory:
    def __init__(self, db):
        self.db = db

    async def user(self, email="student@example.com", name="Sam", courses=(), expired=(), **extra) -> dict:
        now = datetime.utcnow()
        purchased = [entitlement(c["_id"], now) for c in courses] + [expired_entitlement(c["_id"]) for c in expired]
        document = {
            "name": name,
            "surname": "Tester",
            "email": email,
            "password": PASSWORD_HASH,
            "isAdmin": False,
            "adminRole": None,
            "companyId": None,
            "status": "active",
            "image": None,
            "purchasedCourses": purchased,
            "courseProgress": [new_progress(e["course"], now) for e in purchased],
        }
        document.update(extra)
        return await create_document(self.db, USERS, document)

    async def admin(self, email="admin@example.com", role="main", company=None) -> dict:
        return await self.user(
            email=email,
            name="Admin",
            isAdmin=True,
            adminRole=role,
            companyId=company["_id"] if company else None,
        )

    async def company(self, name="Acme Academy", share=70) -> dict:
        return await create_document(self.db, COMPANIES, {
            "name": name,
            "description": "",
            "contactEmail": None,
            "contactPhone": None,
            "isActive": True,
            "revenueSharePercent": share,
            "createdBy": None,
        })

    async def course(
        self, title="Python Basics", price=100000, type="pack", videos=2, company=None, **extra
    ) -> dict:
        slug = title.lower().replace(" ", "-")
        document = {
            "title": title,
            "slug": slug,
            "description": f"{title} course",
            "type": type,
            "thumbnail": f"https://cdn.test/thumbnails/{slug}.png",
            "videos": [
                {"_id": ObjectId(), "title": f"Lesson {i + 1}", "url": f"https://cdn.test/videos/{slug}-{i}.mp4",
                 "duration": "10:00", "order": i}
                for i in range(videos)
            ],
            "price": price,
            "isActive": True,
            "category": "Programming",
            "instructor": "Jane",
            "level": "beginner",
            "totalDuration": "2 hours",
            "studentsEnrolled": 0,
            "accessDurationMonths": 12,
            "companyId": company["_id"] if company else None,
        }
        document.update(extra)
        return await create_document(self.db, COURSES, document)

    async def payment(self, amount, date, company=None, company_share=None, status="completed", **extra) -> dict:
        document = {
            "userId": ObjectId(),
            "userName": "Sam Tester",
            "userEmail": "student@example.com",
            "courseId": ObjectId(),
            "courseSlug": "python-basics",
            "courseTitle": "Python Basics",
            "amount": amount,
            "companyId": company["_id"] if company else None,
            "companyShare": company_share,
            "platformShare": amount - (company_share or 0),
            "method": "Telegram",
            "status": status,
            "date": date,
        }
        document.update(extra)
        return await create_document(self.db, PAYMENTS, document)

    async def get(self, collection: str, doc_id: ObjectId) -> dict:
        return await self.db[collection].find_one({"_id": doc_id})

    async def find_user(self, email: str) -> Optional[dict]:
        return await self.db[USERS].find_one({"email": email})

    async def insert(self, collection: str, document: dict) -> dict:
        return await create_document(self.db, collection, document)

    async def count(self, collection: str, query: Optional[dict] = None) -> int:
        return await self.db[collection].count_documents(query or {})


class SyncFactory:
    """Factory facade for synchronous HTTP tests."""

    def __init__(self, factory: Factory):
        self._factory = factory

    def __getattr__(self, name):
        method = getattr(self._factory, name)

        def call(*args, **kwargs):
            return asyncio.run(method(*args, **kwargs))

        return call


# ===== FIXTURES =====

@pytest.fixture
def db():
    return AsyncMongoMockClient()["course_platform_test"]


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def seed(factory):
    return SyncFactory(factory)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(db, storage, mailer):
    return create_app(database=db, storage=storage, mailer=mailer)


@pytest.fixture
def user_headers():
    return lambda user: {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
def admin_headers():
    return lambda admin: {"Authorization": f"Bearer {create_admin_token(admin)}"}


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
