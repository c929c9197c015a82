import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorDatabase

import admin_courses
import admins
import announcements
import auth
import categories
import companies
import config
import contact
import courses
import dashboard
import notifications
import payments
import projects
import reviews
import user_profile
import users
import videos
from database import connect, ensure_indexes
from envelope import ok, register_exception_handlers
from mail_service import Mailer
from notifications import Broadcaster
from storage import ObjectStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.db is None:
        app.state.db = connect()
    await ensure_indexes(app.state.db)
    await admins.seed_main_admin(app.state.db)
    logger.info("Course platform API ready")
    yield


def create_app(
    database: Optional[AsyncIOMotorDatabase] = None,
    storage: Optional[ObjectStorage] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    app = FastAPI(title="Course Platform API", lifespan=lifespan)
    app.state.db = database
    app.state.storage = storage or ObjectStorage()
    app.state.mailer = mailer or Mailer()
    app.state.broadcaster = Broadcaster()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # Site
    app.include_router(auth.router)
    app.include_router(user_profile.router)
    app.include_router(courses.router)
    app.include_router(categories.router)
    app.include_router(videos.router)
    app.include_router(reviews.router)
    app.include_router(projects.router)
    app.include_router(contact.router)

    # Admin
    app.include_router(admins.auth_router)
    app.include_router(admins.router)
    app.include_router(admin_courses.router)
    app.include_router(users.router)
    app.include_router(payments.router)
    app.include_router(companies.router)
    app.include_router(dashboard.router)
    app.include_router(announcements.router)
    app.include_router(categories.admin_router)
    app.include_router(videos.admin_router)

    app.include_router(notifications.router)

    @app.get("/")
    async def root():
        return ok({"service": "course-platform-api"})

    @app.get("/ping")
    async def ping():
        return ok(message="pong")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config.configure_logging()
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT)
