import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import EmailStr

import config
from database import PROJECTS, create_document, get_db
from envelope import ok
from storage import ObjectStorage, get_storage, unique_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.post("/upload", status_code=201)
async def upload_project(
    name: str = Form(..., min_length=1),
    email: EmailStr = Form(...),
    file: UploadFile = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="File is required")
    content = await file.read(config.MAX_PROJECT_FILE_SIZE + 1)
    if len(content) > config.MAX_PROJECT_FILE_SIZE:
        raise HTTPException(status_code=400, detail="File is too large")
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")

    file_url = await run_in_threadpool(storage.upload, "projects", unique_name("project", file.filename), content)
    project = await create_document(db, PROJECTS, {"name": name.strip(), "email": email.lower(), "fileUrl": file_url})
    logger.info("Project file received from %s", project["email"])
    return ok(project, message="File uploaded successfully")
