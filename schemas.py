from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel

import config

# Request bodies arrive with the camelCase keys the clients already send.

AdminRole = Literal["main", "company"]
UserStatus = Literal["active", "suspended"]
CourseType = Literal["single", "pack"]
CourseLevel = Literal["beginner", "intermediate", "advanced"]
PaymentStatus = Literal["completed", "pending", "failed"]
Audience = Literal["all", "premium", "free", "notLoggedIn"]
VideoAccess = Literal["free", "premium"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# Accounts

class SignupRequest(CamelModel):
    name: str = Field(min_length=1)
    surname: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class EmailRequest(CamelModel):
    email: EmailStr


class VerifyCodeRequest(CamelModel):
    email: EmailStr
    code: str


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    code: str
    new_password: str = Field(min_length=6)


class EmailChangeRequest(CamelModel):
    new_email: EmailStr
    current_password: str


class ConfirmCodeRequest(CamelModel):
    code: str = Field(min_length=1)


class PasswordChangeRequest(CamelModel):
    current_password: str
    new_password: str = Field(min_length=8)


class UserCreate(CamelModel):
    name: str = Field(min_length=1)
    surname: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)


class CompanyAdminCreate(UserCreate):
    company_id: str


class CourseAccessRequest(CamelModel):
    course_id: Optional[str] = None
    course_slug: Optional[str] = None
    method: str = config.DEFAULT_PAYMENT_METHOD

    @model_validator(mode="after")
    def check_course_reference(self):
        if not self.course_id and not self.course_slug:
            raise ValueError("courseId or courseSlug is required")
        return self


# Courses

class ProgressUpdate(CamelModel):
    video_id: str = Field(min_length=1)
    is_completed: bool = True


class VideoUpdate(CamelModel):
    title: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[str] = None
    order: Optional[int] = Field(default=None, ge=0)


class VideoOrder(CamelModel):
    video_id: str
    order: int = Field(ge=0)


class VideoOrderRequest(CamelModel):
    video_orders: List[VideoOrder]


# Companies

class CompanyCreate(CamelModel):
    name: str = Field(min_length=1)
    description: str = ""
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    revenue_share_percent: float = Field(default=config.DEFAULT_COMPANY_SHARE, ge=0, le=100)


class CompanyUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    is_active: Optional[bool] = None
    revenue_share_percent: Optional[float] = Field(default=None, ge=0, le=100)


# Announcements

class AnnouncementCreate(CamelModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    audience: Audience = "all"
    expiry_date: Optional[datetime] = None


# Reviews, contact

class ReviewCreate(CamelModel):
    name: str = "Guest User"
    rating: int = Field(ge=1, le=5)
    feedback: str = Field(min_length=1)


class ReviewUpdate(CamelModel):
    name: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    feedback: Optional[str] = None


class ContactMessage(CamelModel):
    name: str = Field(min_length=1)
    email: EmailStr
    message: str = Field(min_length=1)
