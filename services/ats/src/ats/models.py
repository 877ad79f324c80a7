from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, HttpUrl, field_validator


class Role(StrEnum):
    ADMIN = "ADMIN"
    CANDIDATE = "CANDIDATE"


class ApplicationStatus(StrEnum):
    APPLIED = "Applied"
    SHORT_LISTED = "Short_listed"
    INTERVIEWING = "Interviewing"
    OFFERED = "Offered"
    HIRED = "Hired"
    REJECTED = "Rejected"


class User(BaseModel):
    id: int
    email: str
    name: str
    role: Role
    created_at: str


class UserRecord(User):
    password_hash: str

    def public(self) -> User:
        return User(**self.model_dump(exclude={"password_hash"}))


class Job(BaseModel):
    id: int
    title: str
    description: str
    location: str
    salary_range: str
    created_at: str


class Candidate(BaseModel):
    id: int
    user_id: int
    full_name: str
    phone: str | None = None
    resume_url: str | None = None
    created_at: str


class CandidateProfile(Candidate):
    email: str


class Application(BaseModel):
    id: int
    job_id: int
    candidate_id: int
    status: ApplicationStatus
    applied_at: str
    updated_at: str


class ApplicationDetail(Application):
    job: Job
    candidate: CandidateProfile


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class JobListing(BaseModel):
    jobs: list[Job]
    pagination: Pagination


class ApplicationListing(BaseModel):
    applications: list[Application]
    pagination: Pagination


class AuthenticatedUser(BaseModel):
    id: int
    email: str
    role: Role


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"


class LoginResponse(TokenPair):
    user: User


# Request payloads


class SignupRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120)
    password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class JobCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1, max_length=200)
    salary_range: str = Field(..., min_length=1, max_length=100)


class CandidateRegisterRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    phone: str | None = Field(default=None, max_length=40)
    resume_url: HttpUrl | None = None

    @field_validator("phone", "resume_url", mode="before")
    @classmethod
    def blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ApplicationCreateRequest(BaseModel):
    job_id: int = Field(..., ge=1)


class ApplicationListQuery(BaseModel):
    """Optional filters for the applications listing; blank values mean no filter."""

    job_id: int | None = Field(default=None, ge=1)
    status: ApplicationStatus | None = None

    @field_validator("job_id", "status", mode="before")
    @classmethod
    def blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ApplicationStatusUpdateRequest(BaseModel):
    # Applied is only ever set on creation.
    status: Literal["Short_listed", "Interviewing", "Offered", "Hired", "Rejected"]


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]
