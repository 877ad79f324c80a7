from __future__ import annotations

import logging
import sqlite3

from common.utils import page_offset, total_pages
from pydantic import ValidationError as PydanticValidationError

from ats.cache import VersionedJobCache
from ats.errors import (
    Conflict,
    DuplicateRecordError,
    InternalError,
    NotFound,
    ProfileRequired,
    Unauthorized,
    ValidationError,
)
from ats.models import (
    ApplicationDetail,
    ApplicationListing,
    ApplicationStatus,
    CandidateProfile,
    Job,
    JobListing,
    LoginResponse,
    Pagination,
    Role,
    TokenPair,
    User,
)
from ats.repository import ApplicationFilter, AtsRepository, JobFilter
from ats.security import PasswordHasher, TokenIssuer

MAX_PAGE_SIZE = 100
JOBS_QUERY_FAILED = "Failed to retrieve jobs from the database."
ALREADY_APPLIED = "You have already applied for this job"
PROFILE_EXISTS = "Candidate profile already exists"
EMAIL_EXISTS = "Email already exists"
INVALID_CREDENTIALS = "Invalid credentials"

LOGGER = logging.getLogger("ats.services")


def validate_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be greater than or equal to 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


class JobService:
    def __init__(self, repository: AtsRepository, cache: VersionedJobCache) -> None:
        self.repository = repository
        self.cache = cache

    def create_job(
        self,
        *,
        title: str,
        description: str,
        location: str,
        salary_range: str,
    ) -> Job:
        job = self.repository.create_job(
            title=title,
            description=description,
            location=location,
            salary_range=salary_range,
        )
        self.cache.bump_version()
        return job

    def get_job(self, job_id: int) -> Job:
        job = self.repository.get_job(job_id)
        if job is None:
            raise NotFound("Job not found")
        return job

    def list_jobs(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        location: str | None = None,
    ) -> JobListing:
        validate_page(page, limit)

        cache_key: str | None = None
        version = self.cache.current_version()
        if version is not None:
            cache_key = self.cache.key_for(version, page, limit, search, location)
            cached = self.cache.get_listing(cache_key)
            if cached is not None:
                try:
                    return JobListing.model_validate(cached)
                except PydanticValidationError as exc:
                    LOGGER.warning("Ignoring malformed cached listing %s: %s", cache_key, exc)

        job_filter = JobFilter(search=search or None, location=location or None)
        try:
            jobs = self.repository.list_jobs(
                job_filter,
                offset=page_offset(page, limit),
                limit=limit,
            )
            total = self.repository.count_jobs(job_filter)
        except sqlite3.Error as exc:
            LOGGER.exception("Job listing query failed")
            raise InternalError(JOBS_QUERY_FAILED) from exc

        listing = JobListing(
            jobs=jobs,
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                total_pages=total_pages(total, limit),
            ),
        )
        if cache_key is not None:
            self.cache.store_listing(cache_key, listing.model_dump(mode="json"))
        return listing


class CandidateService:
    def __init__(self, repository: AtsRepository) -> None:
        self.repository = repository

    def register_candidate(
        self,
        user_id: int,
        *,
        full_name: str,
        phone: str | None = None,
        resume_url: str | None = None,
    ) -> CandidateProfile:
        if self.repository.get_candidate_by_user(user_id) is not None:
            raise Conflict(PROFILE_EXISTS)
        if self.repository.get_user(user_id) is None:
            raise NotFound("User not found")
        try:
            return self.repository.create_candidate(
                user_id=user_id,
                full_name=full_name,
                phone=phone,
                resume_url=resume_url,
            )
        except DuplicateRecordError as exc:
            raise Conflict(PROFILE_EXISTS) from exc


class ApplicationService:
    def __init__(self, repository: AtsRepository) -> None:
        self.repository = repository

    def _detail(self, application_id: int) -> ApplicationDetail:
        application = self.repository.get_application(application_id)
        if application is None:
            raise NotFound("Application not found")
        job = self.repository.get_job(application.job_id)
        candidate = self.repository.get_candidate_profile(application.candidate_id)
        if job is None or candidate is None:
            raise InternalError("Application references a missing job or candidate")
        return ApplicationDetail(**application.model_dump(), job=job, candidate=candidate)

    def create_application(self, job_id: int, user_id: int) -> ApplicationDetail:
        candidate = self.repository.get_candidate_by_user(user_id)
        if candidate is None:
            raise ProfileRequired("Please complete your candidate profile first")

        if self.repository.get_job(job_id) is None:
            raise NotFound("Job not found")

        if self.repository.find_application(job_id=job_id, candidate_id=candidate.id):
            raise Conflict(ALREADY_APPLIED)

        try:
            application = self.repository.create_application(
                job_id=job_id,
                candidate_id=candidate.id,
                status=ApplicationStatus.APPLIED,
            )
        except DuplicateRecordError as exc:
            # Lost the race against a concurrent identical request.
            raise Conflict(ALREADY_APPLIED) from exc
        return self._detail(application.id)

    def update_application_status(
        self,
        application_id: int,
        status: ApplicationStatus,
    ) -> ApplicationDetail:
        updated = self.repository.update_application_status(application_id, status)
        if updated is None:
            raise NotFound("Application not found")
        return self._detail(updated.id)

    def list_applications(
        self,
        *,
        user_id: int,
        role: Role,
        page: int = 1,
        limit: int = 10,
        job_id: int | None = None,
        status: ApplicationStatus | None = None,
    ) -> ApplicationListing:
        validate_page(page, limit)
        application_filter = ApplicationFilter(
            job_id=job_id,
            status=status,
            candidate_user_id=user_id if role == Role.CANDIDATE else None,
        )
        applications = self.repository.list_applications(
            application_filter,
            offset=page_offset(page, limit),
            limit=limit,
        )
        total = self.repository.count_applications(application_filter)
        return ApplicationListing(
            applications=applications,
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                total_pages=total_pages(total, limit),
            ),
        )


class AuthService:
    def __init__(
        self,
        repository: AtsRepository,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
    ) -> None:
        self.repository = repository
        self.hasher = hasher
        self.tokens = tokens

    def _create_user(self, *, email: str, name: str, password: str, role: Role) -> User:
        try:
            user = self.repository.create_user(
                email=email,
                name=name,
                password_hash=self.hasher.hash(password),
                role=role,
            )
        except DuplicateRecordError as exc:
            raise Conflict(EMAIL_EXISTS) from exc
        return user.public()

    def signup(self, *, email: str, name: str, password: str) -> User:
        if self.repository.get_user_by_email(email) is not None:
            raise Conflict(EMAIL_EXISTS)
        user = self._create_user(email=email, name=name, password=password, role=Role.CANDIDATE)
        LOGGER.info("Created user id=%s role=%s", user.id, user.role)
        return user

    def create_admin(self, *, email: str, name: str, password: str) -> tuple[User, bool]:
        existing = self.repository.get_user_by_email(email)
        if existing is not None:
            return existing.public(), False
        user = self._create_user(email=email, name=name, password=password, role=Role.ADMIN)
        LOGGER.info("Created admin user id=%s", user.id)
        return user, True

    def login(self, *, email: str, password: str) -> LoginResponse:
        user = self.repository.get_user_by_email(email)
        if user is None or not self.hasher.verify(password, user.password_hash):
            raise Unauthorized(INVALID_CREDENTIALS)
        public = user.public()
        return LoginResponse(user=public, **self.tokens.issue(public).model_dump())

    def refresh(self, refresh_token: str) -> TokenPair:
        user_id = self.tokens.refresh_subject(refresh_token)
        user = self.repository.get_user(user_id)
        if user is None:
            raise Unauthorized("Invalid refresh token")
        return self.tokens.issue(user.public())
