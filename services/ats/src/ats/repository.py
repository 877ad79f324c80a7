from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from common.utils import escape_like, now_utc_iso

from ats.errors import DuplicateRecordError
from ats.models import (
    Application,
    ApplicationStatus,
    Candidate,
    CandidateProfile,
    Job,
    Role,
    UserRecord,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS candidates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    full_name TEXT NOT NULL,
    phone TEXT,
    resume_url TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    location TEXT NOT NULL,
    salary_range TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at);

CREATE TABLE IF NOT EXISTS applications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    candidate_id INTEGER NOT NULL REFERENCES candidates(id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (job_id, candidate_id)
);

CREATE INDEX IF NOT EXISTS idx_applications_applied_at ON applications(applied_at);
"""

LIKE_CLAUSE = "casefold({column}) LIKE ? ESCAPE '\\'"


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _contains_pattern(text: str) -> str:
    return f"%{escape_like(text.casefold())}%"


@dataclass(frozen=True)
class JobFilter:
    search: str | None = None
    location: str | None = None

    def where(self) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if self.search:
            pattern = _contains_pattern(self.search)
            clauses.append(
                f"({LIKE_CLAUSE.format(column='title')} "
                f"OR {LIKE_CLAUSE.format(column='description')})"
            )
            params.extend([pattern, pattern])
        if self.location:
            clauses.append(LIKE_CLAUSE.format(column="location"))
            params.append(_contains_pattern(self.location))
        return _join_clauses(clauses), params


@dataclass(frozen=True)
class ApplicationFilter:
    job_id: int | None = None
    status: ApplicationStatus | None = None
    candidate_user_id: int | None = None

    def where(self) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if self.job_id is not None:
            clauses.append("job_id = ?")
            params.append(self.job_id)
        if self.status is not None:
            clauses.append("status = ?")
            params.append(str(self.status))
        if self.candidate_user_id is not None:
            clauses.append("candidate_id IN (SELECT id FROM candidates WHERE user_id = ?)")
            params.append(self.candidate_user_id)
        return _join_clauses(clauses), params


def _join_clauses(clauses: list[str]) -> str:
    if not clauses:
        return ""
    return "WHERE " + " AND ".join(clauses)


class AtsRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.create_function("casefold", 1, _casefold, deterministic=True)
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.executescript(SCHEMA)
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def _insert(self, sql: str, params: tuple[Any, ...]) -> int:
        try:
            cursor = self.connection.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            self.connection.rollback()
            raise DuplicateRecordError(str(exc)) from exc
        self.connection.commit()
        return int(cursor.lastrowid)

    # Users

    def create_user(self, *, email: str, name: str, password_hash: str, role: Role) -> UserRecord:
        with self._lock:
            user_id = self._insert(
                """
                INSERT INTO users (email, name, password_hash, role, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (email, name, password_hash, str(role), now_utc_iso()),
            )
            user = self.get_user(user_id)
            assert user is not None
            return user

    def get_user(self, user_id: int) -> UserRecord | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
            return UserRecord(**dict(row)) if row else None

    def get_user_by_email(self, email: str) -> UserRecord | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM users WHERE email = ?",
                (email,),
            ).fetchone()
            return UserRecord(**dict(row)) if row else None

    # Candidates

    def create_candidate(
        self,
        *,
        user_id: int,
        full_name: str,
        phone: str | None,
        resume_url: str | None,
    ) -> CandidateProfile:
        with self._lock:
            candidate_id = self._insert(
                """
                INSERT INTO candidates (user_id, full_name, phone, resume_url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, full_name, phone, resume_url, now_utc_iso()),
            )
            profile = self.get_candidate_profile(candidate_id)
            assert profile is not None
            return profile

    def get_candidate_by_user(self, user_id: int) -> Candidate | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM candidates WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            return Candidate(**dict(row)) if row else None

    def get_candidate_profile(self, candidate_id: int) -> CandidateProfile | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT candidates.*, users.email AS email
                FROM candidates
                JOIN users ON users.id = candidates.user_id
                WHERE candidates.id = ?
                """,
                (candidate_id,),
            ).fetchone()
            return CandidateProfile(**dict(row)) if row else None

    # Jobs

    def create_job(
        self,
        *,
        title: str,
        description: str,
        location: str,
        salary_range: str,
    ) -> Job:
        with self._lock:
            job_id = self._insert(
                """
                INSERT INTO jobs (title, description, location, salary_range, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (title, description, location, salary_range, now_utc_iso()),
            )
            job = self.get_job(job_id)
            assert job is not None
            return job

    def get_job(self, job_id: int) -> Job | None:
        with self._lock:
            row = self.connection.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            return Job(**dict(row)) if row else None

    def list_jobs(self, job_filter: JobFilter, *, offset: int, limit: int) -> list[Job]:
        where, params = job_filter.where()
        with self._lock:
            cursor = self.connection.execute(
                f"""
                SELECT * FROM jobs
                {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            )
            return [Job(**dict(row)) for row in cursor.fetchall()]

    def count_jobs(self, job_filter: JobFilter) -> int:
        where, params = job_filter.where()
        with self._lock:
            row = self.connection.execute(
                f"SELECT COUNT(1) AS c FROM jobs {where}",
                params,
            ).fetchone()
            return int(row["c"])

    # Applications

    def find_application(self, *, job_id: int, candidate_id: int) -> Application | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM applications WHERE job_id = ? AND candidate_id = ?",
                (job_id, candidate_id),
            ).fetchone()
            return Application(**dict(row)) if row else None

    def create_application(
        self,
        *,
        job_id: int,
        candidate_id: int,
        status: ApplicationStatus,
    ) -> Application:
        with self._lock:
            now = now_utc_iso()
            application_id = self._insert(
                """
                INSERT INTO applications (job_id, candidate_id, status, applied_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (job_id, candidate_id, str(status), now, now),
            )
            application = self.get_application(application_id)
            assert application is not None
            return application

    def get_application(self, application_id: int) -> Application | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM applications WHERE id = ?",
                (application_id,),
            ).fetchone()
            return Application(**dict(row)) if row else None

    def update_application_status(
        self,
        application_id: int,
        status: ApplicationStatus,
    ) -> Application | None:
        with self._lock:
            cursor = self.connection.execute(
                "UPDATE applications SET status = ?, updated_at = ? WHERE id = ?",
                (str(status), now_utc_iso(), application_id),
            )
            self.connection.commit()
            if cursor.rowcount == 0:
                return None
            return self.get_application(application_id)

    def list_applications(
        self,
        application_filter: ApplicationFilter,
        *,
        offset: int,
        limit: int,
    ) -> list[Application]:
        where, params = application_filter.where()
        with self._lock:
            cursor = self.connection.execute(
                f"""
                SELECT * FROM applications
                {where}
                ORDER BY applied_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            )
            return [Application(**dict(row)) for row in cursor.fetchall()]

    def count_applications(self, application_filter: ApplicationFilter) -> int:
        where, params = application_filter.where()
        with self._lock:
            row = self.connection.execute(
                f"SELECT COUNT(1) AS c FROM applications {where}",
                params,
            ).fetchone()
            return int(row["c"])
