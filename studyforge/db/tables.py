"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in studyforge/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from studyforge.db.engine import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


# --- Users and the credit ledger ---


class UserRow(Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_credits_used: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_member: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CreditTransactionRow(Base):
    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str
    )
    user_email: Mapped[str] = mapped_column(
        String(320), ForeignKey("users.email"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # signed
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # grant|debit
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    course_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # user row version produced by this entry; orders the log
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_email", "seq", name="uq_credit_transactions_user_seq"),
    )


# --- Courses ---


class CourseRow(Base):
    __tablename__ = "courses"

    course_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str
    )
    created_by: Mapped[str] = mapped_column(String(320), nullable=False)
    topic: Mapped[str] = mapped_column(String(500), nullable=False)
    course_type: Mapped[str] = mapped_column(String(64), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="Generating"
    )  # Generating|Ready|Error|Failed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CourseEnrollmentRow(Base):
    __tablename__ = "course_enrollments"

    course_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("courses.course_id"), primary_key=True
    )
    student_email: Mapped[str] = mapped_column(String(320), primary_key=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class CourseAssignmentRow(Base):
    __tablename__ = "course_assignments"

    assignment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str
    )
    course_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("courses.course_id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rubric: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AssignmentReminderRow(Base):
    """One due-date reminder per (assignment, student)."""

    __tablename__ = "assignment_reminders"

    assignment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("course_assignments.assignment_id"), primary_key=True
    )
    student_email: Mapped[str] = mapped_column(String(320), primary_key=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# --- Submissions ---


class AssignmentSubmissionRow(Base):
    __tablename__ = "assignment_submissions"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str
    )
    assignment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("course_assignments.assignment_id"),
        nullable=False,
    )
    course_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    student_email: Mapped[str] = mapped_column(String(320), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    submission_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default="text"
    )  # text|code|document|url
    language: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    strengths: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=[])
    improvements: Mapped[list[str]] = mapped_column(
        ARRAY(Text), nullable=False, default=[]
    )
    graded_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    unlock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_requested: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    decided_by: Mapped[str | None] = mapped_column(String(320), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("assignment_id", "student_email"),
        Index("ix_assignment_submissions_status", "status"),
    )


# --- AI study content ---


class StudyTypeContentRow(Base):
    __tablename__ = "study_type_content"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str
    )
    course_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # Flashcard|Quiz|MCQ|qa
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Generating"
    )  # Generating|Ready|Error
    content: Mapped[object | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(320), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# --- Adaptive mastery ---


class AdaptivePerformanceRow(Base):
    __tablename__ = "adaptive_performance"

    course_id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    student_email: Mapped[str] = mapped_column(String(320), primary_key=True)
    topic_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    topic_name: Mapped[str] = mapped_column(String(500), nullable=False)
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_difficulty: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Medium"
    )
    recommended_difficulty: Mapped[str] = mapped_column(
        String(16), nullable=False, default="Medium"
    )
    mastery_level: Mapped[str] = mapped_column(
        String(16), nullable=False, default="novice"
    )
    is_weak_topic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# --- Leaderboard ---


class LeaderboardRow(Base):
    __tablename__ = "leaderboard"

    student_email: Mapped[str] = mapped_column(String(320), primary_key=True)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_courses_completed: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    badge: Mapped[str | None] = mapped_column(String(16), nullable=True)
    achieved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# --- Certificates ---


class CertificateRow(Base):
    __tablename__ = "certificates"

    certificate_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=_uuid_str
    )
    course_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("courses.course_id"), nullable=False
    )
    student_email: Mapped[str] = mapped_column(String(320), nullable=False)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    course_name: Mapped[str] = mapped_column(String(500), nullable=False)
    final_score: Mapped[int] = mapped_column(Integer, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("course_id", "student_email", name="uq_certificates_course_student"),
        Index("ix_certificates_student", "student_email"),
    )
