# medintake/models.py
from datetime import datetime

from sqlalchemy import (
    String,
    DateTime,
    Integer,
    Text,
    JSON,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from medintake.db import Base


class InterviewSessionRecord(Base):
    """
    One interview. ``data`` holds the full Session dump; the other columns
    exist for listing and expiry queries (naive UTC).
    """
    __tablename__ = "interview_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    questionnaire_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_question_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)


class QuestionnaireRecord(Base):
    __tablename__ = "questionnaires"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String, nullable=False, default="")
    status: Mapped[str] = mapped_column(String, nullable=False, default="published")
    questions: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('published', 'draft')",
            name="ck_questionnaires_status_valid",
        ),
    )
