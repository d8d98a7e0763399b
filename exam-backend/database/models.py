"""
SQLAlchemy models for the exam session engine
Exam → Objective → Question hierarchy (read-only here, authored elsewhere)
plus one row per study/test session.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text, Float, JSON, Index, text, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database.database import Base
from session_engine.types import SessionMode, SelectionMode, SessionStatus


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# ==========================================
# QUESTION BANK: EXAM → OBJECTIVE → QUESTION
# ==========================================

class Exam(Base):
    """Certification exam. passing_score is copied onto every session at creation."""
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    passing_score = Column(Float, nullable=True)  # percentage, e.g. 70
    question_count = Column(Integer, nullable=True)  # default test length
    duration_minutes = Column(Integer, nullable=True)  # default test time limit
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    objectives = relationship("Objective", back_populates="exam", cascade="all, delete-orphan")
    questions = relationship("Question", back_populates="exam", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Exam(id={self.id}, code='{self.code}')>"


class Objective(Base):
    """Graded sub-topic of an exam; questions are bucketed by it for aggregation."""
    __tablename__ = "objectives"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    weight = Column(Float, nullable=True)  # share of the exam, percent

    exam = relationship("Exam", back_populates="objectives")

    def __repr__(self):
        return f"<Objective(id={self.id}, exam_id={self.exam_id}, title='{self.title}')>"


class Question(Base):
    """
    Multiple-choice question.
    options: ["...", "...", ...]; correct_answers: indices into options, e.g. [0, 2].
    """
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    objective_id = Column(Integer, ForeignKey("objectives.id", ondelete="SET NULL"), nullable=True, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(20), nullable=False, default="single")  # single | multiple
    options = Column(JSON, nullable=False)
    correct_answers = Column(JSON, nullable=False)
    explanation = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    exam = relationship("Exam", back_populates="questions")
    objective = relationship("Objective")

    def __repr__(self):
        return f"<Question(id={self.id}, exam_id={self.exam_id}, objective_id={self.objective_id})>"


# ==========================================
# SESSIONS
# ==========================================

class SessionRecord(Base):
    """
    One study or test attempt.
    question_order: [question_id, ...], fixed at creation.
    answers: {"<question_id>": {selected_answers, is_correct, time_spent_seconds, answered_at}}
    flags: {"<question_id>": true}
    Score columns are written once, when the session reaches submitted/expired.
    """
    __tablename__ = "exam_sessions"
    __table_args__ = (
        # At most one open session per (user, exam, mode)
        Index(
            "uq_exam_sessions_open",
            "user_id", "exam_id", "mode",
            unique=True,
            postgresql_where=text("status IN ('active', 'paused')"),
            sqlite_where=text("status IN ('active', 'paused')"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    mode = Column(SQLEnum(SessionMode, values_callable=_enum_values, name="session_mode"), nullable=False)
    selection_mode = Column(SQLEnum(SelectionMode, values_callable=_enum_values, name="selection_mode"), nullable=True)
    status = Column(
        SQLEnum(SessionStatus, values_callable=_enum_values, name="session_status"),
        nullable=False,
        default=SessionStatus.ACTIVE,
        index=True,
    )

    question_order = Column(JSON, nullable=False)
    answers = Column(JSON, nullable=False, default=dict)
    flags = Column(JSON, nullable=False, default=dict)
    current_question_index = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime(timezone=True), nullable=False)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    time_limit_seconds = Column(Integer, nullable=True)  # test mode only
    time_spent_seconds = Column(Integer, nullable=False, default=0)
    passing_score = Column(Float, nullable=False)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    score = Column(Float, nullable=True)
    correct_count = Column(Integer, nullable=True)
    incorrect_count = Column(Integer, nullable=True)
    skipped_count = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=True)
    section_scores = Column(JSON, nullable=True)  # {"<bucket>": {correct, total, percentage}}
    is_auto_submitted = Column(Boolean, default=False, nullable=False)

    exam = relationship("Exam")

    def __repr__(self):
        return f"<SessionRecord(id='{self.id}', user_id='{self.user_id}', mode='{self.mode}', status='{self.status}')>"
