"""
Domain types for the exam session engine.

Sessions, answers and questions are plain dataclasses here; the JSON columns
they are persisted in only exist on the storage side (database/session_store.py).
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


class SessionMode(str, enum.Enum):
    """Study gives per-answer feedback; test defers all correctness to submission."""
    STUDY = "study"
    TEST = "test"


class SelectionMode(str, enum.Enum):
    """How the question order of a study session was built."""
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    FLAGGED = "flagged"
    INCORRECT = "incorrect"
    WEAK_AREAS = "weak_areas"
    REVIEW = "review"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


OPEN_STATUSES = (SessionStatus.ACTIVE, SessionStatus.PAUSED)
TERMINAL_STATUSES = (SessionStatus.SUBMITTED, SessionStatus.EXPIRED)


@dataclass
class AnswerRecord:
    """
    One answer inside a session. is_correct stays None for an in-flight test
    session and is filled in when the session is finalized.
    """
    selected_answers: List[int]
    is_correct: Optional[bool]
    time_spent_seconds: int
    answered_at: datetime

    @property
    def is_graded(self) -> bool:
        return self.is_correct is not None

    @property
    def is_blank(self) -> bool:
        return len(self.selected_answers) == 0


@dataclass
class SectionScore:
    correct: int
    total: int
    percentage: float


@dataclass
class ExamSession:
    id: str
    user_id: str
    exam_id: int
    mode: SessionMode
    selection_mode: Optional[SelectionMode]
    status: SessionStatus
    question_order: List[int]
    started_at: datetime
    passing_score: float
    answers: Dict[int, AnswerRecord] = field(default_factory=dict)
    flags: Dict[int, bool] = field(default_factory=dict)
    current_question_index: int = 0
    time_limit_seconds: Optional[int] = None
    last_activity_at: Optional[datetime] = None
    time_spent_seconds: int = 0

    # Written once, by the scorer
    submitted_at: Optional[datetime] = None
    score: Optional[float] = None
    correct_count: Optional[int] = None
    incorrect_count: Optional[int] = None
    skipped_count: Optional[int] = None
    passed: Optional[bool] = None
    section_scores: Optional[Dict[str, SectionScore]] = None
    is_auto_submitted: bool = False

    @property
    def total_questions(self) -> int:
        return len(self.question_order)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_timed(self) -> bool:
        return self.mode == SessionMode.TEST and self.time_limit_seconds is not None

    def elapsed_seconds(self, now: datetime) -> int:
        return max(0, int((now - self.started_at).total_seconds()))

    def time_remaining_seconds(self, now: datetime) -> Optional[int]:
        if not self.is_timed:
            return None
        return max(0, self.time_limit_seconds - self.elapsed_seconds(now))

    def is_overdue(self, now: datetime) -> bool:
        """True when a live test session has used up its time limit."""
        if self.is_terminal or not self.is_timed:
            return False
        return self.elapsed_seconds(now) >= self.time_limit_seconds

    def position_of(self, question_id: int) -> int:
        return self.question_order.index(question_id)


@dataclass
class ExamInfo:
    id: int
    code: str
    name: str
    passing_score: Optional[float]
    question_count: Optional[int]
    duration_minutes: Optional[int]
    is_active: bool


@dataclass
class ObjectiveInfo:
    id: int
    exam_id: int
    title: str
    description: Optional[str] = None
    weight: Optional[float] = None


@dataclass
class QuestionData:
    """
    A question as handed out by the question bank. correct_answers and
    explanation are None when the bank was asked not to include answers.
    """
    id: int
    exam_id: int
    objective_id: Optional[int]
    question_text: str
    question_type: str
    options: List[str]
    correct_answers: Optional[List[int]] = None
    explanation: Optional[str] = None


@dataclass
class ScoreResult:
    session_id: str
    status: SessionStatus
    score: float
    passed: bool
    passing_score: float
    correct_count: int
    incorrect_count: int
    skipped_count: int
    total_questions: int
    time_spent_seconds: int
    section_scores: Dict[str, SectionScore]
    submitted_at: datetime
    is_auto_submitted: bool

    @classmethod
    def from_session(cls, session: ExamSession) -> "ScoreResult":
        """Rebuild the stored result of a finalized session without recomputing anything."""
        return cls(
            session_id=session.id,
            status=session.status,
            score=session.score,
            passed=session.passed,
            passing_score=session.passing_score,
            correct_count=session.correct_count,
            incorrect_count=session.incorrect_count,
            skipped_count=session.skipped_count,
            total_questions=session.total_questions,
            time_spent_seconds=session.time_spent_seconds,
            section_scores=dict(session.section_scores or {}),
            submitted_at=session.submitted_at,
            is_auto_submitted=session.is_auto_submitted,
        )
