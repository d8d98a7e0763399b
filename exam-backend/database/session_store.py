"""
Session persistence.
Converts between SessionRecord rows (JSON columns) and ExamSession dataclasses.
Every mutation is a single read-for-update / write / commit cycle driven by the engine.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.models import SessionRecord
from session_engine.errors import DuplicateOpenSessionError
from session_engine.types import (
    AnswerRecord, ExamSession, SectionScore, SelectionMode, SessionMode, SessionStatus, OPEN_STATUSES,
)

log = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# ─── Serialization ─────────────────────────────────────────────────────────────

def _answers_to_json(answers: dict) -> dict:
    return {
        str(qid): {
            "selected_answers": list(a.selected_answers),
            "is_correct": a.is_correct,
            "time_spent_seconds": a.time_spent_seconds,
            "answered_at": a.answered_at.isoformat(),
        }
        for qid, a in answers.items()
    }


def _answers_from_json(raw: Optional[dict]) -> dict:
    answers = {}
    for qid, a in (raw or {}).items():
        answers[int(qid)] = AnswerRecord(
            selected_answers=list(a.get("selected_answers") or []),
            is_correct=a.get("is_correct"),
            time_spent_seconds=int(a.get("time_spent_seconds") or 0),
            answered_at=_as_utc(datetime.fromisoformat(a["answered_at"])),
        )
    return answers


def _sections_to_json(sections: Optional[dict]) -> Optional[dict]:
    if sections is None:
        return None
    return {
        key: {"correct": s.correct, "total": s.total, "percentage": s.percentage}
        for key, s in sections.items()
    }


def _sections_from_json(raw: Optional[dict]) -> Optional[dict]:
    if raw is None:
        return None
    return {key: SectionScore(**s) for key, s in raw.items()}


def to_domain(row: SessionRecord) -> ExamSession:
    return ExamSession(
        id=row.id,
        user_id=row.user_id,
        exam_id=row.exam_id,
        mode=SessionMode(row.mode),
        selection_mode=SelectionMode(row.selection_mode) if row.selection_mode else None,
        status=SessionStatus(row.status),
        question_order=[int(q) for q in row.question_order],
        started_at=_as_utc(row.started_at),
        passing_score=row.passing_score,
        answers=_answers_from_json(row.answers),
        flags={int(qid): bool(v) for qid, v in (row.flags or {}).items()},
        current_question_index=row.current_question_index,
        time_limit_seconds=row.time_limit_seconds,
        last_activity_at=_as_utc(row.last_activity_at),
        time_spent_seconds=row.time_spent_seconds or 0,
        submitted_at=_as_utc(row.submitted_at),
        score=row.score,
        correct_count=row.correct_count,
        incorrect_count=row.incorrect_count,
        skipped_count=row.skipped_count,
        passed=row.passed,
        section_scores=_sections_from_json(row.section_scores),
        is_auto_submitted=bool(row.is_auto_submitted),
    )


def _apply(row: SessionRecord, session: ExamSession) -> None:
    """Copy the mutable parts of a session onto its row. question_order and started_at never change."""
    row.status = session.status
    row.answers = _answers_to_json(session.answers)
    row.flags = {str(qid): v for qid, v in session.flags.items()}
    row.current_question_index = session.current_question_index
    row.last_activity_at = session.last_activity_at
    row.time_spent_seconds = session.time_spent_seconds
    row.submitted_at = session.submitted_at
    row.score = session.score
    row.correct_count = session.correct_count
    row.incorrect_count = session.incorrect_count
    row.skipped_count = session.skipped_count
    row.passed = session.passed
    row.section_scores = _sections_to_json(session.section_scores)
    row.is_auto_submitted = session.is_auto_submitted


# ─── Store ─────────────────────────────────────────────────────────────────────

class SessionStore:
    """SQLAlchemy-backed session store bound to one request's DB session."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, session_id: str, for_update: bool = False) -> Optional[ExamSession]:
        query = self.db.query(SessionRecord).filter(SessionRecord.id == session_id)
        if for_update:
            query = query.with_for_update()
        row = query.first()
        return to_domain(row) if row else None

    def get_active(self, user_id: str, exam_id: int, mode: SessionMode) -> Optional[ExamSession]:
        """The open (active or paused) session for this user/exam/mode, if any."""
        row = (
            self.db.query(SessionRecord)
            .filter(
                SessionRecord.user_id == user_id,
                SessionRecord.exam_id == exam_id,
                SessionRecord.mode == mode,
                SessionRecord.status.in_(OPEN_STATUSES),
            )
            .first()
        )
        return to_domain(row) if row else None

    def create(self, session: ExamSession) -> ExamSession:
        row = SessionRecord(
            id=session.id,
            user_id=session.user_id,
            exam_id=session.exam_id,
            mode=session.mode,
            selection_mode=session.selection_mode,
            question_order=list(session.question_order),
            started_at=session.started_at,
            time_limit_seconds=session.time_limit_seconds,
            passing_score=session.passing_score,
        )
        _apply(row, session)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            log.warning("Open %s session conflict for user %s exam %s", session.mode.value, session.user_id, session.exam_id)
            raise DuplicateOpenSessionError(
                f"open {session.mode.value} session already exists for user {session.user_id} exam {session.exam_id}"
            )
        self.db.refresh(row)
        return to_domain(row)

    def update(self, session: ExamSession) -> ExamSession:
        row = self.db.query(SessionRecord).filter(SessionRecord.id == session.id).first()
        if row is None:
            raise LookupError(f"session {session.id} vanished during update")
        _apply(row, session)
        self.db.commit()
        self.db.refresh(row)
        return to_domain(row)

    def list_for_user(
        self,
        user_id: str,
        exam_id: Optional[int] = None,
        mode: Optional[SessionMode] = None,
        statuses: Optional[Iterable[SessionStatus]] = None,
    ) -> List[ExamSession]:
        """All of a user's sessions, most recently started first."""
        query = self.db.query(SessionRecord).filter(SessionRecord.user_id == user_id)
        if exam_id is not None:
            query = query.filter(SessionRecord.exam_id == exam_id)
        if mode is not None:
            query = query.filter(SessionRecord.mode == mode)
        if statuses is not None:
            query = query.filter(SessionRecord.status.in_(list(statuses)))
        rows = query.order_by(SessionRecord.started_at.desc()).all()
        return [to_domain(r) for r in rows]
