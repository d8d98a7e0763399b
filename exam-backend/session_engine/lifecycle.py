"""
Session lifecycle: start, read, resume, pause, time bookkeeping and history.

Expiry is lazy. There is no timer; every entry point that touches a test
session checks the time limit first and auto-submits an overdue session
before doing anything else.
"""

import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from session_engine import selection
from session_engine.clock import utc_now
from session_engine.errors import (
    DuplicateOpenSessionError, ForbiddenError, InvalidStateError, NotFoundError,
    SessionExpiredError, ValidationError,
)
from session_engine.payloads import question_payload
from session_engine.types import (
    ExamInfo, ExamSession, QuestionData, SelectionMode, SessionMode, SessionStatus,
    OPEN_STATUSES, TERMINAL_STATUSES,
)

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

DEFAULT_PASSING_SCORE = 70.0
DEFAULT_TEST_QUESTIONS = 75
DEFAULT_TEST_TIME_LIMIT_SECONDS = 90 * 60
CLOCK_DRIFT_WARNING_SECONDS = 30


@dataclass
class StartResult:
    session: ExamSession
    questions: List[QuestionData]
    is_resuming: bool


class SessionLifecycleManager:

    def __init__(
        self,
        store,
        bank,
        scorer,
        aggregator,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.bank = bank
        self.scorer = scorer
        self.aggregator = aggregator
        self.clock = clock
        self.rng = rng

    # ─── Start ────────────────────────────────────────────────────────────────

    def start(
        self,
        user_id: str,
        exam_id: int,
        mode: SessionMode,
        selection_mode: SelectionMode = SelectionMode.SEQUENTIAL,
        max_questions: Optional[int] = None,
        objective_ids: Optional[List[int]] = None,
        time_limit_seconds: Optional[int] = None,
    ) -> StartResult:
        """
        Return the caller's open session for (exam, mode) if there is one,
        otherwise build a question order and persist a new session.
        """
        if mode == SessionMode.TEST and objective_ids:
            raise ValidationError("objective_ids only apply to study sessions")
        if mode == SessionMode.STUDY and time_limit_seconds is not None:
            raise ValidationError("time_limit_seconds only applies to test sessions")

        exam = self.bank.get_exam(exam_id)
        if exam is None or not exam.is_active:
            raise NotFoundError("Exam not found")

        existing = self.store.get_active(user_id, exam_id, mode)
        if existing is not None:
            if existing.is_overdue(self.clock()):
                log.info("Auto-submitting overdue test session %s before starting a new one", existing.id)
                self.scorer.finalize(existing, is_auto_submit=True)
            else:
                log.info("Resuming %s session %s for user %s", mode.value, existing.id, user_id)
                return StartResult(existing, self.questions_for(existing), is_resuming=True)

        if mode == SessionMode.TEST:
            order = self._test_order(exam, max_questions)
        else:
            order = self._study_order(user_id, exam, selection_mode, max_questions, objective_ids)
        if not order:
            raise NotFoundError("No questions available for the selected criteria")

        now = self.clock()
        session = ExamSession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            exam_id=exam_id,
            mode=mode,
            selection_mode=selection_mode if mode == SessionMode.STUDY else None,
            status=SessionStatus.ACTIVE,
            question_order=order,
            started_at=now,
            last_activity_at=now,
            passing_score=exam.passing_score if exam.passing_score is not None else DEFAULT_PASSING_SCORE,
            time_limit_seconds=self._time_limit(exam, time_limit_seconds) if mode == SessionMode.TEST else None,
        )

        try:
            created = self.store.create(session)
        except DuplicateOpenSessionError:
            # Lost a race with a concurrent start for the same user/exam/mode
            existing = self.store.get_active(user_id, exam_id, mode)
            if existing is None:
                raise InvalidStateError("Could not create or find an open session")
            log.info("Concurrent start for user %s exam %s; returning session %s", user_id, exam_id, existing.id)
            return StartResult(existing, self.questions_for(existing), is_resuming=True)

        log.info(
            "Started %s session %s for user %s exam %s (%d questions%s)",
            mode.value, created.id, user_id, exam_id, created.total_questions,
            f", {created.selection_mode.value}" if created.selection_mode else "",
        )
        return StartResult(created, self.questions_for(created), is_resuming=False)

    def questions_for(self, session: ExamSession) -> List[QuestionData]:
        """Question payloads in session order; answers are only loaded for study sessions."""
        include_answers = session.mode == SessionMode.STUDY or session.is_terminal
        return self.bank.get_by_ids(session.question_order, include_answers=include_answers)

    @staticmethod
    def _time_limit(exam: ExamInfo, requested: Optional[int]) -> int:
        if requested is not None:
            return requested
        if exam.duration_minutes:
            return exam.duration_minutes * 60
        return DEFAULT_TEST_TIME_LIMIT_SECONDS

    def _test_order(self, exam: ExamInfo, max_questions: Optional[int]) -> List[int]:
        pool = [q.id for q in self.bank.get_questions_for_session(exam.id, SessionMode.TEST)]
        limit = max_questions or exam.question_count or DEFAULT_TEST_QUESTIONS
        return selection.cap(selection.shuffled(pool, self.rng), limit)

    def _study_order(
        self,
        user_id: str,
        exam: ExamInfo,
        selection_mode: SelectionMode,
        max_questions: Optional[int],
        objective_ids: Optional[List[int]],
    ) -> List[int]:
        pool = self.bank.get_questions_for_session(exam.id, SessionMode.STUDY, objective_ids)
        pool_ids = [q.id for q in pool]

        if selection_mode == SelectionMode.SEQUENTIAL:
            ordered = pool_ids
        elif selection_mode == SelectionMode.RANDOM:
            ordered = selection.shuffled(pool_ids, self.rng)
        elif selection_mode == SelectionMode.WEAK_AREAS:
            weak = self.aggregator.weak_objective_ids(user_id, exam.id)
            ordered = selection.rank_by_objective({q.id: q.objective_id for q in pool}, weak)
        else:
            history = selection.visible_history(self.store.list_for_user(user_id, exam_id=exam.id))
            if selection_mode == SelectionMode.FLAGGED:
                candidates = selection.flagged_ids(history)
            elif selection_mode == SelectionMode.INCORRECT:
                candidates = selection.incorrect_ids(history)
            else:
                candidates = selection.review_ids(history)
            # Only questions that are still active and inside the requested objectives
            available = set(pool_ids)
            ordered = [qid for qid in candidates if qid in available]

        return selection.cap(ordered, max_questions)

    # ─── Reads ────────────────────────────────────────────────────────────────

    def _load_owned(self, session_id: str, caller_id: str, for_update: bool = False) -> ExamSession:
        session = self.store.get(session_id, for_update=for_update)
        if session is None:
            raise NotFoundError("Session not found")
        if session.user_id != caller_id:
            raise ForbiddenError("Access denied to this session")
        return session

    def expire_if_overdue(self, session: ExamSession) -> ExamSession:
        """Auto-submit an overdue test session and return its finalized state."""
        if not session.is_overdue(self.clock()):
            return session
        log.info("Auto-submitting expired test session %s for user %s", session.id, session.user_id)
        self.scorer.finalize(session, is_auto_submit=True)
        return self.store.get(session.id)

    def get(self, session_id: str, caller_id: str) -> ExamSession:
        """Read a session. An overdue test session comes back finalized rather than as an error."""
        session = self._load_owned(session_id, caller_id)
        if not session.is_overdue(self.clock()):
            return session
        # Only the finalizing path takes the row lock
        return self.expire_if_overdue(self._load_owned(session_id, caller_id, for_update=True))

    def resume(self, session_id: str, caller_id: str) -> ExamSession:
        session = self.expire_if_overdue(self._load_owned(session_id, caller_id, for_update=True))
        if session.is_terminal:
            return session

        session.status = SessionStatus.ACTIVE
        session.last_activity_at = self.clock()
        session = self.store.update(session)
        log.info("Resumed %s session %s for user %s", session.mode.value, session.id, caller_id)
        return session

    # ─── Mutations ────────────────────────────────────────────────────────────

    def open_for_mutation(self, session_id: str, caller_id: str) -> ExamSession:
        """
        Load a session for a write: ownership, then expiry, then terminal state.
        A paused session comes back reactivated; the caller persists it.
        """
        session = self._load_owned(session_id, caller_id, for_update=True)
        if session.is_overdue(self.clock()):
            log.info("Auto-submitting expired test session %s on write", session.id)
            result = self.scorer.finalize(session, is_auto_submit=True)
            raise SessionExpiredError(session.id, result)
        if session.is_terminal:
            raise InvalidStateError(f"Session is already {session.status.value}")
        if session.status == SessionStatus.PAUSED:
            session.status = SessionStatus.ACTIVE
        return session

    def pause(self, session_id: str, caller_id: str) -> ExamSession:
        session = self.open_for_mutation(session_id, caller_id)
        session.status = SessionStatus.PAUSED
        session.last_activity_at = self.clock()
        session = self.store.update(session)
        log.info("Paused %s session %s", session.mode.value, session.id)
        return session

    def sync_time(
        self,
        session_id: str,
        caller_id: str,
        time_spent_seconds: Optional[int] = None,
        time_remaining_seconds: Optional[int] = None,
    ) -> ExamSession:
        """
        Time bookkeeping from the client. Server time stays authoritative for
        test sessions; a client that disagrees by more than the drift threshold
        is only logged.
        """
        session = self.open_for_mutation(session_id, caller_id)
        now = self.clock()

        if session.mode == SessionMode.TEST and time_remaining_seconds is not None:
            server_remaining = session.time_remaining_seconds(now)
            drift = abs(server_remaining - time_remaining_seconds)
            if drift > CLOCK_DRIFT_WARNING_SECONDS:
                log.warning(
                    "Client clock drift of %ds on test session %s (client %ds, server %ds remaining)",
                    drift, session.id, time_remaining_seconds, server_remaining,
                )
        if session.mode == SessionMode.STUDY and time_spent_seconds is not None:
            session.time_spent_seconds = max(session.time_spent_seconds, time_spent_seconds)

        session.last_activity_at = now
        return self.store.update(session)

    # ─── History ──────────────────────────────────────────────────────────────

    def expire_overdue_for_user(self, user_id: str) -> int:
        expired = 0
        for session in self.store.list_for_user(user_id, mode=SessionMode.TEST, statuses=OPEN_STATUSES):
            if session.is_overdue(self.clock()):
                self.expire_if_overdue(session)
                expired += 1
        return expired

    def history(
        self,
        user_id: str,
        exam_id: Optional[int] = None,
        mode: Optional[SessionMode] = None,
    ) -> List[ExamSession]:
        """Finalized sessions, most recent first."""
        self.expire_overdue_for_user(user_id)
        return self.store.list_for_user(user_id, exam_id=exam_id, mode=mode, statuses=TERMINAL_STATUSES)

    def bookmarks(
        self,
        user_id: str,
        exam_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        """
        Questions flagged in any of the user's study sessions, most recently
        flagged first. A question flagged in several sessions is listed once,
        with the latest activity time of those sessions.
        """
        if limit < 1 or limit > 200:
            raise ValidationError("limit must be between 1 and 200")
        if offset < 0:
            raise ValidationError("offset must not be negative")

        last_flagged = {}
        for session in self.store.list_for_user(user_id, exam_id=exam_id, mode=SessionMode.STUDY):
            seen_at = session.last_activity_at or session.started_at
            for qid, flagged in session.flags.items():
                if flagged and (qid not in last_flagged or seen_at > last_flagged[qid]):
                    last_flagged[qid] = seen_at

        ordered = sorted(last_flagged, key=lambda qid: (-last_flagged[qid].timestamp(), qid))
        questions = {q.id: q for q in self.bank.get_by_ids(ordered, include_answers=True)}
        ordered = [qid for qid in ordered if qid in questions]
        page = [questions[qid] for qid in ordered[offset:offset + limit]]

        exams = {eid: self.bank.get_exam(eid) for eid in {q.exam_id for q in page}}
        objectives = self.bank.get_objectives_by_ids(q.objective_id for q in page if q.objective_id is not None)

        items = []
        for question in page:
            exam = exams.get(question.exam_id)
            objective = objectives.get(question.objective_id)
            items.append({
                "question_id": question.id,
                "last_flagged_at": last_flagged[question.id].isoformat(),
                "question": question_payload(question, SessionMode.STUDY),
                "exam": {"id": exam.id, "code": exam.code, "name": exam.name} if exam else None,
                "objective": {"id": objective.id, "title": objective.title} if objective else None,
            })

        return {
            "bookmarks": items,
            "pagination": {
                "total": len(ordered),
                "limit": limit,
                "offset": offset,
                "has_more": offset + limit < len(ordered),
            },
        }
