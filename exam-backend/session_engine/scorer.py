"""
Session finalization.

Turns a live session into an immutable result exactly once. A second submit
returns the stored result without recomputing; correctness is always
recomputed from the question bank rather than trusted from the answers map.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from session_engine.clock import utc_now
from session_engine.errors import ForbiddenError, InvalidStateError, NotFoundError, SessionExpiredError
from session_engine.types import (
    AnswerRecord, ExamSession, QuestionData, ScoreResult, SectionScore, SessionMode, SessionStatus,
)

log = logging.getLogger(__name__)


def section_key(question: Optional[QuestionData], exam_id: int) -> str:
    """Objective id, or an exam-wide bucket for questions without one."""
    if question is not None and question.objective_id is not None:
        return str(question.objective_id)
    return f"exam:{exam_id}"


def percentage(part: int, whole: int, digits: int = 1) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, digits)


class Scorer:

    def __init__(self, store, bank, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.bank = bank
        self.clock = clock

    def submit(self, session_id: str, caller_id: Optional[str] = None, is_auto_submit: bool = False) -> ScoreResult:
        """
        Finalize a session. Idempotent for submitted sessions; an expired session
        can only be reached through the auto-submit path.
        """
        session = self.store.get(session_id, for_update=True)
        if session is None:
            raise NotFoundError("Session not found")
        if caller_id is not None and session.user_id != caller_id:
            raise ForbiddenError("Access denied to this session")

        if session.status == SessionStatus.SUBMITTED:
            return ScoreResult.from_session(session)
        if session.status == SessionStatus.EXPIRED:
            if is_auto_submit:
                return ScoreResult.from_session(session)
            raise InvalidStateError("Cannot submit an expired test session")

        now = self.clock()
        if not is_auto_submit and session.is_overdue(now):
            log.info("Auto-submitting overdue test session %s on manual submit", session.id)
            result = self.finalize(session, is_auto_submit=True)
            raise SessionExpiredError(session.id, result)

        return self.finalize(session, is_auto_submit=is_auto_submit)

    def finalize(self, session: ExamSession, is_auto_submit: bool = False) -> ScoreResult:
        """Score an open session and persist every score field together with the status change."""
        if session.is_terminal:
            return ScoreResult.from_session(session)

        now = self.clock()
        questions = {q.id: q for q in self.bank.get_by_ids(session.question_order, include_answers=True)}

        correct = incorrect = skipped = 0
        sections: Dict[str, List[int]] = OrderedDict()
        graded: Dict[int, AnswerRecord] = {}

        for qid in session.question_order:
            question = questions.get(qid)
            bucket = sections.setdefault(section_key(question, session.exam_id), [0, 0])
            bucket[1] += 1

            answer = session.answers.get(qid)
            if answer is None or answer.is_blank:
                skipped += 1
                if answer is not None:
                    graded[qid] = AnswerRecord(answer.selected_answers, False, answer.time_spent_seconds, answer.answered_at)
                continue

            is_correct = question is not None and self.bank.validate_answer(question, answer.selected_answers)
            graded[qid] = AnswerRecord(answer.selected_answers, is_correct, answer.time_spent_seconds, answer.answered_at)
            if is_correct:
                correct += 1
                bucket[0] += 1
            else:
                incorrect += 1

        total = session.total_questions
        raw_score = correct / total * 100 if total else 0.0
        score = round(raw_score, 1)

        if session.mode == SessionMode.TEST and session.time_limit_seconds is not None:
            time_spent = min(session.elapsed_seconds(now), session.time_limit_seconds)
        else:
            time_spent = max(session.time_spent_seconds, sum(a.time_spent_seconds for a in session.answers.values()))

        timed_out = is_auto_submit and session.is_overdue(now)

        session.answers = graded
        session.status = SessionStatus.EXPIRED if timed_out else SessionStatus.SUBMITTED
        session.submitted_at = now
        session.last_activity_at = now
        session.score = score
        session.passed = raw_score >= session.passing_score
        session.correct_count = correct
        session.incorrect_count = incorrect
        session.skipped_count = skipped
        session.time_spent_seconds = time_spent
        session.section_scores = {
            key: SectionScore(correct=c, total=t, percentage=percentage(c, t))
            for key, (c, t) in sections.items()
        }
        session.is_auto_submitted = is_auto_submit

        saved = self.store.update(session)
        log.info(
            "Finalized %s session %s for user %s: %.1f%% (%s)%s",
            saved.mode.value, saved.id, saved.user_id, score,
            "PASS" if saved.passed else "FAIL",
            " [auto-submit]" if is_auto_submit else "",
        )
        return ScoreResult.from_session(saved)

    def results(self, session_id: str, caller_id: str) -> dict:
        """Per-question breakdown of a finalized session."""
        session = self.store.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        if session.user_id != caller_id:
            raise ForbiddenError("Access denied to this session")
        if not session.is_terminal:
            if session.is_overdue(self.clock()):
                log.info("Auto-submitting expired test session %s on results read", session.id)
                self.finalize(session, is_auto_submit=True)
                session = self.store.get(session_id)
            else:
                raise InvalidStateError("Session has not been submitted yet")

        questions = {q.id: q for q in self.bank.get_by_ids(session.question_order, include_answers=True)}
        objectives = self.bank.get_objectives_by_ids(
            q.objective_id for q in questions.values() if q.objective_id is not None
        )

        breakdown = []
        for number, qid in enumerate(session.question_order, start=1):
            question = questions.get(qid)
            if question is None:
                continue
            answer = session.answers.get(qid)
            objective = objectives.get(question.objective_id)
            breakdown.append({
                "question_number": number,
                "question_id": qid,
                "question_text": question.question_text,
                "options": question.options,
                "correct_answers": question.correct_answers,
                "explanation": question.explanation,
                "objective_id": question.objective_id,
                "objective_title": objective.title if objective else None,
                "user_answer": list(answer.selected_answers) if answer else [],
                "is_correct": bool(answer and answer.is_correct),
                "skipped": answer is None or answer.is_blank,
                "time_spent_seconds": answer.time_spent_seconds if answer else 0,
                "flagged": bool(session.flags.get(qid)),
            })

        return {"result": ScoreResult.from_session(session), "questions": breakdown}
