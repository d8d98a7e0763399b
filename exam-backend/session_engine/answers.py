"""
Answer, flag and navigation writes against a live session.

Test sessions record answers ungraded (is_correct stays None) and return only
an acknowledgment; correctness is produced by the scorer at submission.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from session_engine.clock import utc_now
from session_engine.errors import InvalidStateError, NotFoundError, ValidationError
from session_engine.payloads import question_payload
from session_engine.types import AnswerRecord, ExamSession, SessionMode

log = logging.getLogger(__name__)


@dataclass
class AnswerOutcome:
    session: ExamSession
    feedback: Optional[dict] = None  # study mode only


class AnswerProcessor:

    def __init__(self, lifecycle, store, bank, clock: Callable[[], datetime] = utc_now):
        self.lifecycle = lifecycle
        self.store = store
        self.bank = bank
        self.clock = clock

    def _require_question(self, session: ExamSession, question_id: int) -> None:
        if question_id not in session.question_order:
            raise ValidationError(f"Question {question_id} is not part of this session")

    def submit_answer(
        self,
        session_id: str,
        caller_id: str,
        question_id: int,
        selected_answers: List[int],
        time_spent_seconds: int = 0,
    ) -> AnswerOutcome:
        session = self.lifecycle.open_for_mutation(session_id, caller_id)
        self._require_question(session, question_id)

        found = self.bank.get_by_ids([question_id], include_answers=True)
        if not found:
            raise NotFoundError(f"Question {question_id} not found")
        question = found[0]

        selected = sorted(set(selected_answers))
        invalid = [i for i in selected if i < 0 or i >= len(question.options)]
        if invalid:
            raise ValidationError(f"Answer indices out of range: {invalid}")

        now = self.clock()
        is_study = session.mode == SessionMode.STUDY
        is_correct = self.bank.validate_answer(question, selected) if is_study else None

        session.answers[question_id] = AnswerRecord(
            selected_answers=selected,
            is_correct=is_correct,
            time_spent_seconds=time_spent_seconds,
            answered_at=now,
        )
        position = session.position_of(question_id)
        if position == session.current_question_index:
            session.current_question_index = position + 1
        if is_study:
            answered_time = sum(a.time_spent_seconds for a in session.answers.values())
            session.time_spent_seconds = max(session.time_spent_seconds, answered_time)
        session.last_activity_at = now

        session = self.store.update(session)
        log.debug("Recorded answer for question %s in session %s", question_id, session.id)

        if not is_study:
            return AnswerOutcome(session)

        feedback = {
            "is_correct": is_correct,
            "correct_answers": list(question.correct_answers or []),
            "explanation": question.explanation,
            "next_question": None,
        }
        next_index = session.current_question_index
        if next_index < session.total_questions:
            next_found = self.bank.get_by_ids([session.question_order[next_index]], include_answers=True)
            if next_found:
                feedback["next_question"] = question_payload(next_found[0], session.mode, number=next_index + 1)
        return AnswerOutcome(session, feedback)

    def toggle_flag(self, session_id: str, caller_id: str, question_id: int, flagged: bool) -> ExamSession:
        session = self.lifecycle.open_for_mutation(session_id, caller_id)
        self._require_question(session, question_id)

        if flagged:
            session.flags[question_id] = True
        else:
            session.flags.pop(question_id, None)
        session.last_activity_at = self.clock()
        return self.store.update(session)

    def set_current_index(self, session_id: str, caller_id: str, index: int) -> ExamSession:
        session = self.lifecycle.open_for_mutation(session_id, caller_id)
        if index < 0 or index >= session.total_questions:
            raise InvalidStateError(
                f"Question index {index} is outside [0, {session.total_questions})"
            )
        session.current_question_index = index
        session.last_activity_at = self.clock()
        return self.store.update(session)
