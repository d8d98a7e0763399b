"""
Response payload builders.

Test-mode payloads are built by omission: correct answers, explanations and
per-answer correctness are never added to a live test session's payload.
"""

from datetime import datetime
from typing import List, Optional

from session_engine.types import ExamSession, QuestionData, ScoreResult, SessionMode


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def question_payload(question: QuestionData, mode: SessionMode, number: Optional[int] = None) -> dict:
    payload = {
        "id": question.id,
        "exam_id": question.exam_id,
        "objective_id": question.objective_id,
        "question_text": question.question_text,
        "question_type": question.question_type,
        "options": list(question.options),
    }
    if number is not None:
        payload["question_number"] = number
    if mode == SessionMode.STUDY and question.correct_answers is not None:
        payload["correct_answers"] = list(question.correct_answers)
        payload["explanation"] = question.explanation
    return payload


def questions_payload(questions: List[QuestionData], mode: SessionMode) -> List[dict]:
    return [question_payload(q, mode, number=i + 1) for i, q in enumerate(questions)]


def result_payload(result: ScoreResult) -> dict:
    return {
        "session_id": result.session_id,
        "status": result.status.value,
        "score": result.score,
        "passed": result.passed,
        "passing_score": result.passing_score,
        "correct_count": result.correct_count,
        "incorrect_count": result.incorrect_count,
        "skipped_count": result.skipped_count,
        "total_questions": result.total_questions,
        "time_spent_seconds": result.time_spent_seconds,
        "section_scores": {
            key: {"correct": s.correct, "total": s.total, "percentage": s.percentage}
            for key, s in result.section_scores.items()
        },
        "submitted_at": _iso(result.submitted_at),
        "is_auto_submitted": result.is_auto_submitted,
    }


def session_payload(session: ExamSession, now: datetime) -> dict:
    reveal = session.mode == SessionMode.STUDY or session.is_terminal

    answers = {}
    for qid, answer in session.answers.items():
        entry = {
            "selected_answers": list(answer.selected_answers),
            "time_spent_seconds": answer.time_spent_seconds,
            "answered_at": _iso(answer.answered_at),
        }
        if reveal:
            entry["is_correct"] = answer.is_correct
        answers[str(qid)] = entry

    progress = {"answered": len(session.answers), "total": session.total_questions}
    if reveal:
        # Recomputed from the answers map on every read, never accumulated
        progress["correct"] = sum(1 for a in session.answers.values() if a.is_correct)
        progress["incorrect"] = sum(1 for a in session.answers.values() if a.is_correct is False)

    payload = {
        "id": session.id,
        "user_id": session.user_id,
        "exam_id": session.exam_id,
        "mode": session.mode.value,
        "selection_mode": session.selection_mode.value if session.selection_mode else None,
        "status": session.status.value,
        "question_order": list(session.question_order),
        "total_questions": session.total_questions,
        "current_question_index": session.current_question_index,
        "answers": answers,
        "flags": {str(qid): v for qid, v in session.flags.items()},
        "progress": progress,
        "started_at": _iso(session.started_at),
        "last_activity_at": _iso(session.last_activity_at),
        "time_limit_seconds": session.time_limit_seconds,
        "passing_score": session.passing_score,
    }
    if session.mode == SessionMode.TEST:
        payload["time_remaining_seconds"] = (
            0 if session.is_terminal else session.time_remaining_seconds(now)
        )
    if session.is_terminal:
        payload["result"] = result_payload(ScoreResult.from_session(session))
    return payload
