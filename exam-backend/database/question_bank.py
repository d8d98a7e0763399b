"""
Read-only access to exams, objectives and questions.
Questions are authored by an external pipeline; the engine only reads them.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database.models import Exam, Objective, Question
from session_engine.types import ExamInfo, ObjectiveInfo, QuestionData, SessionMode


def _exam_info(exam: Exam) -> ExamInfo:
    return ExamInfo(
        id=exam.id,
        code=exam.code,
        name=exam.name,
        passing_score=exam.passing_score,
        question_count=exam.question_count,
        duration_minutes=exam.duration_minutes,
        is_active=bool(exam.is_active),
    )


def _objective_info(obj: Objective) -> ObjectiveInfo:
    return ObjectiveInfo(
        id=obj.id,
        exam_id=obj.exam_id,
        title=obj.title,
        description=obj.description,
        weight=obj.weight,
    )


def _question_data(q: Question, include_answers: bool) -> QuestionData:
    return QuestionData(
        id=q.id,
        exam_id=q.exam_id,
        objective_id=q.objective_id,
        question_text=q.question_text,
        question_type=q.question_type,
        options=list(q.options or []),
        correct_answers=[int(a) for a in q.correct_answers] if include_answers else None,
        explanation=q.explanation if include_answers else None,
    )


class QuestionBank:

    def __init__(self, db: Session):
        self.db = db

    def get_exam(self, exam_id: int) -> Optional[ExamInfo]:
        exam = self.db.query(Exam).filter(Exam.id == exam_id).first()
        return _exam_info(exam) if exam else None

    def get_objectives(self, exam_id: int) -> List[ObjectiveInfo]:
        rows = (
            self.db.query(Objective)
            .filter(Objective.exam_id == exam_id)
            .order_by(Objective.id)
            .all()
        )
        return [_objective_info(o) for o in rows]

    def get_objectives_by_ids(self, objective_ids: Iterable[int]) -> Dict[int, ObjectiveInfo]:
        ids = list(set(objective_ids))
        if not ids:
            return {}
        rows = self.db.query(Objective).filter(Objective.id.in_(ids)).all()
        return {o.id: _objective_info(o) for o in rows}

    def get_questions_for_session(
        self,
        exam_id: int,
        mode: SessionMode,
        objective_ids: Optional[List[int]] = None,
    ) -> List[QuestionData]:
        """
        All active questions of an exam in authoring order, optionally limited to
        some objectives. Test sessions never receive answers from here.
        """
        query = self.db.query(Question).filter(Question.exam_id == exam_id, Question.is_active == True)  # noqa: E712
        if objective_ids:
            query = query.filter(Question.objective_id.in_(objective_ids))
        rows = query.order_by(Question.id).all()
        include_answers = mode == SessionMode.STUDY
        return [_question_data(q, include_answers) for q in rows]

    def get_by_ids(
        self,
        question_ids: List[int],
        include_answers: bool,
        active_only: bool = False,
    ) -> List[QuestionData]:
        """Questions in the order the ids were given; unknown ids are skipped."""
        if not question_ids:
            return []
        query = self.db.query(Question).filter(Question.id.in_(list(set(question_ids))))
        if active_only:
            query = query.filter(Question.is_active == True)  # noqa: E712
        by_id = {q.id: q for q in query.all()}
        return [_question_data(by_id[qid], include_answers) for qid in question_ids if qid in by_id]

    def count_active_by_objective(self, exam_id: int) -> Dict[int, int]:
        rows = (
            self.db.query(Question.objective_id, func.count(Question.id))
            .filter(
                Question.exam_id == exam_id,
                Question.is_active == True,  # noqa: E712
                Question.objective_id.isnot(None),
            )
            .group_by(Question.objective_id)
            .all()
        )
        return {objective_id: count for objective_id, count in rows}

    @staticmethod
    def validate_answer(question: QuestionData, selected: Iterable[int]) -> bool:
        """Set equality against the correct answer indices; order and duplicates do not matter."""
        if not question.correct_answers:
            return False
        return set(selected) == set(question.correct_answers)
