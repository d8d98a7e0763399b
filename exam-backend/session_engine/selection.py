"""
Question-order strategies.

Each strategy returns an ordered list of question ids; the lifecycle manager
then filters them against the bank (active, same exam) and applies the cap.
History-based strategies read only graded answers, so an in-flight test
session never leaks correctness into a study pool.
"""

import random
from typing import Dict, List, Optional, Sequence, TypeVar

from session_engine.types import ExamSession, SessionMode, SessionStatus

T = TypeVar("T")


def shuffled(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Uniform random permutation of a copy; the input is left untouched."""
    rng = rng or random.SystemRandom()
    ordered = list(items)
    rng.shuffle(ordered)
    return ordered


def cap(question_ids: List[int], max_questions: Optional[int]) -> List[int]:
    """Hard cap: truncate, never pad."""
    if max_questions is None:
        return question_ids
    return question_ids[:max_questions]


def _unique(ids: List[int]) -> List[int]:
    seen = set()
    ordered = []
    for qid in ids:
        if qid not in seen:
            seen.add(qid)
            ordered.append(qid)
    return ordered


def _graded_answers_by_recency(history: List[ExamSession]):
    """(question_id, answer) pairs across sessions, newest answer first."""
    pairs = [
        (qid, answer)
        for session in history
        for qid, answer in session.answers.items()
        if answer.is_graded
    ]
    pairs.sort(key=lambda pair: pair[1].answered_at, reverse=True)
    return pairs


def flagged_ids(history: List[ExamSession]) -> List[int]:
    """Questions flagged in any prior session, newest session first, session order within."""
    ids = []
    for session in sorted(history, key=lambda s: s.started_at, reverse=True):
        ids.extend(qid for qid in session.question_order if session.flags.get(qid))
    return _unique(ids)


def incorrect_ids(history: List[ExamSession]) -> List[int]:
    """Questions answered incorrectly in any prior session, most recent mistake first."""
    return _unique([qid for qid, answer in _graded_answers_by_recency(history) if not answer.is_correct])


def review_ids(history: List[ExamSession]) -> List[int]:
    """Every previously graded question, most recently answered first."""
    return _unique([qid for qid, _ in _graded_answers_by_recency(history)])


def visible_history(history: List[ExamSession]) -> List[ExamSession]:
    """
    Sessions whose answers may feed a new study pool: every study session plus
    finalized test sessions.
    """
    return [
        s for s in history
        if s.mode == SessionMode.STUDY or s.status in (SessionStatus.SUBMITTED, SessionStatus.EXPIRED)
    ]


def rank_by_objective(
    question_objectives: Dict[int, Optional[int]],
    objective_rank: List[int],
) -> List[int]:
    """Order question ids by the rank of their objective, keeping id order within an objective."""
    position = {objective_id: i for i, objective_id in enumerate(objective_rank)}
    eligible = [qid for qid, oid in question_objectives.items() if oid in position]
    return sorted(eligible, key=lambda qid: (position[question_objectives[qid]], qid))
