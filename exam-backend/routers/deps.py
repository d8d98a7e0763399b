"""
Per-request wiring: one SQLAlchemy session shared by the store, the question
bank and every engine component built on top of them.
"""

from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy.orm import Session

from database.database import get_db
from database.question_bank import QuestionBank
from database.session_store import SessionStore
from session_engine.aggregator import PerformanceAggregator
from session_engine.answers import AnswerProcessor
from session_engine.clock import utc_now
from session_engine.lifecycle import SessionLifecycleManager
from session_engine.scorer import Scorer


@dataclass
class Engine:
    store: SessionStore
    bank: QuestionBank
    lifecycle: SessionLifecycleManager
    answers: AnswerProcessor
    scorer: Scorer
    aggregator: PerformanceAggregator
    clock: object = utc_now


def build_engine(db: Session, clock=utc_now, rng=None) -> Engine:
    store = SessionStore(db)
    bank = QuestionBank(db)
    scorer = Scorer(store, bank, clock=clock)
    aggregator = PerformanceAggregator(store, bank, clock=clock)
    lifecycle = SessionLifecycleManager(store, bank, scorer, aggregator, clock=clock, rng=rng)
    answers = AnswerProcessor(lifecycle, store, bank, clock=clock)
    return Engine(store, bank, lifecycle, answers, scorer, aggregator, clock)


def get_clock():
    """Overridden in tests to pin the current time."""
    return utc_now


def get_engine(db: Session = Depends(get_db), clock=Depends(get_clock)) -> Engine:
    return build_engine(db, clock=clock)
