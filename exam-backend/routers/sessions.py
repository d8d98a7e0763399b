"""
Sessions router.
Start, read, resume, pause, update (answer / flag / navigation / time sync),
submit and review study and test sessions.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, model_validator

from auth.security import get_current_user_id
from routers.deps import Engine, get_engine
from session_engine.payloads import questions_payload, result_payload, session_payload
from session_engine.types import SelectionMode, SessionMode

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ─── Schemas ───────────────────────────────────────────────────────────────────

class StartSessionRequest(BaseModel):
    exam_id: int
    mode: SessionMode
    selection_mode: SelectionMode = SelectionMode.SEQUENTIAL
    max_questions: Optional[int] = Field(default=None, ge=1, le=500)
    objective_ids: Optional[List[int]] = None  # study only
    time_limit_seconds: Optional[int] = Field(default=None, ge=1)  # test only


class AnswerUpdate(BaseModel):
    question_id: int
    selected_answers: List[int]  # option indices; [] records a blank answer
    time_spent_seconds: int = Field(default=0, ge=0)


class FlagUpdate(BaseModel):
    question_id: int
    flagged: bool = True


class TimeSync(BaseModel):
    time_spent_seconds: Optional[int] = Field(default=None, ge=0)
    time_remaining_seconds: Optional[int] = Field(default=None, ge=0)


class UpdateSessionRequest(BaseModel):
    answer: Optional[AnswerUpdate] = None
    flag: Optional[FlagUpdate] = None
    current_question_index: Optional[int] = None
    time_sync: Optional[TimeSync] = None

    @model_validator(mode="after")
    def exactly_one_action(self):
        provided = [
            name for name in ("answer", "flag", "current_question_index", "time_sync")
            if getattr(self, name) is not None
        ]
        if len(provided) != 1:
            raise ValueError("Provide exactly one of: answer, flag, current_question_index, time_sync")
        return self


# ─── Helpers ───────────────────────────────────────────────────────────────────

def _ok(data) -> dict:
    return {"success": True, "data": data}


def _session_with_questions(engine: Engine, session, **extra) -> dict:
    data = {
        "session": session_payload(session, engine.clock()),
        "questions": questions_payload(engine.lifecycle.questions_for(session), session.mode),
    }
    data.update(extra)
    return data


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.post("/start")
def start_session(
    body: StartSessionRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Start a session, or return the caller's open one for the same exam and mode."""
    started = engine.lifecycle.start(
        user_id,
        body.exam_id,
        body.mode,
        selection_mode=body.selection_mode,
        max_questions=body.max_questions,
        objective_ids=body.objective_ids,
        time_limit_seconds=body.time_limit_seconds,
    )
    return _ok({
        "session": session_payload(started.session, engine.clock()),
        "questions": questions_payload(started.questions, started.session.mode),
        "is_resuming": started.is_resuming,
    })


@router.get("/history")
def session_history(
    exam_id: Optional[int] = None,
    mode: Optional[SessionMode] = None,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    sessions = engine.lifecycle.history(user_id, exam_id=exam_id, mode=mode)
    now = engine.clock()
    return _ok({"sessions": [session_payload(s, now) for s in sessions], "total": len(sessions)})


@router.get("/bookmarks")
def session_bookmarks(
    exam_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Questions flagged across the caller's study sessions, most recently flagged first."""
    return _ok(engine.lifecycle.bookmarks(user_id, exam_id=exam_id, limit=limit, offset=offset))


@router.get("/{session_id}")
def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    session = engine.lifecycle.get(session_id, user_id)
    return _ok({"session": session_payload(session, engine.clock())})


@router.post("/{session_id}/resume")
def resume_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Reactivate a paused session. An overdue test session comes back finalized."""
    session = engine.lifecycle.resume(session_id, user_id)
    return _ok(_session_with_questions(engine, session, expired=session.is_terminal))


@router.post("/{session_id}/pause")
def pause_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    session = engine.lifecycle.pause(session_id, user_id)
    return _ok({"session": session_payload(session, engine.clock())})


@router.put("/{session_id}")
def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    if body.answer is not None:
        outcome = engine.answers.submit_answer(
            session_id,
            user_id,
            body.answer.question_id,
            body.answer.selected_answers,
            body.answer.time_spent_seconds,
        )
        data = {"session": session_payload(outcome.session, engine.clock())}
        if outcome.feedback is not None:
            data["feedback"] = outcome.feedback
        else:
            data["acknowledged"] = True
        return _ok(data)

    if body.flag is not None:
        session = engine.answers.toggle_flag(session_id, user_id, body.flag.question_id, body.flag.flagged)
    elif body.current_question_index is not None:
        session = engine.answers.set_current_index(session_id, user_id, body.current_question_index)
    else:
        session = engine.lifecycle.sync_time(
            session_id,
            user_id,
            time_spent_seconds=body.time_sync.time_spent_seconds,
            time_remaining_seconds=body.time_sync.time_remaining_seconds,
        )
    return _ok({"session": session_payload(session, engine.clock())})


@router.post("/{session_id}/submit")
def submit_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Finalize a session. Submitting twice returns the same stored result."""
    result = engine.scorer.submit(session_id, user_id)
    return _ok(result_payload(result))


@router.get("/{session_id}/results")
def session_results(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    review = engine.scorer.results(session_id, user_id)
    return _ok({"result": result_payload(review["result"]), "questions": review["questions"]})
