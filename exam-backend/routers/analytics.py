"""
Analytics router.
Weak-area report, study-plan generation and progress analytics over a user's
session history. Read-only.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth.security import get_current_user_id
from routers.deps import Engine, get_engine

router = APIRouter(prefix="/analytics", tags=["analytics"])


# ─── Schemas ───────────────────────────────────────────────────────────────────

class StudyPlanRequest(BaseModel):
    exam_id: int
    target_score: float = Field(default=80, ge=50, le=100)
    daily_hours: float = Field(default=2, ge=0.5, le=12)
    target_date: Optional[datetime] = None


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.get("/weak-areas")
def weak_areas(
    exam_id: Optional[int] = None,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    return {"success": True, "data": engine.aggregator.compute_weak_areas(user_id, exam_id)}


@router.post("/plan")
def study_plan(
    body: StudyPlanRequest,
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    plan = engine.aggregator.generate_study_plan(
        user_id,
        body.exam_id,
        target_score=body.target_score,
        daily_hours=body.daily_hours,
        target_date=body.target_date,
    )
    return {"success": True, "data": plan}


@router.get("")
def progress_analytics(
    exam_id: Optional[int] = None,
    period: str = "month",
    user_id: str = Depends(get_current_user_id),
    engine: Engine = Depends(get_engine),
):
    """Totals, daily stats and trends for the last week, month, quarter or year."""
    return {"success": True, "data": engine.aggregator.analytics(user_id, exam_id, period)}
