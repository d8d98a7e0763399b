"""
Cross-session performance analysis: weak/strong areas, study plans and trends.

Everything here is read-only. Only graded answers are counted, which means
study answers and answers of finalized test sessions; an in-flight test
session never contributes correctness.
"""

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from session_engine.clock import utc_now
from session_engine.errors import NotFoundError, ValidationError
from session_engine.scorer import percentage
from session_engine.selection import visible_history
from session_engine.types import ExamSession, SessionMode, TERMINAL_STATUSES

# ─── Config ───────────────────────────────────────────────────────────────────

WEAK_THRESHOLD = 70.0
CRITICAL_THRESHOLD = 50.0
STRONG_THRESHOLD = 85.0
STRONG_MIN_ANSWERS = 5
STRONG_AREAS_LIMIT = 8
SLOW_ANSWER_SECONDS = 120
TREND_BAND_PERCENT = 5.0

PLAN_TARGET_RANGE = (50, 100)
PLAN_DAILY_HOURS_RANGE = (0.5, 12)
SECONDS_PER_REVIEW_QUESTION = 3 * 60
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90, "year": 365}
PERFORMANCE_TREND_DAYS = 7
RECENT_SESSIONS_LIMIT = 10


def compute_trend(values: Sequence[float]) -> str:
    """
    Compare the mean of the second half of a series with the first half.
    The split point is len // 2, so an odd middle sample belongs to the second half.
    """
    if len(values) < 2:
        return "stable"
    middle = len(values) // 2
    first, second = values[:middle], values[middle:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)

    if first_avg == 0:
        return "increasing" if second_avg > 0 else "stable"
    change = (second_avg - first_avg) / first_avg * 100
    if change > TREND_BAND_PERCENT:
        return "increasing"
    if change < -TREND_BAND_PERCENT:
        return "decreasing"
    return "stable"


def recommendation_for(accuracy: float, average_time: float) -> dict:
    if accuracy < CRITICAL_THRESHOLD:
        return {
            "type": "foundation",
            "message": "This area needs fundamental review. Start with basic concepts.",
            "action": "Review core concepts and attempt easier questions",
        }
    if accuracy < WEAK_THRESHOLD:
        return {
            "type": "improvement",
            "message": "Focus on understanding why you get questions wrong.",
            "action": "Review incorrect answers and practice similar questions",
        }
    if average_time > SLOW_ANSWER_SECONDS:
        return {
            "type": "speed",
            "message": "You understand the concepts but need to work on speed.",
            "action": "Practice timed sessions to improve response time",
        }
    return {
        "type": "maintain",
        "message": "Good performance! Keep practicing to maintain this level.",
        "action": "Continue regular practice with mixed question types",
    }


def focus_plan(weak_areas: List[dict]) -> dict:
    if not weak_areas:
        return {
            "priority": "maintenance",
            "message": "Great work! No significant weak areas detected.",
            "recommendations": [
                "Continue balanced study across all objectives",
                "Focus on maintaining your strong performance",
                "Take practice tests to simulate exam conditions",
            ],
        }

    critical = [a for a in weak_areas if a["accuracy"] < CRITICAL_THRESHOLD]
    if critical:
        return {
            "priority": "critical",
            "message": f"You have {len(critical)} critical area(s) that need immediate attention.",
            "recommendations": [
                f'Start with "{critical[0]["title"]}" - your weakest area',
                "Review fundamental concepts before attempting questions",
                "Spend 60% of study time on these critical areas",
                "Track improvement daily until accuracy reaches 70%+",
            ],
        }

    return {
        "priority": "improvement",
        "message": f"Focus on {len(weak_areas)} area(s) that need improvement.",
        "recommendations": [
            f'Prioritize "{weak_areas[0]["title"]}"',
            "Spend 40% of study time on these areas",
            "Review explanations for incorrect answers carefully",
            "Practice until accuracy consistently exceeds 75%",
        ],
    }


@dataclass
class ObjectiveStats:
    answered: int = 0
    correct: int = 0
    time_spent: int = 0
    attempted: Set[int] = field(default_factory=set)
    missed: Set[int] = field(default_factory=set)

    @property
    def accuracy(self) -> float:
        return percentage(self.correct, self.answered)

    @property
    def average_time(self) -> float:
        return round(self.time_spent / self.answered, 1) if self.answered else 0.0


class PerformanceAggregator:

    def __init__(self, store, bank, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.bank = bank
        self.clock = clock

    def _graded_history(self, user_id: str, exam_id: Optional[int] = None) -> List[ExamSession]:
        return visible_history(self.store.list_for_user(user_id, exam_id=exam_id))

    def _objective_stats(self, sessions: Iterable[ExamSession]) -> Dict[int, ObjectiveStats]:
        answered = [
            (qid, answer)
            for session in sessions
            for qid, answer in session.answers.items()
            if answer.is_graded
        ]
        questions = {
            q.id: q for q in self.bank.get_by_ids(sorted({qid for qid, _ in answered}), include_answers=False)
        }

        stats: Dict[int, ObjectiveStats] = {}
        for qid, answer in answered:
            question = questions.get(qid)
            if question is None or question.objective_id is None:
                continue
            entry = stats.setdefault(question.objective_id, ObjectiveStats())
            entry.answered += 1
            entry.time_spent += answer.time_spent_seconds
            entry.attempted.add(qid)
            if answer.is_correct:
                entry.correct += 1
            else:
                entry.missed.add(qid)
        return stats

    # ─── Weak areas ───────────────────────────────────────────────────────────

    def compute_weak_areas(self, user_id: str, exam_id: Optional[int] = None) -> dict:
        """
        Per-objective accuracy over every graded answer of the user. Weak means
        accuracy below 70%; strong means 85% or more over at least 5 answers.
        """
        stats = self._objective_stats(self._graded_history(user_id, exam_id))
        objectives = self.bank.get_objectives_by_ids(stats.keys())

        areas = []
        for objective_id, entry in stats.items():
            objective = objectives.get(objective_id)
            if objective is None:
                continue
            areas.append({
                "objective_id": objective_id,
                "exam_id": objective.exam_id,
                "title": objective.title,
                "description": objective.description,
                "total_questions": entry.answered,
                "correct_answers": entry.correct,
                "accuracy": entry.accuracy,
                "average_time_seconds": entry.average_time,
                "recommendation": recommendation_for(entry.accuracy, entry.average_time),
            })

        weak = sorted(
            (a for a in areas if a["accuracy"] < WEAK_THRESHOLD),
            key=lambda a: (a["accuracy"], a["objective_id"]),
        )
        strong = sorted(
            (a for a in areas if a["accuracy"] >= STRONG_THRESHOLD and a["total_questions"] >= STRONG_MIN_ANSWERS),
            key=lambda a: (-a["accuracy"], a["objective_id"]),
        )[:STRONG_AREAS_LIMIT]

        total = sum(e.answered for e in stats.values())
        correct = sum(e.correct for e in stats.values())
        return {
            "weak_areas": weak,
            "strong_areas": strong,
            "overall_performance": {
                "total_questions": total,
                "correct_answers": correct,
                "accuracy": percentage(correct, total),
                "objectives_attempted": len(areas),
            },
            "focus_plan": focus_plan(weak),
        }

    def weak_objective_ids(self, user_id: str, exam_id: int) -> List[int]:
        """Weak objectives of one exam, weakest first."""
        return [a["objective_id"] for a in self.compute_weak_areas(user_id, exam_id)["weak_areas"]]

    # ─── Study plan ───────────────────────────────────────────────────────────

    def generate_study_plan(
        self,
        user_id: str,
        exam_id: int,
        target_score: float = 80,
        daily_hours: float = 2,
        target_date: Optional[datetime] = None,
    ) -> dict:
        low, high = PLAN_TARGET_RANGE
        if not low <= target_score <= high:
            raise ValidationError(f"target_score must be between {low} and {high}")
        low, high = PLAN_DAILY_HOURS_RANGE
        if not low <= daily_hours <= high:
            raise ValidationError(f"daily_hours must be between {low} and {high}")

        exam = self.bank.get_exam(exam_id)
        if exam is None:
            raise NotFoundError("Exam not found")

        objectives = self.bank.get_objectives(exam_id)
        question_counts = self.bank.count_active_by_objective(exam_id)
        stats = self._objective_stats(self._graded_history(user_id, exam_id))

        sections = []
        for objective in objectives:
            entry = stats.get(objective.id, ObjectiveStats())
            accuracy = entry.accuracy
            if accuracy >= target_score:
                continue

            total_questions = question_counts.get(objective.id, 0)
            gap = target_score - accuracy
            to_review = max(total_questions - len(entry.attempted), len(entry.missed))
            hours = math.ceil(to_review * SECONDS_PER_REVIEW_QUESTION / 3600 + gap / 10)

            if accuracy < CRITICAL_THRESHOLD:
                priority = "high"
            elif accuracy >= WEAK_THRESHOLD:
                priority = "low"
            else:
                priority = "medium"

            focus_areas = []
            if accuracy < 30:
                focus_areas.append("Fundamental concepts review needed")
            if len(entry.missed) > 5:
                focus_areas.append("Practice incorrect questions")
            if entry.answered < 10:
                focus_areas.append("More practice needed")

            sections.append({
                "objective_id": objective.id,
                "title": objective.title,
                "current_accuracy": accuracy,
                "target_accuracy": target_score,
                "questions_to_review": to_review,
                "estimated_hours": hours,
                "priority": priority,
                "focus_areas": focus_areas,
            })

        sections.sort(key=lambda s: (PRIORITY_ORDER[s["priority"]], s["current_accuracy"]))

        total_hours = sum(s["estimated_hours"] for s in sections)
        days_needed = math.ceil(total_hours / daily_hours)
        now = self.clock()
        total_answered = sum(e.answered for e in stats.values())
        total_correct = sum(e.correct for e in stats.values())

        return {
            "exam_id": exam_id,
            "target_score": target_score,
            "daily_hours": daily_hours,
            "current_overall_accuracy": percentage(total_correct, total_answered),
            "sections": sections,
            "total_estimated_hours": total_hours,
            "days_needed": days_needed,
            "start_date": now.isoformat(),
            "target_date": (target_date or now + timedelta(days=days_needed)).isoformat(),
            "recommendations": self._plan_recommendations(sections, daily_hours),
        }

    @staticmethod
    def _plan_recommendations(sections: List[dict], daily_hours: float) -> List[str]:
        recommendations = []
        high = [s for s in sections if s["priority"] == "high"]
        if high:
            recommendations.append(f"Focus on {len(high)} high-priority objectives with accuracy below 50%")
        if any("Practice incorrect questions" in s["focus_areas"] for s in sections):
            recommendations.append('Use "Incorrect Questions" study mode to review your mistakes')
        if daily_hours < 2:
            recommendations.append("Consider increasing daily study hours for better retention")
        needs_practice = [s for s in sections if "More practice needed" in s["focus_areas"]]
        if needs_practice and len(needs_practice) > len(sections) / 2:
            recommendations.append("Complete more practice questions to establish a performance baseline")
        return recommendations

    # ─── Analytics ────────────────────────────────────────────────────────────

    def analytics(self, user_id: str, exam_id: Optional[int] = None, period: str = "month") -> dict:
        if period not in PERIOD_DAYS:
            raise ValidationError(f"period must be one of {', '.join(PERIOD_DAYS)}")

        now = self.clock()
        start = now - timedelta(days=PERIOD_DAYS[period])
        sessions = self.store.list_for_user(user_id, exam_id=exam_id)
        graded = visible_history(sessions)
        finalized = [s for s in sessions if s.status in TERMINAL_STATUSES]

        daily: Dict[str, dict] = {}

        def day(moment: datetime) -> dict:
            key = moment.date().isoformat()
            return daily.setdefault(key, {
                "date": key, "study_time_seconds": 0, "questions_answered": 0,
                "correct_answers": 0, "accuracy": 0.0, "sessions": 0, "tests": 0,
            })

        for session in graded:
            for answer in session.answers.values():
                if answer.is_graded and answer.answered_at >= start:
                    stats = day(answer.answered_at)
                    stats["questions_answered"] += 1
                    stats["study_time_seconds"] += answer.time_spent_seconds
                    stats["correct_answers"] += 1 if answer.is_correct else 0
            if session.mode == SessionMode.STUDY and session.started_at >= start:
                day(session.started_at)["sessions"] += 1
            elif session.mode == SessionMode.TEST and session.submitted_at and session.submitted_at >= start:
                day(session.submitted_at)["tests"] += 1

        daily_stats = [daily[key] for key in sorted(daily)]
        for stats in daily_stats:
            stats["accuracy"] = percentage(stats["correct_answers"], stats["questions_answered"])

        period_totals = {
            "total_study_time_seconds": sum(d["study_time_seconds"] for d in daily_stats),
            "total_questions": sum(d["questions_answered"] for d in daily_stats),
            "total_correct": sum(d["correct_answers"] for d in daily_stats),
            "total_sessions": sum(d["sessions"] for d in daily_stats),
            "total_tests": sum(d["tests"] for d in daily_stats),
        }
        period_totals["average_accuracy"] = percentage(period_totals["total_correct"], period_totals["total_questions"])
        period_totals["average_study_time_seconds"] = (
            round(period_totals["total_study_time_seconds"] / len(daily_stats), 1) if daily_stats else 0.0
        )

        weekly: Dict[str, List[int]] = OrderedDict()
        for stats in daily_stats:
            iso = datetime.fromisoformat(stats["date"]).isocalendar()
            bucket = weekly.setdefault(f"{iso[0]}-W{iso[1]:02d}", [0, 0])
            bucket[0] += stats["correct_answers"]
            bucket[1] += stats["questions_answered"]
        weekly_accuracy = [percentage(c, t) for c, t in weekly.values()]

        all_answers = [a for s in graded for a in s.answers.values() if a.is_graded]
        total_correct = sum(1 for a in all_answers if a.is_correct)
        scores = [s.score for s in finalized if s.score is not None]

        recent_cutoff = now - timedelta(days=PERFORMANCE_TREND_DAYS)
        performance_trend = [
            {
                "session_id": s.id,
                "date": s.submitted_at.isoformat(),
                "mode": s.mode.value,
                "score": s.score,
            }
            for s in sorted(finalized, key=lambda s: s.submitted_at)
            if s.submitted_at >= recent_cutoff
        ]

        return {
            "period": period,
            "date_range": {"start": start.isoformat(), "end": now.isoformat()},
            "totals": {
                "total_sessions": len(sessions),
                "completed_sessions": len(finalized),
                "total_questions_answered": len(all_answers),
                "correct_answers": total_correct,
                "accuracy": percentage(total_correct, len(all_answers)),
                "total_time_spent_seconds": sum(s.time_spent_seconds for s in finalized),
                "average_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
                "best_score": max(scores) if scores else 0.0,
                "passed_count": sum(1 for s in finalized if s.passed),
            },
            "sessions_by_mode": {
                mode.value: sum(1 for s in sessions if s.mode == mode) for mode in SessionMode
            },
            "recent_sessions": [
                {
                    "id": s.id,
                    "exam_id": s.exam_id,
                    "mode": s.mode.value,
                    "status": s.status.value,
                    "started_at": s.started_at.isoformat(),
                    "submitted_at": s.submitted_at.isoformat() if s.submitted_at else None,
                    "score": s.score,
                    "passed": s.passed,
                }
                for s in sessions[:RECENT_SESSIONS_LIMIT]
            ],
            "daily_stats": daily_stats,
            "period_totals": period_totals,
            "trends": {
                "accuracy": compute_trend([d["accuracy"] for d in daily_stats]),
                "study_time": compute_trend([d["study_time_seconds"] for d in daily_stats]),
                "weekly": compute_trend(weekly_accuracy),
            },
            "performance_trend": performance_trend,
        }
