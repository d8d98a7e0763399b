import pytest

from conftest import NETWORK_EXAM, OTHER_USER_ID, SCENARIO_EXAM, USER_ID, _question
from database.models import Exam
from session_engine.errors import ForbiddenError, InvalidStateError, NotFoundError, SessionExpiredError
from session_engine.types import SelectionMode, SessionMode, SessionStatus


def _start_test(engine, exam_id=SCENARIO_EXAM, **options):
    return engine.lifecycle.start(USER_ID, exam_id, SessionMode.TEST, **options).session


class TestScenario:
    def test_partial_answer_is_incorrect_and_missing_answer_is_skipped(self, engine):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 201, [0])
        engine.answers.submit_answer(session.id, USER_ID, 202, [1])

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.correct_count == 1
        assert result.incorrect_count == 1
        assert result.skipped_count == 1
        assert result.total_questions == 3
        assert result.score == 33.3
        assert result.passed is False
        assert result.status == SessionStatus.SUBMITTED

    def test_set_equality_ignores_order(self, engine):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 202, [2, 1])

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.correct_count == 1

    def test_blank_answer_counts_as_skipped(self, engine):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 202, [])

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.skipped_count == 3
        assert result.incorrect_count == 0
        assert result.score == 0.0

    def test_section_scores_use_exam_bucket_for_questions_without_objective(self, engine):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 201, [0])
        engine.answers.submit_answer(session.id, USER_ID, 203, [0])

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.section_scores["20"].correct == 1
        assert result.section_scores["20"].total == 2
        assert result.section_scores["20"].percentage == 50.0
        assert result.section_scores[f"exam:{SCENARIO_EXAM}"].correct == 1
        assert result.section_scores[f"exam:{SCENARIO_EXAM}"].total == 1

    def test_full_marks_pass(self, engine):
        session = _start_test(engine)
        for qid, answer in ((201, [0]), (202, [1, 2]), (203, [0])):
            engine.answers.submit_answer(session.id, USER_ID, qid, answer)

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.score == 100.0
        assert result.passed is True

    def test_pass_mark_compares_unrounded_score(self, engine, db):
        db.add(Exam(id=4, code="THR-3", name="Threshold Exam",
                    passing_score=66.7, question_count=None, duration_minutes=None, is_active=True))
        db.flush()
        db.add_all([_question(qid, 4, None, [0]) for qid in (401, 402, 403)])
        db.commit()
        session = engine.lifecycle.start(USER_ID, 4, SessionMode.STUDY).session
        engine.answers.submit_answer(session.id, USER_ID, 401, [0])
        engine.answers.submit_answer(session.id, USER_ID, 402, [0])
        engine.answers.submit_answer(session.id, USER_ID, 403, [1])

        result = engine.scorer.submit(session.id, USER_ID)

        # 2/3 is 66.666..., displayed as 66.7 but still below the mark
        assert result.score == 66.7
        assert result.passed is False


class TestIdempotency:
    def test_second_submit_returns_stored_result(self, engine, clock):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 201, [0])
        first = engine.scorer.submit(session.id, USER_ID)

        clock.advance(seconds=20)
        second = engine.scorer.submit(session.id, USER_ID)

        assert second == first
        assert second.submitted_at == first.submitted_at

    def test_answers_are_graded_at_submission(self, engine):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 201, [0])
        engine.answers.submit_answer(session.id, USER_ID, 202, [1])
        assert all(a.is_correct is None for a in engine.store.get(session.id).answers.values())

        engine.scorer.submit(session.id, USER_ID)

        stored = engine.store.get(session.id)
        assert stored.answers[201].is_correct is True
        assert stored.answers[202].is_correct is False


class TestTiming:
    def test_test_time_spent_is_capped_by_time_limit(self, engine, clock):
        session = _start_test(engine, exam_id=NETWORK_EXAM, time_limit_seconds=600)
        clock.advance(seconds=120)

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.time_spent_seconds == 120

    def test_study_time_spent_is_sum_of_answer_times(self, engine):
        session = engine.lifecycle.start(USER_ID, NETWORK_EXAM, SessionMode.STUDY).session
        engine.answers.submit_answer(session.id, USER_ID, 101, [0], time_spent_seconds=30)
        engine.answers.submit_answer(session.id, USER_ID, 102, [0], time_spent_seconds=45)

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.time_spent_seconds == 75

    def test_study_time_keeps_synced_total_when_answering(self, engine):
        session = engine.lifecycle.start(USER_ID, NETWORK_EXAM, SessionMode.STUDY).session
        engine.lifecycle.sync_time(session.id, USER_ID, time_spent_seconds=500)

        outcome = engine.answers.submit_answer(session.id, USER_ID, 101, [0], time_spent_seconds=10)
        assert outcome.session.time_spent_seconds == 500

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.time_spent_seconds == 500

    def test_manual_submit_after_time_limit_expires_session(self, engine, clock):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 201, [0])
        clock.advance(seconds=61)

        with pytest.raises(SessionExpiredError) as exc_info:
            engine.scorer.submit(session.id, USER_ID)

        assert exc_info.value.result.status == SessionStatus.EXPIRED
        assert exc_info.value.result.correct_count == 1
        assert exc_info.value.result.is_auto_submitted is True
        assert exc_info.value.result.time_spent_seconds == 60

    def test_expired_session_rejects_manual_submit(self, engine, clock):
        session = _start_test(engine)
        clock.advance(seconds=61)
        engine.lifecycle.get(session.id, USER_ID)

        with pytest.raises(InvalidStateError):
            engine.scorer.submit(session.id, USER_ID)

    def test_auto_submit_path_returns_expired_result(self, engine, clock):
        session = _start_test(engine)
        clock.advance(seconds=61)
        first = engine.scorer.submit(session.id, is_auto_submit=True)

        again = engine.scorer.submit(session.id, is_auto_submit=True)

        assert first.status == SessionStatus.EXPIRED
        assert again == first


class TestAccess:
    def test_unknown_session(self, engine):
        with pytest.raises(NotFoundError):
            engine.scorer.submit("missing", USER_ID)

    def test_other_user_cannot_submit(self, engine):
        session = _start_test(engine)
        with pytest.raises(ForbiddenError):
            engine.scorer.submit(session.id, OTHER_USER_ID)


class TestResults:
    def test_results_require_terminal_session(self, engine):
        session = _start_test(engine)
        with pytest.raises(InvalidStateError):
            engine.scorer.results(session.id, USER_ID)

    def test_results_breakdown(self, engine):
        session = _start_test(engine)
        engine.answers.submit_answer(session.id, USER_ID, 201, [0])
        engine.answers.submit_answer(session.id, USER_ID, 202, [1])
        engine.answers.toggle_flag(session.id, USER_ID, 203, True)
        engine.scorer.submit(session.id, USER_ID)

        review = engine.scorer.results(session.id, USER_ID)
        by_id = {q["question_id"]: q for q in review["questions"]}

        assert review["result"].score == 33.3
        assert [q["question_number"] for q in review["questions"]] == [1, 2, 3]
        assert by_id[201]["is_correct"] is True
        assert by_id[201]["objective_title"] == "Scenario Objective"
        assert by_id[202]["correct_answers"] == [1, 2]
        assert by_id[202]["user_answer"] == [1]
        assert by_id[203]["skipped"] is True
        assert by_id[203]["flagged"] is True
        assert by_id[203]["objective_title"] is None

    def test_results_finalize_overdue_session(self, engine, clock):
        session = _start_test(engine)
        clock.advance(seconds=90)

        review = engine.scorer.results(session.id, USER_ID)

        assert review["result"].status == SessionStatus.EXPIRED

    def test_study_session_with_selection_mode_scores_its_own_order(self, engine):
        session = engine.lifecycle.start(
            USER_ID, NETWORK_EXAM, SessionMode.STUDY,
            selection_mode=SelectionMode.SEQUENTIAL, max_questions=2,
        ).session
        engine.answers.submit_answer(session.id, USER_ID, 101, [0])

        result = engine.scorer.submit(session.id, USER_ID)

        assert result.total_questions == 2
        assert result.score == 50.0
