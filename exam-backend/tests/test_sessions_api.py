from conftest import NETWORK_EXAM, PLAN_EXAM, SCENARIO_EXAM


def _start(client, headers, **body):
    payload = {"exam_id": NETWORK_EXAM, "mode": "study"}
    payload.update(body)
    response = client.post("/sessions/start", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


def _answer(client, headers, session_id, question_id, selected, **extra):
    body = {"answer": {"question_id": question_id, "selected_answers": selected, **extra}}
    return client.put(f"/sessions/{session_id}", json=body, headers=headers)


class TestService:
    def test_root_and_health(self, client):
        assert client.get("/").json()["name"] == "Exam Session API"
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/health/database").json()["database"] == "sqlite"

    def test_requires_token(self, client):
        response = client.post("/sessions/start", json={"exam_id": NETWORK_EXAM, "mode": "study"})
        assert response.status_code in (401, 403)

    def test_rejects_bad_token(self, client):
        response = client.get("/sessions/history", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401


class TestStudyFlow:
    def test_start_answer_submit(self, client, headers):
        data = _start(client, headers)
        session_id = data["session"]["id"]
        assert data["is_resuming"] is False
        assert data["questions"][0]["correct_answers"] == [0]

        response = _answer(client, headers, session_id, 101, [0], time_spent_seconds=20)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["feedback"]["is_correct"] is True
        assert body["data"]["feedback"]["explanation"] == "Explanation for 101"
        assert body["data"]["session"]["current_question_index"] == 1

        response = client.post(f"/sessions/{session_id}/submit", headers=headers)
        result = response.json()["data"]
        assert result["correct_count"] == 1
        assert result["skipped_count"] == 5
        assert result["status"] == "submitted"

    def test_start_twice_resumes(self, client, headers):
        first = _start(client, headers)
        second = _start(client, headers, selection_mode="random")

        assert second["is_resuming"] is True
        assert second["session"]["id"] == first["session"]["id"]

    def test_flag_navigation_and_time_sync(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]

        flagged = client.put(f"/sessions/{session_id}", json={"flag": {"question_id": 103}}, headers=headers)
        assert flagged.json()["data"]["session"]["flags"] == {"103": True}

        moved = client.put(f"/sessions/{session_id}", json={"current_question_index": 4}, headers=headers)
        assert moved.json()["data"]["session"]["current_question_index"] == 4

        synced = client.put(
            f"/sessions/{session_id}", json={"time_sync": {"time_spent_seconds": 90}}, headers=headers,
        )
        assert synced.status_code == 200

    def test_pause_and_resume(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]

        paused = client.post(f"/sessions/{session_id}/pause", headers=headers)
        assert paused.json()["data"]["session"]["status"] == "paused"

        resumed = client.post(f"/sessions/{session_id}/resume", headers=headers)
        data = resumed.json()["data"]
        assert data["session"]["status"] == "active"
        assert data["expired"] is False
        assert len(data["questions"]) == 6


class TestTestFlow:
    def test_payloads_hide_answers(self, client, headers):
        data = _start(client, headers, exam_id=SCENARIO_EXAM, mode="test")
        session_id = data["session"]["id"]

        assert all("correct_answers" not in q and "explanation" not in q for q in data["questions"])
        assert data["session"]["time_remaining_seconds"] == 60

        response = _answer(client, headers, session_id, 201, [0])
        body = response.json()["data"]
        assert body["acknowledged"] is True
        assert "feedback" not in body
        assert "is_correct" not in body["session"]["answers"]["201"]

        fetched = client.get(f"/sessions/{session_id}", headers=headers).json()["data"]["session"]
        assert "is_correct" not in fetched["answers"]["201"]
        assert "result" not in fetched

    def test_scenario_submit_is_idempotent(self, client, headers):
        session_id = _start(client, headers, exam_id=SCENARIO_EXAM, mode="test")["session"]["id"]
        _answer(client, headers, session_id, 201, [0])
        _answer(client, headers, session_id, 202, [1])

        first = client.post(f"/sessions/{session_id}/submit", headers=headers).json()["data"]
        second = client.post(f"/sessions/{session_id}/submit", headers=headers).json()["data"]

        assert first == second
        assert first["score"] == 33.3
        assert first["passed"] is False
        assert (first["correct_count"], first["incorrect_count"], first["skipped_count"]) == (1, 1, 1)

    def test_expiry(self, client, headers, clock):
        session_id = _start(client, headers, exam_id=SCENARIO_EXAM, mode="test")["session"]["id"]
        _answer(client, headers, session_id, 201, [0])
        clock.advance(seconds=61)

        response = _answer(client, headers, session_id, 202, [1, 2])
        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"]["type"] == "expired"
        assert body["data"]["status"] == "expired"
        assert body["data"]["correct_count"] == 1

        again = _answer(client, headers, session_id, 202, [1, 2])
        assert again.status_code == 409
        assert again.json()["error"]["type"] == "invalid_state"

        submit = client.post(f"/sessions/{session_id}/submit", headers=headers)
        assert submit.status_code == 409

        fetched = client.get(f"/sessions/{session_id}", headers=headers).json()["data"]["session"]
        assert fetched["status"] == "expired"
        assert fetched["result"]["is_auto_submitted"] is True

    def test_results_after_submit(self, client, headers):
        session_id = _start(client, headers, exam_id=SCENARIO_EXAM, mode="test")["session"]["id"]

        early = client.get(f"/sessions/{session_id}/results", headers=headers)
        assert early.status_code == 409

        client.post(f"/sessions/{session_id}/submit", headers=headers)
        review = client.get(f"/sessions/{session_id}/results", headers=headers).json()["data"]

        assert review["result"]["skipped_count"] == 3
        assert {q["question_id"] for q in review["questions"]} == {201, 202, 203}
        assert all("correct_answers" in q for q in review["questions"])


class TestErrors:
    def test_unknown_session(self, client, headers):
        response = client.get("/sessions/does-not-exist", headers=headers)
        assert response.status_code == 404
        assert response.json()["error"]["type"] == "not_found"

    def test_other_users_session(self, client, headers, other_headers):
        session_id = _start(client, headers)["session"]["id"]

        response = client.get(f"/sessions/{session_id}", headers=other_headers)

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "forbidden"

    def test_update_requires_exactly_one_action(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]

        both = client.put(
            f"/sessions/{session_id}",
            json={"flag": {"question_id": 101}, "current_question_index": 2},
            headers=headers,
        )
        neither = client.put(f"/sessions/{session_id}", json={}, headers=headers)

        assert both.status_code == 422
        assert neither.status_code == 422

    def test_question_not_in_session(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]

        response = _answer(client, headers, session_id, 201, [0])

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "validation_error"

    def test_index_out_of_bounds(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]
        response = client.put(f"/sessions/{session_id}", json={"current_question_index": 6}, headers=headers)
        assert response.status_code == 409

    def test_unknown_exam(self, client, headers):
        response = client.post("/sessions/start", json={"exam_id": 999, "mode": "study"}, headers=headers)
        assert response.status_code == 404

    def test_invalid_mode(self, client, headers):
        response = client.post("/sessions/start", json={"exam_id": NETWORK_EXAM, "mode": "exam"}, headers=headers)
        assert response.status_code == 422


class TestHistoryAndAnalytics:
    def test_history(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]
        client.post(f"/sessions/{session_id}/submit", headers=headers)
        _start(client, headers, mode="test")

        data = client.get("/sessions/history", headers=headers).json()["data"]

        assert data["total"] == 1
        assert data["sessions"][0]["id"] == session_id

    def test_bookmarks(self, client, headers):
        session_id = _start(client, headers)["session"]["id"]
        client.put(f"/sessions/{session_id}", json={"flag": {"question_id": 103}}, headers=headers)
        client.put(f"/sessions/{session_id}", json={"flag": {"question_id": 105}}, headers=headers)

        response = client.get("/sessions/bookmarks", params={"exam_id": NETWORK_EXAM, "limit": 1}, headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [b["question_id"] for b in data["bookmarks"]] == [103]
        assert data["pagination"] == {"total": 2, "limit": 1, "offset": 0, "has_more": True}

    def test_bookmarks_limit_bounds(self, client, headers):
        response = client.get("/sessions/bookmarks", params={"limit": 0}, headers=headers)
        assert response.status_code == 422

    def test_weak_areas(self, client, headers):
        session_id = _start(client, headers, exam_id=PLAN_EXAM)["session"]["id"]
        for qid in (301, 302, 303):
            _answer(client, headers, session_id, qid, [1])

        data = client.get("/analytics/weak-areas", headers=headers).json()["data"]

        assert data["weak_areas"][0]["accuracy"] == 0.0
        assert data["focus_plan"]["priority"] == "critical"

    def test_plan(self, client, headers):
        response = client.post("/analytics/plan", json={"exam_id": PLAN_EXAM, "target_score": 80}, headers=headers)
        data = response.json()["data"]

        assert response.status_code == 200
        assert data["sections"][0]["priority"] == "high"
        assert data["days_needed"] >= 1

    def test_plan_bounds(self, client, headers):
        response = client.post("/analytics/plan", json={"exam_id": PLAN_EXAM, "target_score": 30}, headers=headers)
        assert response.status_code == 422

    def test_analytics(self, client, headers):
        response = client.get("/analytics", params={"period": "quarter"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["period"] == "quarter"

    def test_analytics_invalid_period(self, client, headers):
        response = client.get("/analytics", params={"period": "decade"}, headers=headers)
        assert response.status_code == 400
