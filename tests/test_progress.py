# -*- coding: utf-8 -*-
from bookin.progress import (
    books_with_progress,
    calculate_accuracy,
    calculate_completion_rate,
    calculate_mastery_level,
    complete_session,
    get_progress,
    mastery_label,
    record_answer,
)
from conftest import FREE_BOOK, PAID_BOOK, auth_header


class TestMastery:
    def test_worked_example_rounds_half_up(self):
        # 4/4 做咗、3 題啱：0.7 × 0.75 + 0.3 × 1 = 0.825 → 83
        assert calculate_mastery_level(["q1", "q2", "q3", "q4"], ["q1", "q2", "q3"], 4) == 83

    def test_nothing_answered(self):
        assert calculate_mastery_level([], [], 10) == 0

    def test_zero_questions(self):
        assert calculate_mastery_level(["q1"], ["q1"], 0) == 0

    def test_all_correct_is_capped(self):
        assert calculate_mastery_level(["q1", "q2", "q3"], ["q1", "q2", "q3"], 2) == 100

    def test_accuracy_and_completion(self):
        assert calculate_accuracy(["q1", "q2", "q3"], ["q1"]) == 33
        assert calculate_completion_rate(["q1", "q2"], 8) == 25

    def test_labels(self):
        assert mastery_label(83) == "Expert"
        assert mastery_label(60) == "Proficient"
        assert mastery_label(40) == "Learning"
        assert mastery_label(20) == "Beginner"
        assert mastery_label(19) == "Just Started"


class TestRecordAnswer:
    def test_correct_then_wrong_removes_from_correct(self, store):
        record_answer(store, "u1", PAID_BOOK, "q1", True, 4)
        p = record_answer(store, "u1", PAID_BOOK, "q1", False, 4)
        assert p.questions_completed == ["q1"]
        assert p.questions_correct == []

    def test_wrong_then_correct(self, store):
        record_answer(store, "u1", PAID_BOOK, "q1", False, 4)
        p = record_answer(store, "u1", PAID_BOOK, "q1", True, 4)
        assert p.questions_correct == ["q1"]

    def test_mastery_recomputed(self, store):
        for qid, ok in (("q1", True), ("q2", True), ("q3", True), ("q4", False)):
            p = record_answer(store, "u1", PAID_BOOK, qid, ok, 4)
        assert p.mastery_level == 83
        assert p.synced_at is not None

    def test_books_with_progress(self, store):
        record_answer(store, "u1", PAID_BOOK, "q1", True, 4)
        complete_session(store, "u1", FREE_BOOK, 4)
        assert books_with_progress(store, "u1") == [PAID_BOOK]

    def test_missing_progress(self, store):
        assert get_progress(store, "u1", PAID_BOOK) is None


class TestProgressRoutes:
    def test_answer_free_book_graded_on_server(self, client):
        headers = auth_header("user-1")
        res = client.post(f"/api/progress/{FREE_BOOK}/answers", json={"questionId": "q1", "answer": "A"}, headers=headers)
        assert res.status_code == 200
        data = res.json()
        assert data["correct"] is True
        assert data["progress"]["questionsCompleted"] == ["q1"]

        res = client.post(f"/api/progress/{FREE_BOOK}/answers", json={"questionId": "q2", "answer": "false"}, headers=headers)
        assert res.json()["correct"] is False

    def test_started_books(self, client):
        headers = auth_header("user-1")
        assert client.get("/api/progress/books", headers=headers).json() == {"bookIds": []}
        client.post(f"/api/progress/{FREE_BOOK}/answers", json={"questionId": "q1", "answer": "A"}, headers=headers)
        assert client.get("/api/progress/books", headers=headers).json() == {"bookIds": [FREE_BOOK]}

    def test_answer_locked_book_is_402(self, client):
        res = client.post(
            f"/api/progress/{PAID_BOOK}/answers",
            json={"questionId": "q1", "answer": "A"},
            headers=auth_header("user-1"),
        )
        assert res.status_code == 402

    def test_unknown_question_is_404(self, client):
        res = client.post(
            f"/api/progress/{FREE_BOOK}/answers",
            json={"questionId": "nope", "answer": "A"},
            headers=auth_header("user-1"),
        )
        assert res.status_code == 404

    def test_complete_records_streak(self, client):
        headers = auth_header("user-1")
        res = client.post(f"/api/progress/{FREE_BOOK}/complete", headers=headers)
        assert res.status_code == 200
        assert res.json()["streak"]["currentStreak"] == 1
        assert client.get("/api/streak", headers=headers).json()["currentStreak"] == 1

    def test_list_and_read(self, client):
        headers = auth_header("user-1")
        client.post(f"/api/progress/{FREE_BOOK}/answers", json={"questionId": "q1", "answer": "A"}, headers=headers)
        listed = client.get("/api/progress", headers=headers).json()
        assert [p["bookId"] for p in listed] == [FREE_BOOK]

        one = client.get(f"/api/progress/{FREE_BOOK}", headers=headers).json()
        assert one["stats"]["questionsAnswered"] == 1
        assert client.get(f"/api/progress/{PAID_BOOK}", headers=headers).status_code == 404
