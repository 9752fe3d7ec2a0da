# bookin/progress.py
from __future__ import annotations

import math
from datetime import datetime
from fractions import Fraction
from typing import Iterable, List, Optional

from pydantic import Field

from .docstore import SERVER_TIMESTAMP, DocumentStore, doc_path, utcnow
from .schemas import CamelModel

ACCURACY_WEIGHT = Fraction(7, 10)
COMPLETION_WEIGHT = Fraction(3, 10)

MASTERY_LABELS = (
    (80, "Expert"),
    (60, "Proficient"),
    (40, "Learning"),
    (20, "Beginner"),
)


class UserProgress(CamelModel):
    id: str                                   # = book_id
    user_id: str
    book_id: str
    questions_completed: List[str] = Field(default_factory=list)
    questions_correct: List[str] = Field(default_factory=list)
    last_accessed: Optional[datetime] = None
    mastery_level: int = Field(default=0, ge=0, le=100)
    synced_to_cloud: bool = False
    synced_at: Optional[datetime] = None


def _round_half_up(x: Fraction) -> int:
    return math.floor(x + Fraction(1, 2))


def _percent(num: int, den: int) -> int:
    if den <= 0:
        return 0
    return _round_half_up(Fraction(num, den) * 100)


def calculate_mastery_level(completed: Iterable[str], correct: Iterable[str], total_questions: int) -> int:
    """
    round_half_up((0.7 × accuracy + 0.3 × completion) × 100)

    用 Fraction 計，0.825 唔會因為浮點變成 82.4999…：
    4 題全做、3 題啱 → 83。
    """
    if total_questions <= 0:
        return 0
    done = set(completed)
    right = set(correct) & done
    if not done:
        return 0
    accuracy = Fraction(len(right), len(done))
    completion = min(Fraction(len(done), total_questions), Fraction(1))
    level = _round_half_up((accuracy * ACCURACY_WEIGHT + completion * COMPLETION_WEIGHT) * 100)
    return max(0, min(100, level))


def calculate_accuracy(completed: Iterable[str], correct: Iterable[str]) -> int:
    done = set(completed)
    return _percent(len(set(correct) & done), len(done))


def calculate_completion_rate(completed: Iterable[str], total_questions: int) -> int:
    return min(100, _percent(len(set(completed)), total_questions))


def mastery_label(level: int) -> str:
    for threshold, label in MASTERY_LABELS:
        if level >= threshold:
            return label
    return "Just Started"


def progress_stats(progress: UserProgress, total_questions: int) -> dict:
    return {
        "questionsAnswered": len(progress.questions_completed),
        "questionsCorrect": len(progress.questions_correct),
        "accuracy": calculate_accuracy(progress.questions_completed, progress.questions_correct),
        "completionRate": calculate_completion_rate(progress.questions_completed, total_questions),
        "masteryLevel": progress.mastery_level,
        "masteryLabel": mastery_label(progress.mastery_level),
    }


# === 儲存：users/{uid}/progress/{bookId} ======================================
def progress_collection(user_id: str) -> str:
    return doc_path("users", user_id, "progress")


def _from_doc(user_id: str, book_id: str, data: dict) -> UserProgress:
    return UserProgress(
        id=book_id,
        user_id=user_id,
        book_id=book_id,
        questions_completed=list(data.get("questionsCompleted") or []),
        questions_correct=list(data.get("questionsCorrect") or []),
        last_accessed=data.get("lastAccessed"),
        mastery_level=int(data.get("masteryLevel") or 0),
        synced_to_cloud=True,
        synced_at=data.get("syncedAt"),
    )


def get_progress(store: DocumentStore, user_id: str, book_id: str) -> Optional[UserProgress]:
    data = store.get(doc_path("users", user_id, "progress", book_id))
    return _from_doc(user_id, book_id, data) if data is not None else None


def get_or_create_progress(store: DocumentStore, user_id: str, book_id: str) -> UserProgress:
    existing = get_progress(store, user_id, book_id)
    if existing is not None:
        return existing
    return UserProgress(id=book_id, user_id=user_id, book_id=book_id, last_accessed=utcnow())


def get_all_progress(store: DocumentStore, user_id: str) -> List[UserProgress]:
    return [_from_doc(user_id, snap.id, snap.to_dict()) for snap in store.list(progress_collection(user_id))]


def books_with_progress(store: DocumentStore, user_id: str) -> List[str]:
    return [p.book_id for p in get_all_progress(store, user_id) if p.questions_completed]


def save_progress(store: DocumentStore, progress: UserProgress) -> None:
    store.set(
        doc_path("users", progress.user_id, "progress", progress.book_id),
        {
            "questionsCompleted": progress.questions_completed,
            "questionsCorrect": progress.questions_correct,
            "lastAccessed": progress.last_accessed or utcnow(),
            "masteryLevel": progress.mastery_level,
            "syncedAt": SERVER_TIMESTAMP,
        },
        merge=True,
    )


def record_answer(
    store: DocumentStore,
    user_id: str,
    book_id: str,
    question_id: str,
    is_correct: bool,
    total_questions: int,
) -> UserProgress:
    progress = get_or_create_progress(store, user_id, book_id)

    completed = list(progress.questions_completed)
    if question_id not in completed:
        completed.append(question_id)
    correct = [q for q in progress.questions_correct if q != question_id]
    if is_correct:
        # 之前答錯、今次答啱 → 加返；之前啱、今次錯 → 移除
        correct.append(question_id)

    progress = progress.model_copy(update={
        "questions_completed": completed,
        "questions_correct": correct,
        "last_accessed": utcnow(),
        "mastery_level": calculate_mastery_level(completed, correct, total_questions),
    })
    save_progress(store, progress)
    return get_progress(store, user_id, book_id) or progress


def complete_session(store: DocumentStore, user_id: str, book_id: str, total_questions: int) -> UserProgress:
    progress = get_or_create_progress(store, user_id, book_id)
    progress = progress.model_copy(update={
        "last_accessed": utcnow(),
        "mastery_level": calculate_mastery_level(
            progress.questions_completed, progress.questions_correct, total_questions
        ),
    })
    save_progress(store, progress)
    return get_progress(store, user_id, book_id) or progress
