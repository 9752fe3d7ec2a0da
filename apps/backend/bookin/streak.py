# bookin/streak.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import Field

from .docstore import DocumentStore, doc_path
from .schemas import CamelModel

# 漏咗最多一日（相隔 ≤ 2 日）仍然可以接續
GRACE_DAYS = 2
ON_FIRE_AT = 3
MILESTONES = (3, 7, 14, 20, 30, 50, 100)
MILESTONE_STEP_AFTER_LAST = 10


def utc_today() -> date:
    # 以 UTC 日期計「今日」，同前端一致
    return datetime.now(timezone.utc).date()


class StreakState(CamelModel):
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_practiced_date: Optional[date] = None
    total_days_practiced: int = Field(default=0, ge=0)


class StreakPhase(str, Enum):
    NEVER_PRACTICED = "never_practiced"
    PRACTICED_TODAY = "practiced_today"
    IN_GRACE_PERIOD = "in_grace_period"
    STREAK_BROKEN = "streak_broken"


@dataclass(frozen=True)
class StreakStatus:
    phase: StreakPhase
    current_streak: int
    can_rescue: bool
    days_until_reset: int
    is_on_fire: bool
    next_milestone: int

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "currentStreak": self.current_streak,
            "canRescue": self.can_rescue,
            "daysUntilReset": self.days_until_reset,
            "isOnFire": self.is_on_fire,
            "nextMilestone": self.next_milestone,
        }


def classify(last_practiced: Optional[date], today: date) -> Tuple[StreakPhase, int]:
    """(phase, gap)；gap = today - last_practiced 日數。"""
    if last_practiced is None:
        return StreakPhase.NEVER_PRACTICED, 0
    gap = (today - last_practiced).days
    if gap <= 0:
        # gap < 0 只會喺時區 / 時鐘調整後出現，當今日已練習
        return StreakPhase.PRACTICED_TODAY, 0
    if gap <= GRACE_DAYS:
        return StreakPhase.IN_GRACE_PERIOD, gap
    return StreakPhase.STREAK_BROKEN, gap


def next_milestone(current_streak: int) -> int:
    for m in MILESTONES:
        if current_streak < m:
            return m
    # 100 之後：目前 streak 再加 10 日（105 → 115，唔係湊整數）
    return current_streak + MILESTONE_STEP_AFTER_LAST


def record_practice(state: StreakState, today: date) -> StreakState:
    phase, _gap = classify(state.last_practiced_date, today)

    if phase is StreakPhase.PRACTICED_TODAY:
        return state
    if phase is StreakPhase.NEVER_PRACTICED:
        new_streak = 1
    elif phase is StreakPhase.IN_GRACE_PERIOD:
        # 昨日有練（gap=1）或者救返（gap=2）
        new_streak = state.current_streak + 1
    else:
        # 今日練習就係新 streak 嘅第 1 日
        new_streak = 1

    return StreakState(
        current_streak=new_streak,
        longest_streak=max(state.longest_streak, new_streak),
        last_practiced_date=today,
        total_days_practiced=state.total_days_practiced + 1,
    )


def get_streak_status(state: StreakState, today: date) -> StreakStatus:
    phase, gap = classify(state.last_practiced_date, today)

    if phase in (StreakPhase.NEVER_PRACTICED, StreakPhase.STREAK_BROKEN):
        return StreakStatus(
            phase=phase,
            current_streak=0,
            can_rescue=False,
            days_until_reset=0,
            is_on_fire=False,
            next_milestone=MILESTONES[0],
        )

    in_grace = phase is StreakPhase.IN_GRACE_PERIOD
    return StreakStatus(
        phase=phase,
        current_streak=state.current_streak,
        can_rescue=in_grace,
        days_until_reset=(GRACE_DAYS + 1 - gap) if in_grace else 0,
        is_on_fire=state.current_streak >= ON_FIRE_AT,
        next_milestone=next_milestone(state.current_streak),
    )


def rescue_streak(state: StreakState, today: date) -> Tuple[StreakState, bool]:
    if not get_streak_status(state, today).can_rescue:
        return state, False
    return record_practice(state, today), True


# === 儲存：users/{uid}/stats/streak ===========================================
def streak_doc(user_id: str) -> str:
    return doc_path("users", user_id, "stats", "streak")


def load_streak(store: DocumentStore, user_id: str) -> StreakState:
    data = store.get(streak_doc(user_id))
    return StreakState.model_validate(data) if data else StreakState()


def save_streak(store: DocumentStore, user_id: str, state: StreakState) -> None:
    store.set(streak_doc(user_id), state.to_doc())
