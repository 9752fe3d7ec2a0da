# bookin/routers/streak.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps import current_user_id, get_store
from ..docstore import DocumentStore
from ..errors import ValidationError
from ..streak import (
    StreakState,
    get_streak_status,
    load_streak,
    record_practice,
    rescue_streak,
    save_streak,
    utc_today,
)

router = APIRouter(prefix="/streak", tags=["streak"])


def _out(state: StreakState) -> dict:
    return {**state.to_doc(), "status": get_streak_status(state, utc_today()).to_dict()}


@router.get("")
def read_streak(user_id: str = Depends(current_user_id), store: DocumentStore = Depends(get_store)):
    return _out(load_streak(store, user_id))


@router.post("/practice")
def practice(user_id: str = Depends(current_user_id), store: DocumentStore = Depends(get_store)):
    state = record_practice(load_streak(store, user_id), utc_today())
    save_streak(store, user_id, state)
    return _out(state)


@router.post("/rescue")
def rescue(user_id: str = Depends(current_user_id), store: DocumentStore = Depends(get_store)):
    state, rescued = rescue_streak(load_streak(store, user_id), utc_today())
    if not rescued:
        raise ValidationError("Streak cannot be rescued")
    save_streak(store, user_id, state)
    return _out(state)
