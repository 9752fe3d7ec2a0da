# bookin/auth/auth_routes.py
from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from ..deps import current_user_id, get_entitlement_cache, get_store
from ..docstore import SERVER_TIMESTAMP, DocumentStore, doc_path, utcnow
from ..email_templates import compose_login_code_email
from ..entitlements import EntitlementCache
from ..errors import ExternalProviderError, ValidationError
from ..mailer_sendgrid import send_email
from .auth_utils import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

CODE_TTL_MINUTES = 10
MAX_ATTEMPTS = 5


class RequestCodeIn(BaseModel):
    email: EmailStr


class VerifyCodeIn(BaseModel):
    email: EmailStr
    code: str


def _norm_email(email: str) -> str:
    return email.lower().strip()


@router.post("/request-code")
def request_code(body: RequestCodeIn, store: DocumentStore = Depends(get_store)):
    email = _norm_email(body.email)
    code = f"{secrets.randbelow(1_000_000):06d}"

    # 同一個 email 只保留最新一個碼
    store.set(doc_path("loginCodes", email), {
        "code": code,
        "expiresAt": utcnow() + timedelta(minutes=CODE_TTL_MINUTES),
        "used": False,
        "attempts": 0,
        "createdAt": SERVER_TIMESTAMP,
    })

    subject, html = compose_login_code_email(code=code, minutes=CODE_TTL_MINUTES)
    ok, msg = send_email(to=email, subject=subject, html=html)
    if not ok:
        raise ExternalProviderError(f"Could not send sign-in code: {msg}")
    return {"ok": True}


def _find_or_create_user(store: DocumentStore, email: str) -> str:
    account_path = doc_path("accounts", email)
    account = store.get(account_path)
    if account and account.get("userId"):
        return str(account["userId"])

    user_id = uuid.uuid4().hex
    if not store.create(account_path, {"userId": user_id, "createdAt": SERVER_TIMESTAMP}):
        # 另一個 request 啱啱建立咗
        return str((store.get(account_path) or {})["userId"])
    store.set(doc_path("users", user_id), {"email": email, "createdAt": SERVER_TIMESTAMP})
    logger.info("Created user %s", user_id)
    return user_id


@router.post("/verify-code")
def verify_code(
    body: VerifyCodeIn,
    store: DocumentStore = Depends(get_store),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    email = _norm_email(body.email)
    code_path = doc_path("loginCodes", email)
    record = store.get(code_path)

    invalid = ValidationError("Code is incorrect or has expired")
    if not record or record.get("used") or not record.get("expiresAt") or record["expiresAt"] <= utcnow():
        raise invalid
    if int(record.get("attempts") or 0) >= MAX_ATTEMPTS:
        raise invalid
    if not hmac.compare_digest(str(record.get("code", "")), body.code.strip()):
        store.update(code_path, {"attempts": int(record.get("attempts") or 0) + 1})
        raise invalid

    store.update(code_path, {"used": True})
    user_id = _find_or_create_user(store, email)
    store.set(doc_path("users", user_id), {"lastSignInAt": SERVER_TIMESTAMP}, merge=True)

    # 登入後即刻重新讀取權限
    cache.get(user_id, force=True)

    return {
        "token": create_access_token(user_id=user_id, email=email),
        "userId": user_id,
        "email": email,
    }


@router.post("/signout")
def signout(
    user_id: str = Depends(current_user_id),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    cache.invalidate(user_id)
    return {"ok": True}
