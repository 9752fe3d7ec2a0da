# bookin/mailer_sendgrid.py
from __future__ import annotations

import json
import logging
import re
import time
from html import unescape
from typing import Callable, Optional, Tuple

import requests

from . import config

logger = logging.getLogger(__name__)

SEND_URL = "https://api.sendgrid.com/v3/mail/send"
RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_BACKOFF_SEC = 10


def _plain_text(html: str) -> str:
    # SendGrid 建議同時附純文字版本
    text = re.sub(r"(?i)<br\s*/?>|</p\s*>|</h\d\s*>", "\n", html)
    text = re.sub(r"<[^>]+>", "", text)
    lines = (ln.strip() for ln in unescape(text).splitlines())
    return "\n".join(ln for ln in lines if ln)


def _build_payload(to: str, subject: str, html: str, sender: str) -> dict:
    payload: dict = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {"email": sender, "name": config.get("EMAIL_FROM_NAME", "BookIn")},
        "subject": subject,
        "content": [
            {"type": "text/plain", "value": _plain_text(html)},
            {"type": "text/html", "value": html},
        ],
        "categories": ["login-code"],
        # 登入碼唔需要追蹤連結 / 開信
        "tracking_settings": {
            "click_tracking": {"enable": False},
            "open_tracking": {"enable": False},
        },
    }
    reply_to = config.get("EMAIL_REPLY_TO")
    if reply_to:
        payload["reply_to"] = {"email": reply_to}
    if config.get_bool("SENDGRID_SANDBOX_MODE"):
        payload["mail_settings"] = {"sandbox_mode": {"enable": True}}
    return payload


def _retry_delay(attempt: int, response: Optional[requests.Response] = None) -> int:
    retry_after = response.headers.get("Retry-After") if response is not None else None
    if retry_after and retry_after.isdigit():
        return int(retry_after)
    return min(2 ** attempt, MAX_BACKOFF_SEC)


def _describe(r: requests.Response) -> str:
    try:
        body = json.dumps(r.json(), ensure_ascii=False)
    except ValueError:
        body = r.text
    return f"{r.status_code}: {body}"


def send_email(
    to: str,
    subject: str,
    html: str,
    *,
    max_retries: int = 3,
    timeout_sec: int = 20,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[bool, str]:
    """
    經 SendGrid v3 寄一封信。回傳 (ok, message)：
      ok=True   message = "accepted" 或 "accepted id=<X-Message-Id>"
      ok=False  message = 設定缺失 / 網絡錯誤 / "<status>: <body>"
    429 同 5xx 會重試，最多 max_retries 次。
    """
    api_key = config.get("SENDGRID_API_KEY")
    sender = config.get("EMAIL_FROM")
    if not api_key:
        return False, "Missing SENDGRID_API_KEY"
    if not sender:
        return False, "Missing EMAIL_FROM"
    if not to:
        return False, "Missing recipient"

    payload = _build_payload(to, subject, html, sender)
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    for attempt in range(1, max_retries + 1):
        last_try = attempt == max_retries
        try:
            r = requests.post(SEND_URL, headers=headers, json=payload, timeout=timeout_sec)
        except requests.RequestException as e:
            if last_try:
                logger.error("SendGrid unreachable after %d attempts: %s", attempt, e)
                return False, f"network error: {e}"
            sleep(_retry_delay(attempt))
            continue

        if r.status_code == 202:
            msg_id = r.headers.get("X-Message-Id") or ""
            return True, f"accepted id={msg_id}" if msg_id else "accepted"

        if r.status_code in RETRY_STATUSES and not last_try:
            logger.warning("SendGrid returned %s, retrying (attempt %d)", r.status_code, attempt)
            sleep(_retry_delay(attempt, r))
            continue

        detail = _describe(r)
        logger.error("SendGrid rejected mail to %s: %s", to, detail)
        return False, detail

    return False, "no attempts made"
