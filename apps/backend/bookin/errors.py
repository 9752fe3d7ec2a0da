# apps/backend/bookin/errors.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookinError(Exception):
    """所有會轉成 `{"error": message}` JSON 回應嘅錯誤基底。"""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(BookinError):
    """缺少 / 無效憑證，或 webhook 簽名驗證失敗。"""
    status_code = 401


class ValidationError(BookinError):
    status_code = 400


class NotFoundError(BookinError):
    status_code = 404


class PaymentRequiredError(BookinError):
    """書本未解鎖（未購買、冇有效訂閱、冇收藏集）。"""
    status_code = 402


class NotConfiguredError(BookinError):
    """付款 / 郵件 / 登入服務未設定，唔好嘗試執行。"""
    status_code = 500


class ExternalProviderError(BookinError):
    status_code = 500


async def bookin_error_handler(request: Request, exc: BookinError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookinError, bookin_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
