# apps/backend/bookin/models.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, String, TIMESTAMP, func
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class Document(Base):
    """
    一份 document（Firestore 風格）：
    - path:   完整路徑，例如 users/u1/purchases/atomic-habits
    - parent: 所屬 collection 路徑，例如 users/u1/purchases
    - doc_id: 路徑最後一段
    - data:   JSON 內容（camelCase 欄位，同前端一致）
    """
    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String, primary_key=True)
    parent: Mapped[str] = mapped_column(String, index=True, nullable=False)
    doc_id: Mapped[str] = mapped_column(String, nullable=False)

    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
