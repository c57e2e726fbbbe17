"""SQLAlchemy model for the persistent crawl frontier.

Each row is one URL the crawler has discovered. ``status`` only moves
pending -> in_progress -> completed, or back from in_progress to pending when an
attempt is abandoned (worker cancelled, process restarted).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


class CrawlFrontierItem(Base):
    __tablename__ = "crawl_frontier"

    url: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
