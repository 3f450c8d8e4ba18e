"""SQLAlchemy model for keyed JSON state documents."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StateDocument(Base):
    """One independently keyed JSON document (connections, settings, activity, ...)."""

    __tablename__ = "state_documents"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return f"<StateDocument key={self.key} updated_at={self.updated_at.isoformat()}>"
