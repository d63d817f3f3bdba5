"""
SQLAlchemy ORM models for the price broker.

One table: the durable tier of the KIS token cache, one row per environment.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from kisprice.db.base import Base


class KISTokenCacheRow(Base):
    """Shared KIS bearer token for one environment (``live`` / ``paper``).

    ``refresh_claim_started_at`` is a soft lock: non-null and recent means
    some invocation is currently calling the KIS token endpoint. ``token``
    and ``expires_at`` stay null until the first refresh for the environment
    completes.
    """

    __tablename__ = "kis_token_cache"

    environment: Mapped[str] = mapped_column(String(16), primary_key=True)
    token: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    refresh_claim_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<KISTokenCacheRow {self.environment} expires_at={self.expires_at} "
            f"claim={self.refresh_claim_started_at}>"
        )
