"""
Usage Quota Model
=================

Per-user daily counters for the free-tier rate-limited actions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nutrilytics.db.base import Base


class UsageQuota(Base):
    """
    Daily usage counters, one row per user.

    Counters are zeroed once per UTC day, either lazily on read or by the
    scheduled sweep, and stamped with ``last_reset_at``.
    """

    __tablename__ = "usage_quotas"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)

    barcode_scans_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    photo_scans_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_messages_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_reset_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<UsageQuota(user_id={self.user_id}, barcode={self.barcode_scans_today}, "
            f"photo={self.photo_scans_today}, ai={self.ai_messages_today})>"
        )
