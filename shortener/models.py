"""SQLAlchemy ORM models for the URL shortener service.

This module defines the durable store schema using SQLAlchemy declarative models
with indexes on every column the redirect path, the metrics queries and the
expiry sweep filter on.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_id (VARCHAR(16) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL)
    ├─ clicks (INTEGER DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ, INDEXED)
    ├─ last_accessed (TIMESTAMPTZ NULL)
    └─ expires_at (TIMESTAMPTZ, INDEXED)

How to Use
===========
**Step 1 — Import**::
    from shortener.models import ShortLink

**Step 2 — Create a new link**::
    link = ShortLink.create("abc1234", "https://example.com", grace_period_seconds=300)
    db.add(link)
    await db.commit()

**Step 3 — Query links**::
    result = await db.execute(select(ShortLink).where(ShortLink.short_id == "abc1234"))
    link = result.scalar_one_or_none()

Key Behaviours
===============
- short_id is unique; the constraint is the final arbiter of identifier collisions.
- clicks is only ever changed by an atomic ``clicks + delta`` update.
- last_accessed stays NULL until the first redirect.
- expires_at is created_at plus the configured grace period; the expiry sweep
  deletes rows once it has passed.

Classes:
    ShortLink:  A short identifier mapped to its original URL with click analytics.
"""

import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["ShortLink", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_id: Mapped[str] = mapped_column(String(16), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )
    last_accessed: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, nullable=True
    )
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    @classmethod
    def create(
        cls,
        short_id: str,
        original_url: str,
        grace_period_seconds: int,
        now: datetime.datetime | None = None,
    ) -> "ShortLink":
        created_at = now or utcnow()
        return cls(
            short_id=short_id,
            original_url=original_url,
            clicks=0,
            created_at=created_at,
            last_accessed=None,
            expires_at=created_at + datetime.timedelta(seconds=grace_period_seconds),
        )

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, short_id='{self.short_id}', clicks={self.clicks})>"
