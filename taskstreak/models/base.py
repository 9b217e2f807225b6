from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    # Immutable once written; updates never touch it
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
