from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class AppendOnlyModel(Base):
    """Rows that are written once and never updated"""
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    def insert(self, db: Session, commit: bool = True):
        db.add(self)
        if commit:
            db.commit()
            db.refresh(self)
        else:
            db.flush()
        return self

    @classmethod
    def fetch_one(cls, db: Session, **filters: Any) -> Optional["AppendOnlyModel"]:
        return db.scalars(select(cls).filter_by(**filters)).first()


class BaseModel(AppendOnlyModel):
    """Mutable rows, with updated_at refreshed on every write"""
    __abstract__ = True

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def update(self, db: Session, commit: bool = True):
        db.add(self)
        if commit:
            db.commit()
            db.refresh(self)
        return self
