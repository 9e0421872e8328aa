from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from app.core.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    # Identity provider subject id. This is the join key across systems, never generated locally.
    id = Column(String(255), primary_key=True)

    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
