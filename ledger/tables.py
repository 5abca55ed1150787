from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("free_downloads >= 0", name="ck_users_free_downloads_non_negative"),
        CheckConstraint("total_downloads >= 0", name="ck_users_total_downloads_non_negative"),
    )

    id = Column(String(128), primary_key=True, index=True)
    free_downloads = Column(Integer, nullable=False, default=5)
    total_downloads = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class CoverRow(Base):
    __tablename__ = "covers"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(128), index=True, nullable=True)
    book_title = Column(String(200), nullable=False)
    author_name = Column(String(200), nullable=False)
    genre = Column(String(100), nullable=False)
    keywords = Column(String(500), nullable=True)
    mood = Column(String(100), nullable=True)
    color_palette = Column(String(200), nullable=True)
    prompt = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    downloaded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)


class PaymentRow(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(100), unique=True, nullable=False, index=True)
    user_id = Column(String(128), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False)
    status = Column(String(16), nullable=False)
    credits_added = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class PendingPaymentRow(Base):
    __tablename__ = "pending_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(100), unique=True, nullable=False, index=True)
    user_id = Column(String(128), index=True, nullable=False)
    email = Column(String(320), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False)
    credits = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
