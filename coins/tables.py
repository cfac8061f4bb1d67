"""
Persistent tables for the coin ledger.

UserCoins: current balance snapshot, one row per user (unique user_key).
CallbackRecord: one row per partner order, unique order_id is the idempotency gate.
CoinRecord: append-only audit log, unique idempotency_key backs at-most-once crediting.
  Keys are namespaced by source: "order:<orderId>", "checkin:<userKey>|<date>", "admin:<key>".
"""
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Date, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserCoins(Base):
    __tablename__ = "user_coins"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_key: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    coin_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_total_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_checkin_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    continuous_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CallbackRecord(Base):
    __tablename__ = "task_callback_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_key: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    reward_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    callback_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False, default="Asia/Shanghai")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CoinRecord(Base):
    __tablename__ = "coin_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_key: Mapped[int] = mapped_column(BigInteger, nullable=False)
    coin_change: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    change_reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_coin_records_user_key_created_at", "user_key", "created_at"),
        Index("ix_coin_records_created_at", "created_at"),
    )
