# tradejournal/db/models.py
"""
SQLModel definitions for the trading journal.
Designed for SQLite locally, PostgreSQL in production.
"""

from datetime import datetime, timezone
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
import sqlalchemy as sa
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(SQLModel, table=True):
    """Broker account."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    account_code: str = Field(index=True)  # e.g., U12345678
    currency: str = Field(default="USD")
    created_at: datetime = Field(default_factory=_utcnow, sa_type=sa.DateTime(timezone=True))

    executions: List["Execution"] = Relationship(back_populates="account", cascade_delete=True)
    day_notes: List["DayNote"] = Relationship(back_populates="account", cascade_delete=True)


class Instrument(SQLModel, table=True):
    """Tradable instrument (one per broker contract)."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    symbol: str = Field(index=True)
    conid: Optional[int] = Field(default=None, index=True)  # Broker contract ID
    exchange: Optional[str] = Field(default=None)
    asset_type: Optional[str] = Field(default=None)  # STK, ETF, ...
    currency: str = Field(default="USD")

    executions: List["Execution"] = Relationship(back_populates="instrument")


class Execution(SQLModel, table=True):
    """Individual fill (buy/sell), already deduplicated and validated on import."""
    __tablename__ = "execution"

    id: str = Field(default_factory=_uuid, primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)
    instrument_id: str = Field(foreign_key="instrument.id", index=True)

    broker_execution_id: str = Field(index=True)

    # Stored in UTC
    executed_at: datetime = Field(index=True, sa_type=sa.DateTime(timezone=True))

    side: str = Field()  # BUY or SELL
    quantity: float = Field()  # Always positive
    price: float = Field()
    commission: float = Field(default=0.0)  # Positive cost
    fees: float = Field(default=0.0)  # Positive cost
    currency: Optional[str] = Field(default=None)

    __table_args__ = (
        sa.UniqueConstraint("account_id", "broker_execution_id", name="uq_account_broker_exec"),
    )

    account: Account = Relationship(back_populates="executions")
    instrument: Instrument = Relationship(back_populates="executions")


class PositionSnapshot(SQLModel, table=True):
    """End-of-day position reported by the broker."""
    __tablename__ = "position_snapshot"

    id: str = Field(default_factory=_uuid, primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)
    instrument_id: str = Field(foreign_key="instrument.id", index=True)

    date: datetime = Field(index=True, sa_type=sa.DateTime(timezone=True))  # Day-level, midnight UTC
    quantity: float = Field(default=0.0)  # Signed
    avg_cost: float = Field(default=0.0)
    unrealized_pnl: Optional[float] = Field(default=None)

    __table_args__ = (
        sa.UniqueConstraint("account_id", "instrument_id", "date", name="uq_snapshot_day"),
    )


class DayNote(SQLModel, table=True):
    """Free-form journal note for one account and trading day."""
    __tablename__ = "day_note"

    id: str = Field(default_factory=_uuid, primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)
    date: str = Field(index=True)  # YYYY-MM-DD
    content: str = Field(default="")
    updated_at: datetime = Field(default_factory=_utcnow, sa_type=sa.DateTime(timezone=True))

    __table_args__ = (
        sa.UniqueConstraint("account_id", "date", name="uq_day_note"),
    )

    account: Account = Relationship(back_populates="day_notes")


class ClosedTradeNote(SQLModel, table=True):
    """Note attached to a reconstructed closed trade by its stable group key."""
    __tablename__ = "closed_trade_note"

    id: str = Field(default_factory=_uuid, primary_key=True)
    group_key: str = Field(unique=True, index=True)
    content: str = Field(default="")
    updated_at: datetime = Field(default_factory=_utcnow, sa_type=sa.DateTime(timezone=True))
