# tests/conftest.py
"""Test configuration and fixtures."""

import pytest
from datetime import datetime, timedelta, timezone
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

from tradejournal.db.models import Account, Instrument
from tradejournal.domain.models import ExecutionForCalc

T0 = datetime(2026, 2, 20, 14, 30, 0, tzinfo=timezone.utc)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine shared by one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create in-memory SQLite test database."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="test_account")
def test_account_fixture(session: Session):
    account = Account(account_code="U1234567", currency="USD")
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


@pytest.fixture(name="test_instrument")
def test_instrument_fixture(session: Session):
    instrument = Instrument(symbol="AAPL", conid=265598, exchange="NASDAQ", asset_type="STK")
    session.add(instrument)
    session.commit()
    session.refresh(instrument)
    return instrument


@pytest.fixture(name="make_execution")
def make_execution_fixture():
    """
    Factory for engine input rows.

    Times are given as minutes after T0 so ordering is easy to read in tests.
    """

    def _make(
        exec_id: str,
        side: str,
        quantity: float,
        price: float,
        minutes: float = 0,
        commission: float = 0.0,
        fees: float = 0.0,
        account_id: str = "a1",
        instrument_id: str = "i1",
        symbol: str = "SPY",
    ) -> ExecutionForCalc:
        return ExecutionForCalc(
            id=exec_id,
            account_id=account_id,
            instrument_id=instrument_id,
            symbol=symbol,
            executed_at=T0 + timedelta(minutes=minutes),
            side=side,
            quantity=quantity,
            price=price,
            commission=commission,
            fees=fees,
            account_code="U1234567",
        )

    return _make
