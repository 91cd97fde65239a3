# tradejournal/domain/models.py
"""
Domain types shared by the matching engine.

Lots and the LotLedger only live inside a single matching pass; the other
records are plain values handed back to the query/reporting layer.
"""

from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Deque, List, Optional, Tuple

# Flatness tolerance for quantities after repeated fractional consumption
EPSILON = 1e-8

# Tolerance for the closed-cycle quantity balance check
BALANCE_TOLERANCE = 1e-6


class TradeJournalError(Exception):
    """Base error for the trade journal core."""


class UnbalancedTradeError(TradeJournalError):
    """A closed-trade cycle whose quantities don't net back to flat."""

    def __init__(self, scope_key: str, balance: float, execution_ids: List[str]):
        self.scope_key = scope_key
        self.balance = balance
        self.execution_ids = execution_ids
        super().__init__(
            f"Closed trade cycle for {scope_key} is unbalanced by {balance:.10f} "
            f"(executions: {', '.join(execution_ids) or 'none'})"
        )


def sign_of(value: float) -> int:
    """Sign of a quantity, treating anything within EPSILON of zero as flat."""
    if value > EPSILON:
        return 1
    if value < -EPSILON:
        return -1
    return 0


def is_flat(value: float) -> bool:
    return abs(value) <= EPSILON


def scope_key_for(execution) -> str:
    """Matching scope of an execution: one ledger per account + instrument."""
    return f"{execution.account_id}:{execution.instrument_id}"


def signed_quantity_for(execution) -> float:
    return execution.quantity if execution.side == "BUY" else -execution.quantity


def sort_key_for(execution) -> Tuple[datetime, str]:
    # Exports can share a timestamp; the execution id keeps the order stable
    return execution.executed_at, str(execution.id)


def as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; they are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(ts: datetime) -> int:
    return int(round(as_utc(ts).timestamp() * 1000))


@dataclass(frozen=True)
class ExecutionForCalc:
    """A recorded buy/sell fill, as consumed by the matching engine."""
    id: str
    account_id: str
    instrument_id: str
    symbol: str
    executed_at: datetime  # aware UTC
    side: str  # BUY or SELL
    quantity: float  # always positive
    price: float
    commission: float = 0.0  # positive cost
    fees: float = 0.0  # positive cost
    account_code: str = ""
    exchange: Optional[str] = None
    asset_type: Optional[str] = None
    currency: Optional[str] = None

    @property
    def signed_quantity(self) -> float:
        return signed_quantity_for(self)

    @property
    def charges(self) -> float:
        return self.commission + self.fees

    @property
    def scope_key(self) -> str:
        return scope_key_for(self)


@dataclass
class Lot:
    """Open inventory slice. Positive qty is long, negative is short."""
    qty: float
    price: float
    opened_at: Optional[datetime] = None  # None for inherited inventory


@dataclass(frozen=True)
class LotMatch:
    """Outcome of closing a signed quantity against a ledger."""
    gross: float
    matched: float
    hold_weighted_ms: float
    remaining: float


class LotLedger:
    """
    Open lots for one (account, instrument) scope.

    New inventory goes on the tail; closes always consume from the head,
    so the oldest open lot is matched first (FIFO).
    """

    def __init__(self, lots: Optional[List[Lot]] = None):
        self._lots: Deque[Lot] = deque(lots or [])

    def __len__(self) -> int:
        return len(self._lots)

    def __bool__(self) -> bool:
        return bool(self._lots)

    def __iter__(self):
        return iter(self._lots)

    @property
    def position(self) -> float:
        return sum(lot.qty for lot in self._lots)

    def push(self, lot: Lot) -> None:
        self._lots.append(lot)

    def peek_front(self) -> Optional[Lot]:
        return self._lots[0] if self._lots else None

    def consume_front(self, qty: float) -> Lot:
        """
        Shrink the head lot by an unsigned quantity.

        Returns the consumed slice, signed like the head lot. The head is
        removed once what is left of it is below EPSILON.
        """
        lot = self._lots[0]
        taken = min(abs(qty), abs(lot.qty))
        direction = sign_of(lot.qty)
        lot.qty -= direction * taken

        if abs(lot.qty) < EPSILON:
            self._lots.popleft()

        return Lot(qty=direction * taken, price=lot.price, opened_at=lot.opened_at)

    def close_against(
        self,
        signed_qty: float,
        price: float,
        at: Optional[datetime] = None,
        limit: Optional[float] = None,
    ) -> LotMatch:
        """
        Match a signed quantity against opposing lots, oldest first.

        Stops when the quantity (or `limit`, if given) is used up or the head
        lot no longer opposes it. The unmatched part comes back as `remaining`.
        """
        remaining = signed_qty
        budget = abs(signed_qty) if limit is None else min(abs(limit), abs(signed_qty))
        gross = 0.0
        matched = 0.0
        hold_weighted_ms = 0.0

        while budget > EPSILON and self._lots:
            front = self._lots[0]
            direction = sign_of(remaining)
            if direction == 0 or sign_of(front.qty) != -direction:
                break

            closed = self.consume_front(budget)
            match_qty = abs(closed.qty)

            if closed.qty > 0 and direction < 0:
                gross += match_qty * (price - closed.price)
            elif closed.qty < 0 and direction > 0:
                gross += match_qty * (closed.price - price)

            if at is not None and closed.opened_at is not None:
                hold_ms = max(0.0, (at - closed.opened_at) / timedelta(milliseconds=1))
                hold_weighted_ms += hold_ms * match_qty

            matched += match_qty
            budget -= match_qty
            remaining -= direction * match_qty

        return LotMatch(
            gross=gross,
            matched=matched,
            hold_weighted_ms=hold_weighted_ms,
            remaining=0.0 if is_flat(remaining) else remaining,
        )

    def clear(self) -> None:
        self._lots.clear()


@dataclass(frozen=True)
class OpeningPosition:
    """Inventory held before the first execution in scope, history unknown."""
    quantity: float = 0.0
    avg_cost: float = 0.0


@dataclass(frozen=True)
class ExecutionPnl:
    """Realized P&L attributed to a single execution."""
    execution_id: str
    executed_at: datetime
    realized_pnl: float  # net of commission and fees
    gross_realized_pnl: float
    matched_quantity: float
    cumulative_pnl: float
    avg_hold_time_ms: float


@dataclass(frozen=True)
class ClosedTradeExecution:
    """The slice of one execution that belongs to a closed-trade cycle."""
    id: str
    executed_at: datetime
    side: str  # BUY or SELL, direction of this slice
    quantity: float
    price: float
    commission: float  # pro-rated to the slice
    fees: float  # pro-rated to the slice
    fraction: float  # slice quantity / execution quantity

    @property
    def signed_quantity(self) -> float:
        return self.quantity if self.side == "BUY" else -self.quantity


@dataclass(frozen=True)
class ClosedTradeGroup:
    """One flat-to-flat trade cycle for an account and instrument."""
    trade_id: str
    group_key: str
    instrument_key: str
    account_id: str
    account_code: str
    instrument_id: str
    symbol: str
    side: str  # LONG or SHORT
    open_time: datetime
    close_time: datetime
    total_quantity: float
    avg_entry_price: float
    avg_exit_price: float
    gross_realized_pnl: float
    realized_pnl: float
    total_commission: float
    trade_date: str  # YYYY-MM-DD of the close, UTC
    opening_quantity: float
    closing_quantity: float = 0.0
    executions: Tuple[ClosedTradeExecution, ...] = field(default_factory=tuple)

    @property
    def hold_time(self) -> timedelta:
        return self.close_time - self.open_time

    @property
    def signed_quantity_balance(self) -> float:
        """
        Inherited quantity plus every member slice; zero for a closed cycle.

        The opening_quantity term is part of the balance. For a cycle that
        started from inherited inventory the members alone sum to
        -opening_quantity, not to zero.
        """
        return self.opening_quantity + sum(e.signed_quantity for e in self.executions)


@dataclass(frozen=True)
class Metrics:
    """Summary statistics over a P&L series."""
    realized: float
    win_rate: float  # percent
    profit_factor: float  # inf when there are wins and no losses
    avg_win: float
    avg_loss: float  # negative
    expectancy: float
    max_drawdown: float
    commissions: float
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class HistogramBucket:
    range: str
    count: int
    start: float
    end: float
