# tradejournal/domain/reconstructor.py
"""
Closed-trade reconstruction from executions.
Implements FIFO lot matching, partial closes, opening inventory and flips,
and cuts the fill stream into flat-to-flat trade cycles.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from tradejournal import config
from tradejournal.domain.models import (
    BALANCE_TOLERANCE,
    EPSILON,
    ClosedTradeExecution,
    ClosedTradeGroup,
    Lot,
    LotLedger,
    OpeningPosition,
    UnbalancedTradeError,
    as_utc,
    is_flat,
    scope_key_for,
    sign_of,
    signed_quantity_for,
    sort_key_for,
    to_millis,
)

logger = logging.getLogger(__name__)


@dataclass
class WorkingTrade:
    """Accumulator for the cycle currently open in a scope."""
    account_id: str
    account_code: str
    instrument_id: str
    symbol: str
    exchange: Optional[str]
    asset_type: Optional[str]
    currency: Optional[str]
    side: str
    open_time: datetime
    opening_quantity: float
    entry_qty: float = 0.0
    entry_value: float = 0.0
    exit_qty: float = 0.0
    exit_value: float = 0.0
    gross_pnl: float = 0.0
    total_commission: float = 0.0
    executions: List[ClosedTradeExecution] = field(default_factory=list)

    @classmethod
    def start(cls, exe, side: str, opening_quantity: float) -> "WorkingTrade":
        return cls(
            account_id=exe.account_id,
            account_code=getattr(exe, "account_code", "") or "",
            instrument_id=exe.instrument_id,
            symbol=exe.symbol,
            exchange=getattr(exe, "exchange", None),
            asset_type=getattr(exe, "asset_type", None),
            currency=getattr(exe, "currency", None),
            side=side,
            open_time=exe.executed_at,
            opening_quantity=opening_quantity,
        )

    def add_slice(self, exe, signed_qty: float) -> None:
        """Record the part of an execution that belongs to this cycle, with its share of costs."""
        qty = abs(signed_qty)
        fraction = qty / exe.quantity if exe.quantity > EPSILON else 0.0
        commission = exe.commission * fraction
        fees = exe.fees * fraction

        self.executions.append(
            ClosedTradeExecution(
                id=exe.id,
                executed_at=exe.executed_at,
                side="BUY" if signed_qty > 0 else "SELL",
                quantity=qty,
                price=exe.price,
                commission=commission,
                fees=fees,
                fraction=fraction,
            )
        )
        self.total_commission += commission + fees

    @property
    def balance(self) -> float:
        # Counts inherited inventory, same as ClosedTradeGroup.signed_quantity_balance
        return self.opening_quantity + sum(e.signed_quantity for e in self.executions)


class TradeReconstructor:
    """Reconstructs closed trades from executions using FIFO matching."""

    @staticmethod
    def compute_closed_trade_groups(
        executions: Iterable,
        opening_positions: Optional[Mapping[str, OpeningPosition]] = None,
        strict: Optional[bool] = None,
    ) -> List[ClosedTradeGroup]:
        """
        Full reconstruction of closed trade cycles.
        Idempotent: the same executions and opening positions always give the
        same groups, ids included.

        Args:
            executions: ExecutionForCalc rows (any scope mix, any order)
            opening_positions: OpeningPosition per "account_id:instrument_id"
            strict: raise UnbalancedTradeError on a cycle that doesn't net to
                zero instead of logging and dropping it (defaults to config)

        Returns:
            Closed trade groups, most recently closed first
        """
        if opening_positions is None:
            opening_positions = {}
        if strict is None:
            strict = config.STRICT_TRADE_BALANCE

        by_scope = defaultdict(list)
        for exe in executions:
            by_scope[scope_key_for(exe)].append(exe)

        groups: List[ClosedTradeGroup] = []
        for scope_key, exes in by_scope.items():
            exes.sort(key=sort_key_for)
            opening = opening_positions.get(scope_key) or OpeningPosition()
            scope_groups = TradeReconstructor._reconstruct_scope(scope_key, exes, opening, strict)
            logger.debug(
                "Reconstructed %d closed trades from %d executions for %s",
                len(scope_groups), len(exes), scope_key,
            )
            groups.extend(scope_groups)

        # Most recent close first; trade id settles ties
        groups.sort(key=lambda g: g.trade_id)
        groups.sort(key=lambda g: g.close_time, reverse=True)
        return groups

    @staticmethod
    def _reconstruct_scope(
        scope_key: str,
        executions: List,
        opening: OpeningPosition,
        strict: bool,
    ) -> List[ClosedTradeGroup]:
        """Reconstruct cycles for a single account + instrument."""

        ledger = LotLedger()
        position_qty = opening.quantity or 0.0
        current: Optional[WorkingTrade] = None
        close_count = 0
        groups: List[ClosedTradeGroup] = []

        # Inherited inventory is one synthetic lot and opens the first cycle
        if not is_flat(position_qty) and executions:
            ledger.push(Lot(qty=position_qty, price=opening.avg_cost))
            current = WorkingTrade.start(
                executions[0],
                side="LONG" if position_qty > 0 else "SHORT",
                opening_quantity=position_qty,
            )
            current.entry_qty = abs(position_qty)
            current.entry_value = abs(position_qty) * opening.avg_cost

        for exe in executions:
            remaining = signed_quantity_for(exe)

            while abs(remaining) > EPSILON:
                if current is None:
                    current = WorkingTrade.start(
                        exe,
                        side="LONG" if remaining > 0 else "SHORT",
                        opening_quantity=position_qty,
                    )

                same_direction = sign_of(position_qty) == 0 or sign_of(remaining) == sign_of(position_qty)
                if same_direction:
                    # Extends (or opens) the position
                    ledger.push(Lot(qty=remaining, price=exe.price, opened_at=exe.executed_at))
                    position_qty += remaining
                    current.entry_qty += abs(remaining)
                    current.entry_value += abs(remaining) * exe.price
                    current.add_slice(exe, remaining)
                    remaining = 0.0
                    continue

                # Closes against open inventory, never past flat; a flip closes
                # the whole prior position here and opens on the next pass
                close_qty = min(abs(remaining), abs(position_qty))
                close_signed = sign_of(remaining) * close_qty
                match = ledger.close_against(close_signed, exe.price, limit=close_qty)

                position_qty += close_signed
                remaining -= close_signed

                current.exit_qty += close_qty
                current.exit_value += close_qty * exe.price
                current.gross_pnl += match.gross
                current.add_slice(exe, close_signed)

                if is_flat(position_qty) and current.exit_qty > EPSILON:
                    close_count += 1
                    group = TradeReconstructor._close_trade(
                        scope_key, current, exe.executed_at, close_count, strict
                    )
                    if group is not None:
                        groups.append(group)

                    current = None
                    position_qty = 0.0
                    # Drop float residue so the next cycle starts from an empty ledger
                    if all(is_flat(lot.qty) for lot in ledger):
                        ledger.clear()

        return groups

    @staticmethod
    def _close_trade(
        scope_key: str,
        trade: WorkingTrade,
        close_time: datetime,
        close_count: int,
        strict: bool,
    ) -> Optional[ClosedTradeGroup]:
        """Finalize a flat cycle, or refuse it when its quantities don't balance."""

        balance = trade.balance
        if abs(balance) > BALANCE_TOLERANCE:
            execution_ids = [e.id for e in trade.executions]
            if strict:
                raise UnbalancedTradeError(scope_key, balance, execution_ids)
            logger.warning(
                "Dropping unbalanced trade cycle for %s (balance %.10f, executions %s)",
                scope_key, balance, execution_ids,
            )
            return None

        trade_id = TradeReconstructor.stable_trade_id(trade, close_time, close_count)
        avg_entry = trade.entry_value / trade.entry_qty if trade.entry_qty > EPSILON else 0.0
        avg_exit = trade.exit_value / trade.exit_qty if trade.exit_qty > EPSILON else 0.0

        return ClosedTradeGroup(
            trade_id=trade_id,
            group_key=trade_id,
            instrument_key="|".join(
                [
                    trade.instrument_id,
                    trade.symbol,
                    trade.exchange or "",
                    trade.asset_type or "",
                    trade.currency or "",
                ]
            ),
            account_id=trade.account_id,
            account_code=trade.account_code,
            instrument_id=trade.instrument_id,
            symbol=trade.symbol,
            side=trade.side,
            open_time=trade.open_time,
            close_time=close_time,
            total_quantity=trade.exit_qty,
            avg_entry_price=avg_entry,
            avg_exit_price=avg_exit,
            gross_realized_pnl=trade.gross_pnl,
            realized_pnl=trade.gross_pnl - trade.total_commission,
            total_commission=trade.total_commission,
            trade_date=as_utc(close_time).strftime("%Y-%m-%d"),
            opening_quantity=trade.opening_quantity,
            closing_quantity=0.0,
            executions=tuple(trade.executions),
        )

    @staticmethod
    def stable_trade_id(trade: WorkingTrade, close_time: datetime, close_count: int) -> str:
        """Deterministic id, so notes keyed on it survive a recomputation."""
        first_exec_id = trade.executions[0].id if trade.executions else "none"
        last_exec_id = trade.executions[-1].id if trade.executions else "none"
        return ":".join(
            [
                trade.account_id,
                trade.instrument_id,
                str(to_millis(trade.open_time)),
                str(to_millis(close_time)),
                str(close_count),
                first_exec_id,
                last_exec_id,
            ]
        )

    @staticmethod
    def opening_positions_from_snapshots(
        executions: Iterable,
        snapshots: Iterable,
    ) -> Dict[str, OpeningPosition]:
        """
        Opening inventory per scope from day-level position snapshots.

        Uses the latest snapshot dated strictly before the UTC day of the
        scope's first execution. Scopes without one start flat.
        """
        first_by_scope: Dict[str, datetime] = {}
        for exe in executions:
            key = scope_key_for(exe)
            if key not in first_by_scope or exe.executed_at < first_by_scope[key]:
                first_by_scope[key] = exe.executed_at

        by_scope = defaultdict(list)
        for snap in snapshots:
            by_scope[scope_key_for(snap)].append(snap)

        out: Dict[str, OpeningPosition] = {}
        for key, first_at in first_by_scope.items():
            cutoff = datetime.combine(as_utc(first_at).date(), time.min, tzinfo=timezone.utc)
            prior = [s for s in by_scope.get(key, []) if as_utc(s.date) < cutoff]
            if not prior:
                out[key] = OpeningPosition()
                continue
            latest = max(prior, key=lambda s: as_utc(s.date))
            out[key] = OpeningPosition(
                quantity=latest.quantity or 0.0,
                avg_cost=latest.avg_cost or 0.0,
            )

        return out


def compute_closed_trade_groups(
    executions: Iterable,
    opening_positions: Optional[Mapping[str, OpeningPosition]] = None,
    strict: Optional[bool] = None,
) -> List[ClosedTradeGroup]:
    return TradeReconstructor.compute_closed_trade_groups(executions, opening_positions, strict)
