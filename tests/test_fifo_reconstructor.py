from __future__ import annotations

import logging
import random
from datetime import datetime, timezone

import pytest

from tradejournal.db.models import PositionSnapshot
from tradejournal.domain.models import (
    ClosedTradeExecution,
    OpeningPosition,
    UnbalancedTradeError,
)
from tradejournal.domain.reconstructor import (
    TradeReconstructor,
    WorkingTrade,
    compute_closed_trade_groups,
)


def test_fifo_closed_trade_correctness(make_execution):
    # Buy 10 @ 100 (comm 1.0), Buy 10 @ 110 (comm 1.0), Sell 20 @ 120 (comm 2.0)
    # Gross = 10*(120-100) + 10*(120-110) = 300, commissions 4.0, net 296
    groups = compute_closed_trade_groups(
        [
            make_execution("E1", "BUY", 10, 100, minutes=0, commission=1.0),
            make_execution("E2", "BUY", 10, 110, minutes=1, commission=1.0),
            make_execution("E3", "SELL", 20, 120, minutes=30, commission=2.0),
        ]
    )

    assert len(groups) == 1
    trade = groups[0]

    assert trade.side == "LONG"
    assert trade.symbol == "SPY"
    assert trade.account_code == "U1234567"
    assert trade.total_quantity == 20
    assert trade.avg_entry_price == pytest.approx(105)
    assert trade.avg_exit_price == pytest.approx(120)
    assert trade.gross_realized_pnl == pytest.approx(300)
    assert trade.total_commission == pytest.approx(4.0)
    assert trade.realized_pnl == pytest.approx(296)
    assert trade.opening_quantity == 0
    assert trade.closing_quantity == 0
    assert trade.trade_date == "2026-02-20"
    assert [e.id for e in trade.executions] == ["E1", "E2", "E3"]
    assert trade.group_key == trade.trade_id
    assert trade.hold_time.total_seconds() == 30 * 60


def test_open_position_emits_nothing(make_execution):
    groups = compute_closed_trade_groups(
        [
            make_execution("1", "BUY", 10, 100, minutes=0),
            make_execution("2", "SELL", 5, 101, minutes=1),
        ]
    )
    assert groups == []


def test_reversal_splits_one_execution_across_two_cycles(make_execution):
    groups = compute_closed_trade_groups(
        [
            make_execution("1", "BUY", 100, 10, minutes=0, commission=1.0),
            make_execution("2", "SELL", 150, 12, minutes=10, commission=1.5),
            make_execution("3", "BUY", 50, 11, minutes=20, commission=0.5),
        ]
    )

    assert len(groups) == 2
    short, long_ = groups  # most recent close first

    assert long_.side == "LONG"
    assert long_.total_quantity == 100
    assert long_.gross_realized_pnl == pytest.approx(200)
    assert long_.total_commission == pytest.approx(2.0)
    assert long_.realized_pnl == pytest.approx(198)
    flip_slice = long_.executions[-1]
    assert flip_slice.id == "2"
    assert flip_slice.side == "SELL"
    assert flip_slice.quantity == 100
    assert flip_slice.fraction == pytest.approx(2 / 3)
    assert flip_slice.commission == pytest.approx(1.0)

    assert short.side == "SHORT"
    assert short.opening_quantity == 0
    assert short.open_time == long_.close_time
    assert short.total_quantity == 50
    assert short.avg_entry_price == pytest.approx(12)
    assert short.avg_exit_price == pytest.approx(11)
    assert short.gross_realized_pnl == pytest.approx(50)
    assert short.total_commission == pytest.approx(1.0)
    assert short.realized_pnl == pytest.approx(49)
    assert [(e.id, e.side, e.quantity) for e in short.executions] == [("2", "SELL", 50), ("3", "BUY", 50)]
    assert short.executions[0].fraction == pytest.approx(1 / 3)


def test_opening_inventory_seeds_first_cycle(make_execution):
    groups = compute_closed_trade_groups(
        [make_execution("1", "SELL", 50, 100, minutes=0, commission=1.0)],
        {"a1:i1": OpeningPosition(quantity=50, avg_cost=95)},
    )

    assert len(groups) == 1
    trade = groups[0]
    assert trade.side == "LONG"
    assert trade.opening_quantity == 50
    assert trade.avg_entry_price == pytest.approx(95)
    assert trade.avg_exit_price == pytest.approx(100)
    assert trade.gross_realized_pnl == pytest.approx(250)
    assert trade.realized_pnl == pytest.approx(249)
    assert trade.signed_quantity_balance == pytest.approx(0)
    # Members alone carry only the exit; the inherited 50 closes the balance
    assert sum(e.signed_quantity for e in trade.executions) == pytest.approx(-50)


def test_opening_short_inventory_is_covered_fifo(make_execution):
    groups = compute_closed_trade_groups(
        [
            make_execution("1", "BUY", 10, 18, minutes=0),
            make_execution("2", "BUY", 20, 22, minutes=5),
        ],
        {"a1:i1": OpeningPosition(quantity=-30, avg_cost=20)},
    )

    assert len(groups) == 1
    assert groups[0].side == "SHORT"
    assert groups[0].gross_realized_pnl == pytest.approx(10 * 2 - 20 * 2)


def test_opening_position_for_other_scope_is_ignored(make_execution):
    groups = compute_closed_trade_groups(
        [
            make_execution("1", "BUY", 10, 100, minutes=0),
            make_execution("2", "SELL", 10, 101, minutes=1),
        ],
        {"a1:other": OpeningPosition(quantity=5, avg_cost=1)},
    )
    assert len(groups) == 1
    assert groups[0].opening_quantity == 0


def test_cycles_sorted_by_close_time_descending_with_ordinal_ids(make_execution):
    groups = compute_closed_trade_groups(
        [
            make_execution("1", "BUY", 1, 10, minutes=0),
            make_execution("2", "SELL", 1, 11, minutes=1),
            make_execution("3", "BUY", 1, 10, minutes=2),
            make_execution("4", "SELL", 1, 12, minutes=3),
        ]
    )

    assert len(groups) == 2
    assert groups[0].close_time > groups[1].close_time

    newest = groups[0].trade_id.split(":")
    oldest = groups[1].trade_id.split(":")
    assert newest[:2] == ["a1", "i1"]
    assert newest[4:] == ["2", "3", "4"]
    assert oldest[4:] == ["1", "1", "2"]


def test_shared_timestamp_uses_execution_id_order(make_execution):
    groups = compute_closed_trade_groups(
        [
            make_execution("2", "SELL", 10, 105, minutes=5),
            make_execution("1", "BUY", 10, 100, minutes=5),
        ]
    )

    assert len(groups) == 1
    assert groups[0].side == "LONG"
    assert groups[0].gross_realized_pnl == pytest.approx(50)


def test_recomputation_is_idempotent(make_execution):
    executions = [
        make_execution("1", "BUY", 3, 10, minutes=0, commission=0.3),
        make_execution("2", "SELL", 5, 11, minutes=1, commission=0.5),
        make_execution("3", "BUY", 2, 9, minutes=2, commission=0.2),
        make_execution("4", "BUY", 4, 10, minutes=3, instrument_id="i2"),
        make_execution("5", "SELL", 4, 10.5, minutes=4, instrument_id="i2"),
    ]
    opening = {"a1:i2": OpeningPosition(quantity=0, avg_cost=0)}

    first = compute_closed_trade_groups(executions, opening)
    shuffled = list(reversed(executions))
    second = compute_closed_trade_groups(shuffled, opening)

    assert first == second
    assert [g.trade_id for g in first] == [g.trade_id for g in second]


def test_groups_always_net_to_flat(make_execution):
    rng = random.Random(7)
    executions = []
    for n in range(200):
        side = rng.choice(["BUY", "SELL"])
        qty = round(rng.uniform(0.1, 5.0), 3)
        price = round(rng.uniform(90, 110), 2)
        executions.append(make_execution(f"{n:04d}", side, qty, price, minutes=n, commission=0.1))

    groups = compute_closed_trade_groups(executions)

    assert groups
    for group in groups:
        member_sum = sum(e.signed_quantity for e in group.executions)
        assert abs(member_sum) <= 1e-6
        assert abs(group.signed_quantity_balance) <= 1e-6
        assert group.total_quantity > 0


def _unbalanced_trade(make_execution) -> WorkingTrade:
    exe = make_execution("1", "BUY", 10, 100)
    trade = WorkingTrade.start(exe, side="LONG", opening_quantity=0.0)
    trade.executions.append(
        ClosedTradeExecution(
            id="1", executed_at=exe.executed_at, side="BUY", quantity=10,
            price=100, commission=0, fees=0, fraction=1.0,
        )
    )
    trade.executions.append(
        ClosedTradeExecution(
            id="2", executed_at=exe.executed_at, side="SELL", quantity=7,
            price=101, commission=0, fees=0, fraction=1.0,
        )
    )
    trade.exit_qty = 7
    return trade


def test_unbalanced_cycle_raises_in_strict_mode(make_execution):
    trade = _unbalanced_trade(make_execution)

    with pytest.raises(UnbalancedTradeError) as excinfo:
        TradeReconstructor._close_trade("a1:i1", trade, trade.open_time, 1, strict=True)

    assert excinfo.value.balance == pytest.approx(3)
    assert excinfo.value.execution_ids == ["1", "2"]


def test_unbalanced_cycle_is_dropped_and_logged_when_lenient(make_execution, caplog):
    trade = _unbalanced_trade(make_execution)

    with caplog.at_level(logging.WARNING, logger="tradejournal.domain.reconstructor"):
        group = TradeReconstructor._close_trade("a1:i1", trade, trade.open_time, 1, strict=False)

    assert group is None
    assert "unbalanced" in caplog.text


def test_opening_positions_from_snapshots(make_execution):
    executions = [
        make_execution("1", "SELL", 50, 100, minutes=0),
        make_execution("2", "BUY", 5, 10, minutes=0, instrument_id="i2"),
    ]
    snapshots = [
        PositionSnapshot(account_id="a1", instrument_id="i1", date=datetime(2026, 2, 18, tzinfo=timezone.utc), quantity=10, avg_cost=90),
        PositionSnapshot(account_id="a1", instrument_id="i1", date=datetime(2026, 2, 19, tzinfo=timezone.utc), quantity=50, avg_cost=95),
        # Same day as the first execution: not an opening state
        PositionSnapshot(account_id="a1", instrument_id="i1", date=datetime(2026, 2, 20, tzinfo=timezone.utc), quantity=0, avg_cost=0),
        PositionSnapshot(
            account_id="a1", instrument_id="i9",
            date=datetime(2026, 2, 19, tzinfo=timezone.utc), quantity=7, avg_cost=1,
        ),
    ]

    opening = TradeReconstructor.opening_positions_from_snapshots(executions, snapshots)

    assert opening == {
        "a1:i1": OpeningPosition(quantity=50, avg_cost=95),
        "a1:i2": OpeningPosition(),
    }
