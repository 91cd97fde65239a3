# tradejournal/domain/reports.py
"""Dashboard and calendar shaping of matched P&L."""

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Sequence, Tuple

import pandas as pd
import pytz

from tradejournal import config
from tradejournal.domain.metrics import MetricsCalculator
from tradejournal.domain.models import ClosedTradeGroup, ExecutionPnl, as_utc, scope_key_for

EQUITY_COLUMNS = ["at", "cumulative_pnl", "drawdown"]
DAILY_COLUMNS = ["date", "pnl", "gross_pnl", "cumulative_gross_pnl", "trades", "volume"]
CALENDAR_DAY_COLUMNS = ["date", "realized", "mtm", "total"]
CALENDAR_MONTH_COLUMNS = ["month", "realized", "mtm", "total"]
GROUP_COLUMNS = ["trade_id", "symbol", "entry_hour", "gross_pnl", "commissions", "net_pnl"]
SYMBOL_COLUMNS = ["symbol", "count", "wins", "win_rate", "gross_pnl", "commissions", "net_pnl"]
HOUR_COLUMNS = ["hour", "trades", "pnl_sum", "pnl_avg", "win_rate"]


class ReportBuilder:
    """Turn per-execution P&L into the series the dashboard and calendar plot."""

    @staticmethod
    def execution_frame(
        executions: Sequence,
        pnl_rows: Sequence[ExecutionPnl],
        report_timezone: str = config.REPORT_TIMEZONE,
    ) -> pd.DataFrame:
        """
        One row per execution with its P&L and local trading date.

        Columns: execution_id, executed_at, date, quantity, realized_pnl,
        gross_realized_pnl, matched_quantity, cumulative_pnl, avg_hold_time_ms
        """
        tz = pytz.timezone(report_timezone)
        by_id = {exe.id: exe for exe in executions}

        rows = []
        for row in pnl_rows:
            exe = by_id.get(row.execution_id)
            if exe is None:
                continue
            executed_at = as_utc(exe.executed_at)
            rows.append(
                {
                    "execution_id": row.execution_id,
                    "executed_at": executed_at,
                    "date": executed_at.astimezone(tz).strftime("%Y-%m-%d"),
                    "quantity": abs(exe.quantity),
                    "realized_pnl": row.realized_pnl,
                    "gross_realized_pnl": row.gross_realized_pnl,
                    "matched_quantity": row.matched_quantity,
                    "cumulative_pnl": row.cumulative_pnl,
                    "avg_hold_time_ms": row.avg_hold_time_ms,
                }
            )

        return pd.DataFrame(
            rows,
            columns=[
                "execution_id", "executed_at", "date", "quantity", "realized_pnl",
                "gross_realized_pnl", "matched_quantity", "cumulative_pnl", "avg_hold_time_ms",
            ],
        )

    @staticmethod
    def get_equity_curve(pnl_rows: Sequence[ExecutionPnl]) -> pd.DataFrame:
        """
        Equity curve from cumulative realized P&L.

        Returns DataFrame with columns: at, cumulative_pnl, drawdown (<= 0)
        """
        if not pnl_rows:
            return pd.DataFrame(columns=EQUITY_COLUMNS)

        rows = []
        peak = 0.0
        for row in pnl_rows:
            peak = max(peak, row.cumulative_pnl)
            rows.append(
                {
                    "at": as_utc(row.executed_at),
                    "cumulative_pnl": row.cumulative_pnl,
                    "drawdown": row.cumulative_pnl - peak,
                }
            )

        return pd.DataFrame(rows, columns=EQUITY_COLUMNS)

    @staticmethod
    def get_daily_pnl(
        executions: Sequence,
        pnl_rows: Sequence[ExecutionPnl],
        report_timezone: str = config.REPORT_TIMEZONE,
    ) -> pd.DataFrame:
        """
        Realized P&L per local trading day.

        gross_pnl only counts executions that closed inventory; trades and
        volume count every execution of the day.
        """
        df = ReportBuilder.execution_frame(executions, pnl_rows, report_timezone)
        if df.empty:
            return pd.DataFrame(columns=DAILY_COLUMNS)

        df["closing_gross"] = df["gross_realized_pnl"].where(df["matched_quantity"] > 0, 0.0)
        out = (
            df.groupby("date", as_index=False)
            .agg(
                pnl=("realized_pnl", "sum"),
                gross_pnl=("closing_gross", "sum"),
                trades=("execution_id", "count"),
                volume=("quantity", "sum"),
            )
            .sort_values("date")
            .reset_index(drop=True)
        )
        out["cumulative_gross_pnl"] = out["gross_pnl"].cumsum()
        return out[DAILY_COLUMNS]

    @staticmethod
    def get_dashboard_cards(
        executions: Sequence,
        pnl_rows: Sequence[ExecutionPnl],
        now: Optional[datetime] = None,
        report_timezone: str = config.REPORT_TIMEZONE,
    ) -> Dict:
        """Headline numbers: summary metrics plus period totals and extremes."""
        tz = pytz.timezone(report_timezone)
        now_local = (as_utc(now) if now is not None else datetime.now(pytz.UTC)).astimezone(tz)

        day_start = tz.localize(datetime(now_local.year, now_local.month, now_local.day))
        week_start = tz.localize(
            datetime(now_local.year, now_local.month, now_local.day) - timedelta(days=now_local.weekday())
        )
        month_start = tz.localize(datetime(now_local.year, now_local.month, 1))

        metrics = MetricsCalculator.build_metrics(
            pnl_rows, MetricsCalculator.total_commissions(executions)
        )
        df = ReportBuilder.execution_frame(executions, pnl_rows, report_timezone)

        def realized_since(start: datetime) -> float:
            if df.empty:
                return 0.0
            return float(df.loc[df["executed_at"] >= start, "realized_pnl"].sum())

        closed = df[df["matched_quantity"] > 0]
        wins = closed[closed["realized_pnl"] > 0]
        losses = closed[closed["realized_pnl"] < 0]
        daily_volume = df.groupby("date")["quantity"].sum() if not df.empty else pd.Series(dtype=float)

        cards = metrics.to_dict()
        # The metrics count closing executions; the card counts every fill
        cards["closing_trades"] = cards.pop("total_trades")
        cards.update({
            "total_trades": len(executions),
            "largest_gain": float(closed["realized_pnl"].max()) if not closed.empty else 0.0,
            "largest_loss": float(closed["realized_pnl"].min()) if not closed.empty else 0.0,
            "avg_win_hold_ms": float(wins["avg_hold_time_ms"].mean()) if not wins.empty else 0.0,
            "avg_loss_hold_ms": float(losses["avg_hold_time_ms"].mean()) if not losses.empty else 0.0,
            "avg_daily_volume": float(daily_volume.mean()) if not daily_volume.empty else 0.0,
            "realized_day": realized_since(day_start),
            "realized_week": realized_since(week_start),
            "realized_month": realized_since(month_start),
        })
        return cards

    @staticmethod
    def get_calendar_performance(
        executions: Sequence,
        pnl_rows: Sequence[ExecutionPnl],
        snapshots: Iterable,
        year: int,
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Realized plus mark-to-market P&L per UTC day for one calendar year.

        Mark-to-market is the day-over-day change in each position snapshot's
        unrealized P&L; snapshots before the year only seed the prior value.

        Returns (days, monthly) DataFrames.
        """
        year_start = datetime(year, 1, 1, tzinfo=pytz.UTC)
        year_end = datetime(year + 1, 1, 1, tzinfo=pytz.UTC)

        realized_by_day: Dict[str, float] = {}
        by_id = {exe.id: exe for exe in executions}
        for row in pnl_rows:
            exe = by_id.get(row.execution_id)
            if exe is None:
                continue
            executed_at = as_utc(exe.executed_at)
            if not (year_start <= executed_at < year_end):
                continue
            day = executed_at.strftime("%Y-%m-%d")
            realized_by_day[day] = realized_by_day.get(day, 0.0) + row.realized_pnl

        mtm_by_day: Dict[str, float] = {}
        prev_unrealized: Dict[str, float] = {}
        for snap in sorted(snapshots, key=lambda s: as_utc(s.date)):
            snap_at = as_utc(snap.date)
            if snap_at >= year_end:
                break
            key = scope_key_for(snap)
            current = snap.unrealized_pnl or 0.0
            if snap_at >= year_start:
                day = snap_at.strftime("%Y-%m-%d")
                mtm_by_day[day] = mtm_by_day.get(day, 0.0) + current - prev_unrealized.get(key, 0.0)
            prev_unrealized[key] = current

        dates = sorted(set(realized_by_day) | set(mtm_by_day))
        if not dates:
            return pd.DataFrame(columns=CALENDAR_DAY_COLUMNS), pd.DataFrame(columns=CALENDAR_MONTH_COLUMNS)

        days = pd.DataFrame(
            [
                {
                    "date": d,
                    "realized": realized_by_day.get(d, 0.0),
                    "mtm": mtm_by_day.get(d, 0.0),
                }
                for d in dates
            ]
        )
        days["total"] = days["realized"] + days["mtm"]

        monthly = (
            days.assign(month=days["date"].str.slice(0, 7))
            .groupby("month", as_index=False)
            .agg(realized=("realized", "sum"), mtm=("mtm", "sum"), total=("total", "sum"))
            .sort_values("month")
            .reset_index(drop=True)
        )
        return days[CALENDAR_DAY_COLUMNS], monthly[CALENDAR_MONTH_COLUMNS]


    @staticmethod
    def closed_trade_frame(
        groups: Sequence[ClosedTradeGroup],
        report_timezone: str = config.REPORT_TIMEZONE,
    ) -> pd.DataFrame:
        """One row per closed trade cycle, with its local entry hour."""
        tz = pytz.timezone(report_timezone)
        return pd.DataFrame(
            [
                {
                    "trade_id": g.trade_id,
                    "symbol": g.symbol,
                    "entry_hour": as_utc(g.open_time).astimezone(tz).hour,
                    "gross_pnl": g.gross_realized_pnl,
                    "commissions": g.total_commission,
                    "net_pnl": g.realized_pnl,
                }
                for g in groups
            ],
            columns=GROUP_COLUMNS,
        )

    @staticmethod
    def get_instrument_stats(groups: Sequence[ClosedTradeGroup]) -> pd.DataFrame:
        """Closed-trade performance by symbol; win_rate is a 0..1 fraction of net winners."""
        df = ReportBuilder.closed_trade_frame(groups)
        if df.empty:
            return pd.DataFrame(columns=SYMBOL_COLUMNS)

        df["is_win"] = (df["net_pnl"] > 0).astype(int)
        out = (
            df.groupby("symbol", as_index=False)
            .agg(
                count=("trade_id", "count"),
                wins=("is_win", "sum"),
                gross_pnl=("gross_pnl", "sum"),
                commissions=("commissions", "sum"),
                net_pnl=("net_pnl", "sum"),
            )
            .sort_values("symbol")
            .reset_index(drop=True)
        )
        out["win_rate"] = out["wins"] / out["count"]
        return out[SYMBOL_COLUMNS]

    @staticmethod
    def get_entry_time_of_day_stats(
        groups: Sequence[ClosedTradeGroup],
        report_timezone: str = config.REPORT_TIMEZONE,
        use_gross: bool = False,
    ) -> pd.DataFrame:
        """Closed-trade performance by entry hour in the report timezone."""
        df = ReportBuilder.closed_trade_frame(groups, report_timezone)
        if df.empty:
            return pd.DataFrame(columns=HOUR_COLUMNS)

        df["pnl"] = df["gross_pnl"] if use_gross else df["net_pnl"]
        df["is_win"] = (df["pnl"] > 0).astype(int)
        out = (
            df.rename(columns={"entry_hour": "hour"})
            .groupby("hour", as_index=False)
            .agg(
                trades=("pnl", "count"),
                pnl_sum=("pnl", "sum"),
                pnl_avg=("pnl", "mean"),
                win_rate=("is_win", "mean"),
            )
            .sort_values("hour")
            .reset_index(drop=True)
        )
        return out[HOUR_COLUMNS]
