# tradejournal/db/queries.py
"""
Query layer: load stored rows, run the matching engine, shape the results.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional

from sqlmodel import Session, select

from tradejournal import config
from tradejournal.db.models import Account, ClosedTradeNote, DayNote, Execution, Instrument, PositionSnapshot
from tradejournal.domain.metrics import MetricsCalculator
from tradejournal.domain.models import ExecutionForCalc, OpeningPosition, as_utc, sort_key_for
from tradejournal.domain.pnl import ExecutionPnlMatcher
from tradejournal.domain.reconstructor import TradeReconstructor
from tradejournal.domain.reports import ReportBuilder

logger = logging.getLogger(__name__)


class JournalQueries:
    """Read paths for the dashboard, closed-trade list and calendar."""

    @staticmethod
    def load_executions(
        session: Session,
        account_id: Optional[str] = None,
        instrument_id: Optional[str] = None,
        symbol: Optional[str] = None,
        before: Optional[datetime] = None,
    ) -> List[ExecutionForCalc]:
        """Executions (oldest first) mapped to the engine's input type."""
        stmt = (
            select(Execution, Account, Instrument)
            .join(Account, Execution.account_id == Account.id)
            .join(Instrument, Execution.instrument_id == Instrument.id)
        )
        if account_id:
            stmt = stmt.where(Execution.account_id == account_id)
        if instrument_id:
            stmt = stmt.where(Execution.instrument_id == instrument_id)
        if symbol:
            stmt = stmt.where(Instrument.symbol == symbol)
        if before is not None:
            stmt = stmt.where(Execution.executed_at < before)
        stmt = stmt.order_by(Execution.executed_at, Execution.id)

        return [
            ExecutionForCalc(
                id=exe.id,
                account_id=exe.account_id,
                instrument_id=exe.instrument_id,
                symbol=instrument.symbol,
                executed_at=as_utc(exe.executed_at),
                side=exe.side,
                quantity=exe.quantity,
                price=exe.price,
                commission=exe.commission,
                fees=exe.fees,
                account_code=account.account_code,
                exchange=instrument.exchange,
                asset_type=instrument.asset_type,
                currency=exe.currency or instrument.currency,
            )
            for exe, account, instrument in session.exec(stmt).all()
        ]

    @staticmethod
    def load_opening_positions(
        session: Session,
        executions: List[ExecutionForCalc],
    ) -> Dict[str, OpeningPosition]:
        """Opening inventory per scope from the snapshots preceding its first execution."""
        if not executions:
            return {}

        account_ids = sorted({exe.account_id for exe in executions})
        instrument_ids = sorted({exe.instrument_id for exe in executions})
        snapshots = session.exec(
            select(PositionSnapshot).where(
                PositionSnapshot.account_id.in_(account_ids),
                PositionSnapshot.instrument_id.in_(instrument_ids),
            )
        ).all()
        return TradeReconstructor.opening_positions_from_snapshots(executions, snapshots)

    @staticmethod
    def get_closed_trades(
        session: Session,
        account_id: Optional[str] = None,
        symbol: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[Dict]:
        """
        Closed trade groups with their journal notes.

        Cycles are always rebuilt from the full history so their ids stay
        stable; the date range only filters on the close date.
        """
        executions = JournalQueries.load_executions(session, account_id=account_id, symbol=symbol)
        opening = JournalQueries.load_opening_positions(session, executions)
        groups = TradeReconstructor.compute_closed_trade_groups(executions, opening)

        if date_from is not None:
            groups = [g for g in groups if g.trade_date >= date_from.isoformat()]
        if date_to is not None:
            groups = [g for g in groups if g.trade_date <= date_to.isoformat()]

        if not groups:
            return []

        day_notes = session.exec(
            select(DayNote).where(DayNote.account_id.in_(sorted({g.account_id for g in groups})))
        ).all()
        day_note_map = {(n.account_id, n.date): n.content for n in day_notes}

        trade_notes = session.exec(
            select(ClosedTradeNote).where(ClosedTradeNote.group_key.in_([g.group_key for g in groups]))
        ).all()
        trade_note_map = {n.group_key: n.content for n in trade_notes}

        logger.info("Loaded %d closed trades from %d executions", len(groups), len(executions))

        return [
            {
                "group": g,
                "day_note": day_note_map.get((g.account_id, g.trade_date), ""),
                "trade_note": trade_note_map.get(g.group_key, ""),
            }
            for g in groups
        ]

    @staticmethod
    def get_trades(
        session: Session,
        account_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        symbol: Optional[str] = None,
        side: Optional[str] = None,
    ) -> List[Dict]:
        """
        Executions list, newest first, each with its realized P&L.

        P&L is matched over everything up to the end of the range, so a
        filtered row still closes against the lots opened before it. Dates
        are UTC days and both ends are inclusive.
        """
        start = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc) if date_to else None

        history = JournalQueries.load_executions(session, account_id=account_id, symbol=symbol, before=end)
        pnl_map = {row.execution_id: row for row in ExecutionPnlMatcher.compute_execution_pnl(history)}

        rows = [
            exe for exe in history
            if (start is None or exe.executed_at >= start)
            and (side is None or exe.side == side.upper())
        ]
        rows.sort(key=sort_key_for, reverse=True)

        return [
            {
                "execution": exe,
                "realized_pnl": pnl_map[exe.id].realized_pnl,
                "commission_total": exe.commission + exe.fees,
            }
            for exe in rows
        ]

    @staticmethod
    def get_trade_detail(session: Session, execution_id: str) -> Optional[Dict]:
        """One execution, its scope's history, and its realized P&L."""
        execution = session.get(Execution, execution_id)
        if execution is None:
            return None

        related = JournalQueries.load_executions(
            session,
            account_id=execution.account_id,
            instrument_id=execution.instrument_id,
        )
        pnl_rows = ExecutionPnlMatcher.compute_execution_pnl(related)

        return {
            "execution": next(exe for exe in related if exe.id == execution_id),
            "related_executions": related,
            "pnl": next((row for row in pnl_rows if row.execution_id == execution_id), None),
        }

    @staticmethod
    def get_dashboard(
        session: Session,
        account_id: Optional[str] = None,
        now: Optional[datetime] = None,
        report_timezone: str = config.REPORT_TIMEZONE,
    ) -> Dict:
        """Cards, chart series and the closed-trade breakdown for the dashboard."""
        executions = JournalQueries.load_executions(session, account_id=account_id)
        pnl_rows = ExecutionPnlMatcher.compute_execution_pnl(executions)
        closing_values = [row.realized_pnl for row in pnl_rows if row.matched_quantity > 0]

        opening = JournalQueries.load_opening_positions(session, executions)
        groups = TradeReconstructor.compute_closed_trade_groups(executions, opening)

        return {
            "cards": ReportBuilder.get_dashboard_cards(executions, pnl_rows, now, report_timezone),
            "charts": {
                "daily_pnl": ReportBuilder.get_daily_pnl(executions, pnl_rows, report_timezone),
                "equity_curve": ReportBuilder.get_equity_curve(pnl_rows),
                "histogram": MetricsCalculator.bucket_histogram(closing_values, config.HISTOGRAM_BINS),
            },
            "breakdown": {
                "by_symbol": ReportBuilder.get_instrument_stats(groups),
                "by_entry_hour": ReportBuilder.get_entry_time_of_day_stats(groups, report_timezone),
            },
        }

    @staticmethod
    def get_calendar_performance(session: Session, year: int, account_id: Optional[str] = None):
        """Daily and monthly realized + mark-to-market P&L for a year."""
        year_start = datetime(year, 1, 1, tzinfo=timezone.utc)
        year_end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        executions = JournalQueries.load_executions(session, account_id=account_id, before=year_end)
        pnl_rows = ExecutionPnlMatcher.compute_execution_pnl(executions)

        # One day back so the first in-year snapshot has a prior value
        stmt = select(PositionSnapshot).where(
            PositionSnapshot.date >= year_start - timedelta(days=1),
            PositionSnapshot.date < year_end,
        )
        if account_id:
            stmt = stmt.where(PositionSnapshot.account_id == account_id)
        snapshots = session.exec(stmt.order_by(PositionSnapshot.date)).all()

        return ReportBuilder.get_calendar_performance(executions, pnl_rows, snapshots, year)

    @staticmethod
    def save_day_note(session: Session, account_id: str, day: date, content: str) -> DayNote:
        """Create or replace the note for an account's trading day."""
        key = day.isoformat()
        note = session.exec(
            select(DayNote).where(DayNote.account_id == account_id, DayNote.date == key)
        ).first()
        if note is None:
            note = DayNote(account_id=account_id, date=key, content=content)
        else:
            note.content = content
            note.updated_at = datetime.now(timezone.utc)

        session.add(note)
        session.commit()
        session.refresh(note)
        return note

    @staticmethod
    def save_closed_trade_note(session: Session, group_key: str, content: str) -> ClosedTradeNote:
        """Create or replace the note for a closed trade, keyed by its stable id."""
        if not group_key:
            raise ValueError("group_key is required")

        note = session.exec(
            select(ClosedTradeNote).where(ClosedTradeNote.group_key == group_key)
        ).first()
        if note is None:
            note = ClosedTradeNote(group_key=group_key, content=content)
        else:
            note.content = content
            note.updated_at = datetime.now(timezone.utc)

        session.add(note)
        session.commit()
        session.refresh(note)
        return note
