# tradejournal/domain/pnl.py
"""
Per-execution realized P&L.
Implements FIFO lot matching, partial closes and direction flips per execution.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from tradejournal.domain.models import (
    ExecutionPnl,
    Lot,
    LotLedger,
    is_flat,
    scope_key_for,
    signed_quantity_for,
    sort_key_for,
)

logger = logging.getLogger(__name__)


class ExecutionPnlMatcher:
    """Matches executions against open inventory and prices each one."""

    @staticmethod
    def compute_execution_pnl(executions: Iterable) -> List[ExecutionPnl]:
        """
        Realized P&L for every execution.

        Each (account, instrument) scope is matched against its own ledger.
        Cumulative P&L then runs across all scopes in (executed_at, id) order,
        which is also the order of the returned rows.

        Args:
            executions: ExecutionForCalc rows (or anything with the same fields)

        Returns:
            One ExecutionPnl per input execution
        """
        ordered = sorted(executions, key=sort_key_for)
        if not ordered:
            return []

        by_scope = defaultdict(list)
        for exe in ordered:
            by_scope[scope_key_for(exe)].append(exe)

        # execution id -> (net, gross, matched, avg hold)
        priced: Dict[str, Tuple[float, float, float, float]] = {}
        for scope_key, exes in by_scope.items():
            priced.update(ExecutionPnlMatcher._match_scope(exes))
            logger.debug("Matched %d executions for %s", len(exes), scope_key)

        rows = []
        cumulative = 0.0
        for exe in ordered:
            realized, gross, matched, avg_hold_ms = priced[exe.id]
            cumulative += realized
            rows.append(
                ExecutionPnl(
                    execution_id=exe.id,
                    executed_at=exe.executed_at,
                    realized_pnl=realized,
                    gross_realized_pnl=gross,
                    matched_quantity=matched,
                    cumulative_pnl=cumulative,
                    avg_hold_time_ms=avg_hold_ms,
                )
            )

        return rows

    @staticmethod
    def _match_scope(executions: List) -> Dict[str, Tuple[float, float, float, float]]:
        """Run one scope's executions through a fresh ledger, oldest first."""
        ledger = LotLedger()
        out = {}

        for exe in executions:
            signed_qty = signed_quantity_for(exe)
            match = ledger.close_against(signed_qty, exe.price, at=exe.executed_at)

            # Whatever wasn't closed opens (or flips into) new inventory
            if not is_flat(match.remaining):
                ledger.push(Lot(qty=match.remaining, price=exe.price, opened_at=exe.executed_at))

            realized = match.gross - (exe.commission + exe.fees)
            avg_hold_ms = match.hold_weighted_ms / match.matched if match.matched > 0 else 0.0
            out[exe.id] = (realized, match.gross, match.matched, avg_hold_ms)

        return out


def compute_execution_pnl(executions: Iterable) -> List[ExecutionPnl]:
    return ExecutionPnlMatcher.compute_execution_pnl(executions)
