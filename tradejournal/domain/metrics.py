# tradejournal/domain/metrics.py
"""Performance metrics over realized P&L series."""

import math
from typing import Iterable, List, Sequence

from tradejournal.domain.models import ExecutionPnl, HistogramBucket, Metrics


class MetricsCalculator:
    """Calculate summary trading metrics and distributions."""

    @staticmethod
    def build_metrics(pnl_rows: Sequence[ExecutionPnl], total_commissions: float) -> Metrics:
        """
        Reduce per-execution P&L into summary statistics.

        Only executions that closed something (matched_quantity > 0) count as
        trades. Ratios with an empty denominator are 0, except a profit factor
        with wins and no losses, which is +inf.
        """
        realized = sum(row.realized_pnl for row in pnl_rows)
        trades = [row for row in pnl_rows if row.matched_quantity > 0]
        wins = [row for row in trades if row.realized_pnl > 0]
        losses = [row for row in trades if row.realized_pnl < 0]

        gross_profit = sum(row.realized_pnl for row in wins)
        gross_loss = sum(abs(row.realized_pnl) for row in losses)

        win_rate = len(wins) / len(trades) * 100 if trades else 0.0
        avg_win = gross_profit / len(wins) if wins else 0.0
        avg_loss = -gross_loss / len(losses) if losses else 0.0

        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        elif gross_profit > 0:
            profit_factor = math.inf
        else:
            profit_factor = 0.0

        if trades:
            expectancy = (len(wins) / len(trades)) * avg_win + (len(losses) / len(trades)) * avg_loss
        else:
            expectancy = 0.0

        return Metrics(
            realized=realized,
            win_rate=win_rate,
            profit_factor=profit_factor,
            avg_win=avg_win,
            avg_loss=avg_loss,
            expectancy=expectancy,
            max_drawdown=MetricsCalculator.max_drawdown(row.cumulative_pnl for row in pnl_rows),
            commissions=total_commissions,
            total_trades=len(trades),
            winning_trades=len(wins),
            losing_trades=len(losses),
        )

    @staticmethod
    def max_drawdown(cumulative: Iterable[float]) -> float:
        """Largest peak-to-trough drop of a cumulative series. The peak starts at 0."""
        peak = 0.0
        worst = 0.0
        for value in cumulative:
            peak = max(peak, value)
            worst = max(worst, peak - value)
        return worst

    @staticmethod
    def total_commissions(executions: Iterable) -> float:
        """Commission plus fees over every execution, opening or closing."""
        return sum(exe.commission + exe.fees for exe in executions)

    @staticmethod
    def bucket_histogram(values: Sequence[float], bins: int = 10) -> List[HistogramBucket]:
        """
        Equal-width histogram between min and max of the values.

        The max value falls in the last bucket. When every value is the same,
        a single bucket one unit wide holds them all.
        """
        if bins < 1:
            raise ValueError(f"Histogram needs at least one bin, got {bins}")
        if not values:
            return []

        low = min(values)
        high = max(values)

        if high == low:
            return [MetricsCalculator._bucket(low, low + 1, len(values))]

        width = (high - low) / bins
        counts = [0] * bins
        for value in values:
            index = min(int(math.floor((value - low) / width)), bins - 1)
            counts[index] += 1

        return [
            MetricsCalculator._bucket(low + idx * width, low + (idx + 1) * width, count)
            for idx, count in enumerate(counts)
        ]

    @staticmethod
    def _bucket(start: float, end: float, count: int) -> HistogramBucket:
        return HistogramBucket(range=f"{start:.0f}..{end:.0f}", count=count, start=start, end=end)


def build_metrics(pnl_rows: Sequence[ExecutionPnl], total_commissions: float) -> Metrics:
    return MetricsCalculator.build_metrics(pnl_rows, total_commissions)


def bucket_histogram(values: Sequence[float], bins: int = 10) -> List[HistogramBucket]:
    return MetricsCalculator.bucket_histogram(values, bins)
