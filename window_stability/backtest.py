import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .metrics import StabilityMetric, ranking_stability, trend_stability
from .profiles import ThresholdProfile
from .scoring import Scorer, score, trend_labels
from .search import Proposal, Target
from .series import DrawSeries, InsufficientHistory

logger = logging.getLogger(__name__)


@dataclass
class BacktestPosition:
    start: int
    end: int
    metrics: Dict[str, StabilityMetric]
    valid: bool

    def as_dict(self) -> Dict:
        out = {"start": self.start, "end": self.end}
        out.update({key: metric.as_dict() for key, metric in self.metrics.items()})
        out["valid"] = self.valid
        return out


@dataclass
class BacktestReport:
    window_width: int
    recent: Optional[int]
    step_size: int
    comparison_shift: int
    total_positions: int
    valid_positions: int
    pass_rate: float
    details: List[BacktestPosition] = field(default_factory=list)

    def as_dict(self, include_details: bool = True) -> Dict:
        out = {
            "window_width": self.window_width,
            "step_size": self.step_size,
            "comparison_shift": self.comparison_shift,
            "total_positions": self.total_positions,
            "valid_positions": self.valid_positions,
            "pass_rate": round(self.pass_rate, 4),
        }
        if self.recent is not None:
            out["recent"] = self.recent
        if include_details:
            out["details"] = [p.as_dict() for p in self.details]
        return out


def positions(total: int, width: int, shift: int, step: int) -> List[int]:
    """Start offsets 0, step, 2*step, ... whose window and shifted comparison both fit."""
    return list(range(0, total - width - shift + 1, step)) if total >= width + shift else []


class Backtester:
    """
    Slide a proposed window over the whole history and count where it stays stable.

    Ranking scorers compare the window of width W at each position with the
    same position widened by `delta`. The trend scorer compares the (W, R)
    labels of the window with those of the window moved `offset` draws back
    in time (defaults to the slide step).
    """

    def __init__(
        self,
        targets: Sequence[Target],
        profile: ThresholdProfile,
        window: int,
        step: int,
        delta: int = 0,
        recent: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        self.targets = tuple(Target(Scorer(t.scorer), t.category, t.top_k) for t in targets)
        if not self.targets:
            raise ValueError("At least one target is required.")
        if len({t.scorer.is_ranking for t in self.targets}) > 1:
            raise ValueError("Ranking scorers and the trend scorer cannot be backtested together.")
        if window <= 0 or step <= 0:
            raise ValueError("window and step must be positive.")

        self.is_trend = not self.targets[0].scorer.is_ranking
        if self.is_trend:
            if recent is None or not 0 < recent <= window:
                raise ValueError(f"Trend backtest needs 0 < recent <= window, got {recent}")
            self.shift = step if offset is None else offset
        else:
            if delta <= 0:
                raise ValueError("Ranking backtest needs a positive delta.")
            self.shift = delta
        if self.shift <= 0:
            raise ValueError("Comparison shift must be positive.")

        self.profile = profile
        self.window = window
        self.step = step
        self.delta = delta
        self.recent = recent

    @classmethod
    def from_proposal(cls, proposal: Proposal, step: int, offset: Optional[int] = None) -> "Backtester":
        if not proposal.found:
            raise ValueError("Proposal is empty; choose a fallback window before backtesting.")
        return cls(
            targets=proposal.targets,
            profile=proposal.profile,
            window=proposal.window,
            step=step,
            delta=proposal.delta,
            recent=proposal.recent,
            offset=offset,
        )

    def _evaluate(self, series: DrawSeries, start: int) -> BacktestPosition:
        metrics = {}
        for target in self.targets:
            if self.is_trend:
                current = series.slice(start, start + self.window)
                shifted = series.slice(start + self.shift, start + self.shift + self.window)
                metric = trend_stability(
                    trend_labels(current, target.category, self.window, self.recent),
                    trend_labels(shifted, target.category, self.window, self.recent),
                )
            else:
                widened = series.slice(start, start + self.window + self.delta)
                metric = ranking_stability(
                    score(target.scorer, widened, target.category, self.window),
                    score(target.scorer, widened, target.category, self.window + self.delta),
                    target.top_k,
                )
            metrics[target.key] = metric

        valid = all(self.profile.accepts(m) for m in metrics.values())
        return BacktestPosition(start=start, end=start + self.window - 1, metrics=metrics, valid=valid)

    def run(self, series: DrawSeries) -> BacktestReport:
        starts = positions(len(series), self.window, self.shift, self.step)
        if not starts:
            raise InsufficientHistory(self.window + self.shift, len(series))

        logger.info(
            f"Backtesting window {self.window} over {len(series)} draws "
            f"({len(starts)} positions, step {self.step})"
        )

        details = [self._evaluate(series, start) for start in starts]
        valid = sum(1 for p in details if p.valid)
        report = BacktestReport(
            window_width=self.window,
            recent=self.recent,
            step_size=self.step,
            comparison_shift=self.shift,
            total_positions=len(details),
            valid_positions=valid,
            pass_rate=valid / len(details),
            details=details,
        )

        logger.info(
            f"Backtest: {valid}/{len(details)} valid positions ({report.pass_rate * 100:.1f}%)"
        )
        return report
