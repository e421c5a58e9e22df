import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from joblib import Parallel, delayed

from .config import TREND_CONFIG
from .metrics import StabilityMetric, dispersion, ranking_stability, trend_stability
from .profiles import ThresholdProfile
from .scoring import Scorer, score, trend_labels
from .series import DrawSeries, InsufficientHistory

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


class Target(NamedTuple):
    """One (scorer, category) pair that must pass for a candidate to be valid."""
    scorer: Scorer
    category: str
    top_k: int = 0

    @property
    def key(self) -> str:
        return f"{Scorer(self.scorer).value}:{self.category}"


@dataclass
class SweepRow:
    window: int
    recent: Optional[int]
    metrics: Dict[str, StabilityMetric]
    passed: Dict[str, bool]
    dispersion: Dict[str, float] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return all(self.passed.values())

    def as_dict(self) -> Dict:
        row = {"window": self.window}
        if self.recent is not None:
            row["recent"] = self.recent
        for key, metric in self.metrics.items():
            entry = metric.as_dict()
            entry["ok"] = self.passed[key]
            if key in self.dispersion:
                entry["sigma"] = round(self.dispersion[key], 3)
            row[key] = entry
        row["valid"] = self.valid
        return row


@dataclass
class Proposal:
    """
    Outcome of a window search.

    `window` is N* (or W* for the trend scorer, with R* in `recent`). A
    `window` of None means no candidate met the profile inside the searched
    range; the search never substitutes a default for it.
    """
    targets: Tuple[Target, ...]
    profile: ThresholdProfile
    window: Optional[int]
    recent: Optional[int]
    per_target: Dict[str, Optional[int]]
    per_target_recent: Dict[str, Optional[int]]
    min_param: int
    max_param: int
    step: int
    delta: int
    effective_max_param: int
    rows: List[SweepRow] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.window is not None

    @property
    def is_trend(self) -> bool:
        return self.recent is not None or any(t.scorer == Scorer.TREND for t in self.targets)

    def fallback(self, policy: str) -> Optional[Tuple[int, Optional[int]]]:
        """
        (window, recent) to use when nothing was found, for callers that want one.

        `none` keeps the null result, `first` / `last` pick the first or last
        candidate that was evaluated.
        """
        if self.found:
            return self.window, self.recent
        if policy == "none" or not self.rows:
            return None
        if policy == "first":
            row = self.rows[0]
        elif policy == "last":
            row = self.rows[-1]
        else:
            raise ValueError(f"Unknown fallback policy '{policy}'")
        return row.window, row.recent

    def as_dict(self, include_rows: bool = True) -> Dict:
        out = {
            "targets": [t.key for t in self.targets],
            "profile": self.profile.as_dict(),
            "window": self.window,
            "per_target": dict(self.per_target),
            "search": {
                "min_param": self.min_param,
                "max_param": self.max_param,
                "effective_max_param": self.effective_max_param,
                "step": self.step,
                "delta": self.delta,
            },
        }
        if self.is_trend:
            out["recent"] = self.recent
            out["per_target_recent"] = dict(self.per_target_recent)
        if include_rows:
            out["rows"] = [row.as_dict() for row in self.rows]
        return out


def first_run(flags: Sequence[bool], length: int) -> Optional[int]:
    """Index where the first run of `length` consecutive True values starts."""
    run = 0
    for i, ok in enumerate(flags):
        run = run + 1 if ok else 0
        if run == length:
            return i - length + 1
    return None


def _ranking_row(series: DrawSeries, targets, profile, n: int, delta: int) -> SweepRow:
    metrics, passed, sigma = {}, {}, {}
    for target in targets:
        scores_n = score(target.scorer, series, target.category, n)
        scores_nd = score(target.scorer, series, target.category, n + delta)
        metric = ranking_stability(scores_n, scores_nd, target.top_k)
        metrics[target.key] = metric
        passed[target.key] = profile.accepts(metric)
        sigma[target.key] = dispersion(scores_n)
    return SweepRow(window=n, recent=None, metrics=metrics, passed=passed, dispersion=sigma)


def _trend_row(series: DrawSeries, targets, profile, w: int, r: int, r_step: int) -> SweepRow:
    metrics, passed = {}, {}
    for target in targets:
        labels = [
            trend_labels(series, target.category, w, r + i * r_step) for i in range(3)
        ]
        metric = trend_stability(*labels)
        metrics[target.key] = metric
        passed[target.key] = profile.accepts(metric)
    # The middle of the three compared periods is the one reported.
    return SweepRow(window=w, recent=r + r_step, metrics=metrics, passed=passed)


class ProposalSearch:
    """
    Sweep candidate windows and propose the smallest one whose ranking stays stable.

    Ranking scorers compare the scores at N against N + delta. The trend
    scorer sweeps (W, R) pairs and compares labels at R, R + r_step and
    R + 2 * r_step. Every target must pass the profile for a candidate to be
    valid, and the proposal is the first candidate that starts a run of
    `profile.consecutive_steps` valid candidates.

    A sweep with no candidate at all (no W admits a recent period) yields
    an empty, null proposal rather than an error.
    """

    def __init__(
        self,
        targets: Sequence[Target],
        profile: ThresholdProfile,
        min_param: int,
        max_param: int,
        step: int,
        delta: int = 0,
        r_min: int = TREND_CONFIG["r_min"],
        r_step: int = TREND_CONFIG["r_step"],
        r_max_fraction: float = TREND_CONFIG["r_max_fraction"],
        r_cap: int = TREND_CONFIG["r_cap"],
        history_margin: int = TREND_CONFIG["history_margin"],
        clamp_to_history: bool = False,
        n_jobs: int = 1,
        progress: Optional[ProgressCallback] = None,
    ):
        self.targets = tuple(
            Target(Scorer(t.scorer), t.category, t.top_k) for t in targets
        )
        if not self.targets:
            raise ValueError("At least one (scorer, category) target is required.")
        kinds = {t.scorer.is_ranking for t in self.targets}
        if len(kinds) > 1:
            raise ValueError("Ranking scorers and the trend scorer cannot be searched together.")
        if min_param <= 0 or step <= 0:
            raise ValueError("min_param and step must be positive.")
        if max_param < min_param:
            raise ValueError(f"max_param ({max_param}) is below min_param ({min_param}).")

        self.is_trend = not kinds.pop()
        if not self.is_trend and delta <= 0:
            raise ValueError("Ranking scorers need a positive comparison delta.")
        if self.is_trend and (r_min <= 0 or r_step <= 0):
            raise ValueError("r_min and r_step must be positive.")
        if history_margin < 0:
            raise ValueError("history_margin must not be negative.")

        self.profile = profile
        self.min_param = min_param
        self.max_param = max_param
        self.step = step
        self.delta = 0 if self.is_trend else delta
        self.r_min = r_min
        self.r_step = r_step
        self.r_max_fraction = r_max_fraction
        self.r_cap = r_cap
        self.history_margin = history_margin
        self.clamp_to_history = clamp_to_history
        self.n_jobs = n_jobs
        self.progress = progress

    @property
    def shift(self) -> int:
        """Draws needed beyond a window: delta for rankings, older history kept for trend."""
        return self.history_margin if self.is_trend else self.delta

    @property
    def min_history(self) -> int:
        """Shortest series the first candidate fits in."""
        return self.min_param + self.shift

    def _effective_max(self, series: DrawSeries) -> int:
        available = len(series)
        shift = self.shift
        if self.min_param + shift > available:
            raise InsufficientHistory(self.min_param + shift, available)
        if self.max_param + shift <= available:
            return self.max_param
        if not self.clamp_to_history:
            raise InsufficientHistory(self.max_param + shift, available)

        bound = available - shift
        logger.warning(
            f"Search bound {self.max_param} clamped to {bound} "
            f"({available} draws available, shift {shift})"
        )
        return bound

    def _recent_periods(self, w: int) -> List[int]:
        r_max = min(self.r_cap, int(w * self.r_max_fraction))
        periods = []
        r = self.r_min
        while r + 2 * self.r_step <= r_max and r + 2 * self.r_step <= w:
            periods.append(r)
            r += self.r_step
        return periods

    def candidates(self, bound: int) -> List[Tuple[int, Optional[int]]]:
        windows = range(self.min_param, bound + 1, self.step)
        if not self.is_trend:
            return [(n, None) for n in windows]
        return [(w, r) for w in windows for r in self._recent_periods(w)]

    def _report(self, stage: str, done: int, total: int):
        if self.progress is not None:
            self.progress(stage, done, total)

    def evaluate(self, series: DrawSeries, bound: int) -> List[SweepRow]:
        candidates = self.candidates(bound)
        if not candidates:
            logger.warning(
                f"No candidate in [{self.min_param}, {bound}] with the configured recent periods"
            )
            return []

        if self.is_trend:
            tasks = (
                delayed(_trend_row)(series, self.targets, self.profile, w, r, self.r_step)
                for w, r in candidates
            )
        else:
            tasks = (
                delayed(_ranking_row)(series, self.targets, self.profile, n, self.delta)
                for n, _ in candidates
            )

        # Generator output keeps submission order, so rows stay ascending.
        rows = []
        for done, row in enumerate(Parallel(n_jobs=self.n_jobs, return_as="generator")(tasks), 1):
            logger.debug(f"Candidate {row.window}/{row.recent}: valid={row.valid}")
            rows.append(row)
            self._report("search", done, len(candidates))
        return rows

    def _locate(self, rows: List[SweepRow], accept: Callable[[SweepRow], bool]) -> Optional[SweepRow]:
        needed = self.profile.consecutive_steps
        if not self.is_trend:
            idx = first_run([accept(row) for row in rows], needed)
            return rows[idx] if idx is not None else None

        # Smallest W first, then the first run along its R sweep.
        by_window: Dict[int, List[SweepRow]] = {}
        for row in rows:
            by_window.setdefault(row.window, []).append(row)
        for w in sorted(by_window):
            group = by_window[w]
            idx = first_run([accept(row) for row in group], needed)
            if idx is not None:
                return group[idx]
        return None

    def run(self, series: DrawSeries) -> Proposal:
        bound = self._effective_max(series)
        names = ", ".join(t.key for t in self.targets)
        logger.info(
            f"Searching [{names}] with profile '{self.profile.name}': "
            f"windows {self.min_param}..{bound} step {self.step} over {len(series)} draws"
        )

        rows = self.evaluate(series, bound)

        best = self._locate(rows, lambda row: row.valid)
        per_target, per_target_recent = {}, {}
        for target in self.targets:
            hit = self._locate(rows, lambda row, key=target.key: row.passed[key])
            per_target[target.key] = hit.window if hit else None
            if self.is_trend:
                per_target_recent[target.key] = hit.recent if hit else None

        proposal = Proposal(
            targets=self.targets,
            profile=self.profile,
            window=best.window if best else None,
            recent=best.recent if best else None,
            per_target=per_target,
            per_target_recent=per_target_recent,
            min_param=self.min_param,
            max_param=self.max_param,
            step=self.step,
            delta=self.delta,
            effective_max_param=bound,
            rows=rows,
        )

        if proposal.found:
            suffix = f", R*={proposal.recent}" if self.is_trend else ""
            logger.info(f"Profile '{self.profile.name}' -> window {proposal.window}{suffix}")
        else:
            logger.info(f"Profile '{self.profile.name}' -> no proposal within {self.min_param}..{bound}")
        return proposal
