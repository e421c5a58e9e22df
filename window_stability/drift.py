import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from joblib import Parallel, delayed

from .search import ProgressCallback, Proposal, ProposalSearch
from .series import DrawSeries, InsufficientHistory

logger = logging.getLogger(__name__)


@dataclass
class DriftEntry:
    offset: int
    epoch_end_date: date
    proposal: Proposal

    def as_dict(self) -> Dict:
        out = {
            "offset": self.offset,
            "epoch_end_date": self.epoch_end_date.isoformat(),
            "window": self.proposal.window,
            "effective_max_param": self.proposal.effective_max_param,
            "per_target": dict(self.proposal.per_target),
        }
        if self.proposal.is_trend:
            out["recent"] = self.proposal.recent
        return out


@dataclass
class DriftSeries:
    step: int
    min_tail: int
    entries: List[DriftEntry] = field(default_factory=list)

    def windows(self) -> List[Optional[int]]:
        return [e.proposal.window for e in self.entries]

    def distinct_windows(self) -> List[int]:
        return sorted({w for w in self.windows() if w is not None})

    def spread(self) -> Optional[Tuple[int, int]]:
        """(smallest, largest) proposed window across epochs, ignoring empty ones."""
        found = self.distinct_windows()
        if not found:
            return None
        return found[0], found[-1]

    def as_dict(self) -> Dict:
        return {
            "step": self.step,
            "min_tail": self.min_tail,
            "spread": list(self.spread()) if self.spread() else None,
            "series": [e.as_dict() for e in self.entries],
        }


def _run_epoch(search: ProposalSearch, series: DrawSeries, offset: int) -> DriftEntry:
    truncated = series.truncate(offset)
    return DriftEntry(offset=offset, epoch_end_date=truncated.first_date, proposal=search.run(truncated))


class DriftAnalyzer:
    """
    Re-run a search as of earlier points in history.

    Each epoch drops the `offset` most recent draws and searches the rest, for
    offset = 0, step, 2*step, ... while at least `min_tail` draws remain. The
    result is evidence only; deciding between a fixed and a recomputed window
    is up to the caller.
    """

    def __init__(
        self,
        search: ProposalSearch,
        step: int,
        min_tail: int,
        n_jobs: int = 1,
        progress: Optional[ProgressCallback] = None,
    ):
        if step <= 0 or min_tail <= 0:
            raise ValueError("step and min_tail must be positive.")
        if min_tail < search.min_history:
            raise ValueError(
                f"min_tail ({min_tail}) is shorter than the {search.min_history} draws "
                f"the search needs for its first candidate"
            )
        self.search = search
        self.step = step
        self.min_tail = min_tail
        self.n_jobs = n_jobs
        self.progress = progress

    def offsets(self, length: int) -> List[int]:
        return list(range(0, length - self.min_tail + 1, self.step)) if length >= self.min_tail else []

    def run(self, series: DrawSeries) -> DriftSeries:
        offsets = self.offsets(len(series))
        if not offsets:
            raise InsufficientHistory(self.min_tail, len(series))

        logger.info(
            f"Drift analysis: {len(offsets)} epochs (step {self.step}, min tail {self.min_tail})"
        )

        search = self.search
        if self.n_jobs != 1:
            # Epochs run in workers; keep each inner search sequential and silent.
            search = copy.copy(self.search)
            search.n_jobs = 1
            search.progress = None

        tasks = (delayed(_run_epoch)(search, series, offset) for offset in offsets)
        drift = DriftSeries(step=self.step, min_tail=self.min_tail)
        for done, entry in enumerate(Parallel(n_jobs=self.n_jobs, return_as="generator")(tasks), 1):
            drift.entries.append(entry)
            if self.progress is not None:
                self.progress("drift", done, len(offsets))

        logger.info(f"Drift windows by epoch: {drift.windows()}")
        return drift
