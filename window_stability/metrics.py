import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Set

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilityMetric:
    """Comparability of two parameterisations: rho + overlap for rankings, concordance for trend labels."""
    spearman_rho: Optional[float] = None
    top_k_overlap: Optional[float] = None
    label_concordance: Optional[float] = None

    @property
    def is_trend(self) -> bool:
        return self.label_concordance is not None

    def as_dict(self) -> Dict[str, float]:
        return {k: round(v, 3) for k, v in asdict(self).items() if v is not None}


def _ordering(scores: pd.Series) -> np.ndarray:
    # Descending score, ascending id on ties. Every ranking and top-K set goes through here.
    ids = scores.index.to_numpy()
    values = scores.to_numpy(dtype=float)
    if np.isnan(values).any():
        raise ValueError(f"Score vector '{scores.name}' contains NaN")
    return np.lexsort((ids, -values))


def rank(scores: pd.Series) -> pd.Series:
    """Rank table (1 = strongest) with ties broken by ascending id."""
    order = _ordering(scores)
    ranks = np.empty(len(scores), dtype=np.int64)
    ranks[order] = np.arange(1, len(scores) + 1)
    return pd.Series(ranks, index=scores.index, name="rank")


def top_k(scores: pd.Series, k: int) -> Set[int]:
    if not 1 <= k <= len(scores):
        raise ValueError(f"K must be within 1..{len(scores)}, got {k}")
    order = _ordering(scores)
    return {int(i) for i in scores.index.to_numpy()[order[:k]]}


def _aligned(a: pd.Series, b: pd.Series, universe_size: int) -> pd.Series:
    if len(a) != universe_size or len(b) != universe_size:
        raise ValueError(
            f"Both vectors must cover the whole universe of {universe_size} ids "
            f"(got {len(a)} and {len(b)})"
        )
    if not a.index.sort_values().equals(b.index.sort_values()):
        raise ValueError("Vectors are defined over different ids")
    return b.reindex(a.index)


def spearman(rank_a: pd.Series, rank_b: pd.Series, universe_size: int) -> float:
    """
    Spearman rank correlation 1 - 6*sum(d^2) / (n*(n^2-1)) over the full universe.

    A universe with fewer than two ids has no ordering to disagree on and
    scores 1.0. Constant score vectors need no special case: ties are broken
    by id, so two uniform vectors produce identical rank tables and rho == 1.
    """
    rank_b = _aligned(rank_a, rank_b, universe_size)
    n = universe_size
    if n < 2:
        return 1.0
    d = rank_a.to_numpy(dtype=float) - rank_b.to_numpy(dtype=float)
    return float(1 - (6 * np.sum(d * d)) / (n * (n * n - 1)))


def top_k_overlap(scores_a: pd.Series, scores_b: pd.Series, k: int) -> float:
    """Share of the K strongest ids common to both vectors."""
    _aligned(scores_a, scores_b, len(scores_a))
    return len(top_k(scores_a, k) & top_k(scores_b, k)) / k


def label_concordance(labels_a: pd.Series, labels_b: pd.Series, universe_size: int) -> float:
    """Fraction of ids carrying the same trend label in both maps."""
    labels_b = _aligned(labels_a, labels_b, universe_size)
    if universe_size == 0:
        return 1.0
    same = labels_a.to_numpy() == labels_b.to_numpy()
    return float(np.count_nonzero(same) / universe_size)


def dispersion(scores: pd.Series) -> float:
    """Population standard deviation of a score vector (sigma(N) in the sweep tables)."""
    return float(np.std(scores.to_numpy(dtype=float)))


def ranking_stability(scores_a: pd.Series, scores_b: pd.Series, k: int) -> StabilityMetric:
    size = len(scores_a)
    return StabilityMetric(
        spearman_rho=spearman(rank(scores_a), rank(scores_b), size),
        top_k_overlap=top_k_overlap(scores_a, scores_b, k),
    )


def trend_stability(*label_maps: pd.Series) -> StabilityMetric:
    """Worst concordance between each consecutive pair of label maps."""
    if len(label_maps) < 2:
        raise ValueError("At least two label maps are needed to measure concordance.")
    size = len(label_maps[0])
    worst = min(
        label_concordance(a, b, size) for a, b in zip(label_maps, label_maps[1:])
    )
    return StabilityMetric(label_concordance=worst)
