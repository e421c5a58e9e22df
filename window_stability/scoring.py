import logging
from enum import Enum

import numpy as np
import pandas as pd

from .config import TREND_CONFIG
from .series import DrawSeries

logger = logging.getLogger(__name__)

RISING = "rising"
STABLE = "stable"
FALLING = "falling"


class Scorer(str, Enum):
    """Which notion of "interesting" an analysis ranks items by."""
    FREQUENCY = "frequency"
    ABSENCE = "absence"
    OVER_REPRESENTATION = "overrep"
    TREND = "trend"

    @property
    def is_ranking(self) -> bool:
        return self is not Scorer.TREND


def _check_window(n: int):
    if n <= 0:
        raise ValueError(f"Window must be positive, got {n}")


def _vector(series: DrawSeries, category: str, values, name: str) -> pd.Series:
    universe = series.universe(category)
    return pd.Series(values, index=pd.Index(universe.ids, name=category), name=name)


def frequency(series: DrawSeries, category: str, n: int) -> pd.Series:
    """Number of draws among the `n` most recent that contain each id."""
    _check_window(n)
    return _vector(series, category, series.counts(category, n), Scorer.FREQUENCY.value)


def absence(series: DrawSeries, category: str, n: int) -> pd.Series:
    """
    Draws since each id was last seen within the `n` most recent draws.

    Ids not seen inside the window are capped at `n` rather than extrapolated,
    so every score lies in [0, n].
    """
    _check_window(n)
    first = series.first_seen(category, n)
    gaps = np.where(first < 0, n, first)
    return _vector(series, category, gaps, Scorer.ABSENCE.value)


def over_representation(series: DrawSeries, category: str, n: int) -> pd.Series:
    """Binomial z-score of each id's count against a fair draw: (k - n*p0) / sqrt(n*p0*(1-p0))."""
    _check_window(n)
    p0 = series.universe(category).p0
    k = series.counts(category, n).astype(float)
    variance = n * p0 * (1 - p0)
    if variance <= 0:
        logger.debug(f"Degenerate null model for '{category}' (n={n}, p0={p0:.4f}); z set to 0")
        z = np.zeros_like(k)
    else:
        z = (k - n * p0) / np.sqrt(variance)
    return _vector(series, category, z, Scorer.OVER_REPRESENTATION.value)


def trend_ratio(series: DrawSeries, category: str, w: int, r: int) -> pd.Series:
    """Observed count over the last `r` draws divided by the count expected from the last `w`."""
    _check_window(w)
    _check_window(r)
    if r > w:
        raise ValueError(f"Recent period R={r} must not exceed total window W={w}")

    freq_w = series.counts(category, w).astype(float)
    freq_r = series.counts(category, r).astype(float)
    expected = freq_w / w * r
    ratio = np.divide(freq_r, expected, out=np.zeros_like(freq_r), where=expected > 0)
    return _vector(series, category, ratio, "trend_ratio")


def trend_labels(
    series: DrawSeries,
    category: str,
    w: int,
    r: int,
    rising_ratio: float = TREND_CONFIG["rising_ratio"],
    falling_ratio: float = TREND_CONFIG["falling_ratio"],
) -> pd.Series:
    """Label each id rising / stable / falling from its trend ratio."""
    ratio = trend_ratio(series, category, w, r).to_numpy()
    labels = np.where(
        ratio > rising_ratio,
        RISING,
        np.where(ratio < falling_ratio, FALLING, STABLE),
    )
    return _vector(series, category, labels.astype(object), Scorer.TREND.value)


_SCORERS = {
    Scorer.FREQUENCY: frequency,
    Scorer.ABSENCE: absence,
    Scorer.OVER_REPRESENTATION: over_representation,
}


def score(scorer: Scorer, series: DrawSeries, category: str, n: int) -> pd.Series:
    """Score vector for one of the ranking scorers."""
    scorer = Scorer(scorer)
    if not scorer.is_ranking:
        raise ValueError("The trend scorer produces labels; use trend_labels() instead.")
    return _SCORERS[scorer](series, category, n)
