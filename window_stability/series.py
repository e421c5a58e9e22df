import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class InsufficientHistory(ValueError):
    """Raised when a window (including its comparison shift) does not fit in the series."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested a window of {requested} draws but only {available} are available"
        )


@dataclass(frozen=True)
class Universe:
    """Closed range of valid ids for one category and how many are drawn per event."""
    name: str
    low: int
    high: int
    drawn_count: int

    def __post_init__(self):
        if self.high < self.low:
            raise ValueError(f"Empty universe for '{self.name}': {self.low}..{self.high}")
        if not 0 < self.drawn_count <= self.size:
            raise ValueError(f"Invalid drawn count {self.drawn_count} for '{self.name}'")

    @property
    def size(self) -> int:
        return self.high - self.low + 1

    @property
    def ids(self) -> np.ndarray:
        return np.arange(self.low, self.high + 1)

    @property
    def p0(self) -> float:
        """Per-draw probability of any single id under a fair draw."""
        return self.drawn_count / self.size

    def contains(self, item_id: int) -> bool:
        return self.low <= item_id <= self.high


@dataclass(frozen=True)
class Draw:
    sequence_index: int
    date: date
    items: Mapping[str, FrozenSet[int]] = field(default_factory=dict)


class DrawSeries:
    """
    Immutable, most-recent-first view of the draw history.

    Index 0 is the latest draw. For every category a presence matrix of shape
    (n_draws, universe_size) is kept along with its cumulative sum, so the count
    of any id over the first N draws is a single row lookup.
    """

    def __init__(self, draws: Sequence[Draw], universes: Mapping[str, Universe]):
        if not universes:
            raise ValueError("At least one category universe is required.")
        self.draws: Tuple[Draw, ...] = tuple(draws)
        self.universes: Dict[str, Universe] = dict(universes)
        self._validate()

        self._presence = {name: self._build_presence(name) for name in self.universes}
        self._cumulative = {
            name: self._build_cumulative(matrix) for name, matrix in self._presence.items()
        }

    def _validate(self):
        seen_dates = set()
        previous = None
        for position, draw in enumerate(self.draws):
            if draw.sequence_index != position:
                raise ValueError(
                    f"Draw at position {position} has sequence index {draw.sequence_index}"
                )
            if draw.date in seen_dates:
                raise ValueError(f"Duplicate draw date {draw.date}")
            if previous is not None and draw.date >= previous:
                raise ValueError(
                    f"Draws must be strictly decreasing by date ({draw.date} follows {previous})"
                )
            seen_dates.add(draw.date)
            previous = draw.date

            for category, items in draw.items.items():
                universe = self.universes.get(category)
                if universe is None:
                    raise ValueError(f"Unknown category '{category}' in draw {draw.date}")
                bad = [n for n in items if not universe.contains(n)]
                if bad:
                    raise ValueError(
                        f"Ids {sorted(bad)} outside {universe.low}..{universe.high} "
                        f"for '{category}' in draw {draw.date}"
                    )

    def _build_presence(self, category: str) -> np.ndarray:
        universe = self.universes[category]
        presence = np.zeros((len(self.draws), universe.size), dtype=np.int32)
        for i, draw in enumerate(self.draws):
            for num in draw.items.get(category, ()):
                presence[i, num - universe.low] = 1
        return presence

    @staticmethod
    def _build_cumulative(presence: np.ndarray) -> np.ndarray:
        # Row N holds the counts over the first N draws; row 0 is all zeros.
        cumulative = np.zeros((presence.shape[0] + 1, presence.shape[1]), dtype=np.int64)
        np.cumsum(presence, axis=0, out=cumulative[1:])
        return cumulative

    def __len__(self) -> int:
        return len(self.draws)

    def length(self) -> int:
        return len(self.draws)

    def __repr__(self) -> str:
        if not self.draws:
            return "DrawSeries(empty)"
        return (
            f"DrawSeries({len(self)} draws, {self.last_date} .. {self.first_date}, "
            f"categories={list(self.universes)})"
        )

    @property
    def dates(self) -> List[date]:
        return [d.date for d in self.draws]

    @property
    def first_date(self) -> Optional[date]:
        """Date of the most recent draw."""
        return self.draws[0].date if self.draws else None

    @property
    def last_date(self) -> Optional[date]:
        """Date of the oldest draw."""
        return self.draws[-1].date if self.draws else None

    def universe(self, category: str) -> Universe:
        try:
            return self.universes[category]
        except KeyError:
            raise ValueError(
                f"Unknown category '{category}'. Known: {sorted(self.universes)}"
            ) from None

    def require(self, window: int):
        """Check that the first `window` draws exist."""
        if window < 0:
            raise ValueError(f"Window must be non-negative, got {window}")
        if window > len(self):
            raise InsufficientHistory(window, len(self))

    def slice(self, from_index: int, to_index: int) -> "DrawSeries":
        """Sub-series of positions [from_index, to_index), re-indexed from 0."""
        if to_index > len(self):
            raise InsufficientHistory(to_index, len(self))
        if from_index < 0 or from_index > to_index:
            raise ValueError(f"Invalid slice bounds [{from_index}, {to_index})")

        sub = DrawSeries.__new__(DrawSeries)
        sub.draws = tuple(
            replace(d, sequence_index=i)
            for i, d in enumerate(self.draws[from_index:to_index])
        )
        sub.universes = dict(self.universes)
        sub._presence = {
            name: matrix[from_index:to_index] for name, matrix in self._presence.items()
        }
        sub._cumulative = {
            name: self._build_cumulative(matrix) for name, matrix in sub._presence.items()
        }
        return sub

    def truncate(self, offset: int) -> "DrawSeries":
        """Drop the `offset` most recent draws, i.e. the history as of an earlier date."""
        return self.slice(offset, len(self))

    def presence(self, category: str, window: int) -> np.ndarray:
        self.universe(category)
        self.require(window)
        return self._presence[category][:window]

    def counts(self, category: str, window: int) -> np.ndarray:
        """Per-id appearance counts over the `window` most recent draws (universe order)."""
        self.universe(category)
        self.require(window)
        return self._cumulative[category][window].copy()

    def occurrences_of(self, item_id: int, category: str, window: int) -> Optional[int]:
        """
        Draws since `item_id` was last seen, searching the `window` most recent draws.

        Returns 0 when the item is in the latest draw, None when it does not
        appear inside the window.
        """
        universe = self.universe(category)
        if not universe.contains(item_id):
            raise ValueError(f"Id {item_id} outside {universe.low}..{universe.high}")
        column = self.presence(category, window)[:, item_id - universe.low]
        hits = np.flatnonzero(column)
        if hits.size == 0:
            return None
        return int(hits[0])

    def first_seen(self, category: str, window: int) -> np.ndarray:
        """Vectorised occurrences_of for the whole universe; -1 where absent."""
        window_presence = self.presence(category, window)
        if window == 0:
            return np.full(self.universe(category).size, -1, dtype=np.int64)
        seen = window_presence.any(axis=0)
        first = window_presence.argmax(axis=0)
        return np.where(seen, first, -1).astype(np.int64)
