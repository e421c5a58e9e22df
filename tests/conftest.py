from datetime import date, timedelta

import numpy as np
import pytest

from window_stability.series import Draw, DrawSeries, Universe

LATEST = date(2025, 6, 27)

# Ten-draw blocks, most recent first. Groups A/B/C are ids 1-5 / 6-10 / 11-15.
# Every prefix of N < 300 draws ranks the groups differently from N + 50,
# while from N = 300 on the ranking is A, B, C and no longer moves.
ENGINEERED_BLOCKS = "BBCCBCABCCCABABABCACCCBBBAAAAA"
GROUPS = {"A": range(1, 6), "B": range(6, 11), "C": range(11, 16)}


def build_series(rows, universes):
    """rows: one {category: ids} mapping per draw, most recent first."""
    draws = [
        Draw(
            sequence_index=i,
            date=LATEST - timedelta(days=3 * i),
            items={name: frozenset(ids) for name, ids in items.items()},
        )
        for i, items in enumerate(rows)
    ]
    return DrawSeries(draws, universes)


def random_rows(rng, universes, n_draws):
    return [
        {
            name: rng.choice(np.arange(u.low, u.high + 1), size=u.drawn_count, replace=False).tolist()
            for name, u in universes.items()
        }
        for _ in range(n_draws)
    ]


@pytest.fixture
def euro_universes():
    return {
        "balls": Universe("balls", 1, 50, 5),
        "stars": Universe("stars", 1, 12, 2),
    }


@pytest.fixture
def make_series():
    return build_series


@pytest.fixture
def random_series(euro_universes):
    rng = np.random.default_rng(42)
    return build_series(random_rows(rng, euro_universes, 600), euro_universes)


@pytest.fixture
def make_random_series(euro_universes):
    def _make(seed, n_draws=400):
        rng = np.random.default_rng(seed)
        return build_series(random_rows(rng, euro_universes, n_draws), euro_universes)
    return _make


@pytest.fixture
def engineered_universes():
    return {
        "balls": Universe("balls", 1, 15, 5),
        "stars": Universe("stars", 1, 3, 1),
    }


@pytest.fixture
def engineered_series(engineered_universes):
    """300 block-structured draws followed by 200 draws of group A only."""
    rows = []
    for letter in ENGINEERED_BLOCKS + "A" * 20:
        for _ in range(10):
            rows.append({"balls": list(GROUPS[letter]), "stars": [1]})
    return build_series(rows, engineered_universes)
