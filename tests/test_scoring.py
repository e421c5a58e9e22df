import numpy as np
import pytest

from window_stability.metrics import rank, spearman
from window_stability.scoring import (
    FALLING,
    RISING,
    STABLE,
    Scorer,
    absence,
    frequency,
    over_representation,
    score,
    trend_labels,
    trend_ratio,
)
from window_stability.series import InsufficientHistory, Universe


@pytest.fixture
def absence_series(make_series, euro_universes):
    # Item 7 shows up in the 40 oldest of 200 draws only; item 50 never does.
    rows = [{"balls": [10, 11, 12, 13, 14]}] * 160 + [{"balls": [7, 1, 2, 3, 4]}] * 40
    return make_series(rows, euro_universes)


@pytest.fixture
def uniform_series(make_series):
    universes = {"balls": Universe("balls", 1, 50, 1)}
    rows = [{"balls": [i % 50 + 1]} for i in range(150)]
    return make_series(rows, universes)


def test_absence_scenario(absence_series):
    scores = absence(absence_series, "balls", 200)
    assert scores[7] == 160
    assert scores[10] == 0
    assert scores[50] == 200

    recent = absence(absence_series, "balls", 160)
    assert recent[7] == 160
    assert recent[50] == 160


def test_absence_of_recently_drawn_item(make_series, euro_universes):
    rows = [{"balls": [7, 1, 2, 3, 4]}] * 40 + [{"balls": [10, 11, 12, 13, 14]}] * 160
    series = make_series(rows, euro_universes)
    scores = absence(series, "balls", 200)
    assert scores[7] == 0
    assert scores[10] == 40
    assert scores[50] == 200
    assert len(scores) == 50


def test_frequency_uniform(uniform_series):
    scores = frequency(uniform_series, "balls", 100)
    assert (scores == 2).all()
    assert scores.index.tolist() == list(range(1, 51))


def test_uniform_vectors_rank_identically(uniform_series):
    a = frequency(uniform_series, "balls", 100)
    b = frequency(uniform_series, "balls", 150)
    assert (b == 3).all()
    assert spearman(rank(a), rank(b), 50) == 1.0


@pytest.mark.parametrize("seed", range(5))
def test_score_bounds(make_random_series, seed):
    series = make_random_series(seed)
    rng = np.random.default_rng(seed)
    for n in rng.integers(1, 400, size=10):
        n = int(n)
        for category in ("balls", "stars"):
            freq = frequency(series, category, n)
            gaps = absence(series, category, n)
            z = over_representation(series, category, n)
            assert ((freq >= 0) & (freq <= n)).all()
            assert ((gaps >= 0) & (gaps <= n)).all()
            assert np.isfinite(z.to_numpy()).all()


def test_frequency_counts_draws(random_series):
    scores = frequency(random_series, "balls", 120)
    assert scores.sum() == 120 * 5
    manual = sum(1 for d in random_series.draws[:120] if 17 in d.items["balls"])
    assert scores[17] == manual


def test_over_representation_orders_like_frequency(random_series):
    freq = frequency(random_series, "balls", 300)
    z = over_representation(random_series, "balls", 300)
    assert rank(freq).equals(rank(z))
    assert z.mean() == pytest.approx(0.0, abs=1e-9)


def test_over_representation_degenerate_null_model(make_series):
    # Every id drawn every time: p0 == 1, zero variance.
    universes = {"stars": Universe("stars", 1, 2, 2)}
    series = make_series([{"stars": [1, 2]}] * 10, universes)
    z = over_representation(series, "stars", 10)
    assert (z == 0).all()


def test_scorers_reject_bad_windows(random_series):
    with pytest.raises(ValueError):
        frequency(random_series, "balls", 0)
    with pytest.raises(InsufficientHistory):
        absence(random_series, "balls", 601)


def test_score_dispatch(random_series):
    assert score(Scorer.FREQUENCY, random_series, "stars", 50).equals(frequency(random_series, "stars", 50))
    assert score("absence", random_series, "stars", 50).equals(absence(random_series, "stars", 50))
    with pytest.raises(ValueError, match="labels"):
        score(Scorer.TREND, random_series, "stars", 50)


@pytest.fixture
def trend_series(make_series):
    universes = {"balls": Universe("balls", 1, 10, 1)}
    picks = [1, 1, 1, 3, 4, 2, 2, 3, 5, 6]
    return make_series([{"balls": [p]} for p in picks], universes)


def test_trend_ratio(trend_series):
    ratio = trend_ratio(trend_series, "balls", 10, 5)
    assert ratio[1] == pytest.approx(2.0)
    assert ratio[2] == 0.0
    assert ratio[3] == pytest.approx(1.0)
    assert ratio[7] == 0.0


def test_trend_labels(trend_series):
    labels = trend_labels(trend_series, "balls", 10, 5)
    assert labels[1] == RISING
    assert labels[2] == FALLING
    assert labels[3] == STABLE
    assert labels[4] == RISING
    assert labels[5] == FALLING
    assert labels[7] == FALLING
    assert set(labels) <= {RISING, STABLE, FALLING}


def test_trend_rejects_recent_longer_than_window(trend_series):
    with pytest.raises(ValueError, match="must not exceed"):
        trend_ratio(trend_series, "balls", 5, 6)
