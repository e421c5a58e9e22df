import json

import pytest

from window_stability.backtest import Backtester, positions
from window_stability.metrics import rank, spearman, top_k_overlap
from window_stability.profiles import ThresholdProfile, get_profile
from window_stability.scoring import Scorer, frequency
from window_stability.search import ProposalSearch, Target
from window_stability.series import InsufficientHistory


@pytest.mark.parametrize(
    "total, width, shift, step",
    [(600, 60, 20, 37), (100, 50, 50, 1), (100, 50, 50, 7), (1000, 300, 50, 100)],
)
def test_position_count(total, width, shift, step):
    starts = positions(total, width, shift, step)
    assert len(starts) == (total - width - shift) // step + 1
    assert starts[0] == 0
    assert starts[-1] + width + shift <= total


def test_no_positions_when_window_does_not_fit():
    assert positions(100, 80, 30, 10) == []


def test_ranking_backtest_matches_exhaustive_recount(random_series):
    profile = get_profile(Scorer.FREQUENCY, "soft")
    target = Target(Scorer.FREQUENCY, "balls", 12)
    report = Backtester([target], profile, window=60, step=37, delta=20).run(random_series)

    expected_valid = 0
    starts = list(range(0, 600 - 60 - 20 + 1, 37))
    for start in starts:
        widened = random_series.slice(start, start + 80)
        a = frequency(widened, "balls", 60)
        b = frequency(widened, "balls", 80)
        rho = spearman(rank(a), rank(b), 50)
        overlap = top_k_overlap(a, b, 12)
        if rho >= profile.min_rho and overlap >= profile.min_overlap:
            expected_valid += 1

    assert report.total_positions == len(starts) == 15
    assert [p.start for p in report.details] == starts
    assert report.details[0].end == 59
    assert report.valid_positions == expected_valid
    assert report.pass_rate == expected_valid / 15
    assert report.comparison_shift == 20


def test_backtest_from_proposal(engineered_series):
    profile = get_profile(Scorer.FREQUENCY, "standard")
    proposal = ProposalSearch(
        [Target(Scorer.FREQUENCY, "balls", 5)], profile, 50, 400, 10, delta=50
    ).run(engineered_series)

    report = Backtester.from_proposal(proposal, step=50).run(engineered_series)
    assert report.window_width == 300
    assert report.total_positions == 4
    assert report.details[0].valid
    assert json.loads(json.dumps(report.as_dict()))["total_positions"] == 4


def test_backtest_rejects_empty_proposal(random_series):
    proposal = ProposalSearch(
        [Target(Scorer.FREQUENCY, "balls", 5)],
        ThresholdProfile("impossible", min_rho=1.01, min_overlap=0.0),
        50, 60, 10, delta=50,
    ).run(random_series)
    with pytest.raises(ValueError, match="empty"):
        Backtester.from_proposal(proposal, step=50)


def test_backtest_without_room_raises(random_series):
    backtester = Backtester(
        [Target(Scorer.ABSENCE, "balls", 25)], get_profile(Scorer.ABSENCE, "soft"),
        window=590, step=10, delta=20,
    )
    with pytest.raises(InsufficientHistory):
        backtester.run(random_series)


def test_trend_backtest_on_constant_series(make_series, euro_universes):
    series = make_series([{"balls": [1, 2, 3, 4, 5], "stars": [1, 2]}] * 250, euro_universes)
    targets = [Target(Scorer.TREND, "balls"), Target(Scorer.TREND, "stars")]
    report = Backtester(targets, get_profile(Scorer.TREND, "strict"), window=50, step=30, recent=20).run(series)

    assert report.comparison_shift == 30
    assert report.total_positions == (250 - 50 - 30) // 30 + 1
    assert report.pass_rate == 1.0
    assert report.as_dict()["recent"] == 20


def test_trend_backtest_offset(make_series, euro_universes):
    series = make_series([{"balls": [1, 2, 3, 4, 5]}] * 200, euro_universes)
    report = Backtester(
        [Target(Scorer.TREND, "balls")], get_profile(Scorer.TREND, "soft"),
        window=60, step=20, recent=20, offset=100,
    ).run(series)
    assert report.comparison_shift == 100
    assert report.total_positions == (200 - 60 - 100) // 20 + 1


def test_backtester_argument_checks():
    profile = get_profile(Scorer.TREND, "soft")
    with pytest.raises(ValueError, match="recent"):
        Backtester([Target(Scorer.TREND, "balls")], profile, window=50, step=10)
    with pytest.raises(ValueError, match="delta"):
        Backtester([Target(Scorer.FREQUENCY, "balls", 5)], profile, window=50, step=10)
    with pytest.raises(ValueError, match="together"):
        Backtester(
            [Target(Scorer.FREQUENCY, "balls", 5), Target(Scorer.TREND, "stars")],
            profile, window=50, step=10, delta=10, recent=20,
        )
