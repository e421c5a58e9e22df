import argparse
import json
import logging
import sys
from datetime import datetime

from window_stability.config import (
    BACKTEST_CONFIG,
    DATA_FILE,
    DRIFT_CONFIG,
    LOGS_DIR,
    REPORTS_DIR,
    SEARCH_CONFIG,
)
from window_stability.backtest import Backtester
from window_stability.data import LotteryDataManager
from window_stability.drift import DriftAnalyzer
from window_stability.profiles import PROFILE_NAMES, get_profile
from window_stability.scoring import Scorer
from window_stability.search import ProposalSearch, Target
from window_stability.series import InsufficientHistory

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "window_analysis.log"),
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def log_progress(stage: str, done: int, total: int):
    if done == total or done % 50 == 0:
        logger.info(f"[{stage}] {done}/{total}")


def build_search(scorer: Scorer, profile, categories, args) -> ProposalSearch:
    cfg = SEARCH_CONFIG[scorer.value]
    targets = [Target(scorer, c, cfg["top_k"].get(c, 0)) for c in categories]
    return ProposalSearch(
        targets=targets,
        profile=profile,
        min_param=args.min_window or cfg["min_param"],
        max_param=args.max_window or cfg["max_param"],
        step=args.step or cfg["step"],
        delta=args.delta or cfg.get("delta", 0),
        # The CLI sweeps as far as the history allows; the clamp is logged and reported.
        clamp_to_history=True,
        n_jobs=args.jobs,
        progress=log_progress,
    )


def analyse(series, scorer: Scorer, profile_names, args) -> list:
    analyses = []
    for name in profile_names:
        profile = get_profile(scorer, name)
        search = build_search(scorer, profile, args.categories, args)
        proposal = search.run(series)
        entry = {"profile": name, "proposal": proposal.as_dict()}

        chosen = proposal.fallback(args.fallback)
        if chosen is None:
            logger.warning(f"{scorer.value}/{name}: no proposal, backtest skipped")
        else:
            window, recent = chosen
            if not proposal.found:
                logger.warning(f"{scorer.value}/{name}: no proposal, using '{args.fallback}' candidate {window}")
            backtester = Backtester(
                targets=proposal.targets,
                profile=profile,
                window=window,
                step=args.backtest_step or BACKTEST_CONFIG[scorer.value]["step"],
                delta=proposal.delta,
                recent=recent,
            )
            try:
                entry["backtest"] = backtester.run(series).as_dict()
            except InsufficientHistory as e:
                logger.warning(f"{scorer.value}/{name}: backtest skipped ({e})")

        if args.drift:
            try:
                analyzer = DriftAnalyzer(
                    search,
                    step=args.drift_step or DRIFT_CONFIG["step"],
                    min_tail=args.min_tail or DRIFT_CONFIG["min_tail"][scorer.value],
                    n_jobs=args.jobs,
                    progress=log_progress,
                )
                entry["drift"] = analyzer.run(series).as_dict()
            except ValueError as e:
                logger.warning(f"{scorer.value}/{name}: drift analysis skipped ({e})")

        analyses.append(entry)
    return analyses


def print_summary(scorer: Scorer, analyses: list):
    print(f"\n=== {scorer.value} ===")
    for entry in analyses:
        p = entry["proposal"]
        window = p["window"] if p["window"] is not None else "none"
        if "recent" in p:
            window = f"W={window}, R={p['recent']}"
        print(f"{entry['profile']:>8}: window {window} | per category: {p['per_target']}")
        bt = entry.get("backtest")
        if bt:
            print(f"          backtest {bt['valid_positions']}/{bt['total_positions']} ({bt['pass_rate'] * 100:.1f}%)")
        drift = entry.get("drift")
        if drift:
            print(f"          drift spread {drift['spread']}")


def main():
    parser = argparse.ArgumentParser(description="Lottery window-stability analysis")
    parser.add_argument("--data", type=str, default=str(DATA_FILE), help="Semicolon-separated draw history")
    parser.add_argument("--scorer", choices=[s.value for s in Scorer] + ["all"], default="all", help="Scorer to analyse")
    parser.add_argument("--profile", choices=list(PROFILE_NAMES) + ["all"], default="all", help="Threshold profile")
    parser.add_argument("--categories", nargs="+", default=["balls", "stars"], help="Categories that must all be stable")
    parser.add_argument("--min-window", type=int, default=None, help="Override the smallest window searched")
    parser.add_argument("--max-window", type=int, default=None, help="Override the largest window searched")
    parser.add_argument("--step", type=int, default=None, help="Override the sweep step")
    parser.add_argument("--delta", type=int, default=None, help="Override the comparison increment")
    parser.add_argument("--backtest-step", type=int, default=None, help="Slide step of the backtest")
    parser.add_argument("--drift", action="store_true", help="Re-run the search on truncated history")
    parser.add_argument("--drift-step", type=int, default=None, help="Draws dropped per drift epoch")
    parser.add_argument("--min-tail", type=int, default=None, help="Smallest history kept by the drift analysis")
    parser.add_argument("--jobs", type=int, default=1, help="Parallel workers (joblib n_jobs)")
    parser.add_argument("--fallback", choices=["none", "first", "last"], default="none",
                        help="Window to backtest when no proposal is found")
    parser.add_argument("--output", type=str, default=None, help="Report path (JSON)")
    args = parser.parse_args()

    try:
        logger.info("=== Starting Window Stability Analysis ===")

        series = LotteryDataManager(args.data).load_series()

        scorers = list(Scorer) if args.scorer == "all" else [Scorer(args.scorer)]
        profile_names = PROFILE_NAMES if args.profile == "all" else [args.profile]

        report = {
            "generated_at": datetime.now().isoformat(timespec="seconds"),
            "history": {
                "draws": len(series),
                "from": series.last_date.isoformat(),
                "to": series.first_date.isoformat(),
            },
            "analyses": {},
        }
        for scorer in scorers:
            analyses = analyse(series, scorer, profile_names, args)
            report["analyses"][scorer.value] = analyses
            print_summary(scorer, analyses)

        output_file = args.output or REPORTS_DIR / "window_analysis.json"
        with open(output_file, 'w') as f:
            json.dump(report, f, indent=2)

        logger.info(f"Report saved to {output_file}")
        logger.info("=== Execution Complete ===")

    except Exception as e:
        logger.error(f"Fatal error: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

# python3 main.py --scorer frequency --profile standard
# python3 main.py --scorer trend --drift --jobs 4
