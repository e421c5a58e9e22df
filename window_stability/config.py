from pathlib import Path

# Lottery Rules
MAIN_NUMBER_RANGE = 50
BONUS_NUMBER_RANGE = 12
N_MAIN = 5
N_BONUS = 2

# Category name -> (lowest id, highest id, drawn per event)
UNIVERSES = {
    "balls": (1, MAIN_NUMBER_RANGE, N_MAIN),
    "stars": (1, BONUS_NUMBER_RANGE, N_BONUS),
}

# File Paths
PROJECT_ROOT = Path(__file__).parent.parent.absolute()
DATA_DIR = PROJECT_ROOT / "lottery_data"
DATA_FILE = DATA_DIR / "euromillions_history.csv"
LOGS_DIR = PROJECT_ROOT / "logs"
REPORTS_DIR = PROJECT_ROOT / "reports"

# Ensure directories exist
for directory in [LOGS_DIR, REPORTS_DIR]:
    directory.mkdir(exist_ok=True)

# Column layout of the history file: date;b1..b5;s1;s2
CSV_CONFIG = {
    "delimiter": ";",
    "date_column": 0,
    "dayfirst": False,
    "columns": {
        "balls": [1, 2, 3, 4, 5],
        "stars": [6, 7],
    },
}

# Sweep bounds per scorer. top_k is the size of the "interesting" set per category.
SEARCH_CONFIG = {
    "frequency": {
        "min_param": 50,
        "max_param": 2000,
        "step": 10,
        "delta": 50,
        "top_k": {"balls": 12, "stars": 4},
    },
    "absence": {
        "min_param": 60,
        "max_param": 1200,
        "step": 10,
        "delta": 20,
        "top_k": {"balls": 25, "stars": 8},
    },
    "overrep": {
        "min_param": 50,
        "max_param": 450,    # short window: stay recent
        "step": 10,
        "delta": 50,
        "top_k": {"balls": 12, "stars": 4},
    },
    "trend": {
        "min_param": 50,     # W
        "max_param": 200,
        "step": 10,
        "top_k": {"balls": 0, "stars": 0},
    },
}

TREND_CONFIG = {
    "rising_ratio": 1.2,
    "falling_ratio": 0.8,
    "r_min": 15,
    "r_step": 5,             # delta between compared recent periods
    "r_max_fraction": 0.5,   # R <= W/2
    "r_cap": 80,
    "history_margin": 20,    # older draws kept beyond W
}

# Threshold presets, one set per scorer
FREQUENCY_PROFILES = {
    "strict": {"min_rho": 0.97, "min_overlap": 0.80, "consecutive_steps": 3},
    "standard": {"min_rho": 0.95, "min_overlap": 0.75, "consecutive_steps": 3},
    "soft": {"min_rho": 0.93, "min_overlap": 0.70, "consecutive_steps": 3},
}

ABSENCE_PROFILES = {
    "strict": {"min_rho": 0.95, "min_overlap": 0.85, "consecutive_steps": 3},
    "standard": {"min_rho": 0.92, "min_overlap": 0.75, "consecutive_steps": 2},
    "soft": {"min_rho": 0.88, "min_overlap": 0.65, "consecutive_steps": 1},
}

OVERREP_PROFILES = {
    "strict": {"min_rho": 0.92, "min_overlap": 0.75, "consecutive_steps": 2},
    "standard": {"min_rho": 0.90, "min_overlap": 0.70, "consecutive_steps": 2},
    "soft": {"min_rho": 0.85, "min_overlap": 0.60, "consecutive_steps": 2},
}

TREND_PROFILES = {
    "strict": {"min_concordance": 0.85, "consecutive_steps": 1},
    "standard": {"min_concordance": 0.82, "consecutive_steps": 1},
    "soft": {"min_concordance": 0.80, "consecutive_steps": 1},
}

# Sliding validation step (draws) per scorer
BACKTEST_CONFIG = {
    "frequency": {"step": 100},
    "absence": {"step": 50},
    "overrep": {"step": 50},
    "trend": {"step": 30},
}

DRIFT_CONFIG = {
    "step": 150,             # ~1 year of draws
    "min_tail": {"frequency": 600, "absence": 400, "overrep": 400, "trend": 400},
}
