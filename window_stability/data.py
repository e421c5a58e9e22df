import logging
from typing import Dict, Mapping, Optional

import pandas as pd

from .config import CSV_CONFIG, DATA_FILE, UNIVERSES
from .series import Draw, DrawSeries, Universe

logger = logging.getLogger(__name__)


class LotteryDataError(Exception):
    """Raised when the draw history cannot be read or is malformed."""


def default_universes() -> Dict[str, Universe]:
    return {
        name: Universe(name=name, low=low, high=high, drawn_count=drawn)
        for name, (low, high, drawn) in UNIVERSES.items()
    }


def series_from_frame(frame: pd.DataFrame, universes: Mapping[str, Universe]) -> DrawSeries:
    """
    Build a DrawSeries from a frame with a 'date' column and one list column per category.

    Rows may come in any order; they are sorted most-recent-first.
    """
    missing = [c for c in ["date", *universes] if c not in frame.columns]
    if missing:
        raise LotteryDataError(f"Missing columns: {missing}")

    ordered = frame.sort_values("date", ascending=False).reset_index(drop=True)
    draws = [
        Draw(
            sequence_index=i,
            date=pd.Timestamp(row["date"]).date(),
            items={name: frozenset(int(n) for n in row[name]) for name in universes},
        )
        for i, row in ordered.iterrows()
    ]
    try:
        return DrawSeries(draws, universes)
    except ValueError as e:
        raise LotteryDataError(f"Invalid draw history: {e}") from e


class LotteryDataManager:
    """Loads the semicolon-separated draw history into a DrawSeries."""

    def __init__(self, file_path: str = str(DATA_FILE), universes: Optional[Mapping[str, Universe]] = None):
        self.file_path = file_path
        self.universes = dict(universes) if universes else default_universes()
        self.frame = None
        self.series = None

    def load_frame(self) -> pd.DataFrame:
        """Parse the file into one row per draw: date + a list of ids per category."""
        if self.frame is not None:
            return self.frame

        try:
            raw = pd.read_csv(self.file_path, sep=CSV_CONFIG["delimiter"], header=0, dtype=str)
        except FileNotFoundError:
            raise LotteryDataError(f"Data file not found: {self.file_path}")
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise LotteryDataError(f"Error reading data: {e}")

        columns = CSV_CONFIG["columns"]
        needed = max(max(cols) for cols in columns.values()) + 1
        if raw.shape[1] < needed:
            raise LotteryDataError(f"Expected at least {needed} columns, found {raw.shape[1]}")

        dates = pd.to_datetime(
            raw.iloc[:, CSV_CONFIG["date_column"]].str.strip(),
            dayfirst=CSV_CONFIG["dayfirst"],
            errors="coerce",
        )
        bad = dates.isna()
        numbers = {}
        for name, cols in columns.items():
            if name not in self.universes:
                continue
            values = raw.iloc[:, cols].apply(pd.to_numeric, errors="coerce")
            bad |= values.isna().any(axis=1)
            bad |= (values % 1 != 0).any(axis=1)
            # A draw never repeats an id inside one category.
            bad |= values.nunique(axis=1) != len(cols)
            numbers[name] = values

        if bad.any():
            logger.warning(f"Skipping {int(bad.sum())} malformed rows")

        frame = pd.DataFrame({"date": dates[~bad].to_numpy()})
        for name, values in numbers.items():
            frame[name] = pd.Series(values[~bad].astype(int).values.tolist(), dtype=object)

        duplicates = frame["date"].duplicated(keep="first")
        if duplicates.any():
            logger.warning(f"Dropping {int(duplicates.sum())} draws with duplicate dates")
            frame = frame[~duplicates]

        if frame.empty:
            raise LotteryDataError("No valid lottery data found")

        self.frame = frame.reset_index(drop=True)
        return self.frame

    def load_series(self) -> DrawSeries:
        if self.series is not None:
            return self.series

        frame = self.load_frame()
        self.series = series_from_frame(frame, self.universes)
        logger.info(
            f"Successfully loaded {len(self.series)} draws "
            f"({self.series.last_date} .. {self.series.first_date})."
        )
        return self.series
