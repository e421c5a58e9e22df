from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from .config import ABSENCE_PROFILES, FREQUENCY_PROFILES, OVERREP_PROFILES, TREND_PROFILES
from .metrics import StabilityMetric
from .scoring import Scorer

PROFILE_NAMES = ("strict", "standard", "soft")

_PRESETS = {
    Scorer.FREQUENCY: FREQUENCY_PROFILES,
    Scorer.ABSENCE: ABSENCE_PROFILES,
    Scorer.OVER_REPRESENTATION: OVERREP_PROFILES,
    Scorer.TREND: TREND_PROFILES,
}


@dataclass(frozen=True)
class ThresholdProfile:
    """Named acceptance thresholds for a stability metric."""
    name: str
    min_rho: Optional[float] = None
    min_overlap: Optional[float] = None
    min_concordance: Optional[float] = None
    consecutive_steps: int = 1

    def __post_init__(self):
        if self.consecutive_steps < 1:
            raise ValueError(f"consecutive_steps must be >= 1, got {self.consecutive_steps}")

    def accepts(self, metric: StabilityMetric) -> bool:
        if metric.is_trend:
            if self.min_concordance is None:
                raise ValueError(f"Profile '{self.name}' has no concordance threshold")
            return metric.label_concordance >= self.min_concordance

        if self.min_rho is None or self.min_overlap is None:
            raise ValueError(f"Profile '{self.name}' has no rho/overlap thresholds")
        return metric.spearman_rho >= self.min_rho and metric.top_k_overlap >= self.min_overlap

    def as_dict(self) -> Dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def get_profile(scorer: Scorer, name: str) -> ThresholdProfile:
    presets = _PRESETS[Scorer(scorer)]
    if name not in presets:
        raise ValueError(f"Unknown profile '{name}'. Available: {list(presets)}")
    return ThresholdProfile(name=name, **presets[name])


def get_profiles(scorer: Scorer) -> List[ThresholdProfile]:
    return [get_profile(scorer, name) for name in _PRESETS[Scorer(scorer)]]
