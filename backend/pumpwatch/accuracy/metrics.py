"""
Forecast accuracy metrics over paired (predicted, actual) rainfall series.

    MAE   = mean |p − a|
    RMSE  = sqrt(mean (p − a)²)
    bias  = mean (p − a)                (> 0: forecast too wet)
    r     = Pearson correlation         (None when either series is constant)
    Brier = mean (prob/100 − [a > t])²  (0 perfect, 1 worst)

Binary rain/no-rain uses "value > threshold" on both sides.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np


def _pair(predicted: Sequence[float], actual: Sequence[float]):
    p = np.asarray(predicted, dtype=np.float64)
    a = np.asarray(actual, dtype=np.float64)
    if p.shape != a.shape:
        raise ValueError(f"Series length mismatch: {p.size} predicted vs {a.size} actual")
    if p.size == 0:
        raise ValueError("Cannot score an empty series")
    return p, a


def mae(predicted: Sequence[float], actual: Sequence[float]) -> float:
    p, a = _pair(predicted, actual)
    return float(np.mean(np.abs(p - a)))


def rmse(predicted: Sequence[float], actual: Sequence[float]) -> float:
    p, a = _pair(predicted, actual)
    return float(np.sqrt(np.mean((p - a) ** 2)))


def bias(predicted: Sequence[float], actual: Sequence[float]) -> float:
    p, a = _pair(predicted, actual)
    return float(np.mean(p - a))


def pearson(predicted: Sequence[float], actual: Sequence[float]) -> Optional[float]:
    """Pearson r, or None when either series has zero variance."""
    p, a = _pair(predicted, actual)
    dp, da = p - p.mean(), a - a.mean()
    denom = np.sqrt(np.sum(dp ** 2) * np.sum(da ** 2))
    if denom == 0 or not np.isfinite(denom):
        return None
    return float(np.sum(dp * da) / denom)


def brier_score(
    probabilities: Sequence[Optional[float]], actual: Sequence[float], threshold: float,
) -> Optional[float]:
    """Brier score of precipitation probabilities (0–100 %); pairs without a probability are skipped."""
    pairs = [(p, a) for p, a in zip(probabilities, actual) if p is not None]
    if not pairs:
        return None
    probs = np.asarray([p for p, _ in pairs], dtype=np.float64) / 100.0
    outcomes = (np.asarray([a for _, a in pairs], dtype=np.float64) > threshold).astype(np.float64)
    return float(np.mean((probs - outcomes) ** 2))


@dataclass
class Contingency:
    tp: int
    fp: int
    tn: int
    fn: int

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.tn + self.fn

    @property
    def accuracy(self) -> float:
        return (self.tp + self.tn) / self.total if self.total else 0.0

    @property
    def precision(self) -> float:
        denom = self.tp + self.fp
        return self.tp / denom if denom else 0.0

    @property
    def recall(self) -> float:
        denom = self.tp + self.fn
        return self.tp / denom if denom else 0.0

    @property
    def f1(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if (p + r) else 0.0

    @property
    def rainy_total(self) -> int:
        return self.tp + self.fn

    @property
    def dry_total(self) -> int:
        return self.tn + self.fp


def contingency(
    predicted: Sequence[float], actual: Sequence[float], threshold: float,
) -> Contingency:
    p, a = _pair(predicted, actual)
    pred_rain, act_rain = p > threshold, a > threshold
    return Contingency(
        tp=int(np.sum(pred_rain & act_rain)),
        fp=int(np.sum(pred_rain & ~act_rain)),
        tn=int(np.sum(~pred_rain & ~act_rain)),
        fn=int(np.sum(~pred_rain & act_rain)),
    )


# (max MAE exclusive, min correlation exclusive, rating)
RELIABILITY_TABLE = (
    (1.0, 0.8, "Excellent"),
    (2.0, 0.6, "Good"),
    (3.0, 0.4, "Fair"),
)


def reliability_rating(mae_value: float, correlation: Optional[float]) -> str:
    r = correlation if correlation is not None else 0.0
    for max_mae, min_r, rating in RELIABILITY_TABLE:
        if mae_value < max_mae and r > min_r:
            return rating
    return "Poor"
