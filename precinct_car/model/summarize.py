from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import arviz as az
import numpy as np
import pandas as pd

from .draws import PosteriorDraws
from .records import OutcomeRecords
from ..data.elections import Totals

CAVEATS = (
    "Rate covariates (medians) are medians of block-group estimates; their published margins of error are not propagated.",
    "Units excluded before modeling (no neighbors, zero denominator, failed joins) are absent from the modeled aggregate.",
)

AREAL_CAVEAT = (
    "Count covariates were split across precinct boundaries by area share, assuming each block group's "
    "population is spread uniformly over its area."
)


@dataclass(frozen=True)
class IntervalSummary:
    mean: float
    median: float
    hdi_low: float
    hdi_high: float
    hdi_prob: float

    @property
    def width(self) -> float:
        return self.hdi_high - self.hdi_low


@dataclass(frozen=True)
class PosteriorSummary:
    units: pd.DataFrame
    modeled: IntervalSummary
    observed_modeled: Totals
    observed_full: Totals
    n_excluded: int
    imputed: pd.DataFrame
    n_draws: int
    caveats: List[str] = field(default_factory=lambda: list(CAVEATS))

    def as_dict(self) -> Dict:
        return {
            "modeled_ratio_mean": self.modeled.mean,
            "modeled_ratio_median": self.modeled.median,
            "modeled_ratio_hdi_low": self.modeled.hdi_low,
            "modeled_ratio_hdi_high": self.modeled.hdi_high,
            "hdi_prob": self.modeled.hdi_prob,
            "observed_modeled_ratio": self.observed_modeled.ratio,
            "observed_modeled_units": self.observed_modeled.n_units,
            "observed_full_ratio": self.observed_full.ratio,
            "observed_full_units": self.observed_full.n_units,
            "n_excluded": self.n_excluded,
            "n_draws": self.n_draws,
        }


def _hdi(x: np.ndarray, hdi_prob: float) -> np.ndarray:
    return np.asarray(az.hdi(np.asarray(x, dtype=float), hdi_prob=hdi_prob), dtype=float)


def interval(x: np.ndarray, hdi_prob: float) -> IntervalSummary:
    lo, hi = _hdi(x, hdi_prob)
    return IntervalSummary(
        mean=float(np.mean(x)),
        median=float(np.median(x)),
        hdi_low=float(lo),
        hdi_high=float(hi),
        hdi_prob=hdi_prob,
    )


def _check_shapes(predicted: np.ndarray, trials: np.ndarray) -> tuple:
    predicted = np.asarray(predicted, dtype=float)
    trials = np.asarray(trials, dtype=float)
    if predicted.ndim != 2:
        raise ValueError(f"predicted must be (draws, units); got shape {predicted.shape}")
    if trials.shape != (predicted.shape[1],):
        raise ValueError(f"trials shape {trials.shape} does not match {predicted.shape[1]} units")
    if np.any(trials <= 0):
        raise ValueError("trials must be positive for every modeled unit")
    return predicted, trials


def summarize_units(
    predicted: np.ndarray,
    trials: np.ndarray,
    unit_ids: Sequence,
    hdi_prob: float = 0.89,
) -> pd.DataFrame:
    """Per unit: predicted/denominator ratio mean, median and HDI across draws."""
    predicted, trials = _check_shapes(predicted, trials)
    ratio = predicted / trials[None, :]
    rows = []
    for j, uid in enumerate(unit_ids):
        s = interval(ratio[:, j], hdi_prob)
        rows.append({
            "unit_id": uid,
            "trials": trials[j],
            "predicted_mean": float(predicted[:, j].mean()),
            "ratio_mean": s.mean,
            "ratio_median": s.median,
            "ratio_hdi_low": s.hdi_low,
            "ratio_hdi_high": s.hdi_high,
        })
    return pd.DataFrame(rows)


def aggregate_ratio_draws(predicted: np.ndarray, trials: np.ndarray) -> np.ndarray:
    """One aggregate ratio per draw: sum of predicted counts over sum of denominators."""
    predicted, trials = _check_shapes(predicted, trials)
    return predicted.sum(axis=1) / trials.sum()


def summarize_aggregate(predicted: np.ndarray, trials: np.ndarray, hdi_prob: float = 0.89) -> IntervalSummary:
    """
    Aggregate inside each draw, then summarize across draws.
    Averaging per-unit ratios instead gives a different (unweighted) estimate.
    """
    return interval(aggregate_ratio_draws(predicted, trials), hdi_prob)


def summarize_imputed(imputed: Dict[str, pd.DataFrame], hdi_prob: float = 0.89) -> pd.DataFrame:
    rows = []
    for name, df in imputed.items():
        for uid in df.columns:
            v = df[uid].to_numpy(dtype=float)
            s = interval(v, hdi_prob)
            rows.append({
                "covariate": name,
                "unit_id": str(uid),
                "mean": s.mean,
                "sd": float(np.std(v, ddof=1)) if v.size > 1 else float("nan"),
                "hdi_low": s.hdi_low,
                "hdi_high": s.hdi_high,
            })
    return pd.DataFrame(rows, columns=["covariate", "unit_id", "mean", "sd", "hdi_low", "hdi_high"])


def summarize_posterior(
    draws: PosteriorDraws,
    records: OutcomeRecords,
    hdi_prob: float = 0.89,
    extra_caveats: Sequence[str] = (),
) -> PosteriorSummary:
    ids = list(records.unit_ids)
    predicted = draws.aligned_to(ids)
    trials = records.trials

    units = summarize_units(predicted, trials, ids, hdi_prob=hdi_prob)
    units["trials"] = trials
    units["observed"] = records.response
    units["observed_ratio"] = records.response / trials

    return PosteriorSummary(
        units=units,
        modeled=summarize_aggregate(predicted, trials, hdi_prob=hdi_prob),
        observed_modeled=records.modeled_totals,
        observed_full=records.full_totals,
        n_excluded=len(records.excluded),
        imputed=summarize_imputed(draws.imputed, hdi_prob=hdi_prob),
        n_draws=draws.n_draws,
        caveats=list(dict.fromkeys([*CAVEATS, *extra_caveats])),
    )
