import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Sequence

from .config import Covariate


@dataclass(frozen=True)
class DesignMatrix:
    X: np.ndarray            # (units, covariates), NaN where missing
    names: List[str]
    center: np.ndarray
    scale: np.ndarray

    @property
    def missing_mask(self) -> np.ndarray:
        return np.isnan(self.X)

    def columns_with_missing(self) -> List[str]:
        return [n for n, m in zip(self.names, self.missing_mask.any(axis=0)) if m]

    def unstandardize(self, name: str, values: np.ndarray, log: bool = False) -> np.ndarray:
        j = self.names.index(name)
        v = values * self.scale[j] + self.center[j]
        return np.expm1(v) if log else v


def build_design_matrix(table: pd.DataFrame, covariates: Sequence[Covariate]) -> DesignMatrix:
    """
    Standardized covariates; missing cells stay NaN so the solver can impute them.
    Count covariates are expected as shares/rates upstream or used as-is.
    """
    names = [c.name for c in covariates]
    if not names:
        return DesignMatrix(np.zeros((len(table), 0)), [], np.zeros(0), np.ones(0))

    X = table[names].to_numpy(dtype=float).copy()
    for j, c in enumerate(covariates):
        if c.log:
            X[:, j] = np.log1p(np.where(X[:, j] >= 0, X[:, j], np.nan))

    all_missing = [n for n, col in zip(names, X.T) if np.isnan(col).all()]
    if all_missing:
        raise ValueError(f"Covariates missing for every unit: {all_missing}")

    center = np.nanmean(X, axis=0)
    scale = np.nanstd(X, axis=0)
    scale = np.where(scale > 0, scale, 1.0)
    return DesignMatrix((X - center) / scale, names, center, scale)


def count_shares(table: pd.DataFrame, count_cols: Sequence[str], pop_col: str) -> pd.DataFrame:
    """Turn aggregated counts into shares of `pop_col` (NaN where pop is missing or zero)."""
    out = table.copy()
    pop = out[pop_col].astype(float)
    for c in count_cols:
        if c == pop_col:
            continue
        out[c] = np.where(pop > 0, out[c].astype(float) / pop, np.nan)
    return out
