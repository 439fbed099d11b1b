from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np
import pandas as pd


def pool_chains(arr: np.ndarray) -> np.ndarray:
    """(chain, draw, *shape) -> (chain*draw, *shape); chains are concatenated, never summarized apart."""
    arr = np.asarray(arr)
    if arr.ndim < 2:
        raise ValueError(f"Expected (chain, draw, ...) draws, got shape {arr.shape}")
    return arr.reshape((arr.shape[0] * arr.shape[1],) + arr.shape[2:])


@dataclass(frozen=True)
class PosteriorDraws:
    """
    What a solver hands back.

      predicted: (draws, units) posterior predictive counts, chains pooled,
                 columns in `unit_ids` order
      imputed:   covariate name -> (draws, units with a missing value) DataFrame
                 on the covariate's original scale
    """
    unit_ids: Tuple[str, ...]
    predicted: np.ndarray
    imputed: Dict[str, pd.DataFrame] = field(default_factory=dict)
    idata: Any = None

    def __post_init__(self):
        p = np.asarray(self.predicted)
        if p.ndim != 2 or p.shape[1] != len(self.unit_ids):
            raise ValueError(
                f"predicted draws must be (draws, {len(self.unit_ids)} units); got {p.shape}"
            )
        if p.shape[0] == 0:
            raise ValueError("Solver returned no draws.")

    @property
    def n_draws(self) -> int:
        return int(np.asarray(self.predicted).shape[0])

    def aligned_to(self, unit_ids) -> np.ndarray:
        """Predicted draws with columns reordered to `unit_ids`."""
        pos = {u: i for i, u in enumerate(self.unit_ids)}
        missing = [u for u in unit_ids if u not in pos]
        if missing:
            raise ValueError(f"No draws for unit(s): {missing[:10]}")
        return np.asarray(self.predicted)[:, [pos[u] for u in unit_ids]]
