from __future__ import annotations

from typing import Iterable, Sequence

import pandas as pd
from loguru import logger

from ..model.config import Covariate


def aggregate_measurements(
    fine: pd.DataFrame,
    mapping: pd.DataFrame,
    fine_id: str,
    coarse_id: str,
    covariates: Sequence[Covariate],
    coarse_ids: Iterable | None = None,
) -> pd.DataFrame:
    """
    Roll fine-unit measurements up to coarse units through a fine->coarse mapping.

    IMPORTANT:
    - count measurements are summed; the sum is missing only when every mapped
      value is missing (min_count=1), so an explicit all-zero match stays 0.
    - rate measurements take the median of mapped values, skipping missing.
      The median discards the margins of error published with the source
      estimates; nothing here tries to correct for that.
    - coarse units listed in `coarse_ids` that received no fine unit get
      missing values and n_fine_units = 0.
    """
    names = [c.name for c in covariates]
    missing = [n for n in names if n not in fine.columns]
    if missing:
        raise ValueError(f"Fine-unit table missing covariates: {missing}")

    f = fine[[fine_id] + names].copy()
    f[fine_id] = f[fine_id].astype(str)
    m = mapping[[fine_id, coarse_id]].copy()
    m[fine_id] = m[fine_id].astype(str)
    m[coarse_id] = m[coarse_id].astype(str)

    df = m.merge(f, on=fine_id, how="inner")
    # sorted input so floating sums do not depend on caller row order
    df = df.sort_values([coarse_id, fine_id], kind="mergesort")
    g = df.groupby(coarse_id, sort=True)

    cols = {"n_fine_units": g[fine_id].count()}
    for c in covariates:
        if c.kind == "count":
            cols[c.name] = g[c.name].sum(min_count=1)
        else:
            cols[c.name] = g[c.name].median()
    out = pd.DataFrame(cols)

    if coarse_ids is not None:
        want = sorted({str(i) for i in coarse_ids})
        empty = sorted(set(want) - set(out.index))
        if empty:
            logger.info(f"[aggregate] {len(empty)} coarse unit(s) received no fine units; covariates left missing")
        out = out.reindex(want)
        out["n_fine_units"] = out["n_fine_units"].fillna(0)

    out["n_fine_units"] = out["n_fine_units"].astype(int)
    out.index.name = coarse_id
    return out.reset_index()
