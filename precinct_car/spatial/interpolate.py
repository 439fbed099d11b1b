from __future__ import annotations

from typing import Sequence

import pandas as pd
import geopandas as gpd
from loguru import logger

from ..data.io import assert_projected_planar


def areal_weights(
    fine: gpd.GeoDataFrame,
    coarse: gpd.GeoDataFrame,
    fine_id: str,
    coarse_id: str,
) -> pd.DataFrame:
    """
    Share of each fine unit's area falling in each coarse unit.

    Weights for a fine unit sum to 1 when the coarse set covers it completely,
    and to less than 1 for the part lying outside every coarse unit.
    """
    if fine.crs != coarse.crs:
        fine = fine.to_crs(coarse.crs)
    assert_projected_planar(coarse, "areal_weights")

    f = fine[[fine_id, "geometry"]].copy()
    f[fine_id] = f[fine_id].astype(str)
    f["_fine_area"] = f.geometry.area
    c = coarse[[coarse_id, "geometry"]].copy()
    c[coarse_id] = c[coarse_id].astype(str)

    pieces = gpd.overlay(f, c, how="intersection", keep_geom_type=True)
    pieces["weight"] = pieces.geometry.area / pieces["_fine_area"]
    pieces = pieces.loc[pieces["weight"] > 0, [fine_id, coarse_id, "weight"]]
    return pd.DataFrame(pieces).sort_values([fine_id, coarse_id], kind="mergesort").reset_index(drop=True)


def areal_interpolate_counts(
    fine: gpd.GeoDataFrame,
    coarse: gpd.GeoDataFrame,
    fine_id: str,
    coarse_id: str,
    count_cols: Sequence[str],
) -> pd.DataFrame:
    """
    Area-weighted transfer of count measurements for fine units split across
    coarse boundaries.

    The weights are area shares standing in for population shares: each
    count is assumed to be spread uniformly over its fine unit. Runs using
    this path carry AREAL_CAVEAT in their summary caveats.
    """
    missing = [c for c in count_cols if c not in fine.columns]
    if missing:
        raise ValueError(f"Fine-unit table missing count columns: {missing}")

    w = areal_weights(fine, coarse, fine_id, coarse_id)
    vals = pd.DataFrame(fine[[fine_id, *count_cols]]).copy()
    vals[fine_id] = vals[fine_id].astype(str)
    df = w.merge(vals, on=fine_id, how="inner")

    split = (w.groupby(fine_id)[coarse_id].nunique() > 1).sum()
    logger.info(f"[interpolate] {split} fine unit(s) split across coarse boundaries")

    for c in count_cols:
        df[c] = df[c] * df["weight"]
    out = df.sort_values([coarse_id, fine_id], kind="mergesort").groupby(coarse_id, sort=True)[list(count_cols)].sum(min_count=1)
    return out.reset_index()
