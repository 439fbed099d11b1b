from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
import geopandas as gpd

from .quality import QualityLog, JOIN_MISS
from ..model.config import Covariate

# ACS annotation values published in place of an estimate
# (too few sample cases, open-ended distribution, not applicable, ...)
ACS_SENTINELS = (-999999999, -888888888, -666666666, -555555555, -333333333, -222222222)


def ensure_block_group_geoid(df: pd.DataFrame, col: str = "geoid") -> pd.DataFrame:
    """
    Ensure the dataframe has a block-group GEOID column `col` as a 12-character string.

    Works for BOTH:
      - TIGER block-group shapefile attribute tables (GEOID / GEOIDFQ)
      - ACS tables, either with GEO_ID ("1500000US530330001001") or with
        separate state/county/tract/block group columns

    Construction rule from parts:
      geoid = zfill(state,2) + zfill(county,3) + zfill(tract,6) + block_group
    """
    out = df.copy()
    out.columns = [c.strip().lower() for c in out.columns]

    alias = next((c for c in [col, "geoid", "geo_id", "geoidfq", "bg_geoid", "geoid20"] if c in out.columns), None)
    if alias is not None:
        s = out[alias].astype("string").str.strip()
        # drop summary-level prefix: "1500000US" / "1500000US53..."
        s = s.str.replace(r"^.*US", "", regex=True).str.replace(r"\.0$", "", regex=True)
        out[col] = s.str.replace(r"[^\d]", "", regex=True).str.zfill(12)
        return out

    required = ["state", "county", "tract", "block_group"]
    if all(c in out.columns for c in required):
        st = pd.to_numeric(out["state"], errors="coerce").fillna(0).astype(int).astype(str).str.zfill(2)
        co = out["county"].astype(str).str.strip().str.zfill(3)
        tr = out["tract"].astype(str).str.strip().str.replace(".", "", regex=False).str.zfill(6)
        bg = out["block_group"].astype(str).str.strip().str[-1:]
        out[col] = (st + co + tr + bg).astype("string")
        return out

    raise ValueError(
        f"Missing {col}. Could not find an alias (GEOID/GEO_ID/GEOIDFQ) "
        "and could not construct from state+county+tract+block_group."
    )


def clean_acs_measurements(df: pd.DataFrame, covariates: Sequence[Covariate], col: str = "geoid") -> pd.DataFrame:
    """Keep the GEOID and declared covariates; numeric, with ACS sentinels and negatives as NaN."""
    out = ensure_block_group_geoid(df, col=col)
    missing = [c.name for c in covariates if c.name not in out.columns]
    if missing:
        raise ValueError(f"ACS table missing declared covariates: {missing}")

    keep = [col] + [c.name for c in covariates]
    out = out[keep].copy()
    for c in covariates:
        v = pd.to_numeric(out[c.name], errors="coerce").astype(float)
        v = v.mask(v.isin(ACS_SENTINELS) | (v < 0), np.nan)
        out[c.name] = v
    return out.drop_duplicates(subset=[col]).sort_values(col, kind="mergesort").reset_index(drop=True)


def join_block_group_geometry(
    acs: pd.DataFrame,
    geometry: gpd.GeoDataFrame,
    col: str = "geoid",
    quality: QualityLog | None = None,
) -> gpd.GeoDataFrame:
    quality = quality if quality is not None else QualityLog()
    geo = ensure_block_group_geoid(geometry, col=col)
    geo = gpd.GeoDataFrame(geo[[col, "geometry"]], geometry="geometry", crs=geometry.crs)

    acs_ids = set(acs[col].dropna())
    geo_ids = set(geo[col].dropna())
    quality.record("join_block_groups", JOIN_MISS, sorted(acs_ids - geo_ids), detail="in ACS table but not in geometry")
    quality.record("join_block_groups", JOIN_MISS, sorted(geo_ids - acs_ids), detail="in geometry but not in ACS table")

    merged = geo.merge(acs, on=col, how="inner")
    merged = gpd.GeoDataFrame(merged, geometry="geometry", crs=geometry.crs)
    return merged.sort_values(col, kind="mergesort").reset_index(drop=True)
