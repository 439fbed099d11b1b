from __future__ import annotations

import numpy as np
import pandas as pd
import geopandas as gpd
from loguru import logger

from ..data.io import assert_projected_planar
from ..data.quality import QualityLog, NEAREST_FALLBACK, BOUNDARY_TIE

CONTAINED = "contained"
TIE = "boundary_tie"
NEAREST = "nearest_centroid"


def _id_sorted(gdf: gpd.GeoDataFrame, id_col: str) -> gpd.GeoDataFrame:
    out = gdf[[id_col, "geometry"]].copy()
    out[id_col] = out[id_col].astype(str)
    if out[id_col].duplicated().any():
        raise ValueError(f"Duplicate ids in {id_col!r}.")
    return out.sort_values(id_col, kind="mergesort").reset_index(drop=True)


def match_to_coarse(
    fine: gpd.GeoDataFrame,
    coarse: gpd.GeoDataFrame,
    fine_id: str,
    coarse_id: str,
    quality: QualityLog | None = None,
) -> pd.DataFrame:
    """
    Assign every fine unit to exactly one coarse unit by centroid.

    - centroid inside (or on the boundary of) exactly one coarse unit -> that unit
    - centroid on a boundary shared by several -> nearest coarse centroid,
      then lowest coarse id
    - centroid outside every coarse unit -> nearest coarse unit by centroid distance

    Returns one row per fine unit: fine_id, coarse_id, method, sorted by fine_id.
    """
    quality = quality if quality is not None else QualityLog()
    if fine_id == coarse_id:
        raise ValueError("fine_id and coarse_id must be different column names.")
    if fine.crs != coarse.crs:
        fine = fine.to_crs(coarse.crs)
    assert_projected_planar(coarse, "match_to_coarse")

    f = _id_sorted(fine, fine_id)
    c = _id_sorted(coarse, coarse_id)
    if c.empty:
        raise ValueError("No coarse units to match against.")

    pts = gpd.GeoDataFrame({fine_id: f[fine_id]}, geometry=f.geometry.centroid, crs=c.crs)
    c_cent = gpd.GeoSeries(c.geometry.centroid.values, index=c[coarse_id].values, crs=c.crs)

    # boundary inclusive: "intersects" rather than "within"
    hits = gpd.sjoin(pts, c[[coarse_id, "geometry"]], how="left", predicate="intersects")
    hits = hits[[fine_id, coarse_id, "geometry"]].reset_index(drop=True)

    n_hits = hits.groupby(fine_id)[coarse_id].count()
    contained_ids = n_hits.index[n_hits == 1]
    tie_ids = n_hits.index[n_hits > 1]
    outside_ids = n_hits.index[n_hits == 0]

    parts = [
        hits.loc[hits[fine_id].isin(contained_ids), [fine_id, coarse_id]].assign(method=CONTAINED)
    ]

    if len(tie_ids):
        t = hits.loc[hits[fine_id].isin(tie_ids)].copy()
        t["_dist"] = t.geometry.distance(gpd.GeoSeries(c_cent.loc[t[coarse_id]].values, index=t.index, crs=c.crs))
        t = t.sort_values([fine_id, "_dist", coarse_id], kind="mergesort").drop_duplicates(fine_id, keep="first")
        parts.append(t[[fine_id, coarse_id]].assign(method=TIE))
        quality.record("match", BOUNDARY_TIE, tie_ids, detail="with a centroid on a shared coarse boundary")

    if len(outside_ids):
        o = pts.loc[pts[fine_id].isin(outside_ids)].reset_index(drop=True)
        xy_f = np.column_stack([o.geometry.x.to_numpy(), o.geometry.y.to_numpy()])
        xy_c = np.column_stack([c_cent.x.to_numpy(), c_cent.y.to_numpy()])
        d = np.sqrt(((xy_f[:, None, :] - xy_c[None, :, :]) ** 2).sum(axis=2))
        # coarse ids are sorted, so argmin picks the lowest id among equal distances
        nearest = np.asarray(c_cent.index)[np.argmin(d, axis=1)]
        parts.append(pd.DataFrame({fine_id: o[fine_id].to_numpy(), coarse_id: nearest, "method": NEAREST}))
        quality.record("match", NEAREST_FALLBACK, outside_ids, detail="assigned to the nearest coarse centroid")

    out = pd.concat(parts, ignore_index=True)
    out = out.sort_values(fine_id, kind="mergesort").reset_index(drop=True)
    logger.info(
        f"[match] {len(out)} fine unit(s) -> {out[coarse_id].nunique()} coarse unit(s) "
        f"(contained={len(contained_ids)}, ties={len(tie_ids)}, nearest={len(outside_ids)})"
    )
    return out
