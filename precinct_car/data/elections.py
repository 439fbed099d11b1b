from __future__ import annotations

import re
from dataclasses import dataclass

import pandas as pd
import geopandas as gpd
from loguru import logger

from .keys import normalize_unit_key
from .quality import QualityLog, JOIN_MISS, DEGENERATE_UNIT

UNIT_LEVEL_COLS = ("registered_voters", "ballots_cast")
CHANNEL_COLS = ("mail_votes", "in_person_votes")


@dataclass(frozen=True)
class Totals:
    """Response/denominator totals over a set of units."""
    response: float
    trials: float
    n_units: int

    @property
    def ratio(self) -> float:
        return self.response / self.trials if self.trials > 0 else float("nan")


def choice_column(label) -> str:
    """Map a raw choice/candidate label to a column name ("Yes " -> "yes", "Jane Q. Doe" -> "jane_q_doe", 101 -> "101")."""
    if label is None or pd.isna(label) or not str(label).strip():
        return "other"
    if isinstance(label, float) and label.is_integer():
        # integer codes read back as floats when the column had gaps
        label = int(label)
    return re.sub(r"_{2,}", "_", re.sub(r"[^a-z0-9]+", "_", str(label).strip().lower())).strip("_")


def _maybe_filter_contest(df: pd.DataFrame, contest: str | None) -> pd.DataFrame:
    """Filter long results to a single contest if a contest column exists."""
    if contest is None:
        if "contest" in df.columns:
            uniq = df["contest"].dropna().astype(str).str.strip().unique()
            uniq = [u for u in uniq if u]
            if len(uniq) > 1:
                raise ValueError(
                    "Election results contain multiple contests, but no contest filter was provided. "
                    f"Found examples: {uniq[:10]}"
                )
        return df

    if "contest" not in df.columns:
        return df

    con = df["contest"].astype(str).str.strip().str.casefold()
    target = str(contest).strip().casefold()
    out = df.loc[con == target].copy()
    if out.empty:
        examples = df["contest"].dropna().astype(str).str.strip().unique().tolist()
        raise ValueError(
            f"No rows matched contest={contest!r}. "
            f"Contest examples in file: {examples[:15]}"
        )
    return out


def clean_election_returns(
    df: pd.DataFrame,
    contest: str | None = None,
    unit_col: str = "precinct",
    choice_col: str = "choice",
    votes_col: str = "votes",
    quality: QualityLog | None = None,
) -> pd.DataFrame:
    """
    Long results (one row per reporting unit x choice) -> one row per unit.

    Output columns:
      - unit_key (normalized unit name) and the raw unit name
      - one integer column per choice, zero where a unit has no row for it
      - total_votes, mail_votes, in_person_votes (summed over choices)
      - registered_voters, ballots_cast (unit-level, when present)

    Units whose total (ballots_cast if present, else total_votes) is not
    positive are dropped and recorded as degenerate.
    """
    quality = quality if quality is not None else QualityLog()
    df = df.copy()
    df.columns = [c.strip().lower() for c in df.columns]

    df = _maybe_filter_contest(df, contest)

    missing = [c for c in (unit_col, choice_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Election results missing required columns: {missing}")

    for c in (votes_col, *CHANNEL_COLS, *UNIT_LEVEL_COLS):
        if c in df.columns:
            df[c] = pd.to_numeric(df[c], errors="coerce")

    if votes_col not in df.columns:
        if not set(CHANNEL_COLS).issubset(df.columns):
            raise ValueError(f"Election results need {votes_col!r} or both {list(CHANNEL_COLS)}.")
        df[votes_col] = df["mail_votes"].fillna(0) + df["in_person_votes"].fillna(0)
    df[votes_col] = df[votes_col].fillna(0).astype("int64")

    df["unit_key"] = normalize_unit_key(df[unit_col])
    bad_key = df["unit_key"].isna()
    if bad_key.any():
        quality.record("load_returns", JOIN_MISS, df.loc[bad_key, unit_col].fillna("<blank>").unique(),
                       detail="with an unusable unit name")
        df = df.loc[~bad_key]

    df["choice"] = df[choice_col].map(choice_column)

    # ----------------------------
    # Long -> wide
    # ----------------------------
    pivot = df.pivot_table(index="unit_key", columns="choice", values=votes_col, aggfunc="sum", fill_value=0)
    pivot.columns = [str(c) for c in pivot.columns]
    out = pivot.astype("int64")
    out["total_votes"] = out.sum(axis=1)

    grouped = df.groupby("unit_key")
    for c in CHANNEL_COLS:
        if c in df.columns:
            out[c] = grouped[c].sum(min_count=1).reindex(out.index)
    for c in UNIT_LEVEL_COLS:
        if c in df.columns:
            # repeated on every row of a unit; disagreement is a source problem
            spread = grouped[c].nunique()
            if (spread > 1).any():
                logger.warning(f"[load_returns] {int((spread > 1).sum())} unit(s) report more than one {c}; using the max")
            out[c] = grouped[c].max().reindex(out.index)
    out[unit_col] = grouped[unit_col].first().reindex(out.index)
    out = out.reset_index()

    denom = "ballots_cast" if "ballots_cast" in out.columns else "total_votes"
    bad = ~(out[denom] > 0)
    if bad.any():
        quality.record("load_returns", DEGENERATE_UNIT, out.loc[bad, "unit_key"],
                       detail=f"with non-positive {denom}")
        out = out.loc[~bad].copy()

    logger.info(f"[load_returns] {len(out)} unit(s), choices={sorted(df['choice'].unique().tolist())}")
    return out.sort_values("unit_key", kind="mergesort").reset_index(drop=True)


def observed_totals(table: pd.DataFrame, response_col: str, trials_col: str) -> Totals:
    return Totals(
        response=float(pd.to_numeric(table[response_col], errors="coerce").fillna(0).sum()),
        trials=float(pd.to_numeric(table[trials_col], errors="coerce").fillna(0).sum()),
        n_units=int(len(table)),
    )


def join_unit_geometry(
    table: pd.DataFrame,
    geometry: gpd.GeoDataFrame,
    geo_name_col: str,
    key: str = "unit_key",
    quality: QualityLog | None = None,
) -> gpd.GeoDataFrame:
    """Inner-join tabular units to their polygons; both sides' misses are recorded."""
    quality = quality if quality is not None else QualityLog()
    if geo_name_col not in geometry.columns:
        raise ValueError(f"Precinct geometry missing name column {geo_name_col!r}.")

    geo = geometry[[geo_name_col, "geometry"]].copy()
    geo[key] = normalize_unit_key(geo[geo_name_col])
    no_key = geo[key].isna()
    if no_key.any():
        quality.record("join_geometry", JOIN_MISS, [f"row:{i}" for i in geo.index[no_key]],
                       detail="polygon(s) with an unusable unit name")
        geo = geo.loc[~no_key]

    dup = geo[key].duplicated(keep=False) & geo[key].notna()
    if dup.any():
        # multipart precincts stored as several rows
        n_parts = int(dup.sum())
        geo = geo.dissolve(by=key, as_index=False, aggfunc="first")
        logger.info(f"[join_geometry] dissolved {n_parts} polygon part(s) sharing a unit key")

    tab_keys = set(table[key].dropna())
    geo_keys = set(geo[key].dropna())

    quality.record("join_geometry", JOIN_MISS, sorted(tab_keys - geo_keys), detail="in results but not in geometry")
    quality.record("join_geometry", JOIN_MISS, sorted(geo_keys - tab_keys), detail="in geometry but not in results")

    merged = geo.drop(columns=[geo_name_col]).merge(table, on=key, how="inner")
    merged = gpd.GeoDataFrame(merged, geometry="geometry", crs=geometry.crs)
    return merged.sort_values(key, kind="mergesort").reset_index(drop=True)
