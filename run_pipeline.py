#!/usr/bin/env python3
# run_pipeline.py
# Precinct-level BYM model of a single contest:
# - Stage load:    clean results + precinct polygons + ACS block groups
# - Stage records: adjacency, block group -> precinct matching, covariate roll-up
# - Stage fit:     BYM2 solver, convergence gate, posterior summaries -> DuckDB

from __future__ import annotations

import argparse
import uuid
from pathlib import Path
from typing import Sequence

import pandas as pd
import geopandas as gpd
from loguru import logger

from precinct_car.config import (
    AREA_CRS,
    ACS_BLOCK_GROUP_CSV,
    ADJACENCY_EDGES,
    BLOCK_GROUP_SHP_FILE,
    CLEAN_BLOCK_GROUPS,
    CLEAN_PRECINCT_GEO,
    CLEAN_RETURNS,
    ELECTION_RESULTS_CSV,
    EXCLUDED_UNITS,
    OUTCOME_RECORDS,
    PRECINCT_SHP_FILE,
    PROCESSED_DATA_DIR,
    QUALITY_EVENTS,
    RESULTS_DB,
)
from precinct_car.data.demographics import clean_acs_measurements, join_block_group_geometry
from precinct_car.data.elections import (
    Totals,
    clean_election_returns,
    join_unit_geometry,
    observed_totals,
)
from precinct_car.data.io import read_any, read_geo, stdcols, to_planar, write_parquet
from precinct_car.data.quality import QualityLog
from precinct_car.model.bym import BYMSolver, RegressionSolver
from precinct_car.model.config import (
    Columns,
    ConvergenceParams,
    Covariate,
    DEFAULT_COVARIATES,
    SamplerParams,
    SummaryParams,
)
from precinct_car.model.features import count_shares
from precinct_car.model.records import OutcomeRecords, build_outcome_records
from precinct_car.model.summarize import AREAL_CAVEAT, PosteriorSummary, summarize_posterior
from precinct_car.results.db import connect_db
from precinct_car.results.export import export_outputs
from precinct_car.results.store import write_run
from precinct_car.spatial.adjacency import Adjacency, build_adjacency
from precinct_car.spatial.aggregates import aggregate_measurements
from precinct_car.spatial.interpolate import areal_interpolate_counts
from precinct_car.spatial.matching import match_to_coarse

STAGES = ["load", "records", "fit", "all"]


# ========================== Stage: load ==========================
def load_inputs(
    results_path: Path,
    precincts_path: Path,
    acs_path: Path,
    block_groups_path: Path,
    precinct_name_col: str,
    covariates: Sequence[Covariate],
    contest: str | None = None,
    unit_col: str = "precinct",
    quality: QualityLog | None = None,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame, pd.DataFrame]:
    """Returns (precincts with returns, block groups with ACS measurements, cleaned returns before the geometry join)."""
    quality = quality if quality is not None else QualityLog()

    returns = clean_election_returns(read_any(results_path), contest=contest, unit_col=unit_col, quality=quality)
    precinct_geo = read_geo(precincts_path)
    precincts = join_unit_geometry(returns, precinct_geo, geo_name_col=precinct_name_col, quality=quality)

    acs = clean_acs_measurements(stdcols(read_any(acs_path)), covariates)
    bg_geo = read_geo(block_groups_path)
    block_groups = join_block_group_geometry(acs, bg_geo, quality=quality)

    logger.info(f"[load] {len(precincts)} precinct(s), {len(block_groups)} block group(s)")
    return precincts, block_groups, returns


# ========================== Stage: records ==========================
def covariates_by_precinct(
    precincts: gpd.GeoDataFrame,
    block_groups: gpd.GeoDataFrame,
    covariates: Sequence[Covariate],
    unit_col: str = "unit_key",
    fine_id: str = "geoid",
    interpolation: str = "centroid",
    share_of: str | None = "total_pop",
    quality: QualityLog | None = None,
) -> pd.DataFrame:
    """
    Block-group measurements rolled up to precincts.

    interpolation="centroid": every block group goes wholly to the precinct holding its centroid.
    interpolation="areal":    count measurements are split by area share; rates still use centroids.
    """
    mapping = match_to_coarse(block_groups, precincts, fine_id=fine_id, coarse_id=unit_col, quality=quality)
    agg = aggregate_measurements(
        block_groups, mapping, fine_id=fine_id, coarse_id=unit_col,
        covariates=covariates, coarse_ids=precincts[unit_col],
    )

    if interpolation == "areal":
        counts = [c.name for c in covariates if c.kind == "count"]
        if counts:
            areal = areal_interpolate_counts(block_groups, precincts, fine_id, unit_col, counts)
            agg = agg.drop(columns=counts).merge(areal, on=unit_col, how="left")
    elif interpolation != "centroid":
        raise ValueError(f"Unknown interpolation: {interpolation!r}")

    count_cols = [c.name for c in covariates if c.kind == "count"]
    if share_of and share_of in agg.columns:
        agg = count_shares(agg, count_cols, pop_col=share_of)
    return agg


def build_model_inputs(
    precincts: gpd.GeoDataFrame,
    block_groups: gpd.GeoDataFrame,
    response_col: str,
    trials_col: str,
    covariates: Sequence[Covariate] = DEFAULT_COVARIATES,
    full_totals: Totals | None = None,
    interpolation: str = "centroid",
    area_crs: str = AREA_CRS,
    unit_col: str = "unit_key",
    quality: QualityLog | None = None,
) -> OutcomeRecords:
    quality = quality if quality is not None else QualityLog()
    precincts = to_planar(precincts, area_crs)
    block_groups = to_planar(block_groups, area_crs)
    if block_groups.crs != precincts.crs:
        block_groups = block_groups.to_crs(precincts.crs)

    adjacency = build_adjacency(precincts, id_col=unit_col)
    cov_table = None
    if covariates:
        cov_table = covariates_by_precinct(
            precincts, block_groups, covariates, unit_col=unit_col,
            interpolation=interpolation, quality=quality,
        )

    return build_outcome_records(
        precincts,
        adjacency,
        response_col=response_col,
        trials_col=trials_col,
        covariates=covariates,
        covariate_table=cov_table,
        unit_col=unit_col,
        full_totals=full_totals,
        quality=quality,
    )


def save_records(records: OutcomeRecords, records_path: Path, edges_path: Path, excluded_path: Path) -> None:
    table = records.table
    write_parquet(table, records_path)
    write_parquet(records.adjacency.edges(), edges_path)
    excluded = records.excluded
    full = records.full_totals
    meta = pd.DataFrame([{"full_response": full.response, "full_trials": full.trials, "full_units": full.n_units}])
    write_parquet(excluded, excluded_path)
    write_parquet(meta, excluded_path.with_name(excluded_path.stem + "_totals.parquet"))


def load_records(
    records_path: Path,
    edges_path: Path,
    excluded_path: Path,
    covariates: Sequence[Covariate],
    cols: Columns = Columns(),
) -> OutcomeRecords:
    table = pd.read_parquet(records_path)
    table[cols.unit_id] = table[cols.unit_id].astype(str)
    adjacency = Adjacency.from_edges(table[cols.unit_id], pd.read_parquet(edges_path))
    meta = pd.read_parquet(excluded_path.with_name(excluded_path.stem + "_totals.parquet")).iloc[0]
    return OutcomeRecords(
        _table=table,
        adjacency=adjacency,
        covariates=tuple(c for c in covariates if c.name in table.columns),
        full_totals=Totals(float(meta["full_response"]), float(meta["full_trials"]), int(meta["full_units"])),
        _excluded=pd.read_parquet(excluded_path),
        columns=cols,
    )


# ========================== Stage: fit ==========================
def fit_and_summarize(
    records: OutcomeRecords,
    solver: RegressionSolver,
    sampler: SamplerParams = SamplerParams(),
    summary: SummaryParams = SummaryParams(),
    caveats: Sequence[str] = (),
) -> PosteriorSummary:
    draws = solver.fit(records, sampler)
    result = summarize_posterior(draws, records, hdi_prob=summary.hdi_prob, extra_caveats=caveats)
    m = result.modeled
    logger.info(
        f"[fit] modeled ratio {m.mean:.4f} (HDI{summary.hdi_prob:.0%} {m.hdi_low:.4f}-{m.hdi_high:.4f}); "
        f"observed modeled {result.observed_modeled.ratio:.4f}, observed full {result.observed_full.ratio:.4f}"
    )
    return result


def main():
    ap = argparse.ArgumentParser(description="Precinct BYM model pipeline (load -> records -> fit)")
    ap.add_argument("--stage", default="all", choices=STAGES)
    ap.add_argument("--results", type=Path, default=ELECTION_RESULTS_CSV)
    ap.add_argument("--precincts", type=Path, default=PRECINCT_SHP_FILE)
    ap.add_argument("--acs", type=Path, default=ACS_BLOCK_GROUP_CSV)
    ap.add_argument("--block-groups", type=Path, default=BLOCK_GROUP_SHP_FILE)
    ap.add_argument("--precinct-name-col", default="precinct")
    ap.add_argument("--contest", default=None)
    ap.add_argument("--response", required=True, help="Choice column modeled as the response, e.g. yes")
    ap.add_argument("--trials", default="ballots_cast")
    ap.add_argument("--interpolation", default="centroid", choices=["centroid", "areal"])
    ap.add_argument("--db", type=Path, default=RESULTS_DB)
    ap.add_argument("--run-id", default=None)
    ap.add_argument("--chains", type=int, default=SamplerParams.chains)
    ap.add_argument("--draws", type=int, default=SamplerParams.draws)
    ap.add_argument("--tune", type=int, default=SamplerParams.tune)
    ap.add_argument("--target-accept", type=float, default=SamplerParams.target_accept)
    ap.add_argument("--max-treedepth", type=int, default=SamplerParams.max_treedepth)
    ap.add_argument("--allow-unconverged", action="store_true",
                    help="Log instead of stopping when convergence checks fail")
    ap.add_argument("--export-dir", type=Path, default=None)
    ap.add_argument("--export-format", default="parquet", choices=["parquet", "csv"])
    args = ap.parse_args()

    covariates = DEFAULT_COVARIATES

    def run_load(quality: QualityLog):
        precincts, block_groups, returns = load_inputs(
            args.results, args.precincts, args.acs, args.block_groups,
            precinct_name_col=args.precinct_name_col, covariates=covariates,
            contest=args.contest, quality=quality,
        )
        write_parquet(precincts, CLEAN_PRECINCT_GEO)
        write_parquet(block_groups, CLEAN_BLOCK_GROUPS)
        write_parquet(returns, CLEAN_RETURNS)
        write_parquet(quality.to_frame(), QUALITY_EVENTS)
        return precincts, block_groups, returns

    def run_records(precincts, block_groups, returns, quality: QualityLog):
        if args.response not in returns.columns:
            choices = [c for c in returns.columns if c not in Columns().vote_cols]
            raise ValueError(f"Response column {args.response!r} not in results; columns: {choices}")
        records = build_model_inputs(
            precincts, block_groups, response_col=args.response, trials_col=args.trials,
            covariates=covariates, full_totals=observed_totals(returns, args.response, args.trials),
            interpolation=args.interpolation, quality=quality,
        )
        save_records(records, OUTCOME_RECORDS, ADJACENCY_EDGES, EXCLUDED_UNITS)
        write_parquet(quality.to_frame(), QUALITY_EVENTS)
        return records

    def run_fit(records: OutcomeRecords, quality: QualityLog):
        sampler = SamplerParams(
            draws=args.draws, tune=args.tune, chains=args.chains,
            target_accept=args.target_accept, max_treedepth=args.max_treedepth,
        )
        solver = BYMSolver(ConvergenceParams(), strict=not args.allow_unconverged)
        caveats = [AREAL_CAVEAT] if args.interpolation == "areal" else []
        result = fit_and_summarize(records, solver, sampler, caveats=caveats)

        run_id = args.run_id or f"RUN_{uuid.uuid4().hex[:8]}"
        con = connect_db(args.db)
        write_run(
            con, run_id, result, quality, contest=args.contest,
            response_col=args.response, trials_col=args.trials,
            model_spec={"model": "bym2_binomial", "sampler": vars(sampler),
                        "covariates": [c.name for c in records.covariates],
                        "interpolation": args.interpolation, "caveats": result.caveats},
        )
        if args.export_dir:
            export_outputs(con, args.export_dir, fmt=args.export_format, run_id=run_id)
        con.close()
        logger.info(f"Saved run {run_id} -> {args.db}")

    # Execute
    if args.stage == "load":
        run_load(QualityLog())
    elif args.stage == "records":
        quality = QualityLog.from_frame(pd.read_parquet(QUALITY_EVENTS))
        precincts = gpd.read_parquet(CLEAN_PRECINCT_GEO)
        block_groups = gpd.read_parquet(CLEAN_BLOCK_GROUPS)
        returns = pd.read_parquet(CLEAN_RETURNS)
        run_records(precincts, block_groups, returns, quality)
    elif args.stage == "fit":
        quality = QualityLog.from_frame(pd.read_parquet(QUALITY_EVENTS))
        run_fit(load_records(OUTCOME_RECORDS, ADJACENCY_EDGES, EXCLUDED_UNITS, covariates), quality)
    elif args.stage == "all":
        quality = QualityLog()
        records = run_records(*run_load(quality), quality)
        run_fit(records, quality)

    logger.info(f"Done. stage={args.stage} outputs={PROCESSED_DATA_DIR}")


if __name__ == "__main__":
    main()
