from __future__ import annotations
import json
from datetime import datetime
import duckdb
import pandas as pd
from loguru import logger

from ..data.quality import QualityLog
from ..model.summarize import PosteriorSummary

UNIT_COLS = [
    "unit_id", "observed", "trials", "observed_ratio", "predicted_mean",
    "ratio_mean", "ratio_median", "ratio_hdi_low", "ratio_hdi_high",
]

# every table holding rows keyed by run_id, cleared before a run is (re)written
RUN_TABLES = ("unit_summary", "aggregate_summary", "imputed_summary", "quality_event")


def _insert(con: duckdb.DuckDBPyConnection, table: str, df: pd.DataFrame) -> None:
    if df.empty:
        return
    tmp = f"tmp_{table}"
    con.register(tmp, df)
    con.execute(f"INSERT INTO {table} SELECT * FROM {tmp}")
    con.unregister(tmp)


def write_run(
    con: duckdb.DuckDBPyConnection,
    run_id: str,
    summary: PosteriorSummary,
    quality: QualityLog,
    contest: str | None = None,
    response_col: str | None = None,
    trials_col: str | None = None,
    model_spec: dict | None = None,
) -> None:
    """
    Persist one run's structured results in a single transaction.

    Re-writing an existing run_id first removes all of its rows, so units
    absent from the new run do not survive from the old one.
    """
    units = summary.units.copy()
    units["unit_id"] = units["unit_id"].astype(str)
    units = units[UNIT_COLS]
    units.insert(0, "run_id", run_id)

    agg = pd.DataFrame([{"run_id": run_id, **summary.as_dict()}])

    imputed = summary.imputed.copy()
    imputed.insert(0, "run_id", run_id)

    events = quality.to_frame()
    events.insert(0, "run_id", run_id)

    con.begin()
    try:
        for table in RUN_TABLES:
            con.execute(f"DELETE FROM {table} WHERE run_id = ?", [run_id])
        con.execute("""
            INSERT OR REPLACE INTO model_run (run_id, contest, response_col, trials_col, model_spec_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, [run_id, contest, response_col, trials_col, json.dumps(model_spec or {}),
              datetime.now().isoformat(timespec="seconds")])
        _insert(con, "unit_summary", units)
        _insert(con, "aggregate_summary", agg)
        _insert(con, "imputed_summary", imputed)
        _insert(con, "quality_event", events)
    except Exception:
        con.rollback()
        raise
    con.commit()

    logger.info(f"[store] run {run_id}: {len(units)} unit row(s), {len(imputed)} imputed cell(s), {len(events)} quality event(s)")


def read_aggregate(con: duckdb.DuckDBPyConnection, run_id: str) -> dict:
    df = con.execute("SELECT * FROM aggregate_summary WHERE run_id = ?", [run_id]).df()
    if df.empty:
        raise ValueError(f"No aggregate_summary row for run_id={run_id}")
    return df.iloc[0].to_dict()
