from __future__ import annotations

from pathlib import Path
from typing import List

import duckdb
from loguru import logger

TABLES = ("model_run", "unit_summary", "aggregate_summary", "imputed_summary", "quality_event")

COPY_OPTIONS = {
    "parquet": "(FORMAT PARQUET)",
    "csv": "(FORMAT CSV, HEADER)",
}


def export_outputs(
    con: duckdb.DuckDBPyConnection,
    out_dir,
    fmt: str = "parquet",
    run_id: str | None = None,
) -> List[Path]:
    """
    Copy each result table to `out_dir/<table>.<fmt>`, limited to one run when
    `run_id` is given. Tables with no matching rows are skipped.
    """
    if fmt not in COPY_OPTIONS:
        raise ValueError(f"Unknown export format: {fmt}")
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    where = ""
    if run_id is not None:
        where = " WHERE run_id = '{}'".format(str(run_id).replace("'", "''"))

    written = []
    for table in TABLES:
        n = con.execute(f"SELECT COUNT(*) FROM {table}{where}").fetchone()[0]
        if n == 0:
            logger.info(f"[export] {table}: no rows, skipped")
            continue
        path = out / f"{table}.{fmt}"
        con.execute(f"COPY (SELECT * FROM {table}{where}) TO '{path.as_posix()}' {COPY_OPTIONS[fmt]}")
        logger.info(f"[export] {table} ({n} row(s)) -> {path}")
        written.append(path)

    if not written:
        logger.warning("[export] nothing exported; no result rows" + (f" for run {run_id}" if run_id else ""))
    return written
