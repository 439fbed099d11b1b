from __future__ import annotations

from pathlib import Path

import duckdb
import pandas as pd

from .schema import create_schema


def connect_db(db_path, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    """Open the results store. A writable connection also creates any missing result tables."""
    db_path = Path(db_path)
    if read_only:
        if not db_path.exists():
            raise FileNotFoundError(f"No results store at {db_path}")
        return duckdb.connect(str(db_path), read_only=True)

    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(str(db_path))
    con.execute("PRAGMA threads=4;")
    create_schema(con)
    return con


def list_runs(con: duckdb.DuckDBPyConnection) -> pd.DataFrame:
    return con.execute(
        """
        SELECT r.run_id, r.contest, r.response_col, r.trials_col, r.created_at,
               a.modeled_ratio_mean, a.observed_full_ratio, a.n_excluded
        FROM model_run r
        LEFT JOIN aggregate_summary a USING (run_id)
        ORDER BY r.created_at, r.run_id
        """
    ).df()
