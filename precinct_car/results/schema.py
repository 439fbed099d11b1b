from __future__ import annotations
import duckdb

def create_schema(con: duckdb.DuckDBPyConnection) -> None:
    con.execute("""
    CREATE TABLE IF NOT EXISTS model_run (
        run_id TEXT PRIMARY KEY,
        contest TEXT,
        response_col TEXT,
        trials_col TEXT,
        model_spec_json TEXT,
        created_at TEXT
    );
    """)

    con.execute("""
    CREATE TABLE IF NOT EXISTS unit_summary (
        run_id TEXT,
        unit_id TEXT,
        observed BIGINT,
        trials BIGINT,
        observed_ratio DOUBLE,
        predicted_mean DOUBLE,
        ratio_mean DOUBLE,
        ratio_median DOUBLE,
        ratio_hdi_low DOUBLE,
        ratio_hdi_high DOUBLE,
        PRIMARY KEY (run_id, unit_id)
    );
    """)

    con.execute("""
    CREATE TABLE IF NOT EXISTS aggregate_summary (
        run_id TEXT PRIMARY KEY,
        modeled_ratio_mean DOUBLE,
        modeled_ratio_median DOUBLE,
        modeled_ratio_hdi_low DOUBLE,
        modeled_ratio_hdi_high DOUBLE,
        hdi_prob DOUBLE,
        observed_modeled_ratio DOUBLE,
        observed_modeled_units BIGINT,
        observed_full_ratio DOUBLE,
        observed_full_units BIGINT,
        n_excluded BIGINT,
        n_draws BIGINT
    );
    """)

    con.execute("""
    CREATE TABLE IF NOT EXISTS imputed_summary (
        run_id TEXT,
        covariate TEXT,
        unit_id TEXT,
        mean DOUBLE,
        sd DOUBLE,
        hdi_low DOUBLE,
        hdi_high DOUBLE,
        PRIMARY KEY (run_id, covariate, unit_id)
    );
    """)

    con.execute("""
    CREATE TABLE IF NOT EXISTS quality_event (
        run_id TEXT,
        stage TEXT,
        reason TEXT,
        detail TEXT,
        unit_id TEXT
    );
    """)
