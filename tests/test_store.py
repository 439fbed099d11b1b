from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from precinct_car.data.elections import Totals
from precinct_car.data.quality import QualityLog, ISOLATED_UNIT
from precinct_car.model.summarize import PosteriorSummary, summarize_aggregate, summarize_units
from precinct_car.results.db import connect_db
from precinct_car.results.store import read_aggregate, write_run


def _summary(unit_ids: list[str], imputed_ids: list[str]) -> PosteriorSummary:
    trials = np.full(len(unit_ids), 100)
    predicted = np.tile(np.arange(10, 10 + len(unit_ids)), (50, 1))
    units = summarize_units(predicted, trials, unit_ids)
    units["trials"] = trials
    units["observed"] = predicted[0]
    units["observed_ratio"] = predicted[0] / trials
    imputed = pd.DataFrame({
        "covariate": "median_income",
        "unit_id": imputed_ids,
        "mean": 1.0,
        "sd": 0.1,
        "hdi_low": 0.9,
        "hdi_high": 1.1,
    })
    observed = Totals(float(predicted[0].sum()), float(trials.sum()), len(unit_ids))
    return PosteriorSummary(
        units=units,
        modeled=summarize_aggregate(predicted, trials),
        observed_modeled=observed,
        observed_full=observed,
        n_excluded=0,
        imputed=imputed,
        n_draws=50,
    )


def _ids(con, table: str, run_id: str) -> list[str]:
    return sorted(
        con.execute(f"SELECT unit_id FROM {table} WHERE run_id = ?", [run_id]).df()["unit_id"]
    )


def test_rewriting_a_run_drops_units_missing_from_the_new_run(tmp_path: Path) -> None:
    con = connect_db(tmp_path / "results.duckdb")
    quality = QualityLog()
    quality.record("records", ISOLATED_UNIT, ["D", "E"])

    write_run(con, "R", _summary(["A", "B", "C"], ["B", "C"]), quality)
    write_run(con, "R", _summary(["A", "B"], ["A"]), QualityLog())

    assert _ids(con, "unit_summary", "R") == ["A", "B"]
    assert _ids(con, "imputed_summary", "R") == ["A"]
    assert _ids(con, "quality_event", "R") == []
    assert con.execute("SELECT COUNT(*) FROM aggregate_summary WHERE run_id = 'R'").fetchone()[0] == 1
    assert read_aggregate(con, "R")["observed_modeled_units"] == 2
    con.close()


def test_rewriting_one_run_leaves_other_runs_alone(tmp_path: Path) -> None:
    con = connect_db(tmp_path / "results.duckdb")
    write_run(con, "KEEP", _summary(["A", "B", "C"], []), QualityLog())
    write_run(con, "R", _summary(["A", "B", "C"], []), QualityLog())
    write_run(con, "R", _summary(["A"], []), QualityLog())

    assert _ids(con, "unit_summary", "KEEP") == ["A", "B", "C"]
    assert _ids(con, "unit_summary", "R") == ["A"]
    con.close()
