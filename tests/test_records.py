from __future__ import annotations

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import box

import pytest

from precinct_car.data.elections import Totals
from precinct_car.data.quality import QualityLog, DEGENERATE_UNIT, ISOLATED_UNIT
from precinct_car.model.config import Covariate
from precinct_car.model.records import build_outcome_records
from precinct_car.spatial.adjacency import build_adjacency


def _units() -> gpd.GeoDataFrame:
    # A-B-C in a row, D off on its own
    return gpd.GeoDataFrame(
        {
            "unit_key": ["A", "B", "C", "D"],
            "yes": [10, 20, 5, 7],
            "ballots_cast": [100, 120, 30, 40],
            "median_income": [50000.0, np.nan, 42000.0, 61000.0],
            "geometry": [box(0, 0, 1, 1), box(1, 0, 2, 1), box(2, 0, 3, 1), box(10, 10, 11, 11)],
        },
        geometry="geometry",
        crs="EPSG:3083",
    )


def _records(units: gpd.GeoDataFrame | None = None, **kwargs):
    units = _units() if units is None else units
    adj = build_adjacency(units, "unit_key")
    return build_outcome_records(units, adj, "yes", "ballots_cast", **kwargs)


def test_isolated_unit_is_excluded_and_recorded() -> None:
    quality = QualityLog()
    records = _records(quality=quality)

    assert records.unit_ids == ("A", "B", "C")
    assert len(records) == len(_units()) - 1
    assert quality.unit_ids(ISOLATED_UNIT) == ["D"]
    assert records.excluded["reason"].tolist() == [ISOLATED_UNIT]


def test_modeled_units_all_have_neighbors() -> None:
    records = _records()
    w = records.adjacency.matrix

    assert records.adjacency.ids == records.unit_ids
    assert (w.sum(axis=1) > 0).all()
    assert records.table["adj_index"].tolist() == [0, 1, 2]


def test_full_and_modeled_totals_are_reported_separately() -> None:
    full = Totals(response=50, trials=300, n_units=5)
    records = _records(full_totals=full)

    assert records.modeled_totals.response == 35
    assert records.modeled_totals.trials == 250
    assert records.modeled_totals.ratio == pytest.approx(0.14)
    assert records.full_totals is full


def test_full_totals_default_to_the_input_units() -> None:
    records = _records()
    assert records.full_totals.response == 42
    assert records.full_totals.trials == 290
    assert records.full_totals.n_units == 4


def test_non_positive_denominators_are_excluded() -> None:
    units = _units()
    units.loc[units["unit_key"] == "C", "ballots_cast"] = 0
    quality = QualityLog()
    records = _records(units, quality=quality)

    assert "C" not in records.unit_ids
    assert quality.unit_ids(DEGENERATE_UNIT) == ["C"]


def test_response_above_trials_is_an_error() -> None:
    units = _units()
    units.loc[units["unit_key"] == "A", "yes"] = 101
    with pytest.raises(ValueError, match="response > trials"):
        _records(units)


def test_units_missing_from_adjacency_are_excluded() -> None:
    units = _units()
    adj = build_adjacency(units.loc[units["unit_key"] != "C"], "unit_key")
    quality = QualityLog()
    records = build_outcome_records(units, adj, "yes", "ballots_cast", quality=quality)

    assert records.unit_ids == ("A", "B")
    assert quality.unit_ids(DEGENERATE_UNIT) == ["C"]
    assert quality.unit_ids(ISOLATED_UNIT) == ["D"]


def test_covariates_keep_missing_values() -> None:
    records = _records(covariates=[Covariate("median_income", "rate")])
    t = records.table.set_index("precinct_id")

    assert t.loc["A", "median_income"] == 50000.0
    assert np.isnan(t.loc["B", "median_income"])


def test_covariates_can_come_from_a_separate_table() -> None:
    cov = pd.DataFrame({"precinct_id": ["A", "B", "C"], "total_pop": [1.0, 2.0, 3.0]})
    records = _records(covariates=[Covariate("total_pop", "count")], covariate_table=cov)

    assert records.table["total_pop"].tolist() == [1.0, 2.0, 3.0]

    with pytest.raises(ValueError, match="missing declared covariates"):
        _records(covariates=[Covariate("median_age", "rate")], covariate_table=cov)


def test_table_is_a_copy() -> None:
    records = _records()
    t = records.table
    t.loc[:, "response"] = 0

    assert records.response.tolist() == [10, 20, 5]
    assert records.trials.dtype == np.int64


def test_nothing_left_to_model_is_an_error() -> None:
    units = _units().iloc[[3]]
    with pytest.raises(ValueError, match="No units left"):
        _records(units)
