from __future__ import annotations

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import box

import pytest

from precinct_car.model.config import Covariate
from precinct_car.spatial.aggregates import aggregate_measurements
from precinct_car.spatial.interpolate import areal_interpolate_counts, areal_weights

COVS = (Covariate("pop", "count"), Covariate("income", "rate"))


def _fine() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "geoid": ["g1", "g2", "g3", "g4", "g5"],
            "pop": [100.0, 50.0, np.nan, 0.0, 0.0],
            "income": [40000.0, 60000.0, 10000.0, np.nan, np.nan],
        }
    )


def _mapping() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "geoid": ["g1", "g2", "g3", "g4", "g5"],
            "precinct_id": ["P1", "P1", "P1", "P2", "P2"],
        }
    )


def test_counts_are_summed_and_rates_take_the_median() -> None:
    out = aggregate_measurements(_fine(), _mapping(), "geoid", "precinct_id", COVS).set_index("precinct_id")

    assert out.loc["P1", "pop"] == 150.0
    assert out.loc["P1", "income"] == 40000.0
    assert out.loc["P1", "n_fine_units"] == 3


def test_explicit_zeros_stay_zero_and_missing_rates_stay_missing() -> None:
    out = aggregate_measurements(_fine(), _mapping(), "geoid", "precinct_id", COVS).set_index("precinct_id")

    assert out.loc["P2", "pop"] == 0.0
    assert np.isnan(out.loc["P2", "income"])


def test_count_is_missing_only_when_every_value_is_missing() -> None:
    fine = pd.DataFrame({"geoid": ["g1", "g2"], "pop": [np.nan, np.nan], "income": [1.0, 2.0]})
    mapping = pd.DataFrame({"geoid": ["g1", "g2"], "precinct_id": ["P1", "P1"]})
    out = aggregate_measurements(fine, mapping, "geoid", "precinct_id", COVS)

    assert np.isnan(out["pop"].iloc[0])
    assert out["income"].iloc[0] == 1.5


def test_coarse_units_without_fine_units_are_kept_as_missing() -> None:
    out = aggregate_measurements(
        _fine(), _mapping(), "geoid", "precinct_id", COVS, coarse_ids=["P3", "P1", "P2"]
    )

    assert out["precinct_id"].tolist() == ["P1", "P2", "P3"]
    p3 = out.set_index("precinct_id").loc["P3"]
    assert p3["n_fine_units"] == 0
    assert np.isnan(p3["pop"]) and np.isnan(p3["income"])


def test_aggregation_does_not_depend_on_row_order() -> None:
    base = aggregate_measurements(_fine(), _mapping(), "geoid", "precinct_id", COVS)
    shuffled = aggregate_measurements(
        _fine().sample(frac=1.0, random_state=3),
        _mapping().sample(frac=1.0, random_state=11),
        "geoid",
        "precinct_id",
        COVS,
    )
    pd.testing.assert_frame_equal(base, shuffled)


def test_counts_are_conserved_across_the_mapping() -> None:
    out = aggregate_measurements(_fine(), _mapping(), "geoid", "precinct_id", COVS)
    assert out["pop"].sum() == _fine()["pop"].sum()


def test_undeclared_covariate_is_rejected() -> None:
    with pytest.raises(ValueError, match="missing covariates"):
        aggregate_measurements(
            _fine(), _mapping(), "geoid", "precinct_id", [Covariate("median_age", "rate")]
        )


def _areal_inputs() -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    coarse = gpd.GeoDataFrame(
        {"precinct_id": ["L", "R"], "geometry": [box(0, 0, 2, 2), box(2, 0, 4, 2)]},
        geometry="geometry",
        crs="EPSG:3083",
    )
    fine = gpd.GeoDataFrame(
        {
            "geoid": ["split", "inside"],
            "pop": [100.0, 40.0],
            "geometry": [box(1, 0, 3, 2), box(0, 0, 1, 1)],
        },
        geometry="geometry",
        crs="EPSG:3083",
    )
    return fine, coarse


def test_areal_weights_split_by_area() -> None:
    fine, coarse = _areal_inputs()
    w = areal_weights(fine, coarse, "geoid", "precinct_id")

    split = w.loc[w["geoid"] == "split"].set_index("precinct_id")["weight"]
    assert split.loc["L"] == pytest.approx(0.5)
    assert split.loc["R"] == pytest.approx(0.5)
    assert w.loc[w["geoid"] == "inside", "weight"].tolist() == pytest.approx([1.0])


def test_areal_interpolation_conserves_counts() -> None:
    fine, coarse = _areal_inputs()
    out = areal_interpolate_counts(fine, coarse, "geoid", "precinct_id", ["pop"]).set_index("precinct_id")

    assert out.loc["L", "pop"] == pytest.approx(90.0)
    assert out.loc["R", "pop"] == pytest.approx(50.0)
    assert out["pop"].sum() == pytest.approx(140.0)
