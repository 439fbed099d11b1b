from __future__ import annotations

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import box

import pytest

from precinct_car.data.demographics import (
    clean_acs_measurements,
    ensure_block_group_geoid,
    join_block_group_geometry,
)
from precinct_car.data.quality import QualityLog, JOIN_MISS
from precinct_car.model.config import Covariate

COVS = (Covariate("total_pop", "count"), Covariate("median_income", "rate"))


def test_geoid_from_acs_geo_id_and_from_parts() -> None:
    acs = pd.DataFrame({"GEO_ID": ["1500000US530330001001", "1500000US530330001002"]})
    assert ensure_block_group_geoid(acs)["geoid"].tolist() == ["530330001001", "530330001002"]

    parts = pd.DataFrame({"state": ["53"], "county": ["33"], "tract": ["0001.00"], "block_group": ["1"]})
    assert ensure_block_group_geoid(parts)["geoid"].tolist() == ["530330001001"]

    with pytest.raises(ValueError):
        ensure_block_group_geoid(pd.DataFrame({"name": ["x"]}))


def test_clean_acs_measurements_maps_sentinels_to_missing() -> None:
    acs = pd.DataFrame(
        {
            "geo_id": ["1500000US530330001001", "1500000US530330001002"],
            "total_pop": ["1200", "800"],
            "median_income": ["54000", "-666666666"],
            "extra": ["a", "b"],
        }
    )
    out = clean_acs_measurements(acs, COVS)

    assert list(out.columns) == ["geoid", "total_pop", "median_income"]
    assert out["total_pop"].tolist() == [1200.0, 800.0]
    assert out["median_income"].iloc[0] == 54000.0
    assert np.isnan(out["median_income"].iloc[1])


def test_clean_acs_measurements_requires_declared_covariates() -> None:
    acs = pd.DataFrame({"geoid": ["530330001001"], "total_pop": [1]})
    with pytest.raises(ValueError, match="median_income"):
        clean_acs_measurements(acs, COVS)


def test_join_block_group_geometry_counts_misses() -> None:
    acs = clean_acs_measurements(
        pd.DataFrame(
            {
                "geoid": ["530330001001", "530330001002"],
                "total_pop": [10, 20],
                "median_income": [1.0, 2.0],
            }
        ),
        COVS,
    )
    geo = gpd.GeoDataFrame(
        {"GEOID": ["530330001001", "530330001003"], "geometry": [box(0, 0, 1, 1), box(1, 0, 2, 1)]},
        geometry="geometry",
        crs="EPSG:3083",
    )
    quality = QualityLog()
    joined = join_block_group_geometry(acs, geo, quality=quality)

    assert joined["geoid"].tolist() == ["530330001001"]
    assert isinstance(joined, gpd.GeoDataFrame)
    assert quality.count(JOIN_MISS) == 2
