from __future__ import annotations

import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import box

import pytest

from precinct_car.spatial.adjacency import Adjacency, build_adjacency


def _units(records: list[tuple[str, tuple]], crs: str = "EPSG:3083") -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"unit": [r[0] for r in records], "geometry": [box(*r[1]) for r in records]},
        geometry="geometry",
        crs=crs,
    )


def _grid() -> gpd.GeoDataFrame:
    # C D
    # A B
    return _units([
        ("A", (0, 0, 1, 1)),
        ("B", (1, 0, 2, 1)),
        ("C", (0, 1, 1, 2)),
        ("D", (1, 1, 2, 2)),
    ])


def test_shared_edges_are_neighbors_but_corners_are_not() -> None:
    adj = build_adjacency(_grid(), "unit")

    assert adj.ids == ("A", "B", "C", "D")
    assert adj.neighbors("A") == ["B", "C"]
    assert adj.neighbors("D") == ["B", "C"]
    # A and D touch at (1, 1) only
    assert adj.to_frame().loc["A", "D"] == 0
    assert adj.to_frame().loc["B", "C"] == 0


def test_weights_are_symmetric_with_zero_diagonal() -> None:
    w = build_adjacency(_grid(), "unit").matrix

    assert np.array_equal(w, w.T)
    assert np.all(np.diag(w) == 0)
    assert set(np.unique(w)) <= {0, 1}


def test_indexing_follows_ids_not_row_order() -> None:
    units = _grid()
    shuffled = units.sample(frac=1.0, random_state=7).reset_index(drop=True)

    pd.testing.assert_frame_equal(
        build_adjacency(units, "unit").to_frame(),
        build_adjacency(shuffled, "unit").to_frame(),
    )


def test_exactly_one_isolated_unit_is_flagged() -> None:
    units = _units([
        ("P1", (0, 0, 1, 1)),
        ("P2", (1, 0, 2, 1)),
        ("P3", (2, 0, 3, 1)),
        ("ISLET", (10, 10, 11, 11)),
    ])
    adj = build_adjacency(units, "unit")

    assert adj.isolated() == ["ISLET"]
    kept = adj.subset([u for u in adj.ids if u not in adj.isolated()])
    assert len(kept) == len(adj) - 1
    assert kept.isolated() == []
    assert (kept.n_neighbors() > 0).all()


def test_min_shared_length_drops_short_borders() -> None:
    units = _units([
        ("A", (0, 0, 1, 1)),
        ("B", (1, 0.95, 2, 2)),   # shares 0.05 of A's right edge
    ])
    assert build_adjacency(units, "unit").neighbors("A") == ["B"]
    assert build_adjacency(units, "unit", min_shared_length=0.1).neighbors("A") == []


def test_geographic_crs_and_duplicate_ids_are_rejected() -> None:
    with pytest.raises(ValueError, match="geographic"):
        build_adjacency(_grid().set_crs("EPSG:4326", allow_override=True), "unit")

    dup = _units([("A", (0, 0, 1, 1)), ("A", (1, 0, 2, 1))])
    with pytest.raises(ValueError, match="Duplicate"):
        build_adjacency(dup, "unit")


def test_adjacency_validates_and_round_trips_edges() -> None:
    with pytest.raises(ValueError, match="symmetric"):
        Adjacency(ids=("a", "b"), matrix=np.array([[0, 1], [0, 0]]))
    with pytest.raises(ValueError, match="diagonal"):
        Adjacency(ids=("a",), matrix=np.array([[1]]))

    adj = build_adjacency(_grid(), "unit")
    rebuilt = Adjacency.from_edges(adj.ids, adj.edges())
    assert rebuilt.ids == adj.ids
    assert np.array_equal(rebuilt.matrix, adj.matrix)
    assert len(adj.edges()) == 4
    assert adj.connected_components() == 1
    assert adj.subset(["A", "D"]).connected_components() == 2


def test_matrix_is_read_only() -> None:
    adj = build_adjacency(_grid(), "unit")
    with pytest.raises(ValueError):
        adj.matrix[0, 1] = 0
