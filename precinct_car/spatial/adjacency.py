from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from loguru import logger
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from ..data.io import assert_projected_planar


@dataclass(frozen=True)
class Adjacency:
    """
    Symmetric 0/1 shared-border relation over a set of units.

    Rows/columns follow `ids` (sorted unit identifiers), never the row order
    of whatever table the units came from.
    """
    ids: Tuple[str, ...]
    matrix: np.ndarray

    def __post_init__(self):
        m = np.array(self.matrix, dtype=np.int8)
        n = len(self.ids)
        if m.shape != (n, n):
            raise ValueError(f"Adjacency matrix shape {m.shape} does not match {n} ids.")
        if len(set(self.ids)) != n:
            raise ValueError("Adjacency ids must be unique.")
        if not np.array_equal(m, m.T):
            raise ValueError("Adjacency matrix must be symmetric.")
        if np.any(np.diag(m) != 0):
            raise ValueError("Adjacency matrix must have a zero diagonal.")
        m.setflags(write=False)
        object.__setattr__(self, "matrix", m)

    @classmethod
    def from_edges(cls, ids: Iterable, edges: pd.DataFrame) -> "Adjacency":
        ids = tuple(sorted(str(i) for i in ids))
        pos = {u: i for i, u in enumerate(ids)}
        m = np.zeros((len(ids), len(ids)), dtype=np.int8)
        for a, b in zip(edges["unit_a"].astype(str), edges["unit_b"].astype(str)):
            if a in pos and b in pos and a != b:
                m[pos[a], pos[b]] = 1
                m[pos[b], pos[a]] = 1
        return cls(ids=ids, matrix=m)

    def __len__(self) -> int:
        return len(self.ids)

    def index_of(self) -> Dict[str, int]:
        return {u: i for i, u in enumerate(self.ids)}

    def neighbors(self, unit_id) -> List[str]:
        i = self.index_of()[str(unit_id)]
        return [self.ids[j] for j in np.flatnonzero(self.matrix[i])]

    def n_neighbors(self) -> pd.Series:
        return pd.Series(self.matrix.sum(axis=1).astype(int), index=list(self.ids), name="n_neighbors")

    def isolated(self) -> List[str]:
        return [u for u, k in zip(self.ids, self.matrix.sum(axis=1)) if k == 0]

    def subset(self, keep: Iterable) -> "Adjacency":
        keep = {str(k) for k in keep}
        idx = [i for i, u in enumerate(self.ids) if u in keep]
        return Adjacency(ids=tuple(self.ids[i] for i in idx), matrix=self.matrix[np.ix_(idx, idx)])

    def connected_components(self) -> int:
        if not self.ids:
            return 0
        n, _ = connected_components(csr_matrix(self.matrix), directed=False)
        return int(n)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.matrix, index=list(self.ids), columns=list(self.ids))

    def edges(self) -> pd.DataFrame:
        ii, jj = np.nonzero(np.triu(self.matrix, k=1))
        return pd.DataFrame({
            "unit_a": [self.ids[i] for i in ii],
            "unit_b": [self.ids[j] for j in jj],
        })


def shared_border_lengths(units: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Length of shared boundary for every candidate pair (i < j) whose
    bounding geometries intersect. Corner-only contact has length 0.
    """
    geoms = units.geometry.values
    left, right = units.sindex.query(geoms, predicate="intersects")
    keep = left < right
    left, right = left[keep], right[keep]

    boundaries = shapely.boundary(np.asarray(geoms))
    shared = shapely.intersection(boundaries[left], boundaries[right])
    return pd.DataFrame({"i": left, "j": right, "length": shapely.length(shared)})


def build_adjacency(
    units: gpd.GeoDataFrame,
    id_col: str,
    min_shared_length: float = 0.0,
) -> Adjacency:
    """
    Shared-edge (rook) adjacency for a polygon set.

    Two units are neighbors iff their boundaries meet along a segment longer
    than `min_shared_length`; touching at a single point does not count.
    """
    if id_col not in units.columns:
        raise ValueError(f"Units missing id column {id_col!r}.")
    assert_projected_planar(units, "build_adjacency")

    ids = units[id_col].astype(str)
    if ids.duplicated().any():
        raise ValueError(f"Duplicate unit ids in {id_col!r}: {ids[ids.duplicated()].unique()[:10].tolist()}")

    # stable order: by id
    order = np.argsort(ids.to_numpy(), kind="mergesort")
    ordered = units.iloc[order].reset_index(drop=True)
    ordered_ids = tuple(ids.iloc[order].tolist())

    pairs = shared_border_lengths(ordered)
    pairs = pairs.loc[pairs["length"] > min_shared_length]

    m = np.zeros((len(ordered_ids), len(ordered_ids)), dtype=np.int8)
    m[pairs["i"].to_numpy(), pairs["j"].to_numpy()] = 1
    m[pairs["j"].to_numpy(), pairs["i"].to_numpy()] = 1
    adj = Adjacency(ids=ordered_ids, matrix=m)

    n_iso = len(adj.isolated())
    logger.info(f"[adjacency] {len(adj)} unit(s), {len(pairs)} shared border(s), {n_iso} isolated")
    return adj
