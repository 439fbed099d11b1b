from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from loguru import logger

from .config import Columns, Covariate
from ..data.elections import Totals, observed_totals
from ..data.quality import QualityLog, DEGENERATE_UNIT, ISOLATED_UNIT
from ..spatial.adjacency import Adjacency


@dataclass(frozen=True)
class OutcomeRecords:
    """
    Model input: one row per modeled unit plus the adjacency between them.

    `table` and `excluded` hand out copies, so nothing downstream can change
    what the solver was given.
    """
    _table: pd.DataFrame
    adjacency: Adjacency
    covariates: tuple
    full_totals: Totals
    _excluded: pd.DataFrame
    columns: Columns = Columns()

    @property
    def table(self) -> pd.DataFrame:
        return self._table.copy()

    @property
    def excluded(self) -> pd.DataFrame:
        return self._excluded.copy()

    @property
    def unit_ids(self) -> tuple:
        return tuple(self._table[self.columns.unit_id])

    @property
    def response(self) -> np.ndarray:
        return self._table[self.columns.response].to_numpy(dtype="int64")

    @property
    def trials(self) -> np.ndarray:
        return self._table[self.columns.trials].to_numpy(dtype="int64")

    @property
    def modeled_totals(self) -> Totals:
        return observed_totals(self._table, self.columns.response, self.columns.trials)

    def __len__(self) -> int:
        return len(self._table)


def build_outcome_records(
    units: pd.DataFrame,
    adjacency: Adjacency,
    response_col: str,
    trials_col: str,
    covariates: Sequence[Covariate] = (),
    covariate_table: pd.DataFrame | None = None,
    unit_col: str = "unit_key",
    full_totals: Totals | None = None,
    quality: QualityLog | None = None,
    cols: Columns = Columns(),
) -> OutcomeRecords:
    """
    Assemble the per-unit rows handed to the solver.

    Excluded here, each recorded in `quality`:
      - units with a non-positive denominator
      - units absent from the adjacency relation
      - units with no neighbor among the remaining units

    `full_totals` should describe every unit of the source (including ones
    dropped before this point); it defaults to the totals of `units`.
    """
    quality = quality if quality is not None else QualityLog()
    for c in (unit_col, response_col, trials_col):
        if c not in units.columns:
            raise ValueError(f"Units table missing required column {c!r}.")

    df = pd.DataFrame(units.drop(columns="geometry", errors="ignore")).copy()
    df[unit_col] = df[unit_col].astype(str)
    full = full_totals if full_totals is not None else observed_totals(df, response_col, trials_col)

    out = pd.DataFrame({
        cols.unit_id: df[unit_col],
        cols.response: pd.to_numeric(df[response_col], errors="coerce"),
        cols.trials: pd.to_numeric(df[trials_col], errors="coerce"),
    })

    names = [c.name for c in covariates]
    if names:
        if covariate_table is not None:
            cov = covariate_table.copy()
            key = cols.unit_id if cols.unit_id in cov.columns else unit_col
            cov = cov.rename(columns={key: cols.unit_id})
            cov[cols.unit_id] = cov[cols.unit_id].astype(str)
            missing = [n for n in names if n not in cov.columns]
            if missing:
                raise ValueError(f"Covariate table missing declared covariates: {missing}")
            out = out.merge(cov[[cols.unit_id] + names], on=cols.unit_id, how="left")
        else:
            missing = [n for n in names if n not in df.columns]
            if missing:
                raise ValueError(f"Units table missing declared covariates: {missing}")
            for n in names:
                out[n] = pd.to_numeric(df[n], errors="coerce").to_numpy()

    excluded = []

    bad = ~(out[cols.trials] > 0) | out[cols.response].isna()
    if bad.any():
        ids = out.loc[bad, cols.unit_id].tolist()
        quality.record("records", DEGENERATE_UNIT, ids, detail="with a missing response or non-positive denominator")
        excluded.append(pd.DataFrame({cols.unit_id: ids, "reason": DEGENERATE_UNIT}))
        out = out.loc[~bad]

    over = out[cols.response] > out[cols.trials]
    if over.any():
        raise ValueError(
            f"{int(over.sum())} unit(s) have response > trials, e.g. "
            f"{out.loc[over, cols.unit_id].head(5).tolist()}"
        )

    not_in_adj = ~out[cols.unit_id].isin(adjacency.ids)
    if not_in_adj.any():
        ids = out.loc[not_in_adj, cols.unit_id].tolist()
        quality.record("records", DEGENERATE_UNIT, ids, detail="missing from the adjacency relation")
        excluded.append(pd.DataFrame({cols.unit_id: ids, "reason": DEGENERATE_UNIT}))
        out = out.loc[~not_in_adj]

    # removing units with no neighbors never strips another unit's neighbors
    adj = adjacency.subset(out[cols.unit_id])
    isolated = adj.isolated()
    if isolated:
        quality.record("records", ISOLATED_UNIT, isolated, detail="with no shared border; excluded from the model")
        excluded.append(pd.DataFrame({cols.unit_id: isolated, "reason": ISOLATED_UNIT}))
        out = out.loc[~out[cols.unit_id].isin(isolated)]
        adj = adj.subset(out[cols.unit_id])

    if len(adj) == 0:
        raise ValueError("No units left to model after exclusions.")

    n_comp = adj.connected_components()
    if n_comp > 1:
        logger.warning(f"[records] adjacency has {n_comp} connected components; the ICAR term is improper per component")

    out = out.set_index(cols.unit_id).loc[list(adj.ids)].reset_index()
    out[cols.response] = out[cols.response].astype("int64")
    out[cols.trials] = out[cols.trials].astype("int64")
    out[cols.adj_index] = np.arange(len(out), dtype="int64")

    excluded_df = (
        pd.concat(excluded, ignore_index=True)
        if excluded else pd.DataFrame({cols.unit_id: pd.Series(dtype=str), "reason": pd.Series(dtype=str)})
    )

    records = OutcomeRecords(
        _table=out.reset_index(drop=True),
        adjacency=adj,
        covariates=tuple(covariates),
        full_totals=full,
        _excluded=excluded_df,
        columns=cols,
    )
    m = records.modeled_totals
    logger.info(
        f"[records] modeled {len(records)} unit(s) ({m.response:.0f}/{m.trials:.0f}); "
        f"full set {full.n_units} unit(s) ({full.response:.0f}/{full.trials:.0f}); "
        f"excluded {len(excluded_df)}"
    )
    return records
