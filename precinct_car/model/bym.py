from __future__ import annotations

from typing import Protocol

import numpy as np
import pandas as pd
from loguru import logger

from .config import ConvergenceParams, SamplerParams
from .diagnostics import check_convergence
from .draws import PosteriorDraws, pool_chains
from .features import DesignMatrix, build_design_matrix
from .records import OutcomeRecords


class RegressionSolver(Protocol):
    def fit(self, records: OutcomeRecords, sampler: SamplerParams) -> PosteriorDraws:
        ...


def bym2_scaling_factor(W: np.ndarray) -> float:
    """
    Geometric mean of the marginal variances of an ICAR field on W
    (Riebler et al. 2016), so that rho splits variance between the structured
    and unstructured terms on a comparable scale.
    """
    W = np.asarray(W, dtype=float)
    Q = np.diag(W.sum(axis=1)) - W
    # Moore-Penrose inverse of the graph Laplacian = covariance under the sum-to-zero constraint
    cov = np.linalg.pinv(Q)
    var = np.diag(cov)
    var = var[var > 0]
    if var.size == 0:
        raise ValueError("Adjacency has no edges; cannot scale the ICAR term.")
    return float(np.exp(np.mean(np.log(var))))


def build_bym_model(records: OutcomeRecords, design: DesignMatrix | None = None):
    """
    BYM2 binomial regression:

        y_i ~ Binomial(n_i, p_i)
        logit(p_i) = alpha + X_i beta + sigma * (sqrt(1 - rho) theta_i + sqrt(rho / s) phi_i)
        phi ~ ICAR(W), theta ~ N(0, 1)

    Covariate columns with missing cells get an auxiliary normal regression on
    the fully observed columns; PyMC imputes the missing cells jointly with
    everything else (variable "x_<name>").

    Imports pymc only when the model stage runs.
    """
    try:
        import pymc as pm
        import pytensor.tensor as pt
    except ImportError as e:
        raise ImportError("Install PyMC: pip install pymc arviz") from e

    if design is None:
        design = build_design_matrix(records.table, records.covariates)

    W = records.adjacency.matrix.astype(int)
    scaling = bym2_scaling_factor(W)
    y = records.response
    n = records.trials

    observed_cols = [j for j in range(len(design.names)) if not np.isnan(design.X[:, j]).any()]
    X_obs = design.X[:, observed_cols]

    coords = {"unit": list(records.unit_ids), "covariate": design.names}
    with pm.Model(coords=coords) as model:
        cols = []
        for j, name in enumerate(design.names):
            col = design.X[:, j]
            if j in observed_cols:
                cols.append(pt.as_tensor_variable(col))
                continue
            a = pm.Normal(f"{name}_aux_alpha", mu=0.0, sigma=1.0)
            mu_aux = a
            if X_obs.shape[1]:
                b = pm.Normal(f"{name}_aux_beta", mu=0.0, sigma=1.0, shape=X_obs.shape[1])
                mu_aux = a + pm.math.dot(X_obs, b)
            s = pm.HalfNormal(f"{name}_aux_sigma", sigma=1.0)
            x = pm.Normal(f"x_{name}", mu=mu_aux, sigma=s, observed=np.ma.masked_invalid(col))
            cols.append(x)

        alpha = pm.Normal("alpha", mu=0.0, sigma=1.5)
        sigma = pm.HalfNormal("sigma", sigma=1.0)
        rho = pm.Beta("rho", alpha=0.5, beta=0.5)
        theta = pm.Normal("theta", mu=0.0, sigma=1.0, dims="unit")
        phi = pm.ICAR("phi", W=W, dims="unit")

        convolved = sigma * (pt.sqrt(1.0 - rho) * theta + pt.sqrt(rho / scaling) * phi)
        eta = alpha + convolved
        if cols:
            beta = pm.Normal("beta", mu=0.0, sigma=1.0, dims="covariate")
            eta = eta + pm.math.dot(pt.stack(cols, axis=1), beta)

        pm.Binomial("y", n=n, p=pm.math.invlogit(eta), observed=y, dims="unit")

    return model, design


def fit_bym(
    records: OutcomeRecords,
    sampler: SamplerParams = SamplerParams(),
    convergence: ConvergenceParams = ConvergenceParams(),
    strict: bool = True,
) -> PosteriorDraws:
    """
    Sample the BYM2 model, gate on convergence, then draw posterior predictive counts.
    Blocks until every chain finishes; raises instead of returning partial draws.
    """
    import pymc as pm

    model, design = build_bym_model(records)
    logger.info(
        f"[bym] sampling {len(records)} unit(s), covariates={design.names}, "
        f"imputing={design.columns_with_missing()}, chains={sampler.chains}, draws={sampler.draws}"
    )
    with model:
        idata = pm.sample(
            draws=sampler.draws,
            tune=sampler.tune,
            chains=sampler.chains,
            cores=sampler.cores,
            random_seed=sampler.random_seed,
            nuts={"target_accept": sampler.target_accept, "max_treedepth": sampler.max_treedepth},
            progressbar=True,
        )

    check_convergence(idata, convergence, strict=strict)

    with model:
        pm.sample_posterior_predictive(
            idata, var_names=["y"], extend_inferencedata=True, random_seed=sampler.random_seed
        )

    predicted = pool_chains(idata.posterior_predictive["y"].values)
    return PosteriorDraws(
        unit_ids=records.unit_ids,
        predicted=predicted,
        imputed=_imputed_draws(idata, records, design),
        idata=idata,
    )


def _imputed_draws(idata, records: OutcomeRecords, design: DesignMatrix) -> dict:
    log = {c.name: c.log for c in records.covariates}
    ids = np.asarray(records.unit_ids)
    out = {}
    for name in design.columns_with_missing():
        j = design.names.index(name)
        rows = np.flatnonzero(design.missing_mask[:, j])
        full = pool_chains(idata.posterior[f"x_{name}"].values)  # (S, units)
        vals = design.unstandardize(name, full[:, rows], log=log.get(name, False))
        out[name] = pd.DataFrame(vals, columns=ids[rows])
    return out


class BYMSolver:
    def __init__(self, convergence: ConvergenceParams = ConvergenceParams(), strict: bool = True):
        self.convergence = convergence
        self.strict = strict

    def fit(self, records: OutcomeRecords, sampler: SamplerParams) -> PosteriorDraws:
        return fit_bym(records, sampler=sampler, convergence=self.convergence, strict=self.strict)
