from __future__ import annotations

import arviz as az
import numpy as np

import pytest

from precinct_car.model.config import ConvergenceParams
from precinct_car.model.diagnostics import ConvergenceError, check_convergence

PARAMS = ConvergenceParams(rhat_max=1.05, ess_bulk_min=400, var_names=("alpha", "sigma"))


def _idata(shift: float = 0.0, n_divergent: int = 0):
    rng = np.random.default_rng(1)
    chains, draws = 4, 1000
    alpha = rng.normal(size=(chains, draws)) + shift * np.arange(chains)[:, None]
    sigma = np.abs(rng.normal(size=(chains, draws)))
    diverging = np.zeros((chains, draws), dtype=bool)
    diverging.flat[:n_divergent] = True
    return az.from_dict(
        posterior={"alpha": alpha, "sigma": sigma},
        sample_stats={"diverging": diverging},
    )


def test_well_mixed_chains_pass() -> None:
    diag = check_convergence(_idata(), PARAMS)

    assert diag["all_ok"]
    assert diag["failed"] == []
    assert diag["divergences"] == 0
    assert diag["alpha_rhat_max"] < 1.05
    assert diag["sigma_ess_bulk_min"] > 400


def test_separated_chains_raise() -> None:
    with pytest.raises(ConvergenceError) as err:
        check_convergence(_idata(shift=5.0), PARAMS)

    assert not err.value.diagnostics["all_ok"]
    assert any(f.startswith("alpha") for f in err.value.diagnostics["failed"])


def test_non_strict_returns_the_failed_diagnostics() -> None:
    diag = check_convergence(_idata(shift=5.0), PARAMS, strict=False)

    assert not diag["all_ok"]
    assert diag["alpha_rhat_max"] > 1.05


def test_divergences_fail_the_check() -> None:
    with pytest.raises(ConvergenceError, match="divergent"):
        check_convergence(_idata(n_divergent=3), PARAMS)


def test_unknown_variables_are_rejected() -> None:
    with pytest.raises(ValueError, match="found in posterior"):
        check_convergence(_idata(), ConvergenceParams(var_names=("beta", "rho")))
