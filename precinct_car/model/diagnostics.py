from __future__ import annotations

from typing import Dict

import arviz as az
from loguru import logger

from .config import ConvergenceParams


class ConvergenceError(RuntimeError):
    """Sampler diagnostics outside the accepted range; draws must not be summarized."""

    def __init__(self, message: str, diagnostics: Dict):
        super().__init__(message)
        self.diagnostics = diagnostics


def check_convergence(idata, params: ConvergenceParams = ConvergenceParams(), strict: bool = True) -> Dict:
    """
    R-hat, bulk ESS and divergence checks over `params.var_names`.

    Returns the diagnostics dict. With strict=True (the default) a failed check
    raises ConvergenceError; strict=False only logs the failure.
    """
    diag: Dict = {"failed": []}
    available = [v for v in params.var_names if v in idata.posterior]
    if not available:
        raise ValueError(f"None of {list(params.var_names)} found in posterior.")

    rhat = az.rhat(idata, var_names=available)
    ess = az.ess(idata, var_names=available, method="bulk")
    for var in available:
        max_rhat = float(rhat[var].max())
        min_ess = float(ess[var].min())
        diag[f"{var}_rhat_max"] = max_rhat
        diag[f"{var}_ess_bulk_min"] = min_ess
        if not max_rhat < params.rhat_max:
            diag["failed"].append(f"{var}: R-hat {max_rhat:.3f} >= {params.rhat_max}")
        if not min_ess > params.ess_bulk_min:
            diag["failed"].append(f"{var}: bulk ESS {min_ess:.0f} <= {params.ess_bulk_min:.0f}")

    if hasattr(idata, "sample_stats") and "diverging" in idata.sample_stats:
        divergences = int(idata.sample_stats["diverging"].sum().values)
    else:
        divergences = 0
    diag["divergences"] = divergences
    if divergences > params.max_divergences:
        diag["failed"].append(f"{divergences} divergent transition(s) > {params.max_divergences}")

    diag["all_ok"] = not diag["failed"]
    if diag["all_ok"]:
        logger.info(f"[convergence] all checks passed for {available}")
        return diag

    msg = "Sampler did not converge: " + "; ".join(diag["failed"])
    if strict:
        raise ConvergenceError(msg, diag)
    logger.error(msg + " (continuing because strict=False)")
    return diag
