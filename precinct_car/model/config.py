from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple

MeasurementKind = Literal["count", "rate"]


@dataclass(frozen=True)
class Covariate:
    name: str
    kind: MeasurementKind = "rate"
    # log1p before standardizing (skewed dollar amounts)
    log: bool = False

    def __post_init__(self):
        if self.kind not in ("count", "rate"):
            raise ValueError(f"Unknown measurement kind for {self.name!r}: {self.kind!r}")


DEFAULT_COVARIATES: Tuple[Covariate, ...] = (
    Covariate("total_pop", "count", log=True),
    Covariate("bachelors_or_higher", "count"),
    Covariate("median_income", "rate", log=True),
    Covariate("median_age", "rate"),
)


@dataclass(frozen=True)
class Columns:
    unit_id: str = "precinct_id"
    response: str = "response"
    trials: str = "trials"
    adj_index: str = "adj_index"

    fine_id: str = "geoid"

    # Choice columns produced by the loader that are never covariates
    vote_cols: List[str] = None

    def __post_init__(self):
        if self.vote_cols is None:
            object.__setattr__(self, "vote_cols", [
                "registered_voters", "ballots_cast", "total_votes", "mail_votes", "in_person_votes"
            ])


@dataclass(frozen=True)
class SamplerParams:
    draws: int = 1000
    tune: int = 1500
    chains: int = 4
    target_accept: float = 0.95
    max_treedepth: int = 12
    random_seed: int = 42
    cores: Optional[int] = None


@dataclass(frozen=True)
class ConvergenceParams:
    rhat_max: float = 1.01
    ess_bulk_min: float = 400.0
    max_divergences: int = 0
    var_names: Tuple[str, ...] = ("alpha", "beta", "sigma", "rho")


@dataclass(frozen=True)
class SummaryParams:
    hdi_prob: float = 0.89
