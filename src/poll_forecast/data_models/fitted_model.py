"""Fitted support model.

`FittedModel` is the immutable result of one training run: the posterior
summary for every design column, the residual scale, the priors actually
used after autoscaling, and the sampler's convergence diagnostics. It is
persisted as JSON and reused across prediction batches without refitting.
"""
from __future__ import annotations

from typing import List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from poll_forecast.data_models.design import DesignVocabulary, INTERCEPT_COLUMN


class CoefficientEstimate(BaseModel):
    """Posterior summary of a single parameter."""

    model_config = ConfigDict(frozen=True)

    name: str
    mean: float    # point estimate used for prediction
    median: float
    sd: float
    lower: float   # credible interval bounds at FittedModel.credible_level
    upper: float

    # None when the diagnostic cannot be computed (e.g. a single chain)
    r_hat: Optional[float] = None
    ess_bulk: Optional[float] = None
    ess_tail: Optional[float] = None


class PriorSpec(BaseModel):
    """Prior family parameters and the autoscaled scales used for the fit.

    Locations are on the centred scale: 0 for the intercept means the
    training mean of the outcome.
    """

    model_config = ConfigDict(frozen=True)

    coefficient_location: float = 0.0
    coefficient_scale: float = 2.5
    intercept_location: float = 0.0
    intercept_scale: float = 2.5
    aux_rate: float = 1.0
    autoscale: bool = True

    # Filled in by the fitter
    outcome_scale: Optional[float] = None
    adjusted_coefficient_scales: List[float] = Field(default_factory=list)
    adjusted_intercept_scale: Optional[float] = None
    adjusted_aux_rate: Optional[float] = None


class ConvergenceDiagnostics(BaseModel):
    """Multi-chain diagnostics. Informational only; never gates a fit."""

    model_config = ConfigDict(frozen=True)

    chains: int
    draws_per_chain: int
    warmup: int

    max_r_hat: Optional[float] = None
    min_ess_bulk: Optional[float] = None
    r_hat_threshold: float = 1.1
    min_ess_fraction: float = 0.1

    converged: bool = True
    budget_exhausted: bool = False
    messages: List[str] = Field(default_factory=list)


class FittedModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_name: Optional[str] = None
    vocabulary: DesignVocabulary

    coefficients: List[CoefficientEstimate]
    sigma: CoefficientEstimate

    credible_level: float = 0.95
    n_observations: int
    priors: PriorSpec
    diagnostics: ConvergenceDiagnostics
    seed: Optional[int] = None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.coefficients]

    @property
    def intercept(self) -> float:
        return self.coefficient(INTERCEPT_COLUMN).mean

    def coefficient(self, name: str) -> CoefficientEstimate:
        for c in self.coefficients:
            if c.name == name:
                return c
        raise KeyError(f"Unknown coefficient: {name}")

    def point_estimates(self) -> np.ndarray:
        """Posterior means in design-column order (returns a fresh array)."""
        return np.array([c.mean for c in self.coefficients], dtype=float)
