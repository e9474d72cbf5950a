"""Bayesian linear regression of poll support on the design matrix.

Model:
    pct = X beta + eps,  eps ~ Normal(0, sigma)

Priors (autoscaled, s_y = sample sd of the outcome):
    beta_k    ~ Normal(0, 2.5 * s_y / x_scale_k)
    intercept ~ Normal(0, 2.5 * s_y)   on the centred-predictor intercept, location at mean(y)
    sigma     ~ Exponential(rate = 1 / s_y)

x_scale_k is the range for two-valued predictors (1 for dummies), the sd for
predictors with more than two values, and 1 for constant predictors.

The model is built in PyMC on centred predictors and sampled with NUTS over
several chains. The raw-scale intercept is tracked as a deterministic so it
comes back with the posterior; R-hat and ESS are computed with ArviZ.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence
import logging
import math
import time
import warnings

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from poll_forecast.data_models.design import DesignVocabulary
from poll_forecast.data_models.fitted_model import (
    CoefficientEstimate,
    ConvergenceDiagnostics,
    FittedModel,
    PriorSpec,
)
from poll_forecast.data_models.forecast_config import ForecastConfig
from poll_forecast.data_models.poll_record import PollRecord
from poll_forecast.errors import EmptyInputError, FitBudgetExceededError, NonConvergenceWarning
from poll_forecast.services.design_matrix_service import build_vocabulary, encode_records

logger = logging.getLogger(__name__)

SIGMA_NAME = "sigma"
TERM_DIM = "term"


def fit_support_model(
    records: Sequence[PollRecord],
    config: Optional[ForecastConfig] = None,
    vocabulary: Optional[DesignVocabulary] = None,
    priors: Optional[PriorSpec] = None,
) -> FittedModel:
    """Fit the support model on filtered training polls.

    Raises `EmptyInputError` before any numeric work when `records` is empty.
    Poor convergence never raises; it is reported on `model.diagnostics`
    and emitted as a `NonConvergenceWarning`.
    """
    config = config or ForecastConfig()
    if not records:
        raise EmptyInputError("No eligible training polls; refusing to fit a degenerate model", stage="fit")

    missing_pct = [r for r in records if r.pct is None]
    if missing_pct:
        raise ValueError(f"{len(missing_pct)} training polls have no pct; load training data with require_pct=True")

    if vocabulary is None:
        vocabulary = build_vocabulary(
            records,
            recency_window_days=config.recency_window_days,
            reference_date=config.reference_date,
        )

    design = encode_records(records, vocabulary)
    y = np.array([float(r.pct) for r in records], dtype=float)

    logger.info(
        "Fitting support model for %s on %d polls with %d design columns",
        config.candidate_name,
        len(records),
        len(design.column_names),
    )
    return fit_design(
        design.matrix,
        y,
        vocabulary,
        config=config,
        priors=priors,
        candidate_name=records[0].candidate_name,
    )


def fit_design(
    X: np.ndarray,
    y: np.ndarray,
    vocabulary: DesignVocabulary,
    config: Optional[ForecastConfig] = None,
    priors: Optional[PriorSpec] = None,
    candidate_name: Optional[str] = None,
) -> FittedModel:
    """Sample the posterior for an already-encoded design matrix.

    `X` must have the intercept in column 0 and columns in
    `vocabulary.column_names` order.
    """
    config = config or ForecastConfig()
    priors = priors or PriorSpec()
    column_names = vocabulary.column_names

    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    if X.ndim != 2 or X.shape[0] == 0 or y.size == 0:
        raise EmptyInputError("Design matrix has no rows", stage="fit")
    if X.shape[0] != y.size:
        raise ValueError(f"X has {X.shape[0]} rows but y has {y.size} values")
    if X.shape[1] != len(column_names):
        raise ValueError(f"X has {X.shape[1]} columns, vocabulary defines {len(column_names)}")
    if not np.all(np.isfinite(y)):
        raise ValueError("Outcome contains non-finite values")

    y_bar = float(y.mean())
    s_y = _outcome_scale(y) if priors.autoscale else 1.0

    X_rest = X[:, 1:]
    x_means = X_rest.mean(axis=0)
    x_scales = np.array([_predictor_scale(X_rest[:, k]) for k in range(X_rest.shape[1])]) if priors.autoscale else np.ones(X_rest.shape[1])

    coef_scales = priors.coefficient_scale * s_y / x_scales
    intercept_scale = priors.intercept_scale * s_y
    aux_rate = priors.aux_rate / s_y

    used_priors = priors.model_copy(
        update={
            "outcome_scale": s_y,
            "adjusted_coefficient_scales": [float(v) for v in coef_scales],
            "adjusted_intercept_scale": float(intercept_scale),
            "adjusted_aux_rate": float(aux_rate),
        }
    )

    pm_model = _build_model(X_rest, y, x_means, y_bar, column_names[1:], priors, coef_scales, intercept_scale, aux_rate)
    idata, budget_exhausted = _sample_posterior(pm_model, config)

    posterior = idata.posterior
    coef_draws = np.concatenate([posterior["intercept"].values[:, :, None], posterior["beta"].values], axis=2)
    sigma_draws = posterior[SIGMA_NAME].values

    coefficients = [
        _summarise(name, coef_draws[:, :, j], config.credible_level)
        for j, name in enumerate(column_names)
    ]
    sigma = _summarise(SIGMA_NAME, sigma_draws, config.credible_level)

    diagnostics = _assess_convergence(coefficients + [sigma], coef_draws.shape[0], coef_draws.shape[1], config, budget_exhausted)

    model = FittedModel(
        candidate_name=candidate_name,
        vocabulary=vocabulary,
        coefficients=coefficients,
        sigma=sigma,
        credible_level=config.credible_level,
        n_observations=int(X.shape[0]),
        priors=used_priors,
        diagnostics=diagnostics,
        seed=config.seed,
    )
    logger.info(
        "Fit complete: intercept=%.3f sigma=%.3f max_r_hat=%s min_ess_bulk=%s",
        model.intercept,
        sigma.mean,
        diagnostics.max_r_hat,
        diagnostics.min_ess_bulk,
    )
    return model


def summarize_model(model: FittedModel) -> pd.DataFrame:
    """Coefficient table: one row per parameter, sigma last."""
    rows = [c.model_dump() for c in model.coefficients] + [model.sigma.model_dump()]
    df = pd.DataFrame(rows).set_index("name")
    lo = (1.0 - model.credible_level) / 2.0
    df = df.rename(columns={"lower": f"{lo * 100:g}%", "upper": f"{(1.0 - lo) * 100:g}%"})
    return df


def _outcome_scale(y: np.ndarray) -> float:
    if y.size < 2:
        return 1.0
    sd = float(np.std(y, ddof=1))
    return sd if sd > 0.0 and math.isfinite(sd) else 1.0


def _predictor_scale(x: np.ndarray) -> float:
    n_unique = np.unique(x).size
    if n_unique == 2:
        return float(x.max() - x.min())
    if n_unique > 2:
        return float(np.std(x, ddof=1))
    return 1.0


def _build_model(
    X_rest: np.ndarray,
    y: np.ndarray,
    x_means: np.ndarray,
    y_bar: float,
    terms: Sequence[str],
    priors: PriorSpec,
    coef_scales: np.ndarray,
    intercept_scale: float,
    aux_rate: float,
) -> pm.Model:
    # Centred parameterisation: y - mean(y) = alpha + (X - mean(X)) beta + eps
    Xc = X_rest - x_means
    yc = y - y_bar

    with pm.Model(coords={TERM_DIM: list(terms)}) as model:
        alpha = pm.Normal("alpha", mu=priors.intercept_location, sigma=intercept_scale)
        beta = pm.Normal("beta", mu=priors.coefficient_location, sigma=coef_scales, dims=TERM_DIM)
        sigma = pm.Exponential(SIGMA_NAME, lam=aux_rate)

        pm.Normal("pct", mu=alpha + pm.math.dot(Xc, beta), sigma=sigma, observed=yc)
        pm.Deterministic("intercept", y_bar + alpha - pm.math.dot(x_means, beta))
    return model


class _SamplingBudget:
    """`pm.sample` callback enforcing `max_fit_seconds`.

    PyMC stops a chain when its callback raises KeyboardInterrupt and keeps
    the draws recorded so far; chains left with no post-warmup draws are
    dropped and the rest trimmed to a common length.
    """

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self.deadline = time.monotonic() + seconds if seconds else None
        self.exhausted = False
        self.kept: Dict[int, int] = {}

    def __call__(self, trace, draw):
        if not draw.tuning:
            self.kept[draw.chain] = self.kept.get(draw.chain, 0) + 1
        if time.monotonic() <= self.deadline:
            return
        self.exhausted = True
        if not any(self.kept.values()):
            raise FitBudgetExceededError(
                f"Sampling budget of {self.seconds}s exhausted before any post-warmup draw"
            )
        raise KeyboardInterrupt


def _sample_posterior(model: pm.Model, config: ForecastConfig):
    budget = _SamplingBudget(config.max_fit_seconds)
    idata = pm.sample(
        draws=config.draws_per_chain,
        tune=config.warmup_iterations,
        chains=config.chain_count,
        cores=config.chain_count if config.parallel_chains else 1,
        random_seed=config.seed,
        callback=budget if budget.deadline is not None else None,
        progressbar=False,
        compute_convergence_checks=False,
        return_inferencedata=True,
        model=model,
    )
    if budget.exhausted:
        logger.warning(
            "Sampling budget exhausted: %d of %d chains kept draws",
            idata.posterior.sizes["chain"],
            config.chain_count,
        )
    return idata, budget.exhausted


def _finite_or_none(val) -> Optional[float]:
    try:
        f = float(val)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _summarise(name: str, draws: np.ndarray, credible_level: float) -> CoefficientEstimate:
    """Summarise a (chain, draw) array of posterior draws."""
    pooled = draws.reshape(-1)
    lo = (1.0 - credible_level) / 2.0

    r_hat = ess_bulk = ess_tail = None
    with warnings.catch_warnings():
        # ArviZ warns on degenerate inputs; those simply yield None here
        warnings.simplefilter("ignore")
        if draws.shape[0] > 1 and draws.shape[1] >= 4:
            r_hat = _finite_or_none(az.rhat(draws))
        if draws.shape[1] >= 4:
            ess_bulk = _finite_or_none(az.ess(draws, method="bulk"))
            ess_tail = _finite_or_none(az.ess(draws, method="tail"))

    return CoefficientEstimate(
        name=name,
        mean=float(pooled.mean()),
        median=float(np.median(pooled)),
        sd=float(pooled.std(ddof=1)) if pooled.size > 1 else 0.0,
        lower=float(np.quantile(pooled, lo)),
        upper=float(np.quantile(pooled, 1.0 - lo)),
        r_hat=r_hat,
        ess_bulk=ess_bulk,
        ess_tail=ess_tail,
    )


def _assess_convergence(
    estimates: List[CoefficientEstimate],
    chains: int,
    draws_per_chain: int,
    config: ForecastConfig,
    budget_exhausted: bool,
) -> ConvergenceDiagnostics:
    r_hats = [e.r_hat for e in estimates if e.r_hat is not None]
    ess = [e.ess_bulk for e in estimates if e.ess_bulk is not None]
    max_r_hat = max(r_hats) if r_hats else None
    min_ess = min(ess) if ess else None
    total_draws = chains * draws_per_chain

    problems: List[str] = []
    for e in estimates:
        if e.r_hat is not None and e.r_hat > config.r_hat_threshold:
            problems.append(f"{e.name}: r_hat {e.r_hat:.3f} above {config.r_hat_threshold}")
        if e.ess_bulk is not None and e.ess_bulk < config.min_ess_fraction * total_draws:
            problems.append(f"{e.name}: bulk ESS {e.ess_bulk:.0f} is low for {total_draws} draws")
    if budget_exhausted:
        problems.append(f"sampling stopped early at {draws_per_chain} draws per chain (time budget)")

    converged = not problems
    if not converged:
        for m in problems:
            logger.warning("Convergence check: %s", m)
        warnings.warn(
            "Posterior sampling may not have converged: " + "; ".join(problems),
            NonConvergenceWarning,
            stacklevel=3,
        )

    messages = list(problems)
    if chains < 2:
        messages.append("r_hat unavailable with a single chain")

    return ConvergenceDiagnostics(
        chains=chains,
        draws_per_chain=draws_per_chain,
        warmup=config.warmup_iterations,
        max_r_hat=max_r_hat,
        min_ess_bulk=min_ess,
        r_hat_threshold=config.r_hat_threshold,
        min_ess_fraction=config.min_ess_fraction,
        converged=converged,
        budget_exhausted=budget_exhausted,
        messages=messages,
    )
