"""Run configuration.

`ForecastConfig` collects the thresholds and sampler settings of a
forecasting run. The grade floor is a parameter rather than a constant:
earlier model scripts disagreed on it (3.0 vs 2.7).
"""
from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator


DEFAULT_CANDIDATE = "Kamala Harris"


class ForecastConfig(BaseModel):
    candidate_name: str = DEFAULT_CANDIDATE
    min_grade: float = 3.0
    min_date: Optional[date] = None

    recency_window_days: int = Field(default=30, ge=0)
    # Recency is measured against this date; defaults to the latest training end_date
    reference_date: Optional[date] = None

    credible_level: float = Field(default=0.95, gt=0.0, lt=1.0)

    chain_count: int = Field(default=4, ge=1)
    iterations_per_chain: int = Field(default=4000, ge=1)
    warmup_iterations: int = Field(default=2000, ge=0)
    seed: Optional[int] = 853
    parallel_chains: bool = False
    max_fit_seconds: Optional[float] = Field(default=None, gt=0.0)

    r_hat_threshold: float = 1.1
    min_ess_fraction: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_warmup(self) -> "ForecastConfig":
        if self.warmup_iterations >= self.iterations_per_chain:
            raise ValueError(
                f"warmup_iterations ({self.warmup_iterations}) must be smaller than "
                f"iterations_per_chain ({self.iterations_per_chain})"
            )
        return self

    @property
    def draws_per_chain(self) -> int:
        return self.iterations_per_chain - self.warmup_iterations


def load_forecast_config(json_path: Path | str) -> ForecastConfig:
    """Read a ForecastConfig from a JSON file; missing keys take defaults."""
    path = Path(json_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return ForecastConfig.model_validate(raw)
