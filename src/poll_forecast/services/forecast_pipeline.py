"""End-to-end forecasting run.

load -> filter -> fit (once) -> predict national and state batches -> write outputs

The national and state batches share the fitted model read-only and are
otherwise independent.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional
import logging

from pydantic import BaseModel, Field

from poll_forecast.data_models.fitted_model import FittedModel
from poll_forecast.data_models.forecast_config import ForecastConfig
from poll_forecast.data_models.prediction import PredictionBatch
from poll_forecast.errors import EmptyInputError
from poll_forecast.services.bayesian_fit_service import fit_support_model
from poll_forecast.services.model_store_service import save_fitted_model, write_predictions_csv
from poll_forecast.services.poll_filter_service import filter_polls_with_config
from poll_forecast.services.poll_ingestion_service import load_polls_from_csv
from poll_forecast.services.prediction_service import predict_records

logger = logging.getLogger(__name__)

MODEL_FILENAME = "support_model.json"
NATIONAL_PREDICTIONS_FILENAME = "national_predicted_support.csv"
STATE_PREDICTIONS_FILENAME = "state_predicted_support.csv"


class ForecastRunResult(BaseModel):
    model: FittedModel
    national: PredictionBatch
    state: PredictionBatch

    training_rows: int
    excluded_counts: Dict[str, int] = Field(default_factory=dict)
    output_paths: Dict[str, Path] = Field(default_factory=dict)


def fit_from_csv(training_csv: Path | str, config: ForecastConfig) -> tuple[FittedModel, int]:
    """Load, filter and fit. Returns the model and the excluded-row count.

    Raises `EmptyInputError` if no training polls survive the filter.
    """
    loaded = load_polls_from_csv(training_csv)
    training = filter_polls_with_config(loaded.records, config)
    if not training:
        raise EmptyInputError(
            f"No training polls for {config.candidate_name!r} with numeric_grade >= {config.min_grade}"
            + (f" and end_date >= {config.min_date}" if config.min_date else ""),
            stage="filter",
        )
    return fit_support_model(training, config), loaded.excluded_count


def predict_from_csv(model: FittedModel, csv_path: Path | str, config: ForecastConfig) -> tuple[PredictionBatch, int]:
    """Load a prediction table, apply the same filter as training, and predict."""
    loaded = load_polls_from_csv(csv_path, require_pct=False)
    rows = filter_polls_with_config(loaded.records, config)
    return predict_records(model, rows, columns=loaded.columns), loaded.excluded_count


def run_forecast(
    training_csv: Path | str,
    national_csv: Path | str,
    state_csv: Path | str,
    config: Optional[ForecastConfig] = None,
    output_dir: Path | str = "out",
) -> ForecastRunResult:
    config = config or ForecastConfig()
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    model, training_excluded = fit_from_csv(training_csv, config)
    model_path = save_fitted_model(model, out / MODEL_FILENAME)

    national, national_excluded = predict_from_csv(model, national_csv, config)
    state, state_excluded = predict_from_csv(model, state_csv, config)

    national_path = write_predictions_csv(national, out / NATIONAL_PREDICTIONS_FILENAME)
    state_path = write_predictions_csv(state, out / STATE_PREDICTIONS_FILENAME)

    if not model.diagnostics.converged:
        logger.warning("Model written despite convergence issues: %s", "; ".join(model.diagnostics.messages))

    return ForecastRunResult(
        model=model,
        national=national,
        state=state,
        training_rows=model.n_observations,
        excluded_counts={
            "training": training_excluded,
            "national": national_excluded,
            "state": state_excluded,
        },
        output_paths={
            "model": model_path,
            "national": national_path,
            "state": state_path,
        },
    )
