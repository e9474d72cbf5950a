"""Persistence for fitted models and prediction tables."""
from __future__ import annotations

from pathlib import Path
import logging

import pandas as pd

from poll_forecast.data_models.fitted_model import FittedModel
from poll_forecast.data_models.prediction import PredictionBatch
from poll_forecast.services.prediction_service import predictions_to_frame

logger = logging.getLogger(__name__)


def save_fitted_model(model: FittedModel, json_path: Path | str) -> Path:
    path = Path(json_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(model.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Wrote fitted model to %s", path)
    return path


def load_fitted_model(json_path: Path | str) -> FittedModel:
    """Load a FittedModel previously written by `save_fitted_model`."""
    path = Path(json_path)
    if not path.exists():
        raise FileNotFoundError(f"Fitted model file not found: {path}")
    return FittedModel.model_validate_json(path.read_text(encoding="utf-8"))


def write_predictions_csv(batch: PredictionBatch, csv_path: Path | str) -> Path:
    """Write predictions in input order, one row per record, no index."""
    path = Path(csv_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = predictions_to_frame(batch)
    df.to_csv(path, index=False)
    logger.info("Wrote %d predictions to %s", len(df), path)
    return path


def read_predictions_csv(csv_path: Path | str) -> pd.DataFrame:
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"Predictions CSV not found: {path}")
    df = pd.read_csv(path)
    if "predicted_pct" not in df.columns:
        raise ValueError(f"Predictions CSV {path} has no predicted_pct column")
    return df
