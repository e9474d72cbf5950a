"""Point predictions from a fitted support model.

    predicted_pct = intercept + sum(coefficient_k * indicator_k)

Records are encoded with the vocabulary stored on the model, so a pollster
or population never seen in training contributes nothing beyond the
intercept (the reference level).
"""
from __future__ import annotations

from typing import List, Optional, Sequence
import logging

import pandas as pd

from poll_forecast.data_models.fitted_model import FittedModel
from poll_forecast.data_models.poll_record import PollRecord
from poll_forecast.data_models.prediction import Prediction, PredictionBatch
from poll_forecast.services.design_matrix_service import encode_record, encode_records
from poll_forecast.services.poll_ingestion_service import CORE_COLUMNS, NATIONAL_FLAG_COLUMNS

logger = logging.getLogger(__name__)

PREDICTED_COLUMN = "predicted_pct"


def predict_records(
    model: FittedModel,
    records: Sequence[PollRecord],
    columns: Optional[Sequence[str]] = None,
) -> PredictionBatch:
    """Predict support for each record, one Prediction per input in input order.

    `columns` is the source table header, kept for writing the batch back out.
    """
    columns = list(columns or [])
    if not records:
        return PredictionBatch(columns=columns)

    design = encode_records(records, model.vocabulary)
    predicted = design.matrix @ model.point_estimates()

    predictions: List[Prediction] = []
    for r, value, up, upop in zip(records, predicted, design.unseen_pollster, design.unseen_population):
        predictions.append(
            Prediction(
                record=r,
                predicted_pct=float(value),
                unseen_pollster=bool(up),
                unseen_population=bool(upop),
            )
        )

    logger.info("Predicted support for %d polls (unseen levels: %s)", len(predictions), design.unseen_counts)
    return PredictionBatch(predictions=predictions, unseen_counts=design.unseen_counts, columns=columns)


def predict_pct(model: FittedModel, record: PollRecord) -> float:
    """Predicted support for a single record."""
    row = encode_record(record, model.vocabulary)
    return float(sum(c.mean * v for c, v in zip(model.coefficients, row.values)))


def _record_to_row(record: PollRecord) -> dict:
    row = {
        "pollster": record.pollster,
        "candidate_name": record.candidate_name,
        "population": record.population,
        "numeric_grade": record.numeric_grade,
        "end_date": record.end_date.isoformat(),
        "pct": record.pct,
        "state": record.state,
    }
    for col in NATIONAL_FLAG_COLUMNS:
        row[col] = record.is_national
    for k, v in record.extra.items():
        row.setdefault(k, v)
    return row


def _output_columns(batch: PredictionBatch) -> List[str]:
    """Source header order first, then any record column it lacks, then `predicted_pct`."""
    columns = [c for c in batch.columns if c != PREDICTED_COLUMN]
    for c in CORE_COLUMNS:
        if c not in columns:
            columns.append(c)
    if not any(c in columns for c in NATIONAL_FLAG_COLUMNS):
        columns.append(NATIONAL_FLAG_COLUMNS[0])
    for p in batch.predictions:
        for k in p.record.extra:
            if k not in columns and k != PREDICTED_COLUMN:
                columns.append(k)
    columns.append(PREDICTED_COLUMN)
    return columns


def predictions_to_frame(batch: PredictionBatch) -> pd.DataFrame:
    """Every record column plus `predicted_pct`, rows in prediction order.

    Columns follow `batch.columns` (the source table header) when it is set,
    so an empty batch still writes the full header.
    """
    rows = []
    for p in batch.predictions:
        row = _record_to_row(p.record)
        row[PREDICTED_COLUMN] = p.predicted_pct
        rows.append(row)
    return pd.DataFrame(rows, columns=_output_columns(batch))
