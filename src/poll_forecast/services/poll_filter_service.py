"""Poll eligibility filtering.

Selects the polls a model is trained on (or predicts over): one candidate,
pollsters at or above a quality grade, and optionally a date floor.
"""
from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence
import logging

from poll_forecast.data_models.forecast_config import ForecastConfig
from poll_forecast.data_models.poll_record import PollRecord

logger = logging.getLogger(__name__)


def filter_polls(
    records: Sequence[PollRecord],
    candidate_name: str,
    min_grade: float,
    min_date: Optional[date] = None,
) -> List[PollRecord]:
    """Return the records for `candidate_name` with grade >= `min_grade`.

    Candidate matching is exact. Polls with no numeric grade never pass.
    When `min_date` is given, polls whose fieldwork ended before it are
    dropped. An empty result is a valid outcome, not an error.
    """
    kept: List[PollRecord] = []
    for r in records:
        if r.candidate_name != candidate_name:
            continue
        if r.numeric_grade is None or r.numeric_grade < min_grade:
            continue
        if min_date is not None and r.end_date < min_date:
            continue
        kept.append(r)

    logger.info(
        "Filter kept %d of %d polls (candidate=%s, min_grade=%.2f, min_date=%s)",
        len(kept),
        len(records),
        candidate_name,
        min_grade,
        min_date.isoformat() if min_date else None,
    )
    if not kept and records:
        logger.warning("No polls matched the filter; consider a lower grade threshold or earlier date floor")
    return kept


def filter_polls_with_config(records: Sequence[PollRecord], config: ForecastConfig) -> List[PollRecord]:
    return filter_polls(records, config.candidate_name, config.min_grade, config.min_date)
