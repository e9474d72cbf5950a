"""Design-matrix construction.

Dummy-codes the categorical poll attributes against a vocabulary fixed at
training time:

    [Intercept, pollster[...] (non-reference), population[...] (non-reference), recent]

The reference level of each category is its first level in sorted order.
A level that was never seen in training encodes as the reference level
(all indicators for that category are 0), i.e. no deviation from baseline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence
import logging
import warnings

import numpy as np

from poll_forecast.data_models.design import DesignRow, DesignVocabulary
from poll_forecast.data_models.poll_record import PollRecord
from poll_forecast.errors import EmptyInputError, UnseenCategoryWarning

logger = logging.getLogger(__name__)

RECENCY_WINDOW_DAYS_DEFAULT = 30


def is_recent(end_date: date, reference_date: date, window_days: int = RECENCY_WINDOW_DAYS_DEFAULT) -> bool:
    """True if the poll ended within `window_days` of `reference_date`.

    Polls ending after the reference date count as recent.
    """
    return (reference_date - end_date).days <= window_days


def build_vocabulary(
    records: Sequence[PollRecord],
    recency_window_days: int = RECENCY_WINDOW_DAYS_DEFAULT,
    reference_date: Optional[date] = None,
) -> DesignVocabulary:
    """Capture the pollster/population levels and recency reference from training polls."""
    if not records:
        raise EmptyInputError("Cannot build a design vocabulary from zero polls", stage="encode")

    pollsters = sorted({r.pollster for r in records})
    populations = sorted({r.population for r in records})
    ref_date = reference_date if reference_date is not None else max(r.end_date for r in records)

    vocab = DesignVocabulary(
        pollster_levels=pollsters,
        population_levels=populations,
        reference_date=ref_date,
        recency_window_days=recency_window_days,
    )
    logger.info(
        "Vocabulary: %d pollsters (reference %s), %d populations (reference %s), recency vs %s/%dd",
        len(pollsters),
        vocab.reference_pollster,
        len(populations),
        vocab.reference_population,
        ref_date.isoformat(),
        recency_window_days,
    )
    return vocab


def _encode_values(record: PollRecord, vocabulary: DesignVocabulary):
    pollster_dummies = [1.0 if record.pollster == lvl else 0.0 for lvl in vocabulary.pollster_levels[1:]]
    population_dummies = [1.0 if record.population == lvl else 0.0 for lvl in vocabulary.population_levels[1:]]
    recent = 1.0 if is_recent(record.end_date, vocabulary.reference_date, vocabulary.recency_window_days) else 0.0

    values = [1.0] + pollster_dummies + population_dummies + [recent]
    unseen_pollster = record.pollster not in vocabulary.pollster_levels
    unseen_population = record.population not in vocabulary.population_levels
    return values, unseen_pollster, unseen_population


def encode_record(record: PollRecord, vocabulary: DesignVocabulary) -> DesignRow:
    values, unseen_pollster, unseen_population = _encode_values(record, vocabulary)
    return DesignRow(
        columns=vocabulary.column_names,
        values=values,
        unseen_pollster=unseen_pollster,
        unseen_population=unseen_population,
    )


@dataclass
class EncodedDesign:
    """Design matrix for a batch of records (rows in input order)."""

    matrix: np.ndarray
    column_names: List[str]
    unseen_pollster: List[bool] = field(default_factory=list)
    unseen_population: List[bool] = field(default_factory=list)

    @property
    def unseen_counts(self) -> dict:
        return {
            "pollster": int(sum(self.unseen_pollster)),
            "population": int(sum(self.unseen_population)),
        }


def encode_records(records: Sequence[PollRecord], vocabulary: DesignVocabulary) -> EncodedDesign:
    """Encode a batch of records; unseen levels are counted, logged and warned about."""
    columns = vocabulary.column_names
    rows = []
    unseen_p: List[bool] = []
    unseen_pop: List[bool] = []
    unseen_names = set()

    for r in records:
        values, up, upop = _encode_values(r, vocabulary)
        rows.append(values)
        unseen_p.append(up)
        unseen_pop.append(upop)
        if up:
            unseen_names.add(f"pollster={r.pollster}")
        if upop:
            unseen_names.add(f"population={r.population}")

    matrix = np.array(rows, dtype=float).reshape(len(rows), len(columns))
    encoded = EncodedDesign(matrix=matrix, column_names=columns, unseen_pollster=unseen_p, unseen_population=unseen_pop)

    counts = encoded.unseen_counts
    if counts["pollster"] or counts["population"]:
        msg = (
            f"{counts['pollster']} rows with unseen pollster and {counts['population']} rows with unseen "
            f"population encoded at the reference level ({', '.join(sorted(unseen_names))})"
        )
        logger.warning(msg)
        warnings.warn(msg, UnseenCategoryWarning, stacklevel=2)

    return encoded
