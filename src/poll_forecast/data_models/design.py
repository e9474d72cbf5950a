from __future__ import annotations

from datetime import date
from typing import List

from pydantic import BaseModel, ConfigDict, model_validator


INTERCEPT_COLUMN = "Intercept"
RECENCY_COLUMN = "recent"


class DesignVocabulary(BaseModel):
    """
    Categorical vocabulary captured from the training polls.

    Levels are stored sorted; the first level of each category is the
    reference (omitted) level. Prediction-time encoding always uses this
    vocabulary, never one re-derived from the rows being predicted.
    """

    model_config = ConfigDict(frozen=True)

    pollster_levels: List[str]
    population_levels: List[str]

    reference_date: date
    recency_window_days: int = 30

    @model_validator(mode="after")
    def _check_levels(self) -> "DesignVocabulary":
        for name, levels in (("pollster", self.pollster_levels), ("population", self.population_levels)):
            if not levels:
                raise ValueError(f"{name} vocabulary must contain at least one level")
            if list(levels) != sorted(set(levels)):
                raise ValueError(f"{name} levels must be unique and sorted")
        if self.recency_window_days < 0:
            raise ValueError("recency_window_days must be non-negative")
        return self

    @property
    def reference_pollster(self) -> str:
        return self.pollster_levels[0]

    @property
    def reference_population(self) -> str:
        return self.population_levels[0]

    @property
    def column_names(self) -> List[str]:
        """Design columns: intercept, pollster dummies, population dummies, recency."""
        cols = [INTERCEPT_COLUMN]
        cols += [f"pollster[{lvl}]" for lvl in self.pollster_levels[1:]]
        cols += [f"population[{lvl}]" for lvl in self.population_levels[1:]]
        cols.append(RECENCY_COLUMN)
        return cols


class DesignRow(BaseModel):
    """Numeric encoding of one poll's predictors (intercept always 1.0)."""

    model_config = ConfigDict(frozen=True)

    columns: List[str]
    values: List[float]

    unseen_pollster: bool = False
    unseen_population: bool = False

    def as_dict(self) -> dict:
        return dict(zip(self.columns, self.values))
