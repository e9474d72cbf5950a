"""Poll record models.

`PollRecord` is one row of the cleaned polling table produced by the
upstream cleaning stage. It corresponds to a single row in
`data/02-analysis_data/cleaned_president_polls.csv` (and the national/state
prediction tables that share its schema).
"""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PollRecord(BaseModel):
    """One observed survey result for a single candidate.

    Snake_case names follow the CSV columns. Columns the model does not use
    are carried in `extra` so prediction tables can be written back out
    with every input column intact.
    """

    model_config = ConfigDict(frozen=True)

    pollster: str
    candidate_name: str
    population: str
    numeric_grade: Optional[float] = None  # filter threshold only, never a model feature
    end_date: date
    pct: Optional[float] = None  # None only for pure prediction rows

    is_national: bool = True
    state: Optional[str] = None

    extra: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_state_and_pct(self) -> "PollRecord":
        if self.is_national and self.state:
            raise ValueError(f"National poll by {self.pollster!r} must not carry a state ({self.state!r})")
        if not self.is_national and not self.state:
            raise ValueError(f"State poll by {self.pollster!r} is missing its state")
        if self.pct is not None and not (0.0 <= self.pct <= 100.0):
            raise ValueError(f"pct must be within [0, 100], got {self.pct}")
        return self


class ExcludedRow(BaseModel):
    """A raw input row that was dropped because it could not be parsed."""

    row_number: int  # 1-based data row (header excluded)
    field: Optional[str] = None
    reason: str


class PollLoadResult(BaseModel):
    """Records parsed from a poll table plus the rows that were excluded."""

    source: str
    columns: List[str] = Field(default_factory=list)  # normalised header, file order
    records: List[PollRecord] = Field(default_factory=list)
    excluded: List[ExcludedRow] = Field(default_factory=list)

    @property
    def excluded_count(self) -> int:
        return len(self.excluded)
