from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from poll_forecast.data_models.poll_record import PollRecord


class Prediction(BaseModel):
    """A poll record augmented with the model's predicted support."""

    model_config = ConfigDict(frozen=True)

    record: PollRecord
    predicted_pct: float

    unseen_pollster: bool = False
    unseen_population: bool = False


class PredictionBatch(BaseModel):
    """Predictions for one batch of records, in input order."""

    predictions: List[Prediction] = Field(default_factory=list)
    # {"pollster": n, "population": m}: rows encoded at the reference level
    unseen_counts: Dict[str, int] = Field(default_factory=lambda: {"pollster": 0, "population": 0})
    # Source table header; output tables keep this column order
    columns: List[str] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.predictions)

    @property
    def predicted_values(self) -> List[float]:
        return [p.predicted_pct for p in self.predictions]
