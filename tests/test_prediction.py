from datetime import date, timedelta
from typing import Dict

import pytest

from poll_forecast.data_models.design import DesignVocabulary
from poll_forecast.data_models.fitted_model import (
    CoefficientEstimate,
    ConvergenceDiagnostics,
    FittedModel,
    PriorSpec,
)
from poll_forecast.data_models.poll_record import PollRecord
from poll_forecast.errors import UnseenCategoryWarning
from poll_forecast.services.prediction_service import (
    predict_pct,
    predict_records,
    predictions_to_frame,
)


REF = date(2024, 10, 20)


def _estimate(name: str, value: float) -> CoefficientEstimate:
    return CoefficientEstimate(name=name, mean=value, median=value, sd=0.1, lower=value - 0.2, upper=value + 0.2)


def _model(coefs: Dict[str, float]) -> FittedModel:
    vocab = DesignVocabulary(
        pollster_levels=["Emerson", "Marist", "Siena"],
        population_levels=["lv", "rv"],
        reference_date=REF,
    )
    assert list(coefs) == vocab.column_names
    return FittedModel(
        candidate_name="Kamala Harris",
        vocabulary=vocab,
        coefficients=[_estimate(k, v) for k, v in coefs.items()],
        sigma=_estimate("sigma", 1.2),
        n_observations=100,
        priors=PriorSpec(),
        diagnostics=ConvergenceDiagnostics(chains=4, draws_per_chain=2000, warmup=2000),
    )


COEFS = {
    "Intercept": 46.5,
    "pollster[Marist]": 1.25,
    "pollster[Siena]": -0.75,
    "population[rv]": 0.5,
    "recent": 0.3,
}


def _poll(pollster: str, population: str, days_before_ref: int = 60, state=None) -> PollRecord:
    return PollRecord(
        pollster=pollster,
        candidate_name="Kamala Harris",
        population=population,
        numeric_grade=3.0,
        end_date=REF - timedelta(days=days_before_ref),
        is_national=state is None,
        state=state,
        extra={"poll_id": f"{pollster}-{population}-{days_before_ref}"},
    )


def test_reference_levels_predict_intercept():
    model = _model(COEFS)
    assert predict_pct(model, _poll("Emerson", "lv", 60)) == pytest.approx(46.5)


def test_prediction_is_linear_in_indicators():
    model = _model(COEFS)
    assert predict_pct(model, _poll("Marist", "rv", 5)) == pytest.approx(46.5 + 1.25 + 0.5 + 0.3)
    assert predict_pct(model, _poll("Siena", "lv", 45)) == pytest.approx(46.5 - 0.75)


def test_unseen_pollster_equals_reference_pollster():
    model = _model(COEFS)
    new = predict_pct(model, _poll("NewPoll", "rv", 2))
    ref = predict_pct(model, _poll("Emerson", "rv", 2))
    assert new == ref


def test_predict_records_batch_order_and_flags():
    model = _model(COEFS)
    recs = [
        _poll("Siena", "lv", 3, state="Ohio"),
        _poll("NewPoll", "lv", 3, state="Georgia"),
        _poll("Marist", "a", 90, state="Ohio"),
    ]
    with pytest.warns(UnseenCategoryWarning):
        batch = predict_records(model, recs)

    assert len(batch) == 3
    assert [p.record for p in batch.predictions] == recs
    assert batch.predicted_values == pytest.approx([46.5 - 0.75 + 0.3, 46.5 + 0.3, 46.5 + 1.25])
    assert [p.unseen_pollster for p in batch.predictions] == [False, True, False]
    assert [p.unseen_population for p in batch.predictions] == [False, False, True]
    assert batch.unseen_counts == {"pollster": 1, "population": 1}


def test_empty_batch():
    batch = predict_records(_model(COEFS), [])
    assert len(batch) == 0
    assert predictions_to_frame(batch).empty


def test_prediction_does_not_mutate_model():
    model = _model(COEFS)
    before = model.model_dump()
    predict_records(model, [_poll("Siena", "rv", 1), _poll("Marist", "lv", 100)])
    assert model.model_dump() == before


def test_predictions_frame_keeps_columns():
    model = _model(COEFS)
    batch = predict_records(model, [_poll("Siena", "rv", 1, state="Ohio"), _poll("Marist", "lv", 100)])
    df = predictions_to_frame(batch)

    assert list(df["pollster"]) == ["Siena", "Marist"]
    assert list(df["poll_id"]) == ["Siena-rv-1", "Marist-lv-100"]
    assert df.columns[-1] == "predicted_pct"
    assert list(df["predicted_pct"]) == pytest.approx(batch.predicted_values)


def test_predictions_frame_follows_source_column_order():
    model = _model(COEFS)
    source = ["poll_id", "end_date", "pollster", "candidate_name", "pct", "population", "numeric_grade", "state"]
    batch = predict_records(model, [_poll("Siena", "rv", 1), _poll("Marist", "lv", 100)], columns=source)
    df = predictions_to_frame(batch)

    assert list(df.columns) == source + ["is_national", "predicted_pct"]
    assert list(df["poll_id"]) == ["Siena-rv-1", "Marist-lv-100"]


def test_empty_batch_keeps_source_header():
    source = ["poll_id", "pollster", "candidate_name", "population", "numeric_grade", "end_date", "pct", "national_poll", "state"]
    df = predictions_to_frame(predict_records(_model(COEFS), [], columns=source))

    assert df.empty
    assert list(df.columns) == source + ["predicted_pct"]
