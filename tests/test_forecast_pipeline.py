from datetime import date, timedelta
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from typer.testing import CliRunner

from poll_forecast.cli.run_forecast import app
from poll_forecast.errors import EmptyInputError
from poll_forecast.services.forecast_pipeline import (
    MODEL_FILENAME,
    NATIONAL_PREDICTIONS_FILENAME,
    STATE_PREDICTIONS_FILENAME,
    run_forecast,
)
from poll_forecast.services.model_store_service import load_fitted_model


REF = date(2024, 10, 20)
HEADER = "poll_id,pollster,candidate_name,population,numeric_grade,end_date,pct,state"


def _write_training(path: Path, n: int = 60, candidate: str = "Kamala Harris"):
    rng = np.random.default_rng(3)
    rows = []
    for i in range(n):
        pollster = ["Siena", "Marist", "Emerson"][i % 3]
        population = ["lv", "rv"][i % 2]
        end = REF - timedelta(days=int(rng.integers(0, 90)))
        pct = 47.0 + (1.0 if pollster == "Marist" else 0.0) + rng.normal(0.0, 1.0)
        state = "" if i % 4 else "Ohio"
        rows.append(f"{i},{pollster},{candidate},{population},3.0,{end.isoformat()},{pct:.2f},{state}")
    # other candidate, low grade, malformed
    rows.append("900,Siena,Donald Trump,lv,3.0,2024-10-01,46.0,")
    rows.append("901,Siena,Kamala Harris,lv,1.0,2024-10-01,40.0,")
    rows.append("902,Siena,Kamala Harris,lv,3.0,2024-13-45,47.0,")
    path.write_text("\n".join([HEADER] + rows), encoding="utf-8")


def _write_targets(tmp_path: Path):
    national = tmp_path / "national.csv"
    national.write_text("\n".join([
        "poll_id,pollster,candidate_name,population,numeric_grade,end_date,pct,state",
        "n1,Siena,Kamala Harris,lv,3.0,2024-10-18,,",
        "n2,Marist,Kamala Harris,rv,3.0,2024-08-01,,",
    ]), encoding="utf-8")
    state = tmp_path / "state.csv"
    state.write_text("\n".join([
        "poll_id,pollster,candidate_name,population,numeric_grade,end_date,pct,state",
        "s1,Emerson,Kamala Harris,lv,3.0,2024-10-10,48.0,Georgia",
        "s2,Brand New Polling,Kamala Harris,lv,3.0,2024-10-10,47.0,Arizona",
        "s3,Siena,Kamala Harris,lv,2.0,2024-10-10,47.0,Nevada",
        "s4,Marist,Kamala Harris,rv,3.0,2024-10-12,49.0,Michigan",
    ]), encoding="utf-8")
    return national, state


def test_run_forecast_end_to_end(tmp_path, fast_config):
    training = tmp_path / "cleaned_president_polls.csv"
    _write_training(training)
    national, state = _write_targets(tmp_path)
    out = tmp_path / "out"

    result = run_forecast(training, national, state, config=fast_config, output_dir=out)

    assert result.training_rows == 60
    assert result.excluded_counts == {"training": 1, "national": 0, "state": 0}
    assert (out / MODEL_FILENAME).exists()

    nat = pd.read_csv(out / NATIONAL_PREDICTIONS_FILENAME)
    st = pd.read_csv(out / STATE_PREDICTIONS_FILENAME)
    assert list(st.columns) == HEADER.split(",") + ["is_national", "predicted_pct"]
    assert list(nat["poll_id"]) == ["n1", "n2"]
    # s3 is below the grade floor and is filtered like training data
    assert list(st["poll_id"]) == ["s1", "s2", "s4"]
    assert list(st["predicted_pct"]) == pytest.approx(result.state.predicted_values)
    assert result.state.unseen_counts == {"pollster": 1, "population": 0}

    # the unseen pollster falls back to the reference pollster (Emerson)
    assert st["predicted_pct"][1] == pytest.approx(st["predicted_pct"][0])

    loaded = load_fitted_model(out / MODEL_FILENAME)
    assert loaded.n_observations == 60


def test_run_forecast_halts_without_training_rows(tmp_path, fast_config):
    training = tmp_path / "polls.csv"
    _write_training(training)
    national, state = _write_targets(tmp_path)
    out = tmp_path / "out"

    config = fast_config.model_copy(update={"min_grade": 9.0})
    with pytest.raises(EmptyInputError) as excinfo:
        run_forecast(training, national, state, config=config, output_dir=out)

    assert excinfo.value.stage == "filter"
    assert not (out / MODEL_FILENAME).exists()


def test_cli_fit_and_predict(tmp_path):
    training = tmp_path / "polls.csv"
    _write_training(training)
    _, state = _write_targets(tmp_path)
    model_path = tmp_path / "model.json"
    preds_path = tmp_path / "preds.csv"

    runner = CliRunner()
    res = runner.invoke(app, [
        "fit", str(training),
        "--output-model", str(model_path),
        "--chains", "2", "--iterations", "400", "--warmup", "100",
    ])
    assert res.exit_code == 0, res.output
    assert model_path.exists()
    assert "sigma" in res.output

    res = runner.invoke(app, ["predict", str(model_path), str(state), str(preds_path)])
    assert res.exit_code == 0, res.output
    assert len(pd.read_csv(preds_path)) == 3


def test_cli_reports_empty_training_set(tmp_path):
    training = tmp_path / "polls.csv"
    _write_training(training)

    res = CliRunner().invoke(app, [
        "fit", str(training), "--min-grade", "9", "--output-model", str(tmp_path / "m.json"),
    ])
    assert res.exit_code == 2
    assert not (tmp_path / "m.json").exists()


def test_cli_run_with_config_file(tmp_path):
    training = tmp_path / "polls.csv"
    _write_training(training)
    national, state = _write_targets(tmp_path)
    cfg = tmp_path / "config.json"
    cfg.write_text(
        '{"min_grade": 2.5, "chain_count": 2, "iterations_per_chain": 400, "warmup_iterations": 100}',
        encoding="utf-8",
    )

    res = CliRunner().invoke(app, [
        "run", str(training), str(national), str(state),
        "--output-dir", str(tmp_path / "out"), "--config", str(cfg),
    ])
    assert res.exit_code == 0, res.output
    assert (tmp_path / "out" / STATE_PREDICTIONS_FILENAME).exists()


def test_cli_predict_defaults_to_model_candidate(tmp_path):
    training = tmp_path / "polls.csv"
    _write_training(training, n=30, candidate="Donald Trump")
    model_path = tmp_path / "model.json"
    preds_path = tmp_path / "preds.csv"

    runner = CliRunner()
    res = runner.invoke(app, [
        "fit", str(training), "--candidate", "Donald Trump",
        "--output-model", str(model_path),
        "--chains", "2", "--iterations", "400", "--warmup", "100",
    ])
    assert res.exit_code == 0, res.output
    assert load_fitted_model(model_path).candidate_name == "Donald Trump"

    res = runner.invoke(app, ["predict", str(model_path), str(training), str(preds_path)])
    assert res.exit_code == 0, res.output
    preds = pd.read_csv(preds_path)
    # the trailing Trump row (poll 900) also passes the filter
    assert len(preds) == 31
    assert set(preds["candidate_name"]) == {"Donald Trump"}

    res = runner.invoke(app, [
        "predict", str(model_path), str(training), str(preds_path), "--candidate", "Kamala Harris",
    ])
    assert res.exit_code == 0, res.output
    # an explicit --candidate wins; the only other Harris row is below the grade floor
    assert len(pd.read_csv(preds_path)) == 0
