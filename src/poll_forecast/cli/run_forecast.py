"""Command-line entry point for the polling forecast.

Commands:
  fit      - load + filter training polls, fit, write the model JSON
  predict  - apply a saved model to a poll table, write predictions CSV
  run      - fit once, predict national and state tables, write all outputs

Example:

  poll-forecast run data/02-analysis_data/cleaned_president_polls.csv \
      data/02-analysis_data/national_polling_data.csv \
      data/02-analysis_data/state_polling_data.csv \
      --output-dir out --min-grade 3.0
"""
from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Optional
import logging

import typer

from poll_forecast.data_models.forecast_config import ForecastConfig, load_forecast_config
from poll_forecast.errors import EmptyInputError
from poll_forecast.services.bayesian_fit_service import summarize_model
from poll_forecast.services.forecast_pipeline import fit_from_csv, predict_from_csv, run_forecast
from poll_forecast.services.model_store_service import (
    load_fitted_model,
    save_fitted_model,
    write_predictions_csv,
)

logger = logging.getLogger(__name__)

app = typer.Typer(help="Fit a Bayesian poll-support model and predict national/state support.")


def _parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise typer.BadParameter(f"Could not parse date {value!r}; use YYYY-MM-DD")


def _build_config(
    config_file: Optional[Path],
    candidate: Optional[str],
    min_grade: Optional[float],
    min_date: Optional[str],
    recency_window_days: Optional[int],
    reference_date: Optional[str],
    chains: Optional[int],
    iterations: Optional[int],
    warmup: Optional[int],
    seed: Optional[int],
    max_fit_seconds: Optional[float],
    default_candidate: Optional[str] = None,
) -> ForecastConfig:
    base = load_forecast_config(config_file) if config_file else ForecastConfig()
    # Candidate precedence: --candidate, then the config file, then the caller default
    if candidate is None and default_candidate and "candidate_name" not in base.model_fields_set:
        candidate = default_candidate
    overrides = {
        "candidate_name": candidate,
        "min_grade": min_grade,
        "min_date": _parse_date(min_date),
        "recency_window_days": recency_window_days,
        "reference_date": _parse_date(reference_date),
        "chain_count": chains,
        "iterations_per_chain": iterations,
        "warmup_iterations": warmup,
        "seed": seed,
        "max_fit_seconds": max_fit_seconds,
    }
    merged = base.model_dump()
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return ForecastConfig.model_validate(merged)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def fit(
    training_csv: Path = typer.Argument(..., help="Cleaned poll table used for training"),
    output_model: Path = typer.Option(Path("out/support_model.json"), help="Where to write the model JSON"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON file with ForecastConfig values"),
    candidate: Optional[str] = typer.Option(None, help="Candidate name to model"),
    min_grade: Optional[float] = typer.Option(None, help="Minimum pollster numeric_grade"),
    min_date: Optional[str] = typer.Option(None, help="Earliest poll end_date (YYYY-MM-DD)"),
    recency_window_days: Optional[int] = typer.Option(None, help="Days counted as a recent poll"),
    reference_date: Optional[str] = typer.Option(None, help="Recency reference date (YYYY-MM-DD)"),
    chains: Optional[int] = typer.Option(None, help="Number of sampling chains"),
    iterations: Optional[int] = typer.Option(None, help="Iterations per chain, warmup included"),
    warmup: Optional[int] = typer.Option(None, help="Warmup iterations per chain"),
    seed: Optional[int] = typer.Option(None, help="Random seed"),
    max_fit_seconds: Optional[float] = typer.Option(None, help="Wall-clock budget for sampling"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Fit the support model and save it."""
    _setup_logging(verbose)
    config = _build_config(
        config_file, candidate, min_grade, min_date, recency_window_days, reference_date,
        chains, iterations, warmup, seed, max_fit_seconds,
    )
    try:
        model, excluded = fit_from_csv(training_csv, config)
    except EmptyInputError as exc:
        typer.echo(f"No model fitted: {exc}", err=True)
        raise typer.Exit(code=2)

    save_fitted_model(model, output_model)
    typer.echo(summarize_model(model).to_string())
    if excluded:
        typer.echo(f"{excluded} malformed rows excluded from {training_csv}")


@app.command()
def predict(
    model_json: Path = typer.Argument(..., help="Model JSON written by `fit`"),
    polls_csv: Path = typer.Argument(..., help="Poll table to predict"),
    output_csv: Path = typer.Argument(..., help="Where to write predictions"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON file with ForecastConfig values"),
    candidate: Optional[str] = typer.Option(None, help="Candidate name to keep"),
    min_grade: Optional[float] = typer.Option(None, help="Minimum pollster numeric_grade"),
    min_date: Optional[str] = typer.Option(None, help="Earliest poll end_date (YYYY-MM-DD)"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Predict support for a poll table with a saved model.

    Rows are filtered to the candidate the model was fitted for unless
    `--candidate` or the config file names another.
    """
    _setup_logging(verbose)
    model = load_fitted_model(model_json)
    config = _build_config(
        config_file, candidate, min_grade, min_date, None, None, None, None, None, None, None,
        default_candidate=model.candidate_name,
    )
    batch, excluded = predict_from_csv(model, polls_csv, config)
    write_predictions_csv(batch, output_csv)
    typer.echo(f"Wrote {len(batch)} predictions to {output_csv} ({excluded} malformed rows excluded)")


@app.command()
def run(
    training_csv: Path = typer.Argument(..., help="Cleaned poll table used for training"),
    national_csv: Path = typer.Argument(..., help="National polls to predict"),
    state_csv: Path = typer.Argument(..., help="State polls to predict"),
    output_dir: Path = typer.Option(Path("out"), help="Directory for model and prediction files"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="JSON file with ForecastConfig values"),
    candidate: Optional[str] = typer.Option(None, help="Candidate name to model"),
    min_grade: Optional[float] = typer.Option(None, help="Minimum pollster numeric_grade"),
    min_date: Optional[str] = typer.Option(None, help="Earliest poll end_date (YYYY-MM-DD)"),
    recency_window_days: Optional[int] = typer.Option(None, help="Days counted as a recent poll"),
    reference_date: Optional[str] = typer.Option(None, help="Recency reference date (YYYY-MM-DD)"),
    chains: Optional[int] = typer.Option(None, help="Number of sampling chains"),
    iterations: Optional[int] = typer.Option(None, help="Iterations per chain, warmup included"),
    warmup: Optional[int] = typer.Option(None, help="Warmup iterations per chain"),
    seed: Optional[int] = typer.Option(None, help="Random seed"),
    max_fit_seconds: Optional[float] = typer.Option(None, help="Wall-clock budget for sampling"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Fit once, then predict national and state support."""
    _setup_logging(verbose)
    config = _build_config(
        config_file, candidate, min_grade, min_date, recency_window_days, reference_date,
        chains, iterations, warmup, seed, max_fit_seconds,
    )
    try:
        result = run_forecast(training_csv, national_csv, state_csv, config=config, output_dir=output_dir)
    except EmptyInputError as exc:
        typer.echo(f"No model fitted: {exc}", err=True)
        raise typer.Exit(code=2)

    typer.echo(summarize_model(result.model).to_string())
    for name, path in result.output_paths.items():
        typer.echo(f"{name}: {path}")
    if not result.model.diagnostics.converged:
        typer.echo("Warning: " + "; ".join(result.model.diagnostics.messages), err=True)


def main():
    app()


if __name__ == "__main__":
    main()
