"""Shared fixtures for the poll_forecast suite.

`fast_config` is a two-chain ForecastConfig with a few hundred NUTS draws,
enough for R-hat and ESS while keeping each fit to seconds. The source tree
is put on `sys.path` so the suite runs without an editable install.
"""
from pathlib import Path
import sys

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture
def fast_config():
    from poll_forecast.data_models.forecast_config import ForecastConfig

    return ForecastConfig(
        candidate_name="Kamala Harris",
        min_grade=3.0,
        chain_count=2,
        iterations_per_chain=600,
        warmup_iterations=200,
        seed=853,
    )
