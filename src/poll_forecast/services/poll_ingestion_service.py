"""Poll ingestion service.

Reads the cleaned poll tables written by the upstream cleaning stage and
returns typed `PollRecord` objects. Whole-file problems (missing file,
missing required columns) raise; per-row problems exclude only that row
and are counted on the returned `PollLoadResult`.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple
import logging

import pandas as pd
from pydantic import ValidationError

from poll_forecast.data_models.poll_record import ExcludedRow, PollLoadResult, PollRecord
from poll_forecast.errors import MalformedRecordError


logger = logging.getLogger(__name__)


CORE_COLUMNS = ("pollster", "candidate_name", "population", "numeric_grade", "end_date", "pct", "state")
NATIONAL_FLAG_COLUMNS = ("is_national", "national_poll")
REQUIRED_COLUMNS = {"pollster", "candidate_name", "population", "numeric_grade", "end_date"}

_MISSING_TOKENS = {"", "na", "n/a", "nan", "none", "null", "-"}
_TRUE_TOKENS = {"true", "t", "yes", "y", "1"}
_FALSE_TOKENS = {"false", "f", "no", "n", "0"}


def _clean(val: Any) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, float) and pd.isna(val):
        return None
    s = str(val).strip()
    if s.lower() in _MISSING_TOKENS:
        return None
    return s


def _safe_float(val: Any) -> Optional[float]:
    s = _clean(val)
    if s is None:
        return None
    try:
        return float(s.replace(",", ""))
    except ValueError:
        return None


def _parse_flag(val: Any) -> Optional[bool]:
    s = _clean(val)
    if s is None:
        return None
    if s.lower() in _TRUE_TOKENS:
        return True
    if s.lower() in _FALSE_TOKENS:
        return False
    return None


def normalise_column_name(name: Any) -> str:
    return str(name).strip().lower().replace(" ", "_").replace("-", "_")


def parse_poll_row(row: Mapping[str, Any], require_pct: bool = True) -> PollRecord:
    """Parse one raw row (column names already normalised) into a PollRecord.

    Raises `MalformedRecordError` for a missing or non-numeric `pct` (when
    `require_pct`), a missing or unparseable `end_date`, or a missing
    pollster / candidate_name / population. A non-numeric `numeric_grade`
    is kept as None; such polls simply never pass the grade filter.
    """
    values = {}
    for field in ("pollster", "candidate_name", "population"):
        v = _clean(row.get(field))
        if v is None:
            raise MalformedRecordError(f"missing {field}", field=field)
        values[field] = v

    raw_date = _clean(row.get("end_date"))
    if raw_date is None:
        raise MalformedRecordError("missing end_date", field="end_date")
    try:
        end_date = pd.to_datetime(raw_date).date()
    except (ValueError, TypeError, OverflowError):
        raise MalformedRecordError(f"unparseable end_date {raw_date!r}", field="end_date")

    pct = _safe_float(row.get("pct"))
    if pct is None and require_pct:
        raise MalformedRecordError(f"missing or non-numeric pct {row.get('pct')!r}", field="pct")
    if pct is not None and pct < 0.0:
        raise MalformedRecordError(f"negative pct {pct}", field="pct")

    state = _clean(row.get("state"))
    is_national: Optional[bool] = None
    for col in NATIONAL_FLAG_COLUMNS:
        if _clean(row.get(col)) is not None:
            is_national = _parse_flag(row.get(col))
            if is_national is None:
                raise MalformedRecordError(f"unparseable {col} {row.get(col)!r}", field=col)
            break
    # Blank or absent flag: a poll without a state is national
    if is_national is None:
        is_national = state is None

    extra = {k: v for k, v in row.items() if k not in CORE_COLUMNS and k not in NATIONAL_FLAG_COLUMNS}

    try:
        return PollRecord(
            pollster=values["pollster"],
            candidate_name=values["candidate_name"],
            population=values["population"],
            numeric_grade=_safe_float(row.get("numeric_grade")),
            end_date=end_date,
            pct=pct,
            is_national=is_national,
            state=state,
            extra=extra,
        )
    except ValidationError as exc:
        raise MalformedRecordError(str(exc.errors()[0].get("msg", exc)))


def load_polls_from_csv(csv_path: Path | str, require_pct: bool = True) -> PollLoadResult:
    """Load a cleaned poll CSV into a PollLoadResult.

    Parameters
    ----------
    csv_path : Path | str
        Path to a cleaned poll table, e.g.
        data/02-analysis_data/cleaned_president_polls.csv
    require_pct : bool
        False for pure prediction tables where the outcome may be absent.

    Returns
    -------
    PollLoadResult
        Parsed records in file order, plus excluded rows with reasons.
    """

    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"Poll CSV file not found: {path}")

    # Read everything as text so parsing (and error reporting) happens per row
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [normalise_column_name(c) for c in df.columns]

    required = set(REQUIRED_COLUMNS)
    if require_pct:
        required.add("pct")
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns in poll CSV {path}: {sorted(missing)}")

    records: List[PollRecord] = []
    excluded: List[ExcludedRow] = []

    for i, row in enumerate(df.to_dict(orient="records"), start=1):
        try:
            records.append(parse_poll_row(row, require_pct=require_pct))
        except MalformedRecordError as exc:
            excluded.append(ExcludedRow(row_number=i, field=exc.field, reason=str(exc)))

    if excluded:
        logger.warning("Excluded %d malformed rows from %s", len(excluded), path)
        for ex in excluded[:10]:
            logger.debug("Row %d excluded: %s", ex.row_number, ex.reason)

    logger.info("Loaded %d poll records from %s", len(records), path)
    return PollLoadResult(source=str(path), columns=list(df.columns), records=records, excluded=excluded)


def split_national_state(records: List[PollRecord]) -> Tuple[List[PollRecord], List[PollRecord]]:
    """Partition a combined poll table into (national, state) polls, keeping order."""
    national = [r for r in records if r.is_national]
    state = [r for r in records if not r.is_national]
    return national, state
