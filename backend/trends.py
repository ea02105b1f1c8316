"""Metric time series over a patient's health records."""
import logging
import math
import re
from datetime import datetime
from numbers import Real
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

# Leading number of a string, the way JavaScript's parseFloat reads it:
# "72.5 kg" -> 72.5, "120/80" -> 120, "1_000" -> 1.
LEADING_NUMBER = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


class TrendPoint(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    date: datetime
    value: float
    record_id: str
    source: str = ""


def coerce_metric_value(value: Any) -> Optional[float]:
    """Numbers pass through, strings yield their leading number, anything else
    is None.

    Booleans and non-finite results are rejected so every emitted point can be
    plotted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
    elif isinstance(value, str):
        match = LEADING_NUMBER.match(value)
        if match is None:
            return None
        number = float(match.group(1))
    else:
        return None
    return number if math.isfinite(number) else None


def extract_trend(records: Iterable[dict], metric: str) -> List[TrendPoint]:
    """Build the series for ``metric`` from records already sorted by createdAt.

    Records without the metric or a creation time, or with a value that cannot
    be read as a number, are skipped. Order is preserved and repeated dates
    are kept.
    """
    points: List[TrendPoint] = []
    scanned = 0
    for record in records:
        scanned += 1
        data = record.get("data")
        if not isinstance(data, dict):
            continue
        value = coerce_metric_value(data.get(metric))
        created_at = record.get("createdAt")
        if value is None or not isinstance(created_at, datetime):
            continue
        points.append(
            TrendPoint(
                date=created_at,
                value=value,
                record_id=str(record["_id"]),
                source=record.get("source") or "",
            )
        )
    logger.debug(f"Trend '{metric}': scanned {scanned} records, emitted {len(points)} points")
    return points
