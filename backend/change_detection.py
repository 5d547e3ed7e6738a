"""
OpsDesk — Change Detection Engine

Period-over-period comparison of a flat time series. Given rows of
`{date, value, segment, subsegment?}` and a period length in days, computes
the current and previous window totals, ranks the segments that drove the
change, builds a daily trend for the current window and a one-line summary.

Pure functions only: no I/O, no shared state, safe to call concurrently.
"""

import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from errors import ValidationError

DEFAULT_PERIOD_DAYS = 30
# One century; longer windows are rejected before any date arithmetic
MAX_PERIOD_DAYS = 36500
MAX_DRIVERS = 5
# |percent_change| at or below this is reported as stable
STABILITY_THRESHOLD = 1.0
UNKNOWN_SEGMENT = "Unknown"

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%b %d, %Y",
    "%d %b %Y",
)


@dataclass
class SegmentDriver:
    segment: str
    current: float
    previous: float
    change: float
    share_of_change: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TrendPoint:
    date: str
    value: float


@dataclass
class ChangeReport:
    period_days: int
    anchor: Optional[str]
    current_total: float = 0
    previous_total: float = 0
    total_change: float = 0
    percent_change: float = 0
    drivers: List[SegmentDriver] = field(default_factory=list)
    trend: List[TrendPoint] = field(default_factory=list)
    sentence: str = ""
    skipped_rows: int = 0

    @property
    def top_driver(self) -> Optional[SegmentDriver]:
        return self.drivers[0] if self.drivers else None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================
# HELPERS
# ============================================================

def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero"""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_row_date(value: Any) -> Optional[datetime]:
    """Best-effort date parsing; returns a naive UTC datetime or None"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _as_number(value: Any) -> float:
    """Numeric cell value; anything non-numeric counts as 0"""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, int):
        # Integers beyond the float range would poison mixed sums
        try:
            float(value)
        except OverflowError:
            return 0
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        return int(number) if number.is_integer() else number
    return 0


def normalize_rows(records: Iterable[Mapping[str, Any]], column_mapping: Mapping[str, str]) -> List[Dict[str, Any]]:
    """Turn raw spreadsheet records into engine rows using a column mapping.

    The mapping names the source header for `date`, `metric`, `segment` and,
    optionally, `subsegment`. Dates are passed through untouched; the engine
    decides what is parseable.
    """
    for required in ("date", "metric"):
        if not column_mapping.get(required):
            raise ValidationError(f"Column mapping has no '{required}' column")

    date_col = column_mapping["date"]
    metric_col = column_mapping["metric"]
    segment_col = column_mapping.get("segment")
    subsegment_col = column_mapping.get("subsegment")

    rows = []
    for record in records:
        segment = record.get(segment_col) if segment_col else None
        row = {
            "date": record.get(date_col),
            "value": _as_number(record.get(metric_col)),
            "segment": str(segment) if segment not in (None, "") else UNKNOWN_SEGMENT,
        }
        if subsegment_col:
            sub = record.get(subsegment_col)
            row["subsegment"] = str(sub) if sub not in (None, "") else ""
        rows.append(row)
    return rows


def _finite(value: float, label: str) -> float:
    """`value` unchanged, or ValidationError when it left the float range"""
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise ValidationError(f"{label} is outside the representable numeric range")
    return value


def _percent(part: float, whole: float, label: str) -> float:
    try:
        return _finite(part / whole * 100, label)
    except OverflowError:
        raise ValidationError(f"{label} is outside the representable numeric range")


def _percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return _percent(current - previous, previous, "Percent change")


def _sentence(metric_label: str, period_days: int, total_change: float,
              percent_change: float, top: Optional[SegmentDriver]) -> str:
    if abs(percent_change) <= STABILITY_THRESHOLD:
        return f"Total {metric_label} remained stable compared to the previous {period_days} days."

    direction = "increased" if total_change > 0 else "decreased"
    sentence = (
        f"Total {metric_label} {direction} {round_half_up(abs(percent_change))}% "
        f"compared to the previous {period_days} days."
    )
    if top is not None:
        sentence += f" {top.share_of_change}% of this change comes from {top.segment}."
    return sentence


# ============================================================
# ENGINE
# ============================================================

def detect_changes(
    rows: Iterable[Mapping[str, Any]],
    period_days: int = DEFAULT_PERIOD_DAYS,
    metric_label: str = "value",
) -> ChangeReport:
    """Compare the last `period_days` against the period before it.

    The anchor is the latest parseable date. The current window is
    (anchor - P, anchor], the previous one (anchor - 2P, anchor - P].
    Rows whose date cannot be parsed are left out and counted in
    `skipped_rows`.
    """
    if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days <= 0:
        raise ValidationError(f"period_days must be a positive integer, got {period_days!r}")
    if period_days > MAX_PERIOD_DAYS:
        raise ValidationError(f"period_days must be at most {MAX_PERIOD_DAYS}, got {period_days}")

    parsed = []
    skipped = 0
    for row in rows:
        when = parse_row_date(row.get("date"))
        if when is None:
            skipped += 1
            continue
        segment = row.get("segment")
        parsed.append((
            when,
            _as_number(row.get("value")),
            str(segment) if segment not in (None, "") else UNKNOWN_SEGMENT,
        ))

    if not parsed:
        return ChangeReport(
            period_days=period_days,
            anchor=None,
            sentence=_sentence(metric_label, period_days, 0, 0, None),
            skipped_rows=skipped,
        )

    # Stable: rows on the same date keep their input order
    parsed.sort(key=lambda item: item[0])
    anchor = parsed[-1][0]
    try:
        cutoff = anchor - timedelta(days=period_days)
        previous_cutoff = cutoff - timedelta(days=period_days)
    except OverflowError:
        raise ValidationError(
            f"A {period_days}-day comparison before {anchor.date().isoformat()} reaches past the earliest supported date"
        )

    current_total = 0
    previous_total = 0
    # dicts keep first-encounter order, which makes the ranking tie-break deterministic
    segments: Dict[str, List[float]] = {}
    daily: Dict[str, float] = defaultdict(float)

    for when, value, segment in parsed:
        if cutoff < when <= anchor:
            current_total += value
            segments.setdefault(segment, [0, 0])[0] += value
            daily[when.date().isoformat()] += value
        elif previous_cutoff < when <= cutoff:
            previous_total += value
            segments.setdefault(segment, [0, 0])[1] += value

    _finite(current_total, "Current period total")
    _finite(previous_total, "Previous period total")
    total_change = _finite(current_total - previous_total, "Total change")
    percent_change = _percent_change(current_total, previous_total)

    ranked = sorted(segments.items(), key=lambda item: abs(item[1][0] - item[1][1]), reverse=True)
    drivers = []
    for segment, (current, previous) in ranked[:MAX_DRIVERS]:
        change = _finite(current - previous, f"Change for segment {segment!r}")
        share = 0 if total_change == 0 else round_half_up(
            _percent(abs(change), abs(total_change), f"Share of change for segment {segment!r}")
        )
        drivers.append(SegmentDriver(
            segment=segment,
            current=current,
            previous=previous,
            change=change,
            share_of_change=share,
        ))

    trend = [TrendPoint(date=day, value=_finite(daily[day], f"Total for {day}")) for day in sorted(daily)]

    return ChangeReport(
        period_days=period_days,
        anchor=anchor.date().isoformat(),
        current_total=current_total,
        previous_total=previous_total,
        total_change=total_change,
        percent_change=percent_change,
        drivers=drivers,
        trend=trend,
        sentence=_sentence(metric_label, period_days, total_change, percent_change, drivers[0] if drivers else None),
        skipped_rows=skipped,
    )
