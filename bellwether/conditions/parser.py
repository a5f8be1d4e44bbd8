"""Parse condition strings and mappings into an expression tree.

String form — clauses joined by ``and``::

    time in 22:00-07:00
    day in mon,tue,wed          (also: weekdays, weekends)
    value >= 90
    detail ~ /disk .* full/
    count > 3 in 60s            (count(<event_type>) > 3 in 5m)
    to_status in critical,warning

Mapping form::

    {"time_window": "22:00-07:00", "days": ["sat", "sun"],
     "value": ">= 90", "detail_regex": "full",
     "recent_count": {"op": ">", "count": 3, "window_secs": 60},
     "to_status": ["critical"]}
"""

from __future__ import annotations

import datetime
import re
from typing import Any

from bellwether.conditions.expr import (
    ALWAYS,
    COMPARATORS,
    All,
    DaysOfWeek,
    Expr,
    NumericCompare,
    RecentCount,
    RegexMatch,
    StatusIn,
    TimeWindow,
)
from bellwether.core.types import Status
from bellwether.rules.exceptions import ConfigurationError

_DAY_NAMES = {
    "mon": 0, "monday": 0,
    "tue": 1, "tues": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thurs": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}
_DAY_GROUPS = {
    "weekdays": frozenset(range(5)),
    "weekends": frozenset({5, 6}),
    "everyday": frozenset(range(7)),
}
_DURATION_UNITS = {"": 1.0, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}

_OP = r"(>=|<=|==|!=|>|<)"
_AND = re.compile(r"\s+and\s+", re.IGNORECASE)
_TIME_RE = re.compile(r"^time\s+in\s+(\S+)\s*-\s*(\S+)$", re.IGNORECASE)
_DAY_RE = re.compile(r"^(?:day|days|weekday)\s+in\s+(.+)$", re.IGNORECASE)
_DAY_GROUP_RE = re.compile(r"^(weekdays|weekends|everyday)$", re.IGNORECASE)
_VALUE_RE = re.compile(rf"^value\s*{_OP}\s*(-?\d+(?:\.\d+)?)$", re.IGNORECASE)
_REGEX_RE = re.compile(r"^(detail|entity_key)\s*~\s*/(.*)/(i?)$")
_COUNT_RE = re.compile(
    rf"^count(?:\((\w[\w.:-]*)\))?\s*{_OP}\s*(\d+)\s+in\s+(\d+(?:\.\d+)?[smhd]?)$",
    re.IGNORECASE,
)
_STATUS_RE = re.compile(r"^(to_status|from_status|status)\s+in\s+(.+)$", re.IGNORECASE)
_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def parse_time(text: str) -> datetime.time:
    if not isinstance(text, str):
        # YAML 1.1 reads an unquoted 22:00 as the base-60 integer 1320.
        raise ConfigurationError(
            f"bad time of day {text!r}, expected a quoted 'HH:MM' string",
        )
    try:
        hour, minute = text.strip().split(":")
        return datetime.time(int(hour), int(minute))
    except ValueError as exc:
        raise ConfigurationError(f"bad time of day {text!r}, expected HH:MM") from exc


def parse_duration(text: str | float | int) -> float:
    if isinstance(text, (int, float)):
        return float(text)
    if not isinstance(text, str):
        raise ConfigurationError(f"bad duration {text!r}")
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*", text.lower())
    if match is None:
        raise ConfigurationError(f"bad duration {text!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def parse_days(items: str | list[str]) -> frozenset[int]:
    if isinstance(items, str):
        group = _DAY_GROUPS.get(items.strip().lower())
        if group is not None:
            return group
        items = items.split(",")
    days: set[int] = set()
    for item in items:
        name = str(item).strip().lower()
        if name in _DAY_GROUPS:
            days |= _DAY_GROUPS[name]
        elif name in _DAY_NAMES:
            days.add(_DAY_NAMES[name])
        else:
            raise ConfigurationError(f"unknown day {item!r}")
    return frozenset(days)


def parse_statuses(items: str | list[str]) -> frozenset[Status]:
    if isinstance(items, str):
        items = items.split(",")
    try:
        return frozenset(Status(str(s).strip().lower()) for s in items)
    except ValueError as exc:
        raise ConfigurationError(f"unknown status in {items!r}") from exc


def time_window(spec: str | dict[str, str]) -> TimeWindow:
    if isinstance(spec, dict):
        if "start" not in spec or "end" not in spec:
            raise ConfigurationError(f"time window needs start and end, got {spec!r}")
        return TimeWindow(parse_time(spec["start"]), parse_time(spec["end"]))
    if not isinstance(spec, str):
        raise ConfigurationError(f"bad time window {spec!r}, expected HH:MM-HH:MM")
    start, sep, end = spec.partition("-")
    if not sep:
        raise ConfigurationError(f"bad time window {spec!r}, expected HH:MM-HH:MM")
    return TimeWindow(parse_time(start), parse_time(end))


def _compile_regex(pattern: str, flags: int = 0) -> re.Pattern[str]:
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise ConfigurationError(f"bad regex {pattern!r}: {exc}") from exc


def _parse_clause(clause: str) -> Expr:
    clause = clause.strip()

    if m := _TIME_RE.match(clause):
        return TimeWindow(parse_time(m.group(1)), parse_time(m.group(2)))
    if m := _DAY_GROUP_RE.match(clause):
        return DaysOfWeek(_DAY_GROUPS[m.group(1).lower()])
    if m := _DAY_RE.match(clause):
        return DaysOfWeek(parse_days(m.group(1)))
    if m := _VALUE_RE.match(clause):
        return NumericCompare(m.group(1), float(m.group(2)))
    if m := _REGEX_RE.match(clause):
        flags = re.IGNORECASE if m.group(3) else 0
        return RegexMatch(_compile_regex(m.group(2), flags), field=m.group(1))
    if m := _COUNT_RE.match(clause):
        return RecentCount(
            op=m.group(2),
            count=int(m.group(3)),
            window_secs=parse_duration(m.group(4)),
            event_type=m.group(1),
        )
    if m := _STATUS_RE.match(clause):
        field = "from_status" if m.group(1).lower() == "from_status" else "to_status"
        return StatusIn(parse_statuses(m.group(2)), field=field)

    raise ConfigurationError(f"cannot parse condition clause {clause!r}")


def _split_op(text: str | float | int) -> tuple[str, float]:
    if isinstance(text, (int, float)):
        return ">=", float(text)
    match = re.fullmatch(rf"\s*{_OP}\s*(-?\d+(?:\.\d+)?)\s*", text)
    if match is None:
        raise ConfigurationError(f"bad comparison {text!r}, expected e.g. '>= 90'")
    return match.group(1), float(match.group(2))


def _parse_entry(name: str, key: str, spec: Any) -> list[Expr]:
    if name == "time_window":
        return [time_window(spec)]
    if name == "days":
        return [DaysOfWeek(parse_days(spec))]
    if name == "value":
        if isinstance(spec, dict):
            return [NumericCompare(op, float(v)) for op, v in spec.items() if op in COMPARATORS]
        op, threshold = _split_op(spec)
        return [NumericCompare(op, threshold)]
    if name == "detail_regex":
        return [RegexMatch(_compile_regex(str(spec)))]
    if name == "recent_count":
        if not isinstance(spec, dict) or "count" not in spec:
            raise ConfigurationError(f"recent_count needs a count, got {spec!r}")
        op = spec.get("op", ">")
        if op not in COMPARATORS:
            raise ConfigurationError(f"bad recent_count operator {op!r}")
        return [RecentCount(
            op=op,
            count=int(spec["count"]),
            window_secs=parse_duration(spec.get("window_secs", spec.get("window", 60))),
            event_type=spec.get("event_type"),
        )]
    if name in ("to_status", "from_status"):
        return [StatusIn(parse_statuses(spec), field=name)]
    raise ConfigurationError(f"unknown condition key {key!r}")


def _parse_mapping(raw: dict[str, Any]) -> All:
    children: list[Expr] = []
    for key, spec in raw.items():
        name = _CAMEL.sub("_", key).lower()
        try:
            children.extend(_parse_entry(name, key, spec))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"bad condition {key!r}: {spec!r} ({exc})") from exc
    return All(tuple(children))


def parse_condition(raw: str | dict[str, Any] | None) -> All:
    """Compile a condition into an ``All`` node. None means always true."""
    if raw is None:
        return ALWAYS
    if isinstance(raw, dict):
        return _parse_mapping(raw)
    if not raw.strip():
        return ALWAYS
    return All(tuple(_parse_clause(c) for c in _AND.split(raw.strip())))
