from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence

STATUS_NO_DATA = "No data"
STATUS_NOT_STARTED = "Not started"
STATUS_AHEAD = "Ahead"
STATUS_ON_TRACK = "On track"
STATUS_BEHIND = "Behind"

PROJECT_STATUSES = (
    STATUS_NO_DATA,
    STATUS_NOT_STARTED,
    STATUS_AHEAD,
    STATUS_ON_TRACK,
    STATUS_BEHIND,
)

ON_TRACK_RATIO = 0.8
SECONDS_PER_DAY = 60 * 60 * 24
DEFAULT_TASK_DURATION = 1
DEFAULT_TASK_PROGRESS = 0

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _field(row: Any, name: str, default: Any = None) -> Any:
    # Mappings by key; dataclasses, namedtuples and slotted rows by attribute.
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


@dataclass(frozen=True)
class TaskSnapshot:
    """A task row as the metrics see it.

    ``duration`` and ``progress`` may be missing. A missing or falsy duration
    weighs ``DEFAULT_TASK_DURATION`` days and a missing or falsy progress
    counts as ``DEFAULT_TASK_PROGRESS``.
    """

    id: Any = None
    start_date: Any = None
    end_date: Any = None
    duration: Any = None
    progress: Any = None
    project_id: Any = None

    @classmethod
    def from_row(cls, row: Any) -> "TaskSnapshot":
        if isinstance(row, cls):
            return row
        return cls(
            id=_field(row, "id", _field(row, "task_id")),
            start_date=_field(row, "start_date"),
            end_date=_field(row, "end_date"),
            duration=_field(row, "duration"),
            progress=_field(row, "progress"),
            project_id=_field(row, "project_id"),
        )

    @property
    def weight(self) -> float:
        return _or_default(self.duration, DEFAULT_TASK_DURATION)

    @property
    def progress_percent(self) -> float:
        return _or_default(self.progress, DEFAULT_TASK_PROGRESS)


@dataclass(frozen=True)
class MilestoneSnapshot:
    """A milestone (deliverable) row. Complete only when ``complete`` is the number 1."""

    id: Any = None
    start_date: Any = None
    end_date: Any = None
    complete: Any = 0
    project_id: Any = None

    @classmethod
    def from_row(cls, row: Any) -> "MilestoneSnapshot":
        if isinstance(row, cls):
            return row
        return cls(
            id=_field(row, "id", _field(row, "deliverable_id")),
            start_date=_field(row, "start_date"),
            end_date=_field(row, "end_date"),
            complete=_field(row, "complete", 0),
            project_id=_field(row, "project_id"),
        )

    @property
    def is_complete(self) -> bool:
        value = self.complete
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return value == 1


def _number(value: Any) -> float:
    if isinstance(value, str):
        value = value.strip() or 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _or_default(value: Any, default: float) -> float:
    # Falsy values (None, 0, "", NaN) take the default.
    if not value or (isinstance(value, float) and math.isnan(value)):
        return float(default)
    return _number(value)


def _as_tasks(tasks: Iterable[Any] | None) -> List[TaskSnapshot]:
    return [TaskSnapshot.from_row(task) for task in tasks or []]


def _as_milestones(milestones: Iterable[Any] | None) -> List[MilestoneSnapshot]:
    return [MilestoneSnapshot.from_row(milestone) for milestone in milestones or []]


def clamp(value: float, min_value: float, max_value: float) -> float:
    return min(max(value, min_value), max_value)


def round_half_up(value: float) -> int | float:
    """Round to the nearest integer with halves going up, the way ``Math.round`` does.

    Non-finite values come back unchanged so NaN keeps flowing instead of raising.
    """
    if not math.isfinite(value):
        return value
    return math.floor(value + 0.5)


def parse_instant(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def epoch_days(value: Any) -> float:
    """Fractional days since the Unix epoch, or NaN when the value is not a date."""
    moment = parse_instant(value)
    if moment is None:
        return math.nan
    return (moment - _EPOCH).total_seconds() / SECONDS_PER_DAY


def to_days(value: Any) -> int | None:
    moment = parse_instant(value)
    if moment is None:
        return None
    return math.floor((moment - _EPOCH).total_seconds() / SECONDS_PER_DAY)


def filter_for_project(rows: Iterable[Mapping[str, Any]] | None, project_id: Any) -> List[Mapping[str, Any]]:
    return [row for row in rows or [] if row.get("project_id") == project_id]


def _milestone_progress(milestones: Sequence[MilestoneSnapshot]) -> float:
    completed = sum(1 for milestone in milestones if milestone.is_complete)
    return (completed / len(milestones)) * 100


def _combine(no_tasks: bool, no_milestones: bool, task_value: float, milestone_value: float) -> int | float:
    if no_tasks and no_milestones:
        return 0
    if no_tasks:
        return round_half_up(milestone_value)
    if no_milestones:
        return round_half_up(task_value)
    return round_half_up((task_value + milestone_value) / 2)


def calculate_project_progress(tasks: Iterable[Any] | None, milestones: Iterable[Any] | None) -> int | float:
    """Actual completion of a project, 0..100.

    Tasks contribute a duration-weighted mean of their progress, milestones the
    share of completed ones. When both are present the two are averaged.
    Finite results are whole ints; NaN inputs come back as a float NaN.
    """
    task_items = _as_tasks(tasks)
    milestone_items = _as_milestones(milestones)
    no_tasks = not task_items
    no_milestones = not milestone_items

    task_progress = 0.0
    if not no_tasks:
        total_duration = 0.0
        weighted_sum = 0.0
        for task in task_items:
            weight = task.weight
            total_duration += weight
            weighted_sum += (task.progress_percent / 100) * weight
        task_progress = (weighted_sum / total_duration) * 100 if total_duration > 0 else 0

    milestone_progress = 0.0
    if not no_milestones:
        milestone_progress = _milestone_progress(milestone_items)

    return _combine(no_tasks, no_milestones, task_progress, milestone_progress)


def expected_task_fraction(task: TaskSnapshot, now_days: float) -> float:
    start = epoch_days(task.start_date)
    end = epoch_days(task.end_date)
    if now_days < start:
        return 0
    if now_days > end:
        return 1
    return clamp((now_days - start) / (end - start) if end != start else math.nan, 0, 1)


def calculate_expected_progress(
    tasks: Iterable[Any] | None,
    milestones: Iterable[Any] | None,
    now: Any = None,
) -> int | float:
    """Where the project should be at ``now`` (defaults to the current UTC time), 0..100.

    Each task expects a linear share of its window to be done. Milestones use
    their completion ratio, same as in ``calculate_project_progress``.
    """
    task_items = _as_tasks(tasks)
    milestone_items = _as_milestones(milestones)
    no_tasks = not task_items
    no_milestones = not milestone_items

    expected_task_progress = 0.0
    if not no_tasks:
        now_days = epoch_days(now if now is not None else datetime.now(timezone.utc))
        total_duration = 0.0
        weighted_expected_sum = 0.0
        for task in task_items:
            duration = epoch_days(task.end_date) - epoch_days(task.start_date)
            fraction = expected_task_fraction(task, now_days)
            total_duration += duration
            weighted_expected_sum += fraction * duration
        expected_task_progress = (
            (weighted_expected_sum / total_duration) * 100 if total_duration > 0 else 0
        )

    milestone_progress = 0.0
    if not no_milestones:
        milestone_progress = _milestone_progress(milestone_items)

    return _combine(no_tasks, no_milestones, expected_task_progress, milestone_progress)


def classify_progress(actual: float, expected: float) -> str:
    if expected == 0:
        return STATUS_AHEAD if actual > 0 else STATUS_NOT_STARTED
    ratio = actual / expected
    if ratio >= 1.0:
        return STATUS_AHEAD
    if ratio >= ON_TRACK_RATIO:
        return STATUS_ON_TRACK
    return STATUS_BEHIND


def get_project_status(tasks: Iterable[Any] | None, milestones: Iterable[Any] | None, now: Any = None) -> str:
    task_items = _as_tasks(tasks)
    milestone_items = _as_milestones(milestones)
    if not task_items and not milestone_items:
        return STATUS_NO_DATA

    actual = calculate_project_progress(task_items, milestone_items)
    expected = calculate_expected_progress(task_items, milestone_items, now=now)
    return classify_progress(actual, expected)


def project_metrics(tasks: Iterable[Any] | None, milestones: Iterable[Any] | None, now: Any = None) -> Dict[str, Any]:
    task_items = _as_tasks(tasks)
    milestone_items = _as_milestones(milestones)
    return {
        "progress": calculate_project_progress(task_items, milestone_items),
        "expected_progress": calculate_expected_progress(task_items, milestone_items, now=now),
        "status": get_project_status(task_items, milestone_items, now=now),
    }
