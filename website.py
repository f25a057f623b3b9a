from __future__ import annotations

import math
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Sequence

from flask import Flask
from reactpy import component, event, hooks, html
from reactpy.backend.flask import Options, configure

import tracker_client
from project_metrics import (
    PROJECT_STATUSES,
    STATUS_AHEAD,
    STATUS_BEHIND,
    STATUS_ON_TRACK,
    epoch_days,
    filter_for_project,
    project_metrics,
    round_half_up,
    to_days,
)
from tracker_client import TrackerApiError
from tracker_settings import configure_logging

configure_logging()

app = Flask(__name__)

TIMELINE_PROJECT_LIMIT = 3
TIMELINE_PADDING_DAYS = 7
TIMELINE_MARKERS = 8
SCORE_OPTIONS = [{"label": str(score), "value": str(score)} for score in range(1, 6)]

FORM_DEFS: Dict[str, Dict[str, Any]] = {
    "projects": {
        "label": "Project",
        "fields": [
            {"name": "name", "label": "Project name", "input_type": "text"},
            {"name": "owner", "label": "Owner", "input_type": "text"},
            {"name": "start_date", "label": "Start date", "input_type": "date"},
            {"name": "end_date", "label": "End date", "input_type": "date"},
            {"name": "description", "label": "Description", "widget": "textarea"},
        ],
    },
    "tasks": {
        "label": "Task",
        "fields": [
            {"name": "name", "label": "Task", "input_type": "text"},
            {"name": "project_id", "label": "Project", "widget": "project_select"},
            {"name": "start_date", "label": "Start date", "input_type": "date"},
            {"name": "end_date", "label": "End date", "input_type": "date"},
            {"name": "progress", "label": "Progress (%)", "input_type": "number", "step": "1"},
            {"name": "description", "label": "Description", "widget": "textarea"},
        ],
    },
    "deliverables": {
        "label": "Deliverable",
        "fields": [
            {"name": "name", "label": "Deliverable", "input_type": "text"},
            {"name": "project_id", "label": "Project", "widget": "project_select"},
            {"name": "owner", "label": "Owner", "input_type": "text"},
            {"name": "start_date", "label": "Start date", "input_type": "date"},
            {"name": "end_date", "label": "Due date", "input_type": "date"},
            {
                "name": "complete",
                "label": "State",
                "widget": "segmented",
                "options": [
                    {"label": "Incomplete", "value": "0"},
                    {"label": "Complete", "value": "1"},
                ],
            },
            {"name": "description", "label": "Description", "widget": "textarea"},
        ],
    },
    "risks": {
        "label": "Risk",
        "fields": [
            {"name": "name", "label": "Risk", "input_type": "text"},
            {"name": "date", "label": "Raised on", "input_type": "date"},
            {"name": "impact", "label": "Impact", "widget": "segmented", "options": SCORE_OPTIONS},
            {"name": "likelihood", "label": "Likelihood", "widget": "segmented", "options": SCORE_OPTIONS},
            {"name": "preparedness", "label": "Preparedness", "widget": "segmented", "options": SCORE_OPTIONS},
            {"name": "task_ids", "label": "Linked tasks", "widget": "multi_pick", "source": "tasks"},
            {"name": "project_ids", "label": "Linked projects", "widget": "multi_pick", "source": "projects"},
            {"name": "description", "label": "Description", "widget": "textarea"},
        ],
    },
}


# form field -> (junction resource, column holding the linked id)
RISK_LINKS = {
    "task_ids": ("taskrisks", "task_id"),
    "project_ids": ("projectrisks", "project_id"),
}


def today_iso() -> str:
    return date.today().isoformat()


def is_button_field(field: Dict[str, Any]) -> bool:
    return field.get("widget") in {"segmented", "multi_pick"}


def default_values_for(resource: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {field["name"]: "" for field in FORM_DEFS[resource]["fields"]}
    if "start_date" in values:
        values["start_date"] = today_iso()
    if resource == "tasks":
        values["progress"] = "0"
    if resource == "deliverables":
        values["complete"] = "0"
    if resource == "risks":
        values.update({"date": today_iso(), "impact": "1", "likelihood": "1", "preparedness": "1"})
        values.update({"task_ids": [], "project_ids": []})
    return values


def linked_ids(links: Sequence[Dict[str, Any]], risk_id: Any, key: str) -> List[int]:
    return sorted({link[key] for link in links if link.get("risk_id") == risk_id and link.get(key) is not None})


def values_from_item(
    resource: str,
    item: Dict[str, Any],
    raw: Dict[str, List[Dict[str, Any]]] | None = None,
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    raw = raw or {}
    for field in FORM_DEFS[resource]["fields"]:
        name = field["name"]
        if field.get("widget") == "multi_pick":
            key = RISK_LINKS[name][1]
            values[name] = linked_ids(raw.get(RISK_LINKS[name][0], []), item.get("risk_id", item.get("id")), key)
            continue
        if resource == "risks" and name in {"impact", "likelihood"}:
            value = item.get(f"pre_{name}")
        else:
            value = item.get(name)
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        values[name] = "" if value is None else str(value)
    return values


def parse_number(value: Any) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return math.nan


def parse_int(value: Any, default: int | None = None) -> int | None:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return default


def parse_score(value: Any) -> int:
    return parse_int(value, 1) or 1


def duration_between(start: Any, end: Any) -> int:
    start_days = epoch_days(start)
    end_days = epoch_days(end)
    if math.isnan(start_days) or math.isnan(end_days):
        return 0
    return max(round_half_up(end_days - start_days), 0)


def text_value(values: Dict[str, Any], name: str) -> str:
    return str(values.get(name) or "").strip()


def kept_value(existing: Dict[str, Any], name: str, default: Any) -> Any:
    value = existing.get(name)
    return default if value is None else value


def build_payload(resource: str, values: Dict[str, Any], existing: Dict[str, Any] | None = None) -> Dict[str, Any]:
    existing = existing or {}
    if resource == "projects":
        return {
            "name": text_value(values, "name"),
            "owner": text_value(values, "owner"),
            "start_date": text_value(values, "start_date"),
            "end_date": text_value(values, "end_date"),
            "description": text_value(values, "description"),
        }
    if resource == "tasks":
        progress = parse_int(round_half_up(parse_number(values.get("progress"))), 0) or 0
        return {
            "name": text_value(values, "name"),
            "start_date": text_value(values, "start_date"),
            "end_date": text_value(values, "end_date"),
            "duration": duration_between(values.get("start_date"), values.get("end_date")),
            "progress": max(0, min(100, progress)),
            "project_id": parse_int(values.get("project_id")),
            "description": text_value(values, "description"),
        }
    if resource == "deliverables":
        return {
            "name": text_value(values, "name"),
            "start_date": text_value(values, "start_date"),
            "end_date": text_value(values, "end_date"),
            "complete": 1 if text_value(values, "complete") == "1" else 0,
            "owner": text_value(values, "owner"),
            "project_id": parse_int(values.get("project_id")),
            "description": text_value(values, "description"),
        }
    if resource == "risks":
        impact = parse_score(values.get("impact"))
        likelihood = parse_score(values.get("likelihood"))
        return {
            "name": text_value(values, "name"),
            "description": text_value(values, "description"),
            "pre_impact": impact,
            "post_impact": kept_value(existing, "post_impact", impact),
            "pre_likelihood": likelihood,
            "post_likelihood": kept_value(existing, "post_likelihood", likelihood),
            "pre_score": impact * likelihood,
            "post_score": kept_value(existing, "post_score", 0),
            "preparedness": parse_score(values.get("preparedness")),
            "date": text_value(values, "date") or today_iso(),
        }
    raise ValueError(f"No form for {resource}")


def status_class(status: str) -> str:
    if status == STATUS_AHEAD:
        return "pill-success"
    if status == STATUS_ON_TRACK:
        return "pill-info"
    if status == STATUS_BEHIND:
        return "pill-warning"
    return "pill-muted"


def clamp_percent(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return int(max(0, min(100, number)))


def build_project_rows(
    projects: Sequence[Dict[str, Any]],
    tasks: Sequence[Dict[str, Any]],
    deliverables: Sequence[Dict[str, Any]],
    now: datetime | None = None,
) -> List[Dict[str, Any]]:
    rows = []
    for project in projects:
        project_id = project.get("project_id", project.get("id"))
        project_tasks = filter_for_project(tasks, project_id)
        project_deliverables = filter_for_project(deliverables, project_id)
        metrics = project_metrics(project_tasks, project_deliverables, now=now)
        rows.append(
            {
                **project,
                **metrics,
                "id": project_id,
                "percent_value": clamp_percent(metrics["progress"]),
                "status_class": status_class(metrics["status"]),
                "task_count": len(project_tasks),
                "deliverable_count": len(project_deliverables),
            }
        )
    return rows


def status_summary(project_rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    counts = {status: 0 for status in PROJECT_STATUSES}
    for row in project_rows:
        counts[row["status"]] = counts.get(row["status"], 0) + 1
    return [
        {"status": status, "count": counts[status], "class": status_class(status)}
        for status in PROJECT_STATUSES
        if counts[status]
    ]


def position_percentage(value: Any, start_days: float, total_days: float) -> float:
    if not value or total_days <= 0:
        return 0
    offset = epoch_days(value) - start_days
    if math.isnan(offset):
        return 0
    return max(0.0, min(100.0, (offset / total_days) * 100))


def build_timeline(
    projects: Sequence[Dict[str, Any]],
    deliverables: Sequence[Dict[str, Any]],
    today: date | None = None,
    limit: int = TIMELINE_PROJECT_LIMIT,
) -> Dict[str, Any]:
    """Lay the first few projects and their deliverables on one day axis.

    The axis starts today and ends a week after the latest project or
    deliverable end date.
    """
    today = today or date.today()
    shown = list(projects)[:limit]
    start_days = to_days(today)
    end_days = start_days
    for project in shown:
        project_end = to_days(project.get("end_date"))
        if project_end is not None and project_end > end_days:
            end_days = project_end
        for deliverable in filter_for_project(deliverables, project.get("project_id", project.get("id"))):
            deliverable_end = to_days(deliverable.get("end_date"))
            if deliverable_end is not None and deliverable_end > end_days:
                end_days = deliverable_end
    end_days += TIMELINE_PADDING_DAYS
    total_days = end_days - start_days

    markers = []
    for index in range(TIMELINE_MARKERS):
        percentage = index / (TIMELINE_MARKERS - 1) * 100
        marker_date = today + timedelta(days=percentage / 100 * total_days)
        markers.append({"percentage": percentage, "label": marker_date.strftime("%b %d")})

    rows = []
    for project in shown:
        left = position_percentage(project.get("start_date"), start_days, total_days)
        right = position_percentage(project.get("end_date"), start_days, total_days)
        rows.append(
            {
                "id": project.get("project_id", project.get("id")),
                "name": project.get("name") or "Project",
                "left": left,
                "width": max(right - left, 0),
                "milestones": [
                    {
                        "id": deliverable.get("deliverable_id", deliverable.get("id")),
                        "name": deliverable.get("name") or "",
                        "left": position_percentage(deliverable.get("end_date"), start_days, total_days),
                        "complete": deliverable.get("complete") == 1,
                    }
                    for deliverable in filter_for_project(deliverables, project.get("project_id", project.get("id")))
                ],
            }
        )

    return {"total_days": total_days, "markers": markers, "rows": rows}


def linked_projects(
    risk_id: Any,
    project_risks: Sequence[Dict[str, Any]],
    task_risks: Sequence[Dict[str, Any]],
    tasks: Sequence[Dict[str, Any]],
    projects: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    direct_ids = [link.get("project_id") for link in project_risks if link.get("risk_id") == risk_id]
    task_ids = {link.get("task_id") for link in task_risks if link.get("risk_id") == risk_id}
    task_project_ids = [
        task.get("project_id") for task in tasks if task.get("task_id", task.get("id")) in task_ids
    ]
    wanted = set(direct_ids + task_project_ids)
    return [project for project in projects if project.get("project_id", project.get("id")) in wanted]


def linked_projects_label(linked: Sequence[Dict[str, Any]]) -> str:
    if not linked:
        return "None"
    first = linked[0].get("name") or "Project"
    if len(linked) == 1:
        return first
    return f"{first} + {len(linked) - 1}"


def build_risk_rows(data: Dict[str, List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    rows = []
    for risk in data.get("risks", []):
        risk_id = risk.get("risk_id", risk.get("id"))
        linked = linked_projects(
            risk_id,
            data.get("projectrisks", []),
            data.get("taskrisks", []),
            data.get("tasks", []),
            data.get("projects", []),
        )
        rows.append({**risk, "id": risk_id, "linked_label": linked_projects_label(linked)})
    rows.sort(key=lambda row: -(row.get("pre_score") or 0))
    return rows


def project_names(projects: Sequence[Dict[str, Any]]) -> Dict[Any, str]:
    return {project.get("project_id", project.get("id")): project.get("name") or "" for project in projects}


def load_dashboard_data() -> Dict[str, Any]:
    raw = tracker_client.load_tracker_data()
    now = datetime.now(timezone.utc)
    project_rows = build_project_rows(raw["projects"], raw["tasks"], raw["deliverables"], now=now)
    return {
        "raw": raw,
        "projects": project_rows,
        "summary": status_summary(project_rows),
        "timeline": build_timeline(raw["projects"], raw["deliverables"]),
        "tasks": raw["tasks"],
        "deliverables": raw["deliverables"],
        "risks": build_risk_rows(raw),
        "project_names": project_names(raw["projects"]),
        "updated": datetime.now().strftime("%Y-%m-%d %H:%M"),
    }


def empty_dashboard_data(error: str = "") -> Dict[str, Any]:
    return {
        "raw": {},
        "projects": [],
        "summary": [],
        "timeline": {"total_days": 0, "markers": [], "rows": []},
        "tasks": [],
        "deliverables": [],
        "risks": [],
        "project_names": {},
        "updated": datetime.now().strftime("%Y-%m-%d %H:%M"),
        "error": error,
    }


def load_dashboard_data_safe() -> Dict[str, Any]:
    try:
        data = load_dashboard_data()
    except TrackerApiError as exc:
        app.logger.exception("Failed to load dashboard data")
        return empty_dashboard_data(error=str(exc))
    data["error"] = ""
    return data


def selected_ids(value: Any) -> List[int]:
    if isinstance(value, str):
        value = value.split(",")
    ids = {parse_int(entry) for entry in value or []}
    return sorted(entry for entry in ids if entry is not None)


def sync_risk_links(
    risk_id: Any,
    values: Dict[str, Any],
    raw: Dict[str, List[Dict[str, Any]]] | None = None,
) -> None:
    """Add and remove task and project links so they match the form selection."""
    raw = raw or {}
    for name, (junction, key) in RISK_LINKS.items():
        current = set(linked_ids(raw.get(junction, []), risk_id, key))
        wanted = set(selected_ids(values.get(name)))
        for linked_id in sorted(wanted - current):
            tracker_client.create_entity(junction, {key: linked_id, "risk_id": risk_id})
        for linked_id in sorted(current - wanted):
            # junction paths are ordered (task_id|project_id, risk_id)
            tracker_client.delete_entity(junction, linked_id, risk_id)


def save_form(
    resource: str,
    mode: str,
    values: Dict[str, Any],
    item: Dict[str, Any] | None = None,
    raw: Dict[str, List[Dict[str, Any]]] | None = None,
) -> None:
    payload = build_payload(resource, values, existing=item)
    if mode == "new":
        created = tracker_client.create_entity(resource, payload)
        if resource == "risks" and created.get("id"):
            sync_risk_links(created["id"], values)
        return
    item = item or {}
    tracker_client.update_entity(resource, [item["id"]], payload)
    if resource == "risks":
        sync_risk_links(item["id"], values, raw)


TRACKER_CSS = """
:root {
  color-scheme: light;
  --bg: #f4f6fb;
  --surface: #ffffff;
  --border: #dde3ee;
  --text: #101828;
  --muted: #5b6478;
  --accent: #2563eb;
  --radius: 14px;
}

* { box-sizing: border-box; }

body {
  margin: 0;
  font-family: "Inter", "Segoe UI", "Helvetica Neue", sans-serif;
  background: var(--bg);
  color: var(--text);
}

.page { max-width: 1180px; margin: 0 auto; padding: 24px 20px 72px; display: grid; gap: 20px; }

.navbar {
  display: flex; justify-content: space-between; align-items: center; flex-wrap: wrap; gap: 12px;
  padding: 14px 24px; background: var(--surface); border-bottom: 1px solid var(--border);
}
.nav-title { font-size: 18px; font-weight: 600; }
.nav-actions { display: flex; gap: 8px; flex-wrap: wrap; }

.card { background: var(--surface); border: 1px solid var(--border); border-radius: var(--radius); padding: 20px; }
.section-head { display: flex; justify-content: space-between; align-items: center; gap: 12px; margin-bottom: 14px; flex-wrap: wrap; }
h1, h2 { margin: 0 0 4px; font-weight: 600; }
h1 { font-size: 26px; }
h2 { font-size: 18px; }
.meta { color: var(--muted); font-size: 13px; }

.btn {
  border: 1px solid var(--border); background: var(--surface); color: var(--text);
  padding: 8px 14px; border-radius: 999px; font-size: 13px; font-weight: 600; cursor: pointer;
}
.btn.primary { background: var(--accent); border-color: var(--accent); color: #fff; }
.btn.ghost { background: transparent; }
.btn[disabled], .seg-btn[disabled] { opacity: 0.6; cursor: wait; }

.pill { display: inline-flex; padding: 3px 10px; border-radius: 999px; font-size: 12px; font-weight: 600; }
.pill-success { background: #dcfce7; color: #166534; }
.pill-info { background: #dbeafe; color: #1e40af; }
.pill-warning { background: #fef3c7; color: #92400e; }
.pill-danger { background: #fee2e2; color: #991b1b; }
.pill-muted { background: #eef1f6; color: var(--muted); }

.progress { display: flex; align-items: center; gap: 8px; min-width: 140px; }
.progress-track { flex: 1; height: 8px; background: #e5e9f2; border-radius: 999px; overflow: hidden; }
.progress-track span { display: block; height: 100%; background: var(--accent); }

.table-wrap { overflow-x: auto; }
.table { width: 100%; border-collapse: collapse; font-size: 14px; }
.table th, .table td { text-align: left; padding: 10px; border-bottom: 1px solid var(--border); vertical-align: middle; }
.table th { font-size: 11px; letter-spacing: 0.1em; text-transform: uppercase; color: var(--muted); }
.table tr:last-child td { border-bottom: none; }

.timeline { display: grid; gap: 10px; }
.timeline-axis, .timeline-lane { position: relative; height: 26px; }
.timeline-axis span { position: absolute; transform: translateX(-50%); font-size: 11px; color: var(--muted); white-space: nowrap; }
.timeline-lane { background: #f1f4fa; border-radius: 8px; }
.timeline-bar { position: absolute; top: 5px; height: 16px; border-radius: 6px; background: #bfd3fb; }
.timeline-milestone { position: absolute; top: 6px; width: 14px; height: 14px; transform: translateX(-50%) rotate(45deg); background: #f59e0b; }
.timeline-milestone.done { background: #16a34a; }
.timeline-label { font-size: 13px; font-weight: 600; }

.modal { position: fixed; inset: 0; background: rgba(16, 24, 40, 0.45); display: flex; align-items: center; justify-content: center; padding: 20px; z-index: 40; }
.modal-card { width: min(640px, 95vw); max-height: 92vh; overflow-y: auto; display: grid; gap: 14px; }
.modal-head { display: flex; justify-content: space-between; align-items: center; }
.form { display: grid; gap: 12px; }
.field { display: grid; gap: 6px; }
.label { font-size: 12px; text-transform: uppercase; letter-spacing: 0.08em; color: var(--muted); }
.input, .textarea, .select { width: 100%; padding: 10px 12px; border-radius: 10px; border: 1px solid var(--border); font-size: 14px; background: #fff; color: var(--text); }
.textarea { min-height: 96px; resize: vertical; }
.segmented { display: flex; gap: 8px; flex-wrap: wrap; }
.seg-btn { padding: 8px 12px; border-radius: 999px; border: 1px solid var(--border); background: #fff; cursor: pointer; font-weight: 600; color: var(--muted); }
.seg-btn.active { background: #dbeafe; border-color: var(--accent); color: var(--accent); }
.form-actions { display: flex; justify-content: flex-end; gap: 8px; flex-wrap: wrap; }
.notice { padding: 10px 14px; border-radius: 10px; background: #fee2e2; color: #991b1b; font-size: 13px; }

@media (prefers-color-scheme: dark) {
  :root { color-scheme: dark; --bg: #0d1220; --surface: #151c2e; --border: #28324a; --text: #e7ecf6; --muted: #9aa6c0; --accent: #60a5fa; }
  .progress-track, .timeline-lane { background: #222c44; }
  .input, .textarea, .select, .seg-btn { background: #10172a; color: var(--text); }
  .pill-muted { background: #222c44; }
}

@media (max-width: 720px) {
  .page { padding: 16px 12px 56px; }
  .card { padding: 14px; }
}
"""


def progress_bar(percent: int):
    return html.div(
        {"class": "progress"},
        html.div({"class": "progress-track"}, html.span({"style": {"width": f"{percent}%"}})),
        html.span({"class": "meta"}, f"{percent}%"),
    )


@component
def App():
    data, set_data = hooks.use_state(load_dashboard_data_safe)
    modal, set_modal = hooks.use_state({"open": False})
    form_values, set_form_values = hooks.use_state({})
    is_busy, set_is_busy = hooks.use_state(False)
    notice, set_notice = hooks.use_state("")
    busy_ref = hooks.use_ref(False)
    field_event_ts_ref = hooks.use_ref({})
    submit_intent_ref = hooks.use_ref(False)

    def refresh() -> None:
        set_data(load_dashboard_data_safe())

    def run_mutation(action: Callable[[], None]) -> bool:
        if busy_ref.current:
            return False
        busy_ref.current = True
        set_is_busy(True)
        try:
            action()
        except TrackerApiError as exc:
            app.logger.warning("Tracker API rejected change: %s", exc)
            set_notice(str(exc))
            return False
        finally:
            busy_ref.current = False
            set_is_busy(False)
        set_notice("")
        refresh()
        return True

    def close_modal(event: Dict[str, Any] | None = None) -> None:
        if busy_ref.current:
            return
        submit_intent_ref.current = False
        set_modal({"open": False})

    def request_submit(event: Dict[str, Any] | None = None) -> None:
        if busy_ref.current:
            return
        submit_intent_ref.current = True

    def set_field(name: str, value: Any) -> None:
        if busy_ref.current:
            return
        set_form_values(lambda prev: {**prev, name: value})

    def set_field_from_event(name: str, event: Dict[str, Any]) -> None:
        if busy_ref.current:
            return
        ts_raw = event.get("timeStamp")
        if ts_raw is None:
            ts_raw = event.get("timestamp")
        if ts_raw is not None:
            try:
                ts = float(ts_raw)
            except (TypeError, ValueError):
                ts = None
            else:
                last_ts = field_event_ts_ref.current.get(name, -1.0)
                if ts <= last_ts:
                    return
                field_event_ts_ref.current[name] = ts
        value = event.get("target", {}).get("value", "")
        set_form_values(lambda prev: {**prev, name: value})

    def submitted_form_values(event_data: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(form_values)
        target = event_data.get("currentTarget") or event_data.get("target") or {}
        controls = [
            element
            for element in target.get("elements") or []
            if isinstance(element, dict) and str(element.get("tagName") or "").upper() in {"INPUT", "TEXTAREA", "SELECT"}
        ]
        resource = str(modal.get("resource") or "")
        input_names = [
            field["name"] for field in FORM_DEFS.get(resource, {}).get("fields", []) if not is_button_field(field)
        ]
        for name, control in zip(input_names, controls):
            value = control.get("value", "")
            values[name] = "" if value is None else str(value)
        return values

    def open_form(resource: str, mode: str, item: Dict[str, Any] | None = None) -> None:
        if busy_ref.current:
            return
        field_event_ts_ref.current = {}
        submit_intent_ref.current = False
        if mode == "new":
            initial = default_values_for(resource)
        else:
            initial = values_from_item(resource, item or {}, data.get("raw"))
        set_form_values(initial)
        set_notice("")
        set_modal(
            {
                "open": True,
                "resource": resource,
                "mode": mode,
                "item": item,
                "title": ("Add " if mode == "new" else "Edit ") + FORM_DEFS[resource]["label"].lower(),
            }
        )

    def handle_delete(resource: str, item_id: Any) -> None:
        run_mutation(lambda: tracker_client.delete_entity(resource, item_id))

    @event(prevent_default=True)
    def handle_submit(event_data: Dict[str, Any]) -> None:
        if not modal.get("open") or busy_ref.current or not submit_intent_ref.current:
            return
        submit_intent_ref.current = False
        resource = str(modal.get("resource"))
        values = submitted_form_values(event_data)
        saved = run_mutation(
            lambda: save_form(resource, str(modal.get("mode")), values, modal.get("item"), data.get("raw"))
        )
        if saved:
            close_modal()

    def render_segmented(name: str, value: str, options: List[Dict[str, str]]):
        return html.div(
            {"class": "segmented"},
            *[
                html.button(
                    {
                        "key": option["value"],
                        "type": "button",
                        "class": f"seg-btn {'active' if value == option['value'] else ''}",
                        "disabled": is_busy,
                        "on_click": lambda event, val=option["value"]: set_field(name, val),
                    },
                    option["label"],
                )
                for option in options
            ],
        )

    def toggle_id(name: str, item_id: int) -> None:
        if busy_ref.current:
            return

        def toggled(prev: Dict[str, Any]) -> Dict[str, Any]:
            chosen = set(selected_ids(prev.get(name)))
            chosen ^= {item_id}
            return {**prev, name: sorted(chosen)}

        set_form_values(toggled)

    def render_multi_pick(name: str, chosen: List[int], source: str):
        rows = data.get("raw", {}).get(source, [])
        if not rows:
            return html.div({"class": "meta"}, f"No {source} yet.")
        return html.div(
            {"class": "segmented"},
            *[
                html.button(
                    {
                        "key": str(row["id"]),
                        "type": "button",
                        "class": f"seg-btn {'active' if row['id'] in chosen else ''}",
                        "disabled": is_busy,
                        "on_click": lambda event, item_id=row["id"]: toggle_id(name, item_id),
                    },
                    row.get("name") or f"#{row['id']}",
                )
                for row in rows
            ],
        )

    def render_field(field: Dict[str, Any]):
        name = field["name"]
        value = form_values.get(name, "")
        widget = field.get("widget")
        if widget == "segmented":
            control = render_segmented(name, str(value), field["options"])
        elif widget == "multi_pick":
            control = render_multi_pick(name, selected_ids(value), field["source"])
        elif widget == "textarea":
            control = html.textarea(
                {
                    "name": name,
                    "class": "textarea",
                    "default_value": value,
                    "disabled": is_busy,
                    "on_change": lambda event: set_field_from_event(name, event),
                    "on_blur": lambda event: set_field_from_event(name, event),
                }
            )
        elif widget == "project_select":
            options = [{"value": "", "label": "None" if field.get("optional") else "Select a project"}]
            options.extend(
                {"value": str(project_id), "label": label}
                for project_id, label in data["project_names"].items()
            )
            control = html.select(
                {
                    "name": name,
                    "class": "select",
                    "default_value": str(value),
                    "disabled": is_busy,
                    "on_change": lambda event: set_field_from_event(name, event),
                },
                *[html.option({"key": option["value"], "value": option["value"]}, option["label"]) for option in options],
            )
        else:
            attrs = {
                "name": name,
                "class": "input",
                "type": field.get("input_type", "text"),
                "default_value": value,
                "disabled": is_busy,
                "on_change": lambda event: set_field_from_event(name, event),
                "on_blur": lambda event: set_field_from_event(name, event),
            }
            if field.get("step"):
                attrs["step"] = field["step"]
            control = html.input(attrs)
        return html.div({"class": "field", "key": name}, html.span({"class": "label"}, field["label"]), control)

    def render_modal():
        if not modal.get("open"):
            return None
        resource = str(modal.get("resource"))
        return html.div(
            {"class": "modal"},
            html.div(
                {"class": "modal-card card"},
                html.div(
                    {"class": "modal-head"},
                    html.h2(modal.get("title", "Edit")),
                    html.button({"class": "btn ghost", "type": "button", "disabled": is_busy, "on_click": close_modal}, "Close"),
                ),
                *([html.div({"class": "notice"}, notice)] if notice else []),
                html.form(
                    {"class": "form", "on_submit": handle_submit},
                    *[render_field(field) for field in FORM_DEFS[resource]["fields"]],
                    html.div(
                        {"class": "form-actions"},
                        html.button({"type": "button", "class": "btn ghost", "disabled": is_busy, "on_click": close_modal}, "Cancel"),
                        html.button({"type": "submit", "class": "btn primary", "disabled": is_busy, "on_click": request_submit}, "Save"),
                    ),
                ),
            ),
        )

    def row_actions(resource: str, row: Dict[str, Any]):
        return html.td(
            html.button(
                {"class": "btn ghost", "disabled": is_busy, "on_click": lambda e, row=row: open_form(resource, "edit", row)},
                "Edit",
            ),
            html.button(
                {"class": "btn ghost", "disabled": is_busy, "on_click": lambda e, row=row: handle_delete(resource, row["id"])},
                "Delete",
            ),
        )

    def render_table(resource: str, title: str, subtitle: str, headers: List[str], rows: List[Dict[str, Any]], cells: Callable[[Dict[str, Any]], List[Any]]):
        body = (
            html.div(
                {"class": "table-wrap"},
                html.table(
                    {"class": "table"},
                    html.thead(html.tr(*[html.th(header) for header in headers], html.th("Actions"))),
                    html.tbody(
                        *[
                            html.tr({"key": row.get("id", idx)}, *[html.td(cell) for cell in cells(row)], row_actions(resource, row))
                            for idx, row in enumerate(rows)
                        ]
                    ),
                ),
            )
            if rows
            else html.div({"class": "meta"}, "No entries yet.")
        )
        return html.section(
            {"class": "card", "key": resource},
            html.div(
                {"class": "section-head"},
                html.div(html.h2(title), html.div({"class": "meta"}, subtitle)),
                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda e: open_form(resource, "new")}, "Add"),
            ),
            body,
        )

    def render_timeline():
        timeline = data["timeline"]
        if not timeline["rows"]:
            return html.section({"class": "card"}, html.h2("Timeline"), html.div({"class": "meta"}, "No projects found."))
        return html.section(
            {"class": "card"},
            html.div({"class": "section-head"}, html.div(html.h2("Timeline"), html.div({"class": "meta"}, f"Next {timeline['total_days']} days"))),
            html.div(
                {"class": "timeline"},
                html.div(
                    {"class": "timeline-axis"},
                    *[
                        html.span({"key": str(idx), "style": {"left": f"{marker['percentage']}%"}}, marker["label"])
                        for idx, marker in enumerate(timeline["markers"])
                    ],
                ),
                *[
                    html.div(
                        {"key": str(row["id"])},
                        html.div({"class": "timeline-label"}, row["name"]),
                        html.div(
                            {"class": "timeline-lane"},
                            html.div({"class": "timeline-bar", "style": {"left": f"{row['left']}%", "width": f"{row['width']}%"}}),
                            *[
                                html.div(
                                    {
                                        "key": str(milestone["id"]),
                                        "class": f"timeline-milestone {'done' if milestone['complete'] else ''}",
                                        "title": milestone["name"],
                                        "style": {"left": f"{milestone['left']}%"},
                                    }
                                )
                                for milestone in row["milestones"]
                            ],
                        ),
                    )
                    for row in timeline["rows"]
                ],
            ),
        )

    names = data["project_names"]

    if data.get("error"):
        return html.div(
            {"id": "tracker-root"},
            html.style(TRACKER_CSS),
            html.main(
                {"class": "page"},
                html.section(
                    {"class": "card"},
                    html.h1("Dashboard unavailable"),
                    html.div({"class": "meta"}, "Project data could not be loaded. Check TRACKER_API_URL and that the tracker API is running."),
                    html.pre({"class": "meta", "style": {"whiteSpace": "pre-wrap"}}, data.get("error") or "Unknown error"),
                    html.div(
                        {"class": "form-actions"},
                        html.button({"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": lambda e: refresh()}, "Retry"),
                    ),
                ),
            ),
        )

    return html.div(
        {"id": "tracker-root"},
        html.style(TRACKER_CSS),
        html.header(
            {"class": "navbar"},
            html.div(
                html.div({"class": "nav-title"}, "Project tracker"),
                html.div({"class": "meta"}, f"Last updated {data['updated']}"),
            ),
            html.div(
                {"class": "nav-actions"},
                *[html.span({"class": f"pill {item['class']}", "key": item["status"]}, f"{item['status']}: {item['count']}") for item in data["summary"]],
                *([html.span({"class": "pill pill-warning"}, "Syncing...")] if is_busy else []),
                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda e: refresh()}, "Refresh"),
            ),
        ),
        html.main(
            {"class": "page"},
            *([html.div({"class": "notice"}, notice)] if notice and not modal.get("open") else []),
            render_table(
                "projects",
                "Projects",
                "Progress blends duration-weighted task progress with deliverable completion.",
                ["Name", "Progress", "Expected", "Status", "Owner", "Ends"],
                data["projects"],
                lambda row: [
                    row.get("name") or "",
                    progress_bar(row["percent_value"]),
                    f"{clamp_percent(row['expected_progress'])}%",
                    html.span({"class": f"pill {row['status_class']}"}, row["status"]),
                    row.get("owner") or "",
                    row.get("end_date") or "",
                ],
            ),
            render_timeline(),
            render_table(
                "tasks",
                "Tasks",
                "Work items and their completion.",
                ["Task", "Project", "Progress", "Start", "End"],
                data["tasks"],
                lambda row: [
                    row.get("name") or "",
                    names.get(row.get("project_id"), "Unassigned"),
                    progress_bar(clamp_percent(row.get("progress"))),
                    row.get("start_date") or "",
                    row.get("end_date") or "",
                ],
            ),
            render_table(
                "deliverables",
                "Deliverables",
                "Milestones counted as complete or not.",
                ["Deliverable", "Project", "State", "Owner", "Due"],
                data["deliverables"],
                lambda row: [
                    row.get("name") or "",
                    names.get(row.get("project_id"), "Unassigned"),
                    html.span(
                        {"class": f"pill {'pill-success' if row.get('complete') == 1 else 'pill-muted'}"},
                        "Complete" if row.get("complete") == 1 else "Incomplete",
                    ),
                    row.get("owner") or "",
                    row.get("end_date") or "",
                ],
            ),
            render_table(
                "risks",
                "Risks",
                "Sorted by pre-mitigation score.",
                ["Risk", "Score", "Residual", "Preparedness", "Projects", "Raised"],
                data["risks"],
                lambda row: [
                    row.get("name") or "",
                    html.span({"class": "pill pill-danger"}, str(row.get("pre_score") or 0)),
                    str(row.get("post_score") or 0),
                    str(row.get("preparedness") or ""),
                    row["linked_label"],
                    row.get("date") or "",
                ],
            ),
        ),
        render_modal(),
    )


configure(
    app,
    App,
    Options(
        head=(
            {"tagName": "title", "children": ["Project Tracker"]},
            {
                "tagName": "meta",
                "attributes": {"name": "viewport", "content": "width=device-width, initial-scale=1"},
            },
        )
    ),
)


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5001")),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
