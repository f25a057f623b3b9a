"""
Tests for the dashboard's data shaping and form handling.
The reactpy component itself is not rendered here.
"""

from datetime import date, datetime, timezone

import pytest

import tracker_client
import website
from tracker_client import TrackerApiError

NOW = datetime(2024, 1, 6, tzinfo=timezone.utc)

PROJECTS = [
    {"project_id": 1, "id": 1, "name": "Apollo", "owner": "Sam", "start_date": "2024-01-01", "end_date": "2024-01-24"},
    {"project_id": 2, "id": 2, "name": "Gemini", "owner": "Ria", "start_date": "2024-01-10", "end_date": "2024-01-20"},
]
TASKS = [
    {"task_id": 10, "id": 10, "project_id": 1, "start_date": "2024-01-01", "end_date": "2024-01-11", "duration": 10, "progress": 40},
    {"task_id": 11, "id": 11, "project_id": 2, "start_date": "2024-01-10", "end_date": "2024-01-20", "duration": 10, "progress": 0},
]
DELIVERABLES = [
    {"deliverable_id": 20, "id": 20, "project_id": 1, "name": "Spec", "end_date": "2024-01-16", "complete": 1},
]


def test_build_payload_for_task_derives_duration_and_rounds_progress():
    payload = website.build_payload(
        "tasks",
        {"name": " Build ", "project_id": "1", "start_date": "2024-01-01", "end_date": "2024-01-11", "progress": "45.5"},
    )

    assert payload["name"] == "Build"
    assert payload["duration"] == 10
    assert payload["progress"] == 46
    assert payload["project_id"] == 1


@pytest.mark.parametrize(
    "start, end, expected",
    [("2024-01-11", "2024-01-01", 0), ("", "2024-01-01", 0), ("2024-01-01", "2024-01-01", 0), ("2024-01-01", "2024-01-02", 1)],
)
def test_task_duration_never_negative(start, end, expected):
    assert website.duration_between(start, end) == expected


def test_task_progress_is_bounded():
    assert website.build_payload("tasks", {"progress": "150"})["progress"] == 100
    assert website.build_payload("tasks", {"progress": "abc"})["progress"] == 0
    assert website.build_payload("tasks", {})["project_id"] is None


def test_build_payload_for_new_risk():
    payload = website.build_payload("risks", {"name": "Vendor slip", "impact": "3", "likelihood": "4", "date": ""})

    assert payload["pre_score"] == 12
    assert payload["post_impact"] == 3
    assert payload["post_likelihood"] == 4
    assert payload["post_score"] == 0
    assert payload["preparedness"] == 1
    assert payload["date"] == date.today().isoformat()


def test_editing_a_risk_keeps_residual_values():
    existing = {"post_impact": 1, "post_likelihood": 2, "post_score": 2}
    payload = website.build_payload("risks", {"impact": "5", "likelihood": "5", "preparedness": "3"}, existing=existing)

    assert payload["pre_score"] == 25
    assert payload["post_impact"] == 1
    assert payload["post_likelihood"] == 2
    assert payload["post_score"] == 2
    assert payload["preparedness"] == 3


def test_deliverable_complete_flag():
    assert website.build_payload("deliverables", {"complete": "1"})["complete"] == 1
    assert website.build_payload("deliverables", {"complete": "0"})["complete"] == 0
    assert website.build_payload("deliverables", {})["complete"] == 0


def test_build_payload_rejects_unknown_form():
    with pytest.raises(ValueError):
        website.build_payload("teams", {})


def test_form_values_round_trip_from_item():
    risk = {"name": "Vendor slip", "pre_impact": 3.0, "pre_likelihood": 4.0, "preparedness": 2.0, "date": "2024-01-02"}
    values = website.values_from_item("risks", risk)

    assert values["impact"] == "3"
    assert values["likelihood"] == "4"
    assert values["preparedness"] == "2"
    assert values["description"] == ""


def test_default_values_for_forms():
    assert website.default_values_for("tasks")["progress"] == "0"
    assert website.default_values_for("deliverables")["complete"] == "0"
    risk_defaults = website.default_values_for("risks")
    assert risk_defaults["impact"] == "1"
    assert risk_defaults["date"] == date.today().isoformat()


@pytest.mark.parametrize(
    "status, css",
    [
        ("Ahead", "pill-success"),
        ("On track", "pill-info"),
        ("Behind", "pill-warning"),
        ("Not started", "pill-muted"),
        ("No data", "pill-muted"),
    ],
)
def test_status_class(status, css):
    assert website.status_class(status) == css


@pytest.mark.parametrize("value, expected", [(150, 100), (-3, 0), (42.7, 42), (float("nan"), 0), (None, 0)])
def test_clamp_percent(value, expected):
    assert website.clamp_percent(value) == expected


def test_build_project_rows_attaches_metrics():
    rows = website.build_project_rows(PROJECTS, TASKS, DELIVERABLES, now=NOW)

    apollo, gemini = rows
    # tasks 40 actual vs 50 expected, deliverable complete on both sides
    assert apollo["progress"] == 70
    assert apollo["expected_progress"] == 75
    assert apollo["status"] == "On track"
    assert apollo["status_class"] == "pill-info"
    assert apollo["task_count"] == 1
    assert apollo["deliverable_count"] == 1
    assert gemini["status"] == "Not started"


def test_status_summary_counts_each_status():
    rows = website.build_project_rows(PROJECTS, TASKS, DELIVERABLES, now=NOW)
    summary = website.status_summary(rows)

    assert {item["status"]: item["count"] for item in summary} == {"Not started": 1, "On track": 1}


def test_build_timeline_axis_and_positions():
    timeline = website.build_timeline(PROJECTS, DELIVERABLES, today=date(2024, 1, 1))

    # latest end 2024-01-24 plus a week of padding
    assert timeline["total_days"] == 30
    assert len(timeline["markers"]) == 8
    assert timeline["markers"][0]["label"] == "Jan 01"
    assert timeline["markers"][-1]["label"] == "Jan 31"

    apollo = timeline["rows"][0]
    assert apollo["left"] == 0
    assert apollo["width"] == pytest.approx(23 / 30 * 100)
    assert apollo["milestones"][0]["left"] == pytest.approx(50)
    assert apollo["milestones"][0]["complete"] is True


def test_build_timeline_limits_projects():
    projects = [dict(PROJECTS[0], project_id=index, id=index) for index in range(5)]
    assert len(website.build_timeline(projects, [], today=date(2024, 1, 1))["rows"]) == 3


def test_build_timeline_without_projects():
    timeline = website.build_timeline([], [], today=date(2024, 1, 1))
    assert timeline["total_days"] == 7
    assert timeline["rows"] == []


def test_position_percentage_is_clamped():
    start = 19723.0  # 2024-01-01
    assert website.position_percentage("2023-12-01", start, 30) == 0
    assert website.position_percentage("2024-06-01", start, 30) == 100
    assert website.position_percentage(None, start, 30) == 0
    assert website.position_percentage("2024-01-16", start, 0) == 0


def test_linked_projects_combines_direct_and_task_links():
    linked = website.linked_projects(
        7,
        project_risks=[{"project_id": 1, "risk_id": 7}],
        task_risks=[{"task_id": 10, "risk_id": 7}, {"task_id": 11, "risk_id": 7}, {"task_id": 11, "risk_id": 8}],
        tasks=TASKS,
        projects=PROJECTS,
    )
    assert [project["name"] for project in linked] == ["Apollo", "Gemini"]


@pytest.mark.parametrize(
    "names, label",
    [([], "None"), (["Apollo"], "Apollo"), (["Apollo", "Gemini", "Mercury"], "Apollo + 2")],
)
def test_linked_projects_label(names, label):
    assert website.linked_projects_label([{"name": name} for name in names]) == label


def test_build_risk_rows_sorted_by_score():
    data = {
        "risks": [{"risk_id": 1, "name": "Low", "pre_score": 2}, {"risk_id": 2, "name": "High", "pre_score": 20}],
        "projectrisks": [{"project_id": 1, "risk_id": 2}],
        "taskrisks": [],
        "tasks": TASKS,
        "projects": PROJECTS,
    }

    rows = website.build_risk_rows(data)

    assert [row["name"] for row in rows] == ["High", "Low"]
    assert rows[0]["linked_label"] == "Apollo"
    assert rows[1]["linked_label"] == "None"


def test_load_dashboard_data_safe_reports_errors(monkeypatch):
    def failing_load():
        raise TrackerApiError("Tracker API is unavailable", 502)

    monkeypatch.setattr(tracker_client, "load_tracker_data", failing_load)

    data = website.load_dashboard_data_safe()

    assert data["error"] == "Tracker API is unavailable"
    assert data["projects"] == []


def test_load_dashboard_data_shapes_collections(monkeypatch):
    raw = {
        "projects": PROJECTS,
        "tasks": TASKS,
        "deliverables": DELIVERABLES,
        "risks": [],
        "taskrisks": [],
        "projectrisks": [],
    }
    monkeypatch.setattr(tracker_client, "load_tracker_data", lambda: raw)

    data = website.load_dashboard_data_safe()

    assert data["error"] == ""
    assert [row["name"] for row in data["projects"]] == ["Apollo", "Gemini"]
    assert data["project_names"] == {1: "Apollo", 2: "Gemini"}


@pytest.fixture
def fake_api(monkeypatch):
    calls = []

    def fake_create(resource, payload):
        calls.append(("POST", resource, payload))
        return {"message": "ok", "id": 9} if resource == "risks" else {"message": "ok"}

    def fake_update(resource, keys, payload):
        calls.append(("PUT", resource, list(keys)))
        return {"message": "ok"}

    def fake_delete(resource, *keys):
        calls.append(("DELETE", resource, list(keys)))
        return True

    monkeypatch.setattr(tracker_client, "create_entity", fake_create)
    monkeypatch.setattr(tracker_client, "update_entity", fake_update)
    monkeypatch.setattr(tracker_client, "delete_entity", fake_delete)
    return calls


def test_save_new_risk_links_selected_tasks_and_projects(fake_api):
    website.save_form(
        "risks",
        "new",
        {"name": "Vendor slip", "impact": "2", "likelihood": "2", "task_ids": [11, 10], "project_ids": ["1"]},
    )

    assert fake_api[0][:2] == ("POST", "risks")
    assert fake_api[1:] == [
        ("POST", "taskrisks", {"task_id": 10, "risk_id": 9}),
        ("POST", "taskrisks", {"task_id": 11, "risk_id": 9}),
        ("POST", "projectrisks", {"project_id": 1, "risk_id": 9}),
    ]


def test_save_new_risk_without_links(fake_api):
    website.save_form("risks", "new", website.default_values_for("risks"))
    assert [call[1] for call in fake_api] == ["risks"]


def test_editing_a_risk_adds_and_removes_link_differences(fake_api):
    raw = {
        "taskrisks": [{"task_id": 10, "risk_id": 7}, {"task_id": 11, "risk_id": 7}, {"task_id": 10, "risk_id": 8}],
        "projectrisks": [{"project_id": 1, "risk_id": 7}],
    }
    values = {"name": "Vendor slip", "impact": "2", "likelihood": "3", "task_ids": [11, 12], "project_ids": [2]}

    website.save_form("risks", "edit", values, item={"id": 7, "risk_id": 7}, raw=raw)

    assert fake_api == [
        ("PUT", "risks", [7]),
        ("POST", "taskrisks", {"task_id": 12, "risk_id": 7}),
        ("DELETE", "taskrisks", [10, 7]),
        ("POST", "projectrisks", {"project_id": 2, "risk_id": 7}),
        ("DELETE", "projectrisks", [1, 7]),
    ]


def test_editing_a_risk_with_unchanged_links_only_updates(fake_api):
    raw = {"taskrisks": [{"task_id": 10, "risk_id": 7}], "projectrisks": []}

    website.save_form("risks", "edit", {"task_ids": "10", "project_ids": []}, item={"id": 7}, raw=raw)

    assert fake_api == [("PUT", "risks", [7])]


def test_risk_form_prefills_current_links():
    raw = {
        "taskrisks": [{"task_id": 11, "risk_id": 7}, {"task_id": 10, "risk_id": 7}, {"task_id": 12, "risk_id": 8}],
        "projectrisks": [{"project_id": 2, "risk_id": 7}],
    }

    values = website.values_from_item("risks", {"id": 7, "risk_id": 7, "name": "Vendor slip"}, raw)

    assert values["task_ids"] == [10, 11]
    assert values["project_ids"] == [2]
    assert website.default_values_for("risks")["task_ids"] == []


@pytest.mark.parametrize("value, expected", [([3, "1", 3], [1, 3]), ("4,2", [2, 4]), ("", []), (None, []), (["x"], [])])
def test_selected_ids(value, expected):
    assert website.selected_ids(value) == expected


def test_save_edit_updates_by_id(monkeypatch):
    updates = []
    monkeypatch.setattr(tracker_client, "update_entity", lambda resource, keys, data: updates.append((resource, keys, data)))

    website.save_form("projects", "edit", {"name": "Apollo 2"}, item={"id": 1, "project_id": 1})

    assert updates[0][0] == "projects"
    assert updates[0][1] == [1]
    assert updates[0][2]["name"] == "Apollo 2"
