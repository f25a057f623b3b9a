from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, Tuple

import requests

from tracker_settings import api_base_url, api_timeout_seconds

logger = logging.getLogger(__name__)

RESOURCE_KEYS: Dict[str, Tuple[str, ...]] = {
    "projects": ("project_id",),
    "tasks": ("task_id",),
    "risks": ("risk_id",),
    "resources": ("resource_id",),
    "deliverables": ("deliverable_id",),
    "teams": ("team_id",),
    "assignments": ("task_id", "resource_id"),
    "deliverabledependencies": ("source_id", "target_id"),
    "deliverabletasks": ("deliverable_id", "task_id"),
    "taskdependencies": ("source_id", "target_id"),
    "taskrisks": ("task_id", "risk_id"),
    "projectrisks": ("project_id", "risk_id"),
}

DASHBOARD_RESOURCES = ("projects", "tasks", "deliverables", "risks", "taskrisks", "projectrisks")


class TrackerApiError(RuntimeError):
    def __init__(self, message: str, status: int, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


def api_json_request(method: str, path: str, payload: Dict[str, Any] | None = None) -> Tuple[Any, int]:
    url = f"{api_base_url()}/{path.lstrip('/')}"
    try:
        response = requests.request(method, url, json=payload, timeout=api_timeout_seconds())
    except requests.RequestException:
        logger.exception("Tracker API request failed: %s %s", method, url)
        return {"error": "Tracker API is unavailable"}, 502

    try:
        body: Any = response.json()
    except ValueError:
        body = {"raw": response.text}

    return body, response.status_code


def checked_request(method: str, path: str, payload: Dict[str, Any] | None = None) -> Any:
    body, status = api_json_request(method, path, payload)
    if status >= 400:
        message = body.get("error") if isinstance(body, dict) else None
        raise TrackerApiError(message or f"Tracker API returned {status}", status, body)
    return body


def item_path(resource: str, key_values: Sequence[Any]) -> str:
    return "/".join([resource, *(str(value) for value in key_values)])


def with_id(resource: str, row: Dict[str, Any]) -> Dict[str, Any]:
    keys = RESOURCE_KEYS.get(resource)
    if not keys:
        return dict(row)
    if len(keys) == 1:
        return {**row, "id": row.get(keys[0])}
    return {**row, "id": "-".join(str(row.get(key)) for key in keys)}


def list_entities(resource: str) -> List[Dict[str, Any]]:
    rows = checked_request("GET", resource)
    return [with_id(resource, row) for row in rows or []]


def get_entity(resource: str, *key_values: Any) -> Dict[str, Any]:
    return with_id(resource, checked_request("GET", item_path(resource, key_values)))


def create_entity(resource: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return checked_request("POST", resource, data)


def update_entity(resource: str, key_values: Sequence[Any], data: Dict[str, Any]) -> Dict[str, Any]:
    return checked_request("PUT", item_path(resource, key_values), data)


def delete_entity(resource: str, *key_values: Any) -> bool:
    checked_request("DELETE", item_path(resource, key_values))
    return True


def get_project_metrics(project_id: int) -> Dict[str, Any]:
    return checked_request("GET", f"projects/{project_id}/metrics")


def load_tracker_data() -> Dict[str, List[Dict[str, Any]]]:
    """Fetch every collection the dashboard shows.

    A collection that fails to load comes back empty so one broken table does
    not blank the whole page. If none of them load the last error is raised.
    """
    data: Dict[str, List[Dict[str, Any]]] = {}
    last_error: TrackerApiError | None = None
    failures = 0
    for resource in DASHBOARD_RESOURCES:
        try:
            data[resource] = list_entities(resource)
        except TrackerApiError as exc:
            logger.warning("Could not load %s: %s", resource, exc)
            data[resource] = []
            failures += 1
            last_error = exc
    if last_error is not None and failures == len(DASHBOARD_RESOURCES):
        raise last_error
    return data
