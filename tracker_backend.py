from __future__ import annotations

import os
import re
from typing import Any, Dict, List

import psycopg2
from flask import Flask, jsonify, request

import tracker_db
from project_metrics import project_metrics
from tracker_settings import configure_logging, cors_allowed_origins

configure_logging()

app = Flask(__name__)
app.teardown_appcontext(tracker_db.close_db)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CORS_ALLOWED_ORIGINS = cors_allowed_origins()


def is_valid_iso_date(value: Any) -> bool:
    return isinstance(value, str) and bool(ISO_DATE_RE.match(value))


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_payload(entity: str, payload: Dict[str, Any]) -> str | None:
    for field in tracker_db.ENTITY_DEFS[entity]["fields"]:
        name = field["name"]
        value = payload.get(name)
        field_type = field["type"]
        if field_type == tracker_db.TEXT_FIELD and not isinstance(value, str):
            return f"Invalid or missing {name}"
        if field_type == tracker_db.DATE_FIELD and not is_valid_iso_date(value):
            return f"Invalid or missing {name}"
        if field_type == tracker_db.NUMBER_FIELD:
            if not is_number(value):
                return f"Invalid or missing {name}"
            if "min" in field and "max" in field and not field["min"] <= value <= field["max"]:
                return f"{name.capitalize()} must be between {field['min']} and {field['max']}"
        if field_type == tracker_db.OPTIONAL_TEXT_FIELD and value is not None and not isinstance(value, str):
            return f"Invalid {name}"
    return None


def sanitize_payload(entity: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {name: payload.get(name) for name in tracker_db.field_names(entity)}


def json_error(message: str, status: int):
    return jsonify({"error": message}), status


def resource_or_none(entity: str) -> Dict[str, Any] | None:
    return tracker_db.entity_def(entity)


def read_json_object() -> Dict[str, Any] | None:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return None
    return payload


def cors_origin_for_request() -> str | None:
    origin = request.headers.get("Origin")
    if not origin:
        return None
    if "*" in CORS_ALLOWED_ORIGINS:
        return "*"
    if origin in CORS_ALLOWED_ORIGINS:
        return origin
    return None


@app.before_request
def api_cors_preflight():
    if request.method == "OPTIONS" and request.path.startswith("/api/"):
        return "", 204


@app.after_request
def add_api_cors_headers(response):
    if not request.path.startswith("/api/"):
        return response

    origin = cors_origin_for_request()
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        if origin != "*":
            response.headers["Vary"] = "Origin"

    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["Access-Control-Max-Age"] = "600"
    return response


@app.errorhandler(404)
def not_found(error):
    return json_error("Not found", 404)


@app.errorhandler(405)
def method_not_allowed(error):
    return json_error("Method not allowed", 405)


@app.route("/api/db-health")
def api_db_health():
    try:
        row = tracker_db.fetch_one("SELECT 1 AS ok")
    except psycopg2.Error:
        app.logger.exception("Database health check failed")
        return jsonify({"ok": False}), 503
    return jsonify({"ok": bool(row and row.get("ok") == 1)})


@app.route("/api/projects/<int:project_id>/metrics")
def api_project_metrics(project_id: int):
    try:
        project, tasks, deliverables = tracker_db.fetch_project_snapshot(project_id)
    except psycopg2.Error:
        app.logger.exception("Failed to load project %s", project_id)
        return json_error("Error retrieving project metrics", 500)
    if project is None:
        return json_error("Project not found", 404)
    return jsonify({"project_id": project_id, **project_metrics(tasks, deliverables)})


@app.route("/api/<entity>", methods=["GET", "POST"])
def api_entity_collection(entity: str):
    definition = resource_or_none(entity)
    if definition is None:
        return json_error(f"Unknown resource '{entity}'", 404)

    if request.method == "GET":
        try:
            rows = tracker_db.list_rows(entity)
        except psycopg2.Error:
            app.logger.exception("Failed to list %s", entity)
            return json_error(f"Error retrieving {entity}", 500)
        return jsonify(rows)

    payload = read_json_object()
    if payload is None:
        return json_error("Expected a JSON object body", 400)
    validation_error = validate_payload(entity, payload)
    if validation_error:
        return json_error(validation_error, 400)

    try:
        new_id = tracker_db.insert_row(entity, sanitize_payload(entity, payload))
    except psycopg2.Error as exc:
        app.logger.warning("Insert into %s rejected: %s", entity, exc)
        return json_error(str(exc).strip(), 400)

    body: Dict[str, Any] = {"message": f"{definition['label']} created successfully"}
    if new_id is not None:
        body["id"] = new_id
    return jsonify(body), 201


def handle_item(entity: str, key_values: List[int]):
    definition = resource_or_none(entity)
    if definition is None:
        return json_error(f"Unknown resource '{entity}'", 404)
    if len(definition["key"]) != len(key_values):
        return json_error(f"{definition['label']} is addressed by {'/'.join(definition['key'])}", 404)
    label = definition["label"]

    if request.method == "GET":
        try:
            row = tracker_db.get_row(entity, key_values)
        except psycopg2.Error:
            app.logger.exception("Failed to read %s %s", entity, key_values)
            return json_error(f"Error retrieving {label.lower()}", 500)
        if row is None:
            return json_error(f"{label} not found", 404)
        return jsonify(row)

    if request.method == "DELETE":
        try:
            if entity == "projects":
                deleted = tracker_db.delete_project(key_values[0])
            else:
                deleted = tracker_db.delete_row(entity, key_values)
        except psycopg2.Error:
            app.logger.exception("Failed to delete %s %s", entity, key_values)
            return json_error(f"Error deleting {label.lower()}", 500)
        if not deleted:
            return json_error(f"{label} not found", 404)
        return jsonify({"message": f"{label} deleted successfully"})

    payload = read_json_object()
    if payload is None:
        return json_error("Expected a JSON object body", 400)
    validation_error = validate_payload(entity, payload)
    if validation_error:
        return json_error(validation_error, 400)

    try:
        updated = tracker_db.update_row(entity, key_values, sanitize_payload(entity, payload))
    except psycopg2.Error as exc:
        app.logger.warning("Update of %s %s rejected: %s", entity, key_values, exc)
        return json_error(str(exc).strip(), 400)
    if not updated:
        return json_error(f"{label} not found", 404)
    return jsonify({"message": f"{label} updated successfully"})


@app.route("/api/<entity>/<int:item_id>", methods=["GET", "PUT", "DELETE"])
def api_entity_item(entity: str, item_id: int):
    return handle_item(entity, [item_id])


@app.route("/api/<entity>/<int:first_id>/<int:second_id>", methods=["GET", "PUT", "DELETE"])
def api_junction_item(entity: str, first_id: int, second_id: int):
    return handle_item(entity, [first_id, second_id])


tracker_db.maybe_init_db_on_startup()


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8888")),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
