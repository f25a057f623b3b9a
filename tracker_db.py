from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Sequence, Tuple

from flask import g
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from tracker_settings import env_flag, required_env

logger = logging.getLogger(__name__)

DATABASE_URL = required_env("DATABASE_URL")

DB_POOL: pool.ThreadedConnectionPool | None = None

TEXT_FIELD = "text"
DATE_FIELD = "date"
NUMBER_FIELD = "number"
OPTIONAL_TEXT_FIELD = "optional_text"

ENTITY_DEFS: Dict[str, Dict[str, Any]] = {
    "projects": {
        "label": "Project",
        "table": "projects",
        "key": ["project_id"],
        "fields": [
            {"name": "name", "type": TEXT_FIELD},
            {"name": "start_date", "type": DATE_FIELD},
            {"name": "end_date", "type": DATE_FIELD},
            {"name": "owner", "type": TEXT_FIELD},
            {"name": "description", "type": OPTIONAL_TEXT_FIELD},
        ],
    },
    "tasks": {
        "label": "Task",
        "table": "tasks",
        "key": ["task_id"],
        "fields": [
            {"name": "name", "type": TEXT_FIELD},
            {"name": "start_date", "type": DATE_FIELD},
            {"name": "end_date", "type": DATE_FIELD},
            {"name": "duration", "type": NUMBER_FIELD},
            {"name": "progress", "type": NUMBER_FIELD, "min": 0, "max": 100},
            {"name": "project_id", "type": NUMBER_FIELD},
            {"name": "description", "type": OPTIONAL_TEXT_FIELD},
        ],
    },
    "risks": {
        "label": "Risk",
        "table": "risks",
        "key": ["risk_id"],
        "fields": [
            {"name": "name", "type": TEXT_FIELD},
            {"name": "pre_impact", "type": NUMBER_FIELD},
            {"name": "post_impact", "type": NUMBER_FIELD},
            {"name": "pre_likelihood", "type": NUMBER_FIELD},
            {"name": "post_likelihood", "type": NUMBER_FIELD},
            {"name": "pre_score", "type": NUMBER_FIELD},
            {"name": "post_score", "type": NUMBER_FIELD},
            {"name": "preparedness", "type": NUMBER_FIELD},
            {"name": "date", "type": DATE_FIELD},
            {"name": "description", "type": OPTIONAL_TEXT_FIELD},
        ],
    },
    "resources": {
        "label": "Resource",
        "table": "resources",
        "key": ["resource_id"],
        "fields": [
            {"name": "name", "type": TEXT_FIELD},
            {"name": "capacity", "type": NUMBER_FIELD},
            {"name": "role", "type": TEXT_FIELD},
            {"name": "team_id", "type": NUMBER_FIELD},
            {"name": "description", "type": OPTIONAL_TEXT_FIELD},
        ],
    },
    "deliverables": {
        "label": "Deliverable",
        "table": "deliverables",
        "key": ["deliverable_id"],
        "fields": [
            {"name": "name", "type": TEXT_FIELD},
            {"name": "start_date", "type": DATE_FIELD},
            {"name": "end_date", "type": DATE_FIELD},
            {"name": "complete", "type": NUMBER_FIELD},
            {"name": "owner", "type": TEXT_FIELD},
            {"name": "project_id", "type": NUMBER_FIELD},
            {"name": "description", "type": OPTIONAL_TEXT_FIELD},
        ],
    },
    "teams": {
        "label": "Team",
        "table": "teams",
        "key": ["team_id"],
        "fields": [
            {"name": "name", "type": TEXT_FIELD},
            {"name": "description", "type": OPTIONAL_TEXT_FIELD},
        ],
    },
    "assignments": {
        "label": "Assignment",
        "table": "assignments",
        "key": ["task_id", "resource_id"],
        "fields": [
            {"name": "task_id", "type": NUMBER_FIELD},
            {"name": "resource_id", "type": NUMBER_FIELD},
        ],
    },
    "deliverabledependencies": {
        "label": "Deliverable dependency",
        "table": "deliverable_dependencies",
        "key": ["source_id", "target_id"],
        "fields": [
            {"name": "source_id", "type": NUMBER_FIELD},
            {"name": "target_id", "type": NUMBER_FIELD},
            {"name": "dependency_type", "type": TEXT_FIELD},
            {"name": "lag", "type": NUMBER_FIELD},
        ],
    },
    "deliverabletasks": {
        "label": "Deliverable task",
        "table": "deliverable_tasks",
        "key": ["deliverable_id", "task_id"],
        "fields": [
            {"name": "deliverable_id", "type": NUMBER_FIELD},
            {"name": "task_id", "type": NUMBER_FIELD},
        ],
    },
    "taskdependencies": {
        "label": "Task dependency",
        "table": "task_dependencies",
        "key": ["source_id", "target_id"],
        "fields": [
            {"name": "source_id", "type": NUMBER_FIELD},
            {"name": "target_id", "type": NUMBER_FIELD},
            {"name": "dependency_type", "type": TEXT_FIELD},
            {"name": "lag", "type": NUMBER_FIELD},
        ],
    },
    "taskrisks": {
        "label": "Task risk",
        "table": "task_risks",
        "key": ["task_id", "risk_id"],
        "fields": [
            {"name": "task_id", "type": NUMBER_FIELD},
            {"name": "risk_id", "type": NUMBER_FIELD},
        ],
    },
    "projectrisks": {
        "label": "Project risk",
        "table": "project_risks",
        "key": ["project_id", "risk_id"],
        "fields": [
            {"name": "project_id", "type": NUMBER_FIELD},
            {"name": "risk_id", "type": NUMBER_FIELD},
        ],
    },
}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS projects (
        project_id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        start_date TEXT,
        end_date TEXT,
        owner TEXT,
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        task_id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        start_date TEXT,
        end_date TEXT,
        duration REAL,
        progress REAL CHECK (progress >= 0 AND progress <= 100),
        project_id BIGINT REFERENCES projects (project_id),
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS risks (
        risk_id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        pre_impact REAL,
        post_impact REAL,
        pre_likelihood REAL,
        post_likelihood REAL,
        pre_score REAL,
        post_score REAL,
        preparedness REAL,
        date TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS teams (
        team_id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resources (
        resource_id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        capacity REAL,
        role TEXT,
        team_id BIGINT REFERENCES teams (team_id) ON DELETE SET NULL,
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deliverables (
        deliverable_id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        start_date TEXT,
        end_date TEXT,
        complete INTEGER DEFAULT 0,
        owner TEXT,
        project_id BIGINT REFERENCES projects (project_id),
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assignments (
        task_id BIGINT REFERENCES tasks (task_id) ON DELETE CASCADE,
        resource_id BIGINT REFERENCES resources (resource_id) ON DELETE CASCADE,
        PRIMARY KEY (task_id, resource_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deliverable_dependencies (
        source_id BIGINT REFERENCES deliverables (deliverable_id) ON DELETE CASCADE,
        target_id BIGINT REFERENCES deliverables (deliverable_id) ON DELETE CASCADE,
        dependency_type TEXT,
        lag REAL,
        PRIMARY KEY (source_id, target_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deliverable_tasks (
        deliverable_id BIGINT REFERENCES deliverables (deliverable_id) ON DELETE CASCADE,
        task_id BIGINT REFERENCES tasks (task_id) ON DELETE CASCADE,
        PRIMARY KEY (deliverable_id, task_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_dependencies (
        source_id BIGINT REFERENCES tasks (task_id) ON DELETE CASCADE,
        target_id BIGINT REFERENCES tasks (task_id) ON DELETE CASCADE,
        dependency_type TEXT,
        lag REAL,
        PRIMARY KEY (source_id, target_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_risks (
        task_id BIGINT REFERENCES tasks (task_id) ON DELETE CASCADE,
        risk_id BIGINT REFERENCES risks (risk_id) ON DELETE CASCADE,
        PRIMARY KEY (task_id, risk_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_risks (
        project_id BIGINT REFERENCES projects (project_id) ON DELETE CASCADE,
        risk_id BIGINT REFERENCES risks (risk_id) ON DELETE CASCADE,
        PRIMARY KEY (project_id, risk_id)
    )
    """,
]


def get_db_pool() -> pool.ThreadedConnectionPool:
    global DB_POOL
    if DB_POOL is None:
        DB_POOL = pool.ThreadedConnectionPool(minconn=1, maxconn=10, dsn=DATABASE_URL)
    return DB_POOL


def get_db():
    if "db" not in g:
        g.db = get_db_pool().getconn()
    return g.db


def close_db(exc: Exception | None) -> None:
    db = g.pop("db", None)
    if db is not None:
        try:
            db.rollback()
        except Exception:
            logger.exception("Rollback failed while returning connection to the pool")
        get_db_pool().putconn(db)


def init_db(db) -> None:
    with db.cursor() as cursor:
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)
    db.commit()


def maybe_init_db_on_startup() -> None:
    """Create missing tables when ``RUN_DB_INIT=1``.

    Schema changes never run on the request path. Set the flag, restart once,
    then clear it again.
    """
    if not env_flag("RUN_DB_INIT"):
        return

    db = get_db_pool().getconn()
    try:
        init_db(db)
        logger.info("Database schema initialised")
    finally:
        try:
            db.rollback()
        finally:
            get_db_pool().putconn(db)


@contextmanager
def transaction() -> Iterator[Any]:
    db = get_db()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def fetch_one(query: str, params: Sequence[Any] | None = None) -> Dict[str, Any] | None:
    with get_db().cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(query, params)
        row = cursor.fetchone()
        return dict(row) if row is not None else None


def fetch_all_rows(query: str, params: Sequence[Any] | None = None) -> List[Dict[str, Any]]:
    with get_db().cursor(cursor_factory=RealDictCursor) as cursor:
        cursor.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]


def execute_sql(query: str, params: Sequence[Any] | None = None) -> int:
    with get_db().cursor() as cursor:
        cursor.execute(query, params)
        return cursor.rowcount


def entity_def(entity: str) -> Dict[str, Any] | None:
    return ENTITY_DEFS.get(entity)


def is_junction(entity: str) -> bool:
    return len(ENTITY_DEFS[entity]["key"]) > 1


def field_names(entity: str) -> List[str]:
    return [field["name"] for field in ENTITY_DEFS[entity]["fields"]]


def key_clause(entity: str, key_values: Sequence[Any]) -> Tuple[str, List[Any]]:
    key_columns = ENTITY_DEFS[entity]["key"]
    if len(key_values) != len(key_columns):
        raise ValueError(f"{entity} is keyed by {', '.join(key_columns)}")
    clause = " AND ".join(f"{column} = %s" for column in key_columns)
    return clause, list(key_values)


def list_rows(entity: str) -> List[Dict[str, Any]]:
    definition = ENTITY_DEFS[entity]
    order_by = ", ".join(definition["key"])
    return fetch_all_rows(f"SELECT * FROM {definition['table']} ORDER BY {order_by}")


def get_row(entity: str, key_values: Sequence[Any]) -> Dict[str, Any] | None:
    clause, params = key_clause(entity, key_values)
    return fetch_one(f"SELECT * FROM {ENTITY_DEFS[entity]['table']} WHERE {clause}", params)


def insert_row(entity: str, data: Dict[str, Any]) -> Any:
    definition = ENTITY_DEFS[entity]
    columns = [name for name in field_names(entity) if name in data]
    placeholders = ", ".join("%s" for _ in columns)
    query = f"INSERT INTO {definition['table']} ({', '.join(columns)}) VALUES ({placeholders})"
    params = [data[name] for name in columns]

    with transaction():
        if is_junction(entity):
            execute_sql(query, params)
            return None
        key_column = definition["key"][0]
        row = fetch_one(f"{query} RETURNING {key_column}", params)
    return row[key_column] if row else None


def update_row(entity: str, key_values: Sequence[Any], data: Dict[str, Any]) -> int:
    definition = ENTITY_DEFS[entity]
    columns = [name for name in field_names(entity) if name in data]
    if not columns:
        return 0
    assignments = ", ".join(f"{name} = %s" for name in columns)
    clause, key_params = key_clause(entity, key_values)
    with transaction():
        return execute_sql(
            f"UPDATE {definition['table']} SET {assignments} WHERE {clause}",
            [data[name] for name in columns] + key_params,
        )


def delete_row(entity: str, key_values: Sequence[Any]) -> int:
    clause, params = key_clause(entity, key_values)
    with transaction():
        return execute_sql(f"DELETE FROM {ENTITY_DEFS[entity]['table']} WHERE {clause}", params)


def delete_project(project_id: int) -> int:
    with transaction():
        unlinked_tasks = execute_sql("UPDATE tasks SET project_id = NULL WHERE project_id = %s", (project_id,))
        unlinked_deliverables = execute_sql(
            "UPDATE deliverables SET project_id = NULL WHERE project_id = %s", (project_id,)
        )
        deleted = execute_sql("DELETE FROM projects WHERE project_id = %s", (project_id,))
    logger.info(
        "Deleted project %s (unlinked %s tasks, %s deliverables)",
        project_id,
        unlinked_tasks,
        unlinked_deliverables,
    )
    return deleted


def fetch_project_snapshot(project_id: int) -> Tuple[Dict[str, Any] | None, List[Dict[str, Any]], List[Dict[str, Any]]]:
    project = get_row("projects", [project_id])
    if project is None:
        return None, [], []
    tasks = fetch_all_rows("SELECT * FROM tasks WHERE project_id = %s ORDER BY task_id", (project_id,))
    deliverables = fetch_all_rows(
        "SELECT * FROM deliverables WHERE project_id = %s ORDER BY deliverable_id", (project_id,)
    )
    return project, tasks, deliverables
