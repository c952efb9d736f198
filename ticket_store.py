from __future__ import annotations

import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import psycopg2
from flask import Flask, current_app, g
from psycopg2 import errors, pool
from psycopg2.extras import RealDictCursor

import app_config
from task_views import (
    DEFAULT_CATEGORY_COLOR,
    PRIORITIES,
    ROLES,
    STATUSES,
    USER_TYPES,
    parse_date,
    parse_tags,
    parse_timestamp,
)

DB_POOL: pool.ThreadedConnectionPool | None = None

PROFILE_FIELDS = ["id", "name", "email", "role", "type", "company", "avatar_url"]
PROFILE_UPDATE_FIELDS = ["name", "role", "type", "company"]
TASK_UPDATE_FIELDS = [
    "title",
    "description",
    "status",
    "priority",
    "assignee_id",
    "category_id",
    "due_date",
    "tags",
    "display_order",
    "completed_at",
]
COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")
TICKET_ID_ATTEMPTS = 2


def _profile_columns(alias: str, prefix: str) -> str:
    return ", ".join(f"{alias}.{field} AS {prefix}__{field}" for field in PROFILE_FIELDS)


TASKS_QUERY = f"""
    SELECT t.*,
           {_profile_columns("cr", "creator")},
           {_profile_columns("asg", "assignee")},
           cat.id AS category__id, cat.name AS category__name, cat.color AS category__color
    FROM tasks t
    LEFT JOIN profiles cr ON cr.id = t.creator_id
    LEFT JOIN profiles asg ON asg.id = t.assignee_id
    LEFT JOIN categories cat ON cat.id = t.category_id
"""

COMMENTS_QUERY = f"""
    SELECT cm.*, {_profile_columns("u", "user")}
    FROM comments cm
    LEFT JOIN profiles u ON u.id = cm.user_id
"""


def get_db_pool() -> pool.ThreadedConnectionPool:
    global DB_POOL
    if DB_POOL is None:
        DB_POOL = pool.ThreadedConnectionPool(minconn=1, maxconn=10, dsn=app_config.DATABASE_URL)
    return DB_POOL


def maybe_init_db_on_startup() -> None:
    """Optionally initialize/upgrade schema at process startup.

    Schema changes never run on the request path. To run once, set RUN_DB_INIT=1,
    restart the app, then set RUN_DB_INIT=0 again.
    """
    if os.environ.get("RUN_DB_INIT", "0") != "1":
        return

    db = get_db_pool().getconn()
    try:
        init_db(db)
    finally:
        db.rollback()
        get_db_pool().putconn(db)


def ensure_column(db, table: str, column: str, col_type: str) -> None:
    with db.cursor() as cursor:
        cursor.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {column} {col_type}")


def init_db(db) -> None:
    schema_statements = [
        """
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            role TEXT NOT NULL DEFAULT 'staff' CHECK (role IN ('admin', 'staff', 'client')),
            type TEXT NOT NULL DEFAULT 'internal' CHECK (type IN ('internal', 'client')),
            company TEXT,
            avatar_url TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS categories (
            id BIGSERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#0891b2',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS tasks (
            id BIGSERIAL PRIMARY KEY,
            ticket_id TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'todo',
            priority TEXT NOT NULL DEFAULT 'medium',
            category_id BIGINT REFERENCES categories(id) ON DELETE SET NULL,
            due_date DATE,
            creator_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            assignee_id TEXT REFERENCES profiles(id) ON DELETE SET NULL,
            tags TEXT[] NOT NULL DEFAULT '{}',
            display_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS comments (
            id BIGSERIAL PRIMARY KEY,
            task_id BIGINT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        "CREATE INDEX IF NOT EXISTS tasks_assignee_idx ON tasks (assignee_id)",
        "CREATE INDEX IF NOT EXISTS tasks_creator_idx ON tasks (creator_id)",
        "CREATE INDEX IF NOT EXISTS comments_task_idx ON comments (task_id)",
    ]

    with db.cursor() as cursor:
        for statement in schema_statements:
            cursor.execute(statement)

    ensure_column(db, "profiles", "company", "TEXT")
    ensure_column(db, "profiles", "avatar_url", "TEXT")
    ensure_column(db, "tasks", "tags", "TEXT[] NOT NULL DEFAULT '{}'")
    ensure_column(db, "tasks", "display_order", "INTEGER NOT NULL DEFAULT 0")
    ensure_column(db, "tasks", "completed_at", "TIMESTAMPTZ")

    db.commit()


def get_db():
    if "db" not in g:
        g.db = get_db_pool().getconn()
    return g.db


def close_db(exc: Exception | None) -> None:
    reset_connection()


def reset_connection() -> None:
    """Give the request's connection back to the pool, closing it if rollback fails."""
    db = g.pop("db", None)
    if db is None:
        return
    try:
        db.rollback()
    except psycopg2.Error:
        current_app.logger.exception("Rollback failed while returning connection")
        get_db_pool().putconn(db, close=True)
        return
    get_db_pool().putconn(db)


def init_app(app: Flask) -> None:
    app.teardown_appcontext(close_db)


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


def commit() -> None:
    get_db().commit()


def rollback() -> None:
    get_db().rollback()


def ping() -> bool:
    row = fetch_one("SELECT 1 AS ok")
    return bool(row and row.get("ok") == 1)


# Row shaping


def _nested(row: Dict[str, Any], prefix: str) -> Dict[str, Any] | None:
    marker = f"{prefix}__"
    nested = {key[len(marker):]: row.pop(key) for key in list(row) if key.startswith(marker)}
    if nested.get("id") is None:
        return None
    return nested


def _shape_task(row: Dict[str, Any]) -> Dict[str, Any]:
    task = dict(row)
    task["creator"] = _nested(task, "creator")
    task["assignee"] = _nested(task, "assignee")
    task["category"] = _nested(task, "category")
    task["tags"] = list(task.get("tags") or [])
    task.setdefault("comments", [])
    return task


def _shape_comment(row: Dict[str, Any]) -> Dict[str, Any]:
    comment = dict(row)
    comment["user"] = _nested(comment, "user")
    return comment


# Validation


def _clean_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _optional_text(value: Any) -> str | None:
    text = _clean_text(value)
    return text or None


def _optional_id(value: Any) -> int | None:
    text = _clean_text(value)
    if not text:
        return None
    try:
        return int(text)
    except ValueError as exc:
        raise ValueError(f"Invalid id: {value!r}") from exc


def normalize_choice(value: Any, choices: Sequence[str], field: str, default: str | None = None) -> str:
    text = _clean_text(value).lower().replace(" ", "_").replace("-", "_")
    if not text and default is not None:
        return default
    if text not in choices:
        raise ValueError(f"Invalid {field}: {value!r}")
    return text


def normalize_color(value: Any) -> str:
    text = _clean_text(value) or DEFAULT_CATEGORY_COLOR
    if not COLOR_PATTERN.match(text):
        raise ValueError(f"Invalid color: {value!r}")
    return text.lower()


def normalize_due_date(value: Any):
    if value is None or _clean_text(value) == "":
        return None
    due = parse_date(value)
    if due is None:
        raise ValueError(f"Invalid due date: {value!r}")
    return due


def normalize_completed_at(value: Any):
    if value is None or _clean_text(value) == "":
        return None
    stamp = parse_timestamp(value)
    if stamp is None:
        raise ValueError(f"Invalid completion time: {value!r}")
    return stamp


def next_ticket_id(last_ticket_id: str | None, prefix: str = "GLUG") -> str:
    number = 1
    match = re.search(rf"{re.escape(prefix)}-(\d+)", last_ticket_id or "")
    if match:
        number = int(match.group(1)) + 1
    return f"{prefix}-{number:04d}"


# Profiles


def get_profiles() -> List[Dict[str, Any]]:
    return fetch_all_rows("SELECT * FROM profiles ORDER BY name")


def get_internal_users() -> List[Dict[str, Any]]:
    return [p for p in get_profiles() if p.get("type") == "internal"]


def get_clients() -> List[Dict[str, Any]]:
    return [p for p in get_profiles() if p.get("type") == "client"]


def get_profile(user_id: str) -> Dict[str, Any] | None:
    return fetch_one("SELECT * FROM profiles WHERE id = %s", (user_id,))


def profile_from_auth_user(auth_user: Dict[str, Any]) -> Dict[str, Any]:
    metadata = auth_user.get("user_metadata") or {}
    email = _clean_text(auth_user.get("email"))
    name = _clean_text(metadata.get("name")) or (email.split("@")[0] if email else "") or "User"
    role = metadata.get("role") if metadata.get("role") in ROLES else "staff"
    user_type = metadata.get("type") if metadata.get("type") in USER_TYPES else "internal"
    return {
        "id": auth_user["id"],
        "name": name,
        "email": email,
        "role": role,
        "type": user_type,
        "company": _optional_text(metadata.get("company")),
        "avatar_url": None,
    }


def ensure_profile(auth_user: Dict[str, Any]) -> Dict[str, Any]:
    """Return the profile for an auth identity, creating it on first sign-in."""
    existing = get_profile(auth_user["id"])
    if existing is not None:
        return existing

    profile = profile_from_auth_user(auth_user)
    try:
        execute_sql(
            "INSERT INTO profiles (id, name, email, role, type, company) VALUES (%s, %s, %s, %s, %s, %s) "
            "ON CONFLICT (id) DO NOTHING",
            (profile["id"], profile["name"], profile["email"], profile["role"], profile["type"], profile["company"]),
        )
        commit()
    except psycopg2.Error:
        current_app.logger.exception("Failed to create profile for %s", profile["id"])
        get_db().rollback()
        return profile
    return get_profile(profile["id"]) or profile


def upsert_profile(
    user_id: str,
    name: str,
    email: str,
    user_type: str,
    role: str = "staff",
    company: str | None = None,
) -> None:
    user_type = normalize_choice(user_type, USER_TYPES, "type")
    role = normalize_choice(role, ROLES, "role", default="staff")
    execute_sql(
        "INSERT INTO profiles (id, name, email, role, type, company) VALUES (%s, %s, %s, %s, %s, %s) "
        "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, email = EXCLUDED.email, "
        "role = EXCLUDED.role, type = EXCLUDED.type, company = EXCLUDED.company",
        (user_id, _clean_text(name), _clean_text(email), role, user_type, _optional_text(company)),
    )
    commit()


def update_profile(user_id: str, updates: Dict[str, Any]) -> bool:
    data: Dict[str, Any] = {}
    for key in PROFILE_UPDATE_FIELDS:
        if key not in updates:
            continue
        value = updates[key]
        if key == "role":
            data[key] = normalize_choice(value, ROLES, "role")
        elif key == "type":
            data[key] = normalize_choice(value, USER_TYPES, "type")
        elif key == "company":
            data[key] = _optional_text(value)
        else:
            name = _clean_text(value)
            if not name:
                raise ValueError("Name is required")
            data[key] = name
    if not data:
        return False
    assignments = ", ".join(f"{key} = %s" for key in data)
    updated = execute_sql(
        f"UPDATE profiles SET {assignments} WHERE id = %s",
        list(data.values()) + [user_id],
    )
    commit()
    return updated > 0


def delete_profile(user_id: str) -> bool:
    deleted = execute_sql("DELETE FROM profiles WHERE id = %s", (user_id,))
    commit()
    return deleted > 0


# Categories


def get_categories() -> List[Dict[str, Any]]:
    return fetch_all_rows("SELECT id, name, color FROM categories ORDER BY name")


def create_category(name: Any, color: Any = None) -> Dict[str, Any]:
    clean_name = _clean_text(name)
    if not clean_name:
        raise ValueError("Category name is required")
    row = fetch_one(
        "INSERT INTO categories (name, color) VALUES (%s, %s) RETURNING id, name, color",
        (clean_name, normalize_color(color)),
    )
    commit()
    return row or {}


def update_category(category_id: int, updates: Dict[str, Any]) -> bool:
    data: Dict[str, Any] = {}
    if "name" in updates:
        data["name"] = _clean_text(updates["name"])
        if not data["name"]:
            raise ValueError("Category name is required")
    if "color" in updates:
        data["color"] = normalize_color(updates["color"])
    if not data:
        return False
    assignments = ", ".join(f"{key} = %s" for key in data)
    updated = execute_sql(
        f"UPDATE categories SET {assignments} WHERE id = %s",
        list(data.values()) + [category_id],
    )
    commit()
    return updated > 0


def delete_category(category_id: int) -> bool:
    deleted = execute_sql("DELETE FROM categories WHERE id = %s", (category_id,))
    commit()
    return deleted > 0


# Tasks


def _attach_comments(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not tasks:
        return tasks
    ids = [task["id"] for task in tasks]
    rows = fetch_all_rows(
        COMMENTS_QUERY + " WHERE cm.task_id = ANY(%s) ORDER BY cm.created_at, cm.id",
        (ids,),
    )
    by_task: Dict[Any, List[Dict[str, Any]]] = {task_id: [] for task_id in ids}
    for row in rows:
        comment = _shape_comment(row)
        by_task.setdefault(comment["task_id"], []).append(comment)
    for task in tasks:
        task["comments"] = by_task.get(task["id"], [])
    return tasks


def get_tasks() -> List[Dict[str, Any]]:
    rows = fetch_all_rows(TASKS_QUERY + " ORDER BY t.display_order ASC, t.created_at DESC")
    return _attach_comments([_shape_task(row) for row in rows])


def get_task(task_id: int) -> Dict[str, Any] | None:
    row = fetch_one(TASKS_QUERY + " WHERE t.id = %s", (task_id,))
    if row is None:
        return None
    return _attach_comments([_shape_task(row)])[0]


def check_references(assignee_id: str | None = None, category_id: int | None = None) -> None:
    """Raise ValueError when the assignee profile or the category does not exist."""
    if assignee_id is not None and fetch_one("SELECT id FROM profiles WHERE id = %s", (assignee_id,)) is None:
        raise ValueError(f"Unknown assignee: {assignee_id!r}")
    if category_id is not None and fetch_one("SELECT id FROM categories WHERE id = %s", (category_id,)) is None:
        raise ValueError(f"Unknown category: {category_id!r}")


def _insert_task(values: Dict[str, Any]) -> Dict[str, Any] | None:
    """Number and insert a task, taking a fresh ticket id once if another insert got there first."""
    for attempt in range(1, TICKET_ID_ATTEMPTS + 1):
        last = fetch_one("SELECT ticket_id FROM tasks ORDER BY created_at DESC, id DESC LIMIT 1")
        values["ticket_id"] = next_ticket_id(last.get("ticket_id") if last else None, app_config.TICKET_PREFIX)
        columns = ", ".join(values.keys())
        placeholders = ", ".join("%s" for _ in values)
        try:
            return fetch_one(
                f"INSERT INTO tasks ({columns}) VALUES ({placeholders}) RETURNING id",
                list(values.values()),
            )
        except errors.UniqueViolation:
            get_db().rollback()
            if attempt == TICKET_ID_ATTEMPTS:
                raise
            current_app.logger.warning("Ticket id %s already taken, renumbering", values["ticket_id"])
    return None


def create_task(
    title: Any,
    creator_id: str,
    description: Any = None,
    status: Any = None,
    priority: Any = None,
    assignee_id: Any = None,
    category_id: Any = None,
    due_date: Any = None,
    tags: Any = None,
) -> Dict[str, Any]:
    clean_title = _clean_text(title)
    if not clean_title:
        raise ValueError("Title is required")
    if not creator_id:
        raise ValueError("A signed-in creator is required")

    values = {
        "title": clean_title,
        "description": _optional_text(description),
        "status": normalize_choice(status, STATUSES, "status", default="todo"),
        "priority": normalize_choice(priority, PRIORITIES, "priority", default="medium"),
        "creator_id": creator_id,
        "assignee_id": _optional_text(assignee_id),
        "category_id": _optional_id(category_id),
        "due_date": normalize_due_date(due_date),
        "tags": parse_tags(tags),
    }
    check_references(values["assignee_id"], values["category_id"])
    if values["status"] == "done":
        values["completed_at"] = datetime.now(timezone.utc)

    row = _insert_task(values)
    commit()
    task = get_task(row["id"]) if row else None
    if task is None:
        raise RuntimeError("Created task could not be read back")
    return task


def clean_task_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key in TASK_UPDATE_FIELDS:
        if key not in updates:
            continue
        value = updates[key]
        if key == "title":
            data[key] = _clean_text(value)
            if not data[key]:
                raise ValueError("Title is required")
        elif key == "description":
            data[key] = _optional_text(value)
        elif key == "status":
            data[key] = normalize_choice(value, STATUSES, "status")
        elif key == "priority":
            data[key] = normalize_choice(value, PRIORITIES, "priority")
        elif key == "assignee_id":
            data[key] = _optional_text(value)
        elif key == "category_id":
            data[key] = _optional_id(value)
        elif key == "due_date":
            data[key] = normalize_due_date(value)
        elif key == "tags":
            data[key] = parse_tags(value)
        elif key == "display_order":
            try:
                data[key] = int(value or 0)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid display order: {value!r}") from exc
        elif key == "completed_at":
            data[key] = normalize_completed_at(value)
    return data


def update_task(task_id: int, updates: Dict[str, Any]) -> bool:
    data = clean_task_updates(updates)
    if not data:
        return False
    check_references(data.get("assignee_id"), data.get("category_id"))

    # completed_at always follows status: set while done, NULL otherwise.
    stamp_given = "completed_at" in data
    completed_at = data.pop("completed_at", None)
    assignments = [f"{key} = %s" for key in data]
    params: List[Any] = list(data.values())
    if "status" in data:
        if data["status"] == "done":
            assignments.append("completed_at = COALESCE(%s, completed_at, now())")
            params.append(completed_at)
        else:
            assignments.append("completed_at = NULL")
    elif stamp_given:
        assignments.append(
            "completed_at = CASE WHEN status = 'done' THEN COALESCE(%s, completed_at, now()) ELSE NULL END"
        )
        params.append(completed_at)
    assignments.append("updated_at = now()")

    updated = execute_sql(
        f"UPDATE tasks SET {', '.join(assignments)} WHERE id = %s",
        params + [task_id],
    )
    commit()
    return updated > 0


def change_status(task_id: int, status: Any) -> bool:
    return update_task(task_id, {"status": status})


def complete_task(task_id: int, completed: bool) -> bool:
    return update_task(task_id, {"status": "done" if completed else "todo"})


def delete_task(task_id: int) -> bool:
    deleted = execute_sql("DELETE FROM tasks WHERE id = %s", (task_id,))
    commit()
    return deleted > 0


def reorder_tasks(task_orders: Iterable[Tuple[int, int]]) -> None:
    for task_id, display_order in task_orders:
        execute_sql(
            "UPDATE tasks SET display_order = %s WHERE id = %s",
            (int(display_order), task_id),
        )
    commit()


# Comments


def add_comment(task_id: int, user_id: str, content: Any) -> Dict[str, Any]:
    text = _clean_text(content)
    if not text:
        raise ValueError("Comment cannot be empty")
    if not user_id:
        raise ValueError("A signed-in user is required to comment")
    row = fetch_one(
        "INSERT INTO comments (task_id, user_id, content) VALUES (%s, %s, %s) RETURNING id",
        (task_id, user_id, text),
    )
    execute_sql("UPDATE tasks SET updated_at = now() WHERE id = %s", (task_id,))
    commit()
    comment = fetch_one(COMMENTS_QUERY + " WHERE cm.id = %s", (row["id"],)) if row else None
    return _shape_comment(comment) if comment else {}
