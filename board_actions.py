"""
Task, category and member operations with their permission rules.

The JSON API in website.py and the ReactPy board in board_app.py both go
through these functions. Bad input raises ValueError, a role that may not
act raises Forbidden, and a task outside the user's reach raises NotFound.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Tuple

import psycopg2
from flask import current_app

import app_config
import auth_backend
import ticket_store as store
from task_views import (
    SEARCH_CLIENTS,
    SEARCH_MY_TASKS,
    SEARCH_REQUESTED,
    STATUSES,
    category_key,
    client_active_tasks,
    client_portal_tasks,
    display_orders,
    filter_tasks,
    move_within_group,
    my_active_tasks,
    requested_tasks,
    sort_by_display_order,
    status_label,
)

CLIENT_STATUSES = ["todo", "in_progress", "done"]
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
MOVE_DIRECTIONS = ("up", "down")


class Forbidden(Exception):
    pass


class NotFound(LookupError):
    pass


# Roles


def user_id_of(user: Dict[str, Any] | None) -> str:
    return user["id"] if user else ""


def is_client(user: Dict[str, Any] | None) -> bool:
    return bool(user) and user.get("type") == "client"


def can_administer(user: Dict[str, Any] | None) -> bool:
    # No user only happens while sign-in is unconfigured.
    return user is None or user.get("role") == "admin"


def require_internal(user: Dict[str, Any] | None) -> None:
    if is_client(user):
        raise Forbidden("Not available to client accounts")


def require_admin(user: Dict[str, Any] | None) -> None:
    if not can_administer(user):
        raise Forbidden("Admin access required")


def profile_for_session(session_data: Dict[str, Any]) -> Dict[str, Any] | None:
    user_id = session_data.get("user_id") or app_config.dev_user_id()
    if not user_id:
        return None
    try:
        return store.get_profile(user_id)
    except psycopg2.Error:
        current_app.logger.exception("Failed to load profile %s", user_id)
        store.reset_connection()
        return session_data.get("profile")


# Input parsing


def parse_flag(value: Any, default: bool = True) -> bool:
    """Read a JSON or form boolean. Strings like "false" and "0" are False."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
    raise ValueError(f"Invalid completed flag: {value!r}")


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"Invalid {field}: {value!r}")
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid {field}: {value!r}") from exc


def parse_reorder_payload(payload: Dict[str, Any]) -> List[Tuple[int, int]]:
    """Accept either {"ids": [...]} in display order or {"orders": [{"id", "display_order"}, ...]}."""
    if "ids" in payload:
        ids = payload["ids"]
        if not isinstance(ids, list):
            raise ValueError("'ids' must be a list of task ids")
        return display_orders([_as_int(task_id, "task id") for task_id in ids])

    orders = payload.get("orders")
    if not isinstance(orders, list) or not all(isinstance(item, dict) for item in orders):
        raise ValueError("Expected 'ids' or 'orders' with integer ids and display orders")
    pairs = []
    for item in orders:
        if "id" not in item or "display_order" not in item:
            raise ValueError("Each order needs 'id' and 'display_order'")
        pairs.append((_as_int(item["id"], "task id"), _as_int(item["display_order"], "display order")))
    return pairs


# Board data


def load_board_data() -> Dict[str, Any]:
    profiles = store.get_profiles()
    return {
        "tasks": store.get_tasks(),
        "categories": store.get_categories(),
        "internal_users": [p for p in profiles if p.get("type") == "internal"],
        "clients": [p for p in profiles if p.get("type") == "client"],
    }


def empty_board_data(error: str = "") -> Dict[str, Any]:
    return {"tasks": [], "categories": [], "internal_users": [], "clients": [], "error": error}


def load_board_data_safe() -> Dict[str, Any]:
    try:
        data = load_board_data()
    except Exception as exc:
        current_app.logger.exception("Failed to load board data")
        store.reset_connection()
        return empty_board_data(error=str(exc))
    data["error"] = ""
    return data


def list_tasks(user: Dict[str, Any] | None, view: str | None = None, query: str = "") -> List[Dict[str, Any]]:
    tasks = store.get_tasks()
    if is_client(user):
        return filter_tasks(client_portal_tasks(tasks, user["id"], "all"), query)

    user_id = user_id_of(user)
    fields: Tuple[str, ...] = SEARCH_CLIENTS
    if view == "my_tasks":
        tasks, fields = my_active_tasks(tasks, user_id), SEARCH_MY_TASKS
    elif view == "requested":
        tasks, fields = requested_tasks(tasks, user_id), SEARCH_REQUESTED
    elif view == "clients":
        tasks = client_active_tasks(tasks, store.get_clients())
    return filter_tasks(tasks, query, fields)


# Tasks


def visible_task(user: Dict[str, Any] | None, task_id: int) -> Dict[str, Any]:
    task = store.get_task(task_id)
    if task is None or (is_client(user) and task.get("assignee_id") != user["id"]):
        raise NotFound(f"Task {task_id} not found")
    return task


def create_task(user: Dict[str, Any] | None, values: Dict[str, Any]) -> Dict[str, Any]:
    require_internal(user)
    user_id = user_id_of(user)
    task = store.create_task(
        title=values.get("title"),
        creator_id=user_id,
        description=values.get("description"),
        status=values.get("status"),
        priority=values.get("priority"),
        assignee_id=values.get("assignee_id") or user_id,
        category_id=values.get("category_id"),
        due_date=values.get("due_date"),
        tags=values.get("tags"),
    )
    current_app.logger.info("Task %s created by %s", task["ticket_id"], user_id)
    return task


def update_task(user: Dict[str, Any] | None, task_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
    require_internal(user)
    if store.get_task(task_id) is None:
        raise NotFound(f"Task {task_id} not found")
    store.update_task(task_id, updates)
    return store.get_task(task_id)


def delete_task(user: Dict[str, Any] | None, task_id: int) -> None:
    require_internal(user)
    if not store.delete_task(task_id):
        raise NotFound(f"Task {task_id} not found")
    current_app.logger.info("Task %s deleted by %s", task_id, user_id_of(user))


def change_status(user: Dict[str, Any] | None, task_id: int, status: Any) -> Dict[str, Any]:
    visible_task(user, task_id)
    if is_client(user):
        chosen = store.normalize_choice(status, STATUSES, "status")
        if chosen not in CLIENT_STATUSES:
            allowed = ", ".join(status_label(s) for s in CLIENT_STATUSES)
            raise ValueError(f"Clients can only set the status to {allowed}")
    store.change_status(task_id, status)
    return store.get_task(task_id)


def set_completed(user: Dict[str, Any] | None, task_id: int, completed: Any = None) -> Dict[str, Any]:
    visible_task(user, task_id)
    store.complete_task(task_id, parse_flag(completed))
    return store.get_task(task_id)


def add_comment(user: Dict[str, Any] | None, task_id: int, content: Any) -> Dict[str, Any]:
    visible_task(user, task_id)
    return store.add_comment(task_id, user_id_of(user), content)


def move_task(user: Dict[str, Any] | None, task_id: int, direction: str) -> bool:
    """Swap a task with its neighbour inside its category group on the user's own list."""
    require_internal(user)
    if direction not in MOVE_DIRECTIONS:
        raise ValueError(f"Invalid direction: {direction!r}")
    mine = my_active_tasks(store.get_tasks(), user_id_of(user))
    task = next((t for t in mine if t["id"] == task_id), None)
    if task is None:
        raise NotFound(f"Task {task_id} not found")

    group = sort_by_display_order(t for t in mine if category_key(t) == category_key(task))
    ids = [t["id"] for t in group]
    new_order = move_within_group(ids, task_id, direction)
    if new_order == ids:
        return False
    store.reorder_tasks(display_orders(new_order))
    return True


def reorder_tasks(user: Dict[str, Any] | None, payload: Dict[str, Any]) -> int:
    require_internal(user)
    orders = parse_reorder_payload(payload)
    store.reorder_tasks(orders)
    return len(orders)


# Categories


def create_category(user: Dict[str, Any] | None, values: Dict[str, Any]) -> Dict[str, Any]:
    require_admin(user)
    return store.create_category(values.get("name"), values.get("color"))


def update_category(user: Dict[str, Any] | None, category_id: int, updates: Dict[str, Any]) -> None:
    require_admin(user)
    if not store.update_category(category_id, updates):
        raise NotFound(f"Category {category_id} not found")


def delete_category(user: Dict[str, Any] | None, category_id: int) -> None:
    require_admin(user)
    if not store.delete_category(category_id):
        raise NotFound(f"Category {category_id} not found")


# Members


def add_member(user: Dict[str, Any] | None, values: Dict[str, Any]) -> Dict[str, Any]:
    """Invite or create a member. Without a service key the member is a profile with no sign-in."""
    require_admin(user)
    user_type = "client" if values.get("type") == "client" else "internal"
    name = str(values.get("name") or "").strip()
    email = str(values.get("email") or "").strip()
    if not name or not email:
        return {"success": False, "message": "Name and email are required", "user_id": None}

    role = "client" if user_type == "client" else (values.get("role") or "staff")
    company = (values.get("company") or None) if user_type == "client" else None

    if app_config.admin_configured():
        password = values.get("password") or ""
        if password:
            return auth_backend.create_user_with_password(email, password, name, user_type, role, company)
        return auth_backend.invite_user(email, name, user_type, role, company)

    member_id = str(uuid.uuid4())
    try:
        store.upsert_profile(member_id, name, email, user_type, role=role, company=company)
    except ValueError as exc:
        return {"success": False, "message": str(exc), "user_id": None}
    current_app.logger.info("Added profile-only member %s", member_id)
    return {"success": True, "message": f"Added {name} as a profile without a sign-in", "user_id": member_id}


def update_member(user: Dict[str, Any] | None, member_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    require_admin(user)
    fields = {key: updates[key] for key in ("name", "role", "company") if key in updates}
    return auth_backend.update_user_profile(member_id, fields)


def delete_member(user: Dict[str, Any] | None, member_id: str) -> Dict[str, Any]:
    require_admin(user)
    if member_id == user_id_of(user):
        return {"success": False, "message": "You cannot delete your own account", "user_id": None}
    if app_config.admin_configured():
        return auth_backend.delete_user(member_id)
    if store.delete_profile(member_id):
        return {"success": True, "message": "Profile deleted", "user_id": member_id}
    return {"success": False, "message": "Profile not found", "user_id": None}
