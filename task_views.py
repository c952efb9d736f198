from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence, Tuple

STATUSES = ["backlog", "todo", "in_progress", "done", "cancelled"]
STATUS_LABELS = {
    "backlog": "Backlog",
    "todo": "Todo",
    "in_progress": "In progress",
    "done": "Done",
    "cancelled": "Cancelled",
}
INACTIVE_STATUSES = {"done", "cancelled"}

PRIORITIES = ["urgent", "high", "medium", "low"]
PRIORITY_LABELS = {
    "urgent": "Urgent",
    "high": "High",
    "medium": "Medium",
    "low": "Low",
}

ROLES = ["admin", "staff", "client"]
USER_TYPES = ["internal", "client"]

COLOR_PRESETS = [
    {"color": "#ef4444", "name": "Red"},
    {"color": "#f97316", "name": "Orange"},
    {"color": "#eab308", "name": "Yellow"},
    {"color": "#22c55e", "name": "Green"},
    {"color": "#14b8a6", "name": "Teal"},
    {"color": "#0891b2", "name": "Cyan"},
    {"color": "#3b82f6", "name": "Blue"},
    {"color": "#6366f1", "name": "Indigo"},
    {"color": "#8b5cf6", "name": "Purple"},
    {"color": "#ec4899", "name": "Pink"},
]
DEFAULT_CATEGORY_COLOR = COLOR_PRESETS[5]["color"]

UNCATEGORIZED = {"id": "uncategorized", "name": "Uncategorized", "color": "#94a3b8"}

# Person fields searched per dashboard tab, on top of title/description/tags/category.
SEARCH_MY_TASKS = ("creator",)
SEARCH_REQUESTED = ("assignee",)
SEARCH_CLIENTS = ("creator", "assignee", "company")

CLIENT_FILTERS = ["active", "completed", "all"]
CLIENT_FILTER_LABELS = {"active": "Active", "completed": "Completed", "all": "All"}

DASHBOARD_TABS = [("my_tasks", "My tasks"), ("requested", "Requested"), ("clients", "Clients")]
ADMIN_TABS = [
    ("overview", "Overview"),
    ("categories", "Categories"),
    ("internal", "Internal members"),
    ("clients", "Clients"),
]
STAT_LABELS = [
    ("total_tasks", "Total tasks"),
    ("active_tasks", "Active"),
    ("completed_tasks", "Completed"),
    ("overdue_tasks", "Overdue"),
    ("total_categories", "Categories"),
    ("total_internal_users", "Internal members"),
    ("total_clients", "Clients"),
]


def parse_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        stamp = value
    else:
        try:
            stamp = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def is_active(task: Dict[str, Any]) -> bool:
    return task.get("status") not in INACTIVE_STATUSES


def is_completed(task: Dict[str, Any]) -> bool:
    return task.get("status") == "done"


def my_active_tasks(tasks: Iterable[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
    return [t for t in tasks if t.get("assignee_id") == user_id and is_active(t)]


def my_completed_tasks(tasks: Iterable[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
    return [t for t in tasks if t.get("assignee_id") == user_id and is_completed(t)]


def _is_request_from(task: Dict[str, Any], user_id: str) -> bool:
    assignee_id = task.get("assignee_id")
    return task.get("creator_id") == user_id and bool(assignee_id) and assignee_id != user_id


def requested_tasks(tasks: Iterable[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
    return [t for t in tasks if _is_request_from(t, user_id) and is_active(t)]


def requested_completed_tasks(tasks: Iterable[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
    return [t for t in tasks if _is_request_from(t, user_id) and is_completed(t)]


def client_active_tasks(tasks: Iterable[Dict[str, Any]], clients: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    client_ids = {c["id"] for c in clients}
    return [t for t in tasks if t.get("assignee_id") in client_ids and is_active(t)]


def client_completed_tasks(tasks: Iterable[Dict[str, Any]], clients: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    client_ids = {c["id"] for c in clients}
    return [t for t in tasks if t.get("assignee_id") in client_ids and is_completed(t)]


def _lower(value: Any) -> str:
    return str(value or "").lower()


def matches_search(task: Dict[str, Any], query: str, fields: Sequence[str] = ()) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True

    haystack = [
        _lower(task.get("title")),
        _lower(task.get("description")),
        _lower((task.get("category") or {}).get("name")),
    ]
    haystack.extend(_lower(tag) for tag in task.get("tags") or [])
    creator = task.get("creator") or {}
    assignee = task.get("assignee") or {}
    if "creator" in fields:
        haystack.append(_lower(creator.get("name")))
    if "assignee" in fields:
        haystack.append(_lower(assignee.get("name")))
    if "company" in fields:
        haystack.append(_lower(assignee.get("company")))
    return any(needle in text for text in haystack)


def filter_tasks(tasks: Iterable[Dict[str, Any]], query: str, fields: Sequence[str] = ()) -> List[Dict[str, Any]]:
    return [t for t in tasks if matches_search(t, query, fields)]


def _due_key(task: Dict[str, Any]) -> Tuple[int, date]:
    due = parse_date(task.get("due_date"))
    if due is None:
        return (1, date.max)
    return (0, due)


def sort_by_due_date(tasks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(tasks, key=_due_key)


def sort_completed(tasks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    tasks = list(tasks)
    stamped = [t for t in tasks if parse_timestamp(t.get("completed_at"))]
    unstamped = [t for t in tasks if not parse_timestamp(t.get("completed_at"))]
    stamped.sort(key=lambda t: parse_timestamp(t.get("completed_at")), reverse=True)
    return stamped + unstamped


def sort_by_display_order(tasks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(tasks, key=lambda t: (int(t.get("display_order") or 0), _due_key(t)))


def category_key(task: Dict[str, Any]) -> str:
    category_id = task.get("category_id")
    return str(category_id) if category_id else UNCATEGORIZED["id"]


def group_by_category(
    active: Sequence[Dict[str, Any]],
    completed: Sequence[Dict[str, Any]],
    categories: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    groups: List[Dict[str, Any]] = []
    for category in [*categories, UNCATEGORIZED]:
        key = str(category["id"])
        cat_active = [t for t in active if category_key(t) == key]
        cat_completed = [t for t in completed if category_key(t) == key]
        if not cat_active and not cat_completed:
            continue
        groups.append(
            {
                "category": category,
                "active_tasks": sort_by_display_order(cat_active),
                "completed_tasks": sort_completed(cat_completed),
            }
        )
    return groups


def group_requested_by_assignee(
    requested: Sequence[Dict[str, Any]],
    all_tasks: Sequence[Dict[str, Any]],
    user_id: str,
) -> List[Dict[str, Any]]:
    grouped: Dict[str, Dict[str, Any]] = {}
    for task in requested:
        assignee_id = task.get("assignee_id")
        if not assignee_id or not task.get("assignee"):
            continue
        group = grouped.setdefault(
            assignee_id,
            {"user": task["assignee"], "my_requests": [], "other_requests": [], "total_count": 0},
        )
        group["my_requests"].append(task)

    for task in all_tasks:
        assignee_id = task.get("assignee_id")
        if not assignee_id or not task.get("assignee"):
            continue
        if task.get("creator_id") != user_id and assignee_id in grouped and is_active(task):
            grouped[assignee_id]["other_requests"].append(task)

    for group in grouped.values():
        group["my_requests"] = sort_by_due_date(group["my_requests"])
        group["other_requests"] = sort_by_due_date(group["other_requests"])
        group["total_count"] = len(group["my_requests"]) + len(group["other_requests"])
    return list(grouped.values())


def group_by_client(
    active: Sequence[Dict[str, Any]],
    completed: Sequence[Dict[str, Any]],
    clients: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    groups: List[Dict[str, Any]] = []
    for client in clients:
        client_active = [t for t in active if t.get("assignee_id") == client["id"]]
        client_completed = [t for t in completed if t.get("assignee_id") == client["id"]]
        if not client_active and not client_completed:
            continue
        groups.append(
            {
                "client": client,
                "active_tasks": sort_by_due_date(client_active),
                "completed_tasks": sort_completed(client_completed),
            }
        )
    groups.sort(key=lambda g: len(g["active_tasks"]), reverse=True)
    return groups


def move_task(ids: Sequence[Any], moved_id: Any, target_id: Any) -> List[Any]:
    """Move ``moved_id`` to the position currently held by ``target_id``."""
    order = list(ids)
    if moved_id == target_id or moved_id not in order or target_id not in order:
        return order
    new_index = order.index(target_id)
    order.remove(moved_id)
    order.insert(new_index, moved_id)
    return order


def move_within_group(ids: Sequence[Any], moved_id: Any, direction: str) -> List[Any]:
    order = list(ids)
    if moved_id not in order:
        return order
    index = order.index(moved_id)
    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(order):
        return order
    return move_task(order, moved_id, order[target])


def display_orders(ids: Sequence[Any]) -> List[Tuple[Any, int]]:
    return [(task_id, position) for position, task_id in enumerate(ids)]


def days_remaining(due_value: Any, today: date | None = None) -> Dict[str, str] | None:
    due = parse_date(due_value)
    if due is None:
        return None
    today = today or date.today()
    diff = (due - today).days
    if diff < 0:
        overdue = abs(diff)
        return {"text": f"{overdue} day{'s' if overdue != 1 else ''} overdue", "class": "pill-danger"}
    if diff == 0:
        return {"text": "Due today", "class": "pill-warning"}
    if diff == 1:
        return {"text": "Due tomorrow", "class": "pill-warning"}
    if diff <= 3:
        return {"text": f"{diff} days left", "class": "pill-warning"}
    return {"text": f"{diff} days left", "class": "pill-muted"}


def format_comment_time(value: Any, now: datetime | None = None) -> str:
    created = parse_timestamp(value)
    if created is None:
        return ""
    now = parse_timestamp(now) if now else datetime.now(timezone.utc)
    elapsed = (now - created).total_seconds()
    minutes = math.floor(elapsed / 60)
    hours = math.floor(elapsed / 3600)
    days = math.floor(elapsed / 86400)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return created.strftime("%b %d")


def format_full_date(value: Any) -> str:
    day = parse_date(value)
    if day is None:
        return ""
    return f"{day.strftime('%Y/%m/%d')} ({day.strftime('%a')})"


def format_short_date(value: Any) -> str:
    day = parse_date(value)
    return day.strftime("%b %d") if day else ""


def priority_class(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text == "urgent":
        return "pill-danger"
    if text == "high":
        return "pill-warning"
    if text == "low":
        return "pill-success"
    return "pill-info"


def status_class(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text == "done":
        return "pill-success"
    if text == "in_progress":
        return "pill-info"
    if text == "cancelled":
        return "pill-danger"
    return "pill-muted"


def status_label(value: Any) -> str:
    return STATUS_LABELS.get(str(value or ""), str(value or ""))


def priority_label(value: Any) -> str:
    return PRIORITY_LABELS.get(str(value or ""), str(value or ""))


def admin_stats(
    tasks: Sequence[Dict[str, Any]],
    categories: Sequence[Dict[str, Any]],
    internal_users: Sequence[Dict[str, Any]],
    clients: Sequence[Dict[str, Any]],
    today: date | None = None,
) -> Dict[str, int]:
    today = today or date.today()
    active = [t for t in tasks if is_active(t)]
    overdue = [t for t in active if (parse_date(t.get("due_date")) or date.max) < today]
    return {
        "total_tasks": len(tasks),
        "active_tasks": len(active),
        "completed_tasks": len([t for t in tasks if is_completed(t)]),
        "overdue_tasks": len(overdue),
        "total_categories": len(categories),
        "total_internal_users": len(internal_users),
        "total_clients": len(clients),
    }


def client_portal_tasks(tasks: Iterable[Dict[str, Any]], client_id: str, task_filter: str = "active") -> List[Dict[str, Any]]:
    mine = sort_by_due_date(t for t in tasks if t.get("assignee_id") == client_id)
    if task_filter == "active":
        return [t for t in mine if is_active(t)]
    if task_filter == "completed":
        return [t for t in mine if is_completed(t)]
    return mine


def parse_tags(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        raw = [str(item) for item in value]
    else:
        raw = str(value or "").split(",")
    tags: List[str] = []
    for item in raw:
        tag = item.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def all_tags(tasks: Iterable[Dict[str, Any]]) -> List[str]:
    found = set()
    for task in tasks:
        found.update(task.get("tags") or [])
    return sorted(found, key=str.lower)


def neighbours(tasks: Sequence[Dict[str, Any]], task_id: Any) -> Tuple[Dict[str, Any] | None, Dict[str, Any] | None]:
    """Previous/next task around ``task_id`` in an already ordered list."""
    ids = [t.get("id") for t in tasks]
    if task_id not in ids:
        return None, None
    index = ids.index(task_id)
    prev_task = tasks[index - 1] if index > 0 else None
    next_task = tasks[index + 1] if index + 1 < len(tasks) else None
    return prev_task, next_task


# Screen models


def normalize_tab(value: Any, tabs: Sequence[Tuple[str, str]]) -> str:
    keys = [key for key, _ in tabs]
    return value if value in keys else keys[0]


def build_dashboard_view(data: Dict[str, Any], user_id: str, tab: str, query: str = "") -> Dict[str, Any]:
    tasks = data["tasks"]
    clients = data["clients"]
    my_active = my_active_tasks(tasks, user_id)
    requested = requested_tasks(tasks, user_id)
    client_active = client_active_tasks(tasks, clients)

    view: Dict[str, Any] = {
        "tab": tab,
        "query": query,
        "counts": {"my_tasks": len(my_active), "requested": len(requested), "clients": len(client_active)},
        "category_groups": [],
        "request_groups": [],
        "completed_requests": [],
        "client_groups": [],
    }
    if tab == "requested":
        view["request_groups"] = group_requested_by_assignee(
            filter_tasks(requested, query, SEARCH_REQUESTED), tasks, user_id
        )
        view["completed_requests"] = sort_completed(
            filter_tasks(requested_completed_tasks(tasks, user_id), query, SEARCH_REQUESTED)
        )
    elif tab == "clients":
        view["client_groups"] = group_by_client(
            filter_tasks(client_active, query, SEARCH_CLIENTS),
            filter_tasks(client_completed_tasks(tasks, clients), query, SEARCH_CLIENTS),
            clients,
        )
    else:
        view["category_groups"] = group_by_category(
            filter_tasks(my_active, query, SEARCH_MY_TASKS),
            filter_tasks(my_completed_tasks(tasks, user_id), query, SEARCH_MY_TASKS),
            data["categories"],
        )
    return view


def tab_task_order(view: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Active tasks of the view's tab in the order they are displayed."""
    if view["tab"] == "requested":
        return [task for group in view["request_groups"] for task in group["my_requests"]]
    if view["tab"] == "clients":
        return [task for group in view["client_groups"] for task in group["active_tasks"]]
    return [task for group in view["category_groups"] for task in group["active_tasks"]]


def tab_for_assignee(assignee_id: str | None, user_id: str, clients: Sequence[Dict[str, Any]]) -> str:
    if not assignee_id or assignee_id == user_id:
        return "my_tasks"
    if any(c["id"] == assignee_id for c in clients):
        return "clients"
    return "requested"


def task_form_values(task: Dict[str, Any]) -> Dict[str, Any]:
    due = parse_date(task.get("due_date"))
    return {
        "title": task.get("title") or "",
        "description": task.get("description") or "",
        "priority": task.get("priority") or "medium",
        "assignee_id": task.get("assignee_id") or "",
        "category_id": str(task.get("category_id") or ""),
        "due_date": due.isoformat() if due else "",
        "tags": ", ".join(task.get("tags") or []),
    }


def client_portal_view(
    user: Dict[str, Any] | None,
    data: Dict[str, Any],
    requested_client: str = "",
    task_filter: str = "active",
) -> Dict[str, Any]:
    """A client sees their own tasks; internal users pick which client to preview."""
    if user and user.get("type") == "client":
        clients = [user]
        preview_clients: List[Dict[str, Any]] = []
    else:
        clients = list(data["clients"])
        preview_clients = clients
    client = next((c for c in clients if c["id"] == requested_client), clients[0] if clients else None)
    if task_filter not in CLIENT_FILTERS:
        task_filter = "active"
    every = client_portal_tasks(data["tasks"], client["id"], "all") if client else []
    return {
        "client": client,
        "preview_clients": preview_clients,
        "filter": task_filter,
        "all_tasks": every,
        "tasks": client_portal_tasks(every, client["id"], task_filter) if client else [],
        "counts": {
            "active": len([t for t in every if is_active(t)]),
            "completed": len([t for t in every if is_completed(t)]),
        },
    }
