# tests/fakes.py

from __future__ import annotations

import copy
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple

import ticket_store


class FakeConnection:
    """
    Scripted stand-in for a psycopg2 connection.

    ``results`` feeds fetchone/fetchall in call order; ``rowcounts`` feeds
    cursor.rowcount per execute (default 1). Every statement is recorded with
    whitespace collapsed so tests can match on SQL fragments. A statement
    containing ``fail_on`` raises ``fail_with``, at most ``fail_times`` times
    when that is set.
    """

    def __init__(
        self,
        results: Iterable[Any] | None = None,
        rowcounts: Iterable[int] | None = None,
        fail_on: str | None = None,
        fail_with: type = ticket_store.psycopg2.OperationalError,
        fail_times: int | None = None,
    ) -> None:
        self.results: List[Any] = list(results or [])
        self.rowcounts: List[int] = list(rowcounts or [])
        self.fail_on = fail_on
        self.fail_with = fail_with
        self.fail_times = fail_times
        self.executed: List[Tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None) -> "FakeCursor":
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def statements(self) -> List[str]:
        return [query for query, _ in self.executed]


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.rowcount = 0

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> bool:
        return False

    def execute(self, query: str, params: Any = None) -> None:
        statement = " ".join(query.split())
        conn = self.conn
        if conn.fail_on and conn.fail_on in statement and conn.fail_times != 0:
            if conn.fail_times is not None:
                conn.fail_times -= 1
            raise conn.fail_with("scripted failure")
        self.conn.executed.append((statement, params))
        self.rowcount = self.conn.rowcounts.pop(0) if self.conn.rowcounts else 1

    def fetchone(self) -> Any:
        return self.conn.results.pop(0) if self.conn.results else None

    def fetchall(self) -> Any:
        return self.conn.results.pop(0) if self.conn.results else []


class FakeStore:
    """
    In-memory replacement for the ticket_store module used by the web tests.

    Validation goes through the real ticket_store helpers so ValueError
    messages match production.
    """

    PROFILE_FIELDS = ticket_store.PROFILE_FIELDS
    normalize_choice = staticmethod(ticket_store.normalize_choice)

    def __init__(self) -> None:
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.categories: Dict[int, Dict[str, Any]] = {}
        self.tasks: Dict[int, Dict[str, Any]] = {}
        self.comments: List[Dict[str, Any]] = []
        self.reorders: List[List[Tuple[int, int]]] = []
        self.rollbacks = 0
        self.resets = 0
        self._ids = itertools.count(1)

    # seeding

    def add_profile(
        self,
        user_id: str,
        name: str,
        user_type: str = "internal",
        role: str = "staff",
        company: str | None = None,
    ) -> Dict[str, Any]:
        profile = {
            "id": user_id,
            "name": name,
            "email": f"{user_id}@example.test",
            "role": role,
            "type": user_type,
            "company": company,
            "avatar_url": None,
        }
        self.profiles[user_id] = profile
        return profile

    def add_category(self, name: str, color: str = "#0891b2") -> Dict[str, Any]:
        category = {"id": next(self._ids), "name": name, "color": color}
        self.categories[category["id"]] = category
        return category

    def add_task(self, title: str, creator_id: str, **fields: Any) -> Dict[str, Any]:
        task_id = next(self._ids)
        task = {
            "id": task_id,
            "ticket_id": ticket_store.next_ticket_id(self._last_ticket_id()),
            "title": title,
            "description": None,
            "status": "todo",
            "priority": "medium",
            "category_id": None,
            "due_date": None,
            "creator_id": creator_id,
            "assignee_id": None,
            "tags": [],
            "display_order": 0,
            "created_at": datetime.now(timezone.utc),
            "updated_at": datetime.now(timezone.utc),
            "completed_at": None,
        }
        task.update(fields)
        self.tasks[task_id] = task
        return task

    def _last_ticket_id(self) -> str | None:
        if not self.tasks:
            return None
        return self.tasks[max(self.tasks)]["ticket_id"]

    def _shape(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        task = copy.deepcopy(raw)
        task["creator"] = copy.deepcopy(self.profiles.get(task["creator_id"]))
        task["assignee"] = copy.deepcopy(self.profiles.get(task["assignee_id"]))
        task["category"] = copy.deepcopy(self.categories.get(task["category_id"]))
        task["comments"] = [copy.deepcopy(c) for c in self.comments if c["task_id"] == task["id"]]
        return task

    # profiles

    def get_profiles(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(p) for p in sorted(self.profiles.values(), key=lambda p: p["name"])]

    def get_internal_users(self) -> List[Dict[str, Any]]:
        return [p for p in self.get_profiles() if p["type"] == "internal"]

    def get_clients(self) -> List[Dict[str, Any]]:
        return [p for p in self.get_profiles() if p["type"] == "client"]

    def get_profile(self, user_id: str) -> Dict[str, Any] | None:
        profile = self.profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    def ensure_profile(self, auth_user: Dict[str, Any]) -> Dict[str, Any]:
        if auth_user["id"] not in self.profiles:
            self.profiles[auth_user["id"]] = ticket_store.profile_from_auth_user(auth_user)
        return self.get_profile(auth_user["id"])

    def upsert_profile(self, user_id, name, email, user_type, role="staff", company=None) -> None:
        self.profiles[user_id] = {
            "id": user_id,
            "name": name,
            "email": email,
            "role": ticket_store.normalize_choice(role, ticket_store.ROLES, "role", default="staff"),
            "type": ticket_store.normalize_choice(user_type, ticket_store.USER_TYPES, "type"),
            "company": company or None,
            "avatar_url": None,
        }

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> bool:
        if user_id not in self.profiles:
            return False
        if "name" in updates and not str(updates["name"]).strip():
            raise ValueError("Name is required")
        for key in ticket_store.PROFILE_UPDATE_FIELDS:
            if key in updates:
                self.profiles[user_id][key] = updates[key]
        return True

    def delete_profile(self, user_id: str) -> bool:
        return self.profiles.pop(user_id, None) is not None

    # categories

    def get_categories(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(c) for c in sorted(self.categories.values(), key=lambda c: c["name"])]

    def create_category(self, name: Any, color: Any = None) -> Dict[str, Any]:
        if not str(name or "").strip():
            raise ValueError("Category name is required")
        return self.add_category(str(name).strip(), ticket_store.normalize_color(color))

    def update_category(self, category_id: int, updates: Dict[str, Any]) -> bool:
        if category_id not in self.categories:
            return False
        if "name" in updates:
            if not str(updates["name"] or "").strip():
                raise ValueError("Category name is required")
            self.categories[category_id]["name"] = str(updates["name"]).strip()
        if "color" in updates:
            self.categories[category_id]["color"] = ticket_store.normalize_color(updates["color"])
        return True

    def delete_category(self, category_id: int) -> bool:
        if self.categories.pop(category_id, None) is None:
            return False
        for task in self.tasks.values():
            if task["category_id"] == category_id:
                task["category_id"] = None
        return True

    # tasks

    def get_tasks(self) -> List[Dict[str, Any]]:
        ordered = sorted(self.tasks.values(), key=lambda t: (t["display_order"], -t["id"]))
        return [self._shape(t) for t in ordered]

    def get_task(self, task_id: int) -> Dict[str, Any] | None:
        raw = self.tasks.get(task_id)
        return self._shape(raw) if raw else None

    def create_task(self, title, creator_id, description=None, status=None, priority=None,
                    assignee_id=None, category_id=None, due_date=None, tags=None) -> Dict[str, Any]:
        if not str(title or "").strip():
            raise ValueError("Title is required")
        if not creator_id:
            raise ValueError("A signed-in creator is required")
        data = ticket_store.clean_task_updates(
            {
                "title": title,
                "description": description,
                "status": status or "todo",
                "priority": priority or "medium",
                "assignee_id": assignee_id,
                "category_id": category_id,
                "due_date": due_date,
                "tags": tags,
            }
        )
        self._check_references(data)
        if data["status"] == "done":
            data["completed_at"] = datetime.now(timezone.utc)
        task = self.add_task(data.pop("title"), creator_id, **data)
        return self.get_task(task["id"])

    def _check_references(self, data: Dict[str, Any]) -> None:
        if data.get("assignee_id") is not None and data["assignee_id"] not in self.profiles:
            raise ValueError(f"Unknown assignee: {data['assignee_id']!r}")
        if data.get("category_id") is not None and data["category_id"] not in self.categories:
            raise ValueError(f"Unknown category: {data['category_id']!r}")

    def update_task(self, task_id: int, updates: Dict[str, Any]) -> bool:
        data = ticket_store.clean_task_updates(updates)
        if not data or task_id not in self.tasks:
            return False
        self._check_references(data)
        task = self.tasks[task_id]
        stamp_given = "completed_at" in data
        completed_at = data.pop("completed_at", None)
        task.update(data)
        if "status" in data or stamp_given:
            if task["status"] == "done":
                task["completed_at"] = completed_at or task["completed_at"] or datetime.now(timezone.utc)
            else:
                task["completed_at"] = None
        return True

    def change_status(self, task_id: int, status: Any) -> bool:
        return self.update_task(task_id, {"status": status})

    def complete_task(self, task_id: int, completed: bool) -> bool:
        return self.update_task(task_id, {"status": "done" if completed else "todo"})

    def delete_task(self, task_id: int) -> bool:
        return self.tasks.pop(task_id, None) is not None

    def reorder_tasks(self, task_orders: Iterable[Tuple[int, int]]) -> None:
        orders = list(task_orders)
        self.reorders.append(orders)
        for task_id, display_order in orders:
            if task_id in self.tasks:
                self.tasks[task_id]["display_order"] = display_order

    def add_comment(self, task_id: int, user_id: str, content: Any) -> Dict[str, Any]:
        text = str(content or "").strip()
        if not text:
            raise ValueError("Comment cannot be empty")
        if not user_id:
            raise ValueError("A signed-in user is required to comment")
        comment = {
            "id": next(self._ids),
            "task_id": task_id,
            "user_id": user_id,
            "content": text,
            "created_at": datetime.now(timezone.utc),
            "user": self.get_profile(user_id),
        }
        self.comments.append(comment)
        return copy.deepcopy(comment)

    def ping(self) -> bool:
        return True

    def rollback(self) -> None:
        self.rollbacks += 1

    def reset_connection(self) -> None:
        self.resets += 1
