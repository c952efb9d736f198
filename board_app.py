"""
The ReactPy board mounted under /app/.

One ``App`` component holds the signed-in user, the loaded board data and
which screen is showing. Every write goes through ``board_actions`` so the
board and the JSON API share the same permission rules.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple
from urllib.parse import parse_qs

import psycopg2
from flask import Request, current_app
from reactpy import component, hooks, html, use_location
from reactpy.backend.flask import use_request

import app_config
import board_actions as actions
import ticket_store as store
from task_views import (
    ADMIN_TABS,
    CLIENT_FILTER_LABELS,
    CLIENT_FILTERS,
    COLOR_PRESETS,
    DASHBOARD_TABS,
    DEFAULT_CATEGORY_COLOR,
    PRIORITIES,
    PRIORITY_LABELS,
    STAT_LABELS,
    STATUSES,
    STATUS_LABELS,
    admin_stats,
    all_tags,
    build_dashboard_view,
    client_portal_view,
    days_remaining,
    format_full_date,
    is_active,
    neighbours,
    tab_for_assignee,
    tab_task_order,
    task_form_values,
)
from ui_components import (
    GLASS_CSS,
    color_swatches,
    comment_list,
    completed_list,
    dot,
    facts,
    field,
    nav_header,
    notice_banner,
    segmented,
    stat_grid,
    task_card,
    task_meta,
    unavailable_card,
)

PAGE_TITLES = {
    "dashboard": "Dashboard",
    "task": "Task",
    "new_task": "New task",
    "admin": "Admin console",
    "client": "Client portal",
}
MEMBER_ROLES = [("staff", "Staff"), ("admin", "Admin")]


def initial_page(user: Dict[str, Any] | None, search: str) -> Tuple[str, int | None]:
    """Pick the first screen from ``?view=`` and ``?task=``. Clients always land on their portal."""
    params = parse_qs((search or "").lstrip("?"))
    view = (params.get("view") or [""])[0]
    task_text = (params.get("task") or [""])[0]
    task_id = int(task_text) if task_text.isdigit() else None

    if actions.is_client(user) or view == "client":
        return "client", task_id
    if view == "admin" and actions.can_administer(user):
        return "admin", None
    if task_id is not None:
        return "task", task_id
    return "dashboard", None


def session_user(request: Request) -> Dict[str, Any] | None:
    session_data = current_app.session_interface.open_session(current_app, request) or {}
    return actions.profile_for_session(session_data)


def prefixed(values: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    """Collect ``prefix.name`` keys into ``{name: value}``."""
    start = f"{prefix}."
    return {key[len(start):]: value for key, value in values.items() if key.startswith(start)}


def event_value(event: Dict[str, Any]) -> str:
    value = event.get("target", {}).get("value", "")
    return "" if value is None else str(value)


@component
def App():
    request = use_request()
    location = use_location()
    user, set_user = hooks.use_state(lambda: session_user(request))
    data, set_data = hooks.use_state(actions.load_board_data_safe)
    first_screen = hooks.use_state(lambda: initial_page(user, location.search))[0]
    page, set_page = hooks.use_state(first_screen[0])
    selected_id, set_selected_id = hooks.use_state(first_screen[1])
    tab, set_tab = hooks.use_state("my_tasks")
    query, set_query = hooks.use_state("")
    admin_tab, set_admin_tab = hooks.use_state("overview")
    editing, set_editing = hooks.use_state(False)
    fields, set_fields = hooks.use_state({})
    form_serial, set_form_serial = hooks.use_state(0)
    notice, set_notice = hooks.use_state(None)
    pending_delete, set_pending_delete = hooks.use_state("")
    edit_row, set_edit_row = hooks.use_state("")
    client_filter, set_client_filter = hooks.use_state("active")
    preview_client, set_preview_client = hooks.use_state("")
    is_busy, set_is_busy = hooks.use_state(False)
    busy_ref = hooks.use_ref(False)

    user_id = actions.user_id_of(user)
    client_user = actions.is_client(user)

    def refresh() -> None:
        set_data(actions.load_board_data_safe())
        if user_id:
            set_user(actions.profile_for_session({"user_id": user_id, "profile": user}))

    def run_action(
        action: Callable[[], Any],
        success: str = "",
        after: Callable[[Any], None] | None = None,
    ) -> None:
        if busy_ref.current:
            return
        busy_ref.current = True
        set_is_busy(True)
        try:
            try:
                result = action()
            except (ValueError, actions.Forbidden, actions.NotFound) as exc:
                set_notice({"kind": "danger", "text": str(exc)})
                return
            except psycopg2.Error:
                current_app.logger.exception("Board action failed for %s", user_id or "anonymous")
                store.reset_connection()
                set_notice({"kind": "danger", "text": "The database is unavailable. Try again in a moment."})
                return

            if isinstance(result, dict) and "success" in result:
                set_notice({"kind": "success" if result["success"] else "danger", "text": result["message"]})
                if not result["success"]:
                    return
            elif success:
                set_notice({"kind": "success", "text": success})
            if after is not None:
                after(result)
            refresh()
        finally:
            busy_ref.current = False
            set_is_busy(False)

    # Form state

    def start_form(prefix: str, values: Dict[str, Any]) -> None:
        set_fields({f"{prefix}.{key}": value for key, value in values.items()})
        set_form_serial(lambda prev: prev + 1)

    def set_field(name: str, value: Any) -> None:
        if busy_ref.current:
            return
        set_fields(lambda prev: {**prev, name: value})

    def clear_prefix(prefix: str) -> None:
        start = f"{prefix}."
        set_fields(lambda prev: {key: value for key, value in prev.items() if not key.startswith(start)})
        set_form_serial(lambda prev: prev + 1)

    def text_input(name: str, placeholder: str = "", input_type: str = "text", default: str = ""):
        return html.input(
            {
                "key": f"{name}-{form_serial}",
                "class": "input",
                "type": input_type,
                "placeholder": placeholder,
                "default_value": fields.get(name, default),
                "disabled": is_busy,
                "on_change": lambda event: set_field(name, event_value(event)),
            }
        )

    def text_area(name: str, placeholder: str = "", rows: int = 4):
        return html.textarea(
            {
                "key": f"{name}-{form_serial}",
                "class": "textarea",
                "rows": rows,
                "placeholder": placeholder,
                "default_value": fields.get(name, ""),
                "disabled": is_busy,
                "on_change": lambda event: set_field(name, event_value(event)),
            }
        )

    # Navigation

    def go(target: str, task_id: int | None = None) -> None:
        if busy_ref.current:
            return
        set_page(target)
        set_selected_id(task_id)
        set_editing(False)
        set_pending_delete("")
        set_edit_row("")
        set_notice(None)

    def open_task(task_id: int) -> None:
        if client_user or page == "client":
            set_selected_id(task_id)
            clear_prefix("comment")
            return
        go("task", task_id)
        clear_prefix("comment")

    def open_new_task(category_id: Any = "") -> None:
        go("new_task")
        start_form("task", {"priority": "medium", "category_id": str(category_id or "")})

    def confirm_button(key: str, label: str, on_confirm: Callable[[], None]):
        if pending_delete != key:
            return html.button(
                {
                    "class": "btn danger small",
                    "type": "button",
                    "disabled": is_busy,
                    "on_click": lambda event: set_pending_delete(key),
                },
                label,
            )
        return html.span(
            {"class": "form-actions"},
            html.button(
                {"class": "btn danger small", "type": "button", "disabled": is_busy, "on_click": lambda event: on_confirm()},
                "Confirm",
            ),
            html.button(
                {"class": "btn ghost small", "type": "button", "on_click": lambda event: set_pending_delete("")},
                "Cancel",
            ),
        )

    def card(task: Dict[str, Any], person: str | None = None, movable: bool = False):
        task_id = task["id"]
        return task_card(
            task,
            person,
            selected=task_id == selected_id,
            busy=is_busy,
            on_open=lambda: open_task(task_id),
            on_toggle=lambda done: run_action(lambda: actions.set_completed(user, task_id, done)),
            on_move=(lambda direction: run_action(lambda: actions.move_task(user, task_id, direction)))
            if movable
            else None,
        )

    # Screens

    def render_nav():
        buttons: List[Any] = []
        if not client_user:
            buttons.append(nav_button("Dashboard", "dashboard"))
            buttons.append(
                html.button(
                    {"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": lambda event: open_new_task()},
                    "New task",
                )
            )
            if actions.can_administer(user):
                buttons.append(nav_button("Admin", "admin"))
        buttons.append(nav_button("Client portal", "client"))
        buttons.append(html.a({"class": "btn ghost", "href": "/"}, "Home"))
        if user is not None:
            buttons.append(
                html.form(
                    {"class": "inline", "method": "post", "action": "/logout"},
                    html.button({"class": "btn ghost", "type": "submit"}, "Sign out"),
                )
            )
        meta = f"{user['name']} · {user.get('role', '')}" if user else "Sign-in not configured"
        return nav_header(PAGE_TITLES.get(page, ""), meta, buttons)

    def nav_button(label: str, target: str):
        return html.button(
            {
                "class": f"btn {'primary' if page == target else 'ghost'}",
                "type": "button",
                "disabled": is_busy,
                "on_click": lambda event: go(target),
            },
            label,
        )

    def render_dashboard():
        view = build_dashboard_view(data, user_id, tab, query)
        tabs = [(key, f"{label} ({view['counts'][key]})") for key, label in DASHBOARD_TABS]
        search = html.input(
            {
                "class": "input search",
                "type": "search",
                "placeholder": "Search title, description, tags or people",
                "default_value": query,
                "on_change": lambda event: set_query(event_value(event).strip()),
            }
        )
        head = html.div({"class": "section-head"}, segmented(tabs, tab, set_tab, is_busy), search)

        if tab == "requested":
            columns = [render_request_column(group) for group in view["request_groups"]]
            tail = completed_list(view["completed_requests"], lambda task: card(task, "assignee"))
        elif tab == "clients":
            columns = [render_client_column(group) for group in view["client_groups"]]
            tail = None
        else:
            columns = [render_category_column(group) for group in view["category_groups"]]
            tail = None

        if not columns:
            empty = "No tasks match your search." if query else "No tasks here yet."
            return html.div(head, html.div({"class": "card glass-surface glass-panel mt-16 meta"}, empty), tail)
        return html.div(head, html.div({"class": "columns mt-16"}, *columns), tail)

    def column(key: str, title: Any, count: int, *children: Any, action: Any = None):
        return html.section(
            {"class": "column glass-surface glass-panel", "key": key},
            html.div({"class": "column-head"}, html.h3(*title), html.span({"class": "count"}, str(count)), action),
            *children,
        )

    def render_category_column(group: Dict[str, Any]):
        category = group["category"]
        add = html.button(
            {
                "class": "btn ghost small",
                "type": "button",
                "disabled": is_busy,
                "on_click": lambda event: open_new_task(
                    category["id"] if category["id"] != "uncategorized" else ""
                ),
            },
            "+",
        )
        return column(
            f"category-{category['id']}",
            (dot(category["color"]), f" {category['name']}"),
            len(group["active_tasks"]),
            html.div({"class": "list"}, *[card(task, "creator", movable=True) for task in group["active_tasks"]]),
            completed_list(group["completed_tasks"], lambda task: card(task, "creator")),
            action=add,
        )

    def render_request_column(group: Dict[str, Any]):
        person = group["user"]
        others = group["other_requests"]
        return column(
            f"assignee-{person['id']}",
            (person["name"],),
            group["total_count"],
            html.div({"class": "list"}, *[card(task, "category") for task in group["my_requests"]]),
            html.details(
                {"class": "completed"},
                html.summary(f"Also on their list ({len(others)})"),
                html.div({"class": "list"}, *[card(task, "creator") for task in others]),
            )
            if others
            else None,
        )

    def render_client_column(group: Dict[str, Any]):
        client = group["client"]
        title = client["name"] + (f" · {client['company']}" if client.get("company") else "")
        return column(
            f"client-{client['id']}",
            (title,),
            len(group["active_tasks"]),
            html.div({"class": "list"}, *[card(task, "creator") for task in group["active_tasks"]]),
            completed_list(group["completed_tasks"], lambda task: card(task, "creator")),
        )

    def render_task_form(submit_label: str, on_submit: Callable[[], None], on_cancel: Callable[[], None]):
        others = [u for u in data["internal_users"] if u["id"] != user_id]
        assignee = html.select(
            {
                "key": f"task.assignee_id-{form_serial}",
                "class": "select",
                "default_value": fields.get("task.assignee_id", ""),
                "disabled": is_busy,
                "on_change": lambda event: set_field("task.assignee_id", event_value(event)),
            },
            html.option({"value": ""}, "Me"),
            html.optgroup(
                {"label": "Team"},
                *[html.option({"key": u["id"], "value": u["id"]}, u["name"]) for u in others],
            ),
            html.optgroup(
                {"label": "Clients"},
                *[
                    html.option(
                        {"key": c["id"], "value": c["id"]},
                        c["name"] + (f" ({c['company']})" if c.get("company") else ""),
                    )
                    for c in data["clients"]
                ],
            ),
        )
        category = html.select(
            {
                "key": f"task.category_id-{form_serial}",
                "class": "select",
                "default_value": fields.get("task.category_id", ""),
                "disabled": is_busy,
                "on_change": lambda event: set_field("task.category_id", event_value(event)),
            },
            html.option({"value": ""}, "No category"),
            *[html.option({"key": c["id"], "value": str(c["id"])}, c["name"]) for c in data["categories"]],
        )
        tags = html.input(
            {
                "key": f"task.tags-{form_serial}",
                "class": "input",
                "list": "tag-suggestions",
                "placeholder": "Comma separated",
                "default_value": fields.get("task.tags", ""),
                "disabled": is_busy,
                "on_change": lambda event: set_field("task.tags", event_value(event)),
            }
        )
        return html.div(
            {"class": "form"},
            field("Title", text_input("task.title", "What needs doing?")),
            field("Description", text_area("task.description", "Details, links, context")),
            html.div(
                {"class": "grid-2"},
                field("Assign to", assignee),
                field("Category", category),
                field("Due date", text_input("task.due_date", input_type="date")),
                field("Tags", tags),
            ),
            field(
                "Priority",
                segmented(
                    [(p, PRIORITY_LABELS[p]) for p in PRIORITIES],
                    fields.get("task.priority", "medium"),
                    lambda value: set_field("task.priority", value),
                    is_busy,
                ),
            ),
            html.datalist({"id": "tag-suggestions"}, *[html.option({"key": t, "value": t}) for t in all_tags(data["tasks"])]),
            html.div(
                {"class": "form-actions"},
                html.button({"class": "btn ghost", "type": "button", "disabled": is_busy, "on_click": lambda event: on_cancel()}, "Cancel"),
                html.button({"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": lambda event: on_submit()}, submit_label),
            ),
        )

    def render_new_task():
        def submit() -> None:
            values = prefixed(fields, "task")

            def landed(task: Dict[str, Any]) -> None:
                set_tab(tab_for_assignee(task.get("assignee_id"), user_id, data["clients"]))
                set_page("dashboard")
                clear_prefix("task")

            run_action(lambda: actions.create_task(user, values), after=landed)

        def cancel() -> None:
            go("dashboard")

        return html.section(
            {"class": "card glass-surface glass-panel"},
            html.h2("New task"),
            render_task_form("Create task", submit, cancel),
        )

    def render_task_page():
        task = next((t for t in data["tasks"] if t["id"] == selected_id), None)
        back = html.button(
            {"class": "btn ghost", "type": "button", "on_click": lambda event: go("dashboard")},
            f"Back to {dict(DASHBOARD_TABS)[tab]}",
        )
        if task is None:
            return html.section({"class": "card glass-surface glass-panel"}, html.p("Task not found."), back)

        task_id = task["id"]
        prev_task, next_task = neighbours(tab_task_order(build_dashboard_view(data, user_id, tab)), task_id)

        def step(target: Dict[str, Any] | None, label: str):
            return html.button(
                {
                    "class": "btn ghost",
                    "type": "button",
                    "disabled": target is None or is_busy,
                    "on_click": lambda event: open_task(target["id"]) if target else None,
                },
                label,
            )

        def save() -> None:
            updates = prefixed(fields, "task")
            updates["assignee_id"] = updates.get("assignee_id") or user_id
            run_action(
                lambda: actions.update_task(user, task_id, updates),
                success="Task updated",
                after=lambda result: set_editing(False),
            )

        def begin_edit() -> None:
            start_form("task", task_form_values(task))
            set_editing(True)

        def remove() -> None:
            run_action(
                lambda: actions.delete_task(user, task_id),
                success=f"Deleted {task.get('ticket_id') or 'task'}",
                after=lambda result: set_page("dashboard"),
            )

        if editing:
            main = html.section(
                {"class": "card glass-surface glass-panel"},
                html.h2(f"Edit {task.get('ticket_id') or ''}"),
                render_task_form("Save changes", save, lambda: set_editing(False)),
            )
        else:
            main = html.section(
                {"class": "card glass-surface glass-panel"},
                html.div({"class": "task-meta"}, *task_meta(task)),
                html.h1(task.get("title") or ""),
                html.div({"class": "pre-wrap"}, task.get("description") or "No description."),
                html.div(
                    {"class": "form-actions mt-16"},
                    html.button({"class": "btn ghost", "type": "button", "disabled": is_busy, "on_click": lambda event: begin_edit()}, "Edit"),
                    confirm_button(f"task:{task_id}", "Delete", remove),
                ),
            )

        return html.div(
            html.div({"class": "section-head"}, back, html.div({"class": "form-actions"}, step(prev_task, "Previous"), step(next_task, "Next"))),
            html.div(
                {"class": "detail-layout mt-16"},
                html.div(main, render_comments(task)),
                render_task_aside(task, [(s, STATUS_LABELS[s]) for s in STATUSES]),
            ),
        )

    def render_task_aside(task: Dict[str, Any], status_options: List[Tuple[str, str]]):
        task_id = task["id"]
        due = days_remaining(task.get("due_date")) if is_active(task) else None
        due_text = format_full_date(task.get("due_date")) or "No due date"
        if due:
            due_text = f"{due_text} ({due['text']})"
        rows = [
            ("Created by", task["creator"]["name"] if task.get("creator") else "Unknown"),
            ("Assigned to", task["assignee"]["name"] if task.get("assignee") else "Unassigned"),
            ("Category", task["category"]["name"] if task.get("category") else "None"),
            ("Due", due_text),
            ("Created", format_full_date(task.get("created_at"))),
        ]
        if task.get("completed_at"):
            rows.append(("Completed", format_full_date(task["completed_at"])))
        return html.aside(
            {"class": "card glass-surface glass-panel"},
            html.h3("Status"),
            segmented(
                status_options,
                task.get("status") or "todo",
                lambda value: run_action(lambda: actions.change_status(user, task_id, value)),
                is_busy,
            ),
            html.div({"class": "mt-16"}, facts(rows)),
        )

    def render_comments(task: Dict[str, Any]):
        task_id = task["id"]

        def post() -> None:
            content = fields.get("comment.content", "")
            run_action(
                lambda: actions.add_comment(user, task_id, content),
                after=lambda result: clear_prefix("comment"),
            )

        return html.section(
            {"class": "card glass-surface glass-panel mt-16"},
            html.h3(f"Comments ({len(task.get('comments') or [])})"),
            comment_list(task.get("comments") or []),
            html.div(
                {"class": "form mt-12"},
                text_area("comment.content", "Write a comment", rows=3),
                html.div(
                    {"class": "form-actions"},
                    html.button({"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": lambda event: post()}, "Post comment"),
                ),
            ),
        )

    def pick_admin_tab(value: str) -> None:
        set_admin_tab(value)
        set_edit_row("")
        set_pending_delete("")

    def render_admin():
        if not actions.can_administer(user):
            return html.section({"class": "card glass-surface glass-panel"}, html.p("Admin access required."))
        body: Any
        if admin_tab == "categories":
            body = render_categories()
        elif admin_tab in ("internal", "clients"):
            body = render_members("client" if admin_tab == "clients" else "internal")
        else:
            stats = admin_stats(data["tasks"], data["categories"], data["internal_users"], data["clients"])
            body = stat_grid(stats, STAT_LABELS)
        return html.div(
            segmented(ADMIN_TABS, admin_tab, pick_admin_tab, is_busy),
            html.div({"class": "mt-16"}, body),
        )

    def render_categories():
        new_color = fields.get("category.color", DEFAULT_CATEGORY_COLOR)

        def add() -> None:
            values = prefixed(fields, "category")
            values.setdefault("color", DEFAULT_CATEGORY_COLOR)
            run_action(
                lambda: actions.create_category(user, values),
                success=f"Added category {values.get('name', '').strip()}",
                after=lambda result: clear_prefix("category"),
            )

        rows = [render_category_row(category) for category in data["categories"]]
        return html.div(
            html.section(
                {"class": "card glass-surface glass-panel"},
                html.h3("Add category"),
                html.div(
                    {"class": "form"},
                    field("Name", text_input("category.name", "e.g. Marketing")),
                    field("Color", color_swatches(COLOR_PRESETS, new_color, lambda value: set_field("category.color", value), is_busy)),
                    html.div(
                        {"class": "form-actions"},
                        html.button({"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": lambda event: add()}, "Add category"),
                    ),
                ),
            ),
            html.section(
                {"class": "card glass-surface glass-panel mt-16 table-wrap"},
                html.table(
                    {"class": "table"},
                    html.thead(html.tr(html.th("Name"), html.th("Color"), html.th(""))),
                    html.tbody(*rows),
                )
                if rows
                else html.p({"class": "meta"}, "No categories yet."),
            ),
        )

    def render_category_row(category: Dict[str, Any]):
        category_id = category["id"]
        row_key = f"category:{category_id}"
        if edit_row == row_key:
            color = fields.get("edit.color", category["color"])

            def save() -> None:
                updates = prefixed(fields, "edit")
                run_action(
                    lambda: actions.update_category(user, category_id, updates),
                    success="Category updated",
                    after=lambda result: set_edit_row(""),
                )

            return html.tr(
                {"key": row_key},
                html.td(text_input("edit.name", default=category["name"])),
                html.td(color_swatches(COLOR_PRESETS, color, lambda value: set_field("edit.color", value), is_busy)),
                html.td(
                    html.div(
                        {"class": "form-actions"},
                        html.button({"class": "btn primary small", "type": "button", "disabled": is_busy, "on_click": lambda event: save()}, "Save"),
                        html.button({"class": "btn ghost small", "type": "button", "on_click": lambda event: set_edit_row("")}, "Cancel"),
                    )
                ),
            )

        def begin() -> None:
            start_form("edit", {"name": category["name"], "color": category["color"]})
            set_edit_row(row_key)

        return html.tr(
            {"key": row_key},
            html.td(dot(category["color"]), f" {category['name']}"),
            html.td({"class": "meta"}, category["color"]),
            html.td(
                html.div(
                    {"class": "form-actions"},
                    html.button({"class": "btn ghost small", "type": "button", "disabled": is_busy, "on_click": lambda event: begin()}, "Edit"),
                    confirm_button(
                        row_key,
                        "Delete",
                        lambda: run_action(lambda: actions.delete_category(user, category_id), success="Category deleted"),
                    ),
                )
            ),
        )

    def render_members(user_type: str):
        members = data["clients"] if user_type == "client" else data["internal_users"]
        prefix = f"member-{user_type}"

        def add() -> None:
            values = {**prefixed(fields, prefix), "type": user_type}
            run_action(lambda: actions.add_member(user, values), after=lambda result: clear_prefix(prefix))

        extra = (
            field("Company", text_input(f"{prefix}.company", "Company name"))
            if user_type == "client"
            else field(
                "Role",
                segmented(MEMBER_ROLES, fields.get(f"{prefix}.role", "staff"), lambda value: set_field(f"{prefix}.role", value), is_busy),
            )
        )
        hint = (
            "Leave the password empty to send an invitation email."
            if app_config.admin_configured()
            else "Sign-in administration is not configured; the member is added as a profile without a sign-in."
        )
        rows = [render_member_row(member, user_type) for member in members]
        return html.div(
            html.section(
                {"class": "card glass-surface glass-panel"},
                html.h3("Add client" if user_type == "client" else "Add internal member"),
                html.div(
                    {"class": "form"},
                    html.div(
                        {"class": "grid-2"},
                        field("Name", text_input(f"{prefix}.name", "Full name")),
                        field("Email", text_input(f"{prefix}.email", "name@example.com", "email")),
                        field("Password", text_input(f"{prefix}.password", "Optional", "password")),
                        extra,
                    ),
                    html.p({"class": "meta"}, hint),
                    html.div(
                        {"class": "form-actions"},
                        html.button({"class": "btn primary", "type": "button", "disabled": is_busy, "on_click": lambda event: add()}, "Add"),
                    ),
                ),
            ),
            html.section(
                {"class": "card glass-surface glass-panel mt-16 table-wrap"},
                html.table(
                    {"class": "table"},
                    html.thead(
                        html.tr(
                            html.th("Name"),
                            html.th("Email"),
                            html.th("Company" if user_type == "client" else "Role"),
                            html.th(""),
                        )
                    ),
                    html.tbody(*rows),
                )
                if rows
                else html.p({"class": "meta"}, "Nobody here yet."),
            ),
        )

    def render_member_row(member: Dict[str, Any], user_type: str):
        member_id = member["id"]
        row_key = f"member:{member_id}"
        detail_key = "company" if user_type == "client" else "role"
        if edit_row == row_key:

            def save() -> None:
                updates = prefixed(fields, "edit")
                run_action(lambda: actions.update_member(user, member_id, updates), after=lambda result: set_edit_row(""))

            if user_type == "client":
                detail = text_input("edit.company", default=member.get("company") or "")
            else:
                detail = segmented(
                    MEMBER_ROLES,
                    fields.get("edit.role", member.get("role") or "staff"),
                    lambda value: set_field("edit.role", value),
                    is_busy,
                )
            return html.tr(
                {"key": row_key},
                html.td(text_input("edit.name", default=member["name"])),
                html.td({"class": "meta"}, member.get("email") or ""),
                html.td(detail),
                html.td(
                    html.div(
                        {"class": "form-actions"},
                        html.button({"class": "btn primary small", "type": "button", "disabled": is_busy, "on_click": lambda event: save()}, "Save"),
                        html.button({"class": "btn ghost small", "type": "button", "on_click": lambda event: set_edit_row("")}, "Cancel"),
                    )
                ),
            )

        def begin() -> None:
            start_form("edit", {"name": member["name"], detail_key: member.get(detail_key) or ""})
            set_edit_row(row_key)

        actions_cell: List[Any] = [
            html.button({"class": "btn ghost small", "type": "button", "disabled": is_busy, "on_click": lambda event: begin()}, "Edit"),
        ]
        if member_id != user_id:
            actions_cell.append(
                confirm_button(row_key, "Delete", lambda: run_action(lambda: actions.delete_member(user, member_id)))
            )
        return html.tr(
            {"key": row_key},
            html.td(member["name"]),
            html.td({"class": "meta"}, member.get("email") or ""),
            html.td(member.get(detail_key) or ""),
            html.td(html.div({"class": "form-actions"}, *actions_cell)),
        )

    def pick_client(client_id: str) -> None:
        set_preview_client(client_id)
        set_selected_id(None)

    def render_client_portal():
        portal = client_portal_view(user, data, preview_client, client_filter)
        client = portal["client"]
        if client is None:
            return html.section(
                {"class": "card glass-surface glass-panel"},
                html.p("No client accounts yet. Add one from the admin console."),
            )

        picker = None
        if portal["preview_clients"]:
            picker = field(
                "Previewing",
                html.select(
                    {
                        "class": "select",
                        "default_value": client["id"],
                        "on_change": lambda event: pick_client(event_value(event)),
                    },
                    *[html.option({"key": c["id"], "value": c["id"]}, c["name"]) for c in portal["preview_clients"]],
                ),
            )
        counts = portal["counts"]
        filter_labels = {
            "active": f"{CLIENT_FILTER_LABELS['active']} ({counts['active']})",
            "completed": f"{CLIENT_FILTER_LABELS['completed']} ({counts['completed']})",
            "all": CLIENT_FILTER_LABELS["all"],
        }
        tasks = portal["tasks"]
        listing = (
            html.div({"class": "list"}, *[card(task, "creator") for task in tasks])
            if tasks
            else html.p({"class": "meta"}, "Nothing here.")
        )
        selected = next((t for t in portal["all_tasks"] if t["id"] == selected_id), None)
        detail = None
        if selected is not None:
            status_options = [(s, STATUS_LABELS[s]) for s in actions.CLIENT_STATUSES]
            detail = html.div(
                html.section(
                    {"class": "card glass-surface glass-panel"},
                    html.div({"class": "task-meta"}, *task_meta(selected)),
                    html.h2(selected.get("title") or ""),
                    html.div({"class": "pre-wrap"}, selected.get("description") or "No description."),
                ),
                render_task_aside(selected, status_options),
                render_comments(selected),
            )

        heading = client["name"] + (f" · {client['company']}" if client.get("company") else "")
        return html.div(
            html.div({"class": "section-head"}, html.h2(heading), picker),
            segmented(
                [(key, filter_labels[key]) for key in CLIENT_FILTERS],
                portal["filter"],
                set_client_filter,
                is_busy,
            ),
            html.div({"class": "detail-layout mt-16"}, listing, detail),
        )

    if data.get("error"):
        body = unavailable_card(
            data["error"],
            html.button({"class": "btn primary", "type": "button", "on_click": lambda event: refresh()}, "Retry"),
        )
    elif client_user or page == "client":
        body = render_client_portal()
    elif page == "admin":
        body = render_admin()
    elif page == "new_task":
        body = render_new_task()
    elif page == "task":
        body = render_task_page()
    else:
        body = render_dashboard()

    return html.div(
        {"id": "glug-root"},
        html.style(GLASS_CSS),
        render_nav(),
        html.main(
            {"class": "page"},
            notice_banner(notice, lambda event: set_notice(None)),
            body,
        ),
    )
