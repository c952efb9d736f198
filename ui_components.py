from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, List, Sequence

from markupsafe import escape
from reactpy import html
from reactpy.utils import vdom_to_html

from task_views import (
    days_remaining,
    format_comment_time,
    priority_class,
    priority_label,
    status_class,
    status_label,
)

APP_TITLE = "GLUG Reminders"
APP_PATH = "/app/"

GLASS_CSS = """
:root {
  color-scheme: light;
  --bg-2: #86c9ff;
  --bg-3: #356eff;
  --bg-4: #f2f6ff;
  --glass: rgba(255, 255, 255, 0.62);
  --glass-2: rgba(255, 255, 255, 0.36);
  --border: rgba(255, 255, 255, 0.5);
  --text: #0b1220;
  --muted: #56627a;
  --shadow: 0 24px 60px rgba(10, 20, 45, 0.22);
  --shadow-soft: 0 12px 30px rgba(10, 20, 45, 0.14);
  --blur: 26px;
  --radius: 22px;
  --accent: #0a84ff;
  --accent-2: #6bd7ff;
}

@media (prefers-color-scheme: dark) {
  :root {
    color-scheme: dark;
    --bg-2: #111f3d;
    --bg-3: #1b2f61;
    --bg-4: #0b142b;
    --glass: rgba(12, 18, 34, 0.66);
    --glass-2: rgba(12, 18, 34, 0.46);
    --border: rgba(255, 255, 255, 0.14);
    --text: #ecf2ff;
    --muted: #a7b6d3;
    --accent: #6bb7ff;
    --accent-2: #7ee1ff;
  }
}

* { box-sizing: border-box; }

body {
  margin: 0;
  font-family: "SF Pro Text", "Helvetica Neue", "Segoe UI", sans-serif;
  color: var(--text);
  background: linear-gradient(155deg, var(--bg-2) 0%, var(--bg-3) 55%, var(--bg-4) 100%);
  min-height: 100vh;
}

.page {
  max-width: 1180px;
  margin: 0 auto;
  padding: 28px 24px 88px;
  display: grid;
  gap: 24px;
}

.glass-surface {
  background: linear-gradient(135deg, var(--glass), var(--glass-2));
  border: 1px solid var(--border);
  border-radius: var(--radius);
  box-shadow: var(--shadow), inset 0 1px 0 rgba(255, 255, 255, 0.45);
  backdrop-filter: blur(var(--blur)) saturate(180%);
  -webkit-backdrop-filter: blur(var(--blur)) saturate(180%);
}

.glass-panel { border-radius: 16px; box-shadow: var(--shadow-soft); }

.card { padding: 24px; }

.navbar {
  max-width: 1180px;
  margin: 20px auto 0;
  padding: 14px 20px;
  display: flex;
  align-items: center;
  justify-content: space-between;
  gap: 16px;
  flex-wrap: wrap;
  position: sticky;
  top: 16px;
  z-index: 10;
}

.nav-left { display: grid; gap: 2px; min-width: 0; flex: 1 1 280px; }
.nav-eyebrow, .eyebrow { text-transform: uppercase; letter-spacing: 0.28em; font-size: 10px; color: var(--muted); }
.nav-title { font-size: 18px; font-weight: 600; }
.nav-meta, .meta { font-size: 13px; color: var(--muted); }
.nav-actions, .form-actions, .task-meta, .tabs { display: flex; gap: 8px; flex-wrap: wrap; align-items: center; }
.nav-actions, .form-actions { justify-content: flex-end; }

h1, h2, h3 { margin: 0 0 8px; font-weight: 600; letter-spacing: -0.02em; }
h1 { font-size: 30px; }
h2 { font-size: 19px; }
h3 { font-size: 16px; }

.section-head {
  display: flex;
  align-items: center;
  justify-content: space-between;
  gap: 12px;
  flex-wrap: wrap;
  margin-bottom: 16px;
}

.btn, .seg-btn {
  border: 1px solid var(--border);
  background: linear-gradient(135deg, rgba(255, 255, 255, 0.8), rgba(255, 255, 255, 0.35));
  padding: 9px 15px;
  border-radius: 999px;
  cursor: pointer;
  font-size: 13px;
  font-weight: 600;
  color: var(--text);
  text-decoration: none;
  display: inline-flex;
  align-items: center;
  gap: 6px;
}

.btn.primary { background: linear-gradient(160deg, var(--accent-2), var(--accent) 55%, #0a4bd6 100%); color: #fff; }
.btn.ghost { background: rgba(255, 255, 255, 0.14); box-shadow: none; }
.btn.danger { color: #b42318; }
.btn.small { padding: 5px 10px; font-size: 12px; }
.seg-btn.active { background: rgba(10, 132, 255, 0.18); border-color: rgba(10, 132, 255, 0.5); color: var(--accent); }

.tag {
  display: inline-flex;
  padding: 3px 9px;
  border-radius: 999px;
  border: 1px solid var(--border);
  background: rgba(255, 255, 255, 0.55);
  font-size: 12px;
  color: var(--muted);
}

.pill {
  display: inline-flex;
  align-items: center;
  padding: 3px 10px;
  border-radius: 999px;
  font-size: 12px;
  font-weight: 600;
  border: 1px solid transparent;
}

.pill-success { background: rgba(68, 201, 140, 0.18); color: #0f5132; border-color: rgba(68, 201, 140, 0.5); }
.pill-warning { background: rgba(255, 176, 86, 0.2); color: #7a4b0b; border-color: rgba(255, 176, 86, 0.5); }
.pill-danger { background: rgba(255, 99, 99, 0.2); color: #7a1010; border-color: rgba(255, 99, 99, 0.5); }
.pill-info { background: rgba(86, 160, 255, 0.2); color: #133d7a; border-color: rgba(86, 160, 255, 0.5); }
.pill-muted { background: rgba(15, 23, 42, 0.08); color: var(--muted); border-color: rgba(15, 23, 42, 0.12); }

.flash { padding: 12px 16px; border-radius: 14px; font-weight: 600; }

.columns { display: flex; gap: 20px; overflow-x: auto; padding-bottom: 8px; align-items: flex-start; }
.column { width: 330px; flex-shrink: 0; display: grid; gap: 10px; }
.column-head { display: flex; align-items: center; gap: 8px; padding: 8px 4px; border-bottom: 1px solid rgba(15, 23, 42, 0.12); }
.column-head .count { margin-left: auto; }
.dot { width: 10px; height: 10px; border-radius: 999px; display: inline-block; flex-shrink: 0; }

.list { display: grid; gap: 10px; }
.task-card { padding: 12px 14px; display: flex; gap: 10px; align-items: flex-start; justify-content: space-between; }
.task-card.is-done { opacity: 0.65; }
.task-card.is-selected { outline: 2px solid var(--accent); }
.task-main { display: flex; gap: 10px; align-items: flex-start; min-width: 0; }
.task-title { font-weight: 600; overflow-wrap: anywhere; }
.task-card.is-done .task-title { text-decoration: line-through; }
.ticket-id { font-family: ui-monospace, monospace; font-size: 11px; color: var(--muted); }
.mover { display: grid; gap: 4px; }

.check {
  width: 22px;
  height: 22px;
  border-radius: 999px;
  border: 2px solid rgba(15, 23, 42, 0.3);
  background: transparent;
  cursor: pointer;
  color: #fff;
  font-size: 12px;
  line-height: 1;
}

.check.checked { background: #22c55e; border-color: #22c55e; }
form.inline { display: inline; margin: 0; }
.flash { display: flex; justify-content: space-between; align-items: center; gap: 12px; }
.flash .btn { padding: 3px 10px; }
.pre-wrap { white-space: pre-wrap; }
.flush { margin: 0; }
.mt-12 { margin-top: 12px; }
.mt-16 { margin-top: 16px; }
.mt-24 { margin-top: 24px; }
.search { width: 240px; }
.full-width { width: 100%; }
.landing-card { display: grid; gap: 10px; }
.landing-card h2 { margin: 4px 0 0; }
button.link { background: none; border: 0; padding: 0; cursor: pointer; font: inherit; text-align: left; }

details.completed summary { cursor: pointer; color: var(--muted); font-size: 13px; padding: 6px 4px; }

.grid-2 { display: grid; grid-template-columns: minmax(0, 1fr) minmax(0, 1fr); gap: 16px; }
.detail-layout { display: grid; grid-template-columns: minmax(0, 2fr) minmax(0, 1fr); gap: 24px; }
.facts { display: grid; grid-template-columns: 140px 1fr; gap: 8px 12px; font-size: 14px; }
.facts dt { color: var(--muted); }
.facts dd { margin: 0; }

.stats { display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr)); gap: 12px; }
.stat { padding: 16px; }
.stat strong { display: block; font-size: 28px; }

.comment { padding: 12px 14px; display: grid; gap: 4px; }
.comment-head { display: flex; gap: 8px; align-items: baseline; }

.table-wrap { border-radius: 16px; overflow-x: auto; }
.table { width: 100%; border-collapse: collapse; font-size: 14px; }
.table th, .table td { text-align: left; padding: 10px 12px; border-bottom: 1px solid rgba(15, 23, 42, 0.08); vertical-align: middle; }
.table th { font-size: 11px; letter-spacing: 0.12em; text-transform: uppercase; color: var(--muted); }

.link { color: var(--accent); text-decoration: none; font-weight: 600; }
.link:hover { text-decoration: underline; }

.form { display: grid; gap: 14px; }
.field { display: grid; gap: 6px; }
.label { font-size: 12px; text-transform: uppercase; letter-spacing: 0.12em; color: var(--muted); }

.input, .textarea, .select {
  width: 100%;
  padding: 11px 13px;
  border-radius: 12px;
  border: 1px solid rgba(255, 255, 255, 0.4);
  background: linear-gradient(135deg, rgba(255, 255, 255, 0.9), rgba(255, 255, 255, 0.5));
  font-size: 14px;
  color: var(--text);
}

.textarea { min-height: 110px; resize: vertical; }
.swatches { display: flex; gap: 8px; flex-wrap: wrap; }
.swatch { display: inline-flex; align-items: center; gap: 4px; font-size: 12px; }

.landing { display: grid; grid-template-columns: repeat(auto-fit, minmax(260px, 1fr)); gap: 18px; }
.landing a { color: inherit; text-decoration: none; }
.auth-card { max-width: 440px; margin: 40px auto 0; width: 100%; }

@media (max-width: 820px) {
  .detail-layout, .grid-2 { grid-template-columns: 1fr; }
  .column { width: 280px; }
  .page { padding: 20px 14px 60px; }
}
"""


# Building blocks shared by the board and the server-rendered pages


def pill(text: str, tone: str):
    return html.span({"class": f"pill {tone}"}, text)


def dot(color: str):
    return html.span({"class": "dot", "style": {"background": color}})


def tag_chips(tags: Iterable[str]) -> List[Any]:
    return [html.span({"class": "tag", "key": tag}, f"#{tag}") for tag in tags]


def field(label: str, control: Any):
    return html.label({"class": "field"}, html.span({"class": "label"}, label), control)


def facts(rows: Sequence[tuple]):
    cells: List[Any] = []
    for label, value in rows:
        cells.append(html.dt({"key": f"{label}-term"}, label))
        cells.append(html.dd({"key": f"{label}-value"}, value))
    return html.dl({"class": "facts"}, *cells)


def notice_banner(notice: Dict[str, str] | None, on_dismiss: Callable | None = None):
    if not notice:
        return None
    children: List[Any] = [html.span(notice["text"])]
    if on_dismiss is not None:
        children.append(
            html.button({"class": "btn ghost small", "type": "button", "on_click": on_dismiss}, "Dismiss")
        )
    return html.div({"class": f"flash pill-{notice.get('kind', 'info')}"}, *children)


def segmented(
    options: Sequence[tuple],
    selected: str,
    on_pick: Callable[[str], None],
    busy: bool = False,
):
    return html.div(
        {"class": "tabs"},
        *[
            html.button(
                {
                    "key": value,
                    "type": "button",
                    "class": f"seg-btn {'active' if value == selected else ''}",
                    "disabled": busy,
                    "on_click": lambda event, value=value: on_pick(value),
                },
                label,
            )
            for value, label in options
        ],
    )


def color_swatches(
    presets: Sequence[Dict[str, str]],
    selected: str,
    on_pick: Callable[[str], None],
    busy: bool = False,
):
    return html.div(
        {"class": "swatches"},
        *[
            html.button(
                {
                    "key": preset["color"],
                    "type": "button",
                    "class": f"seg-btn {'active' if preset['color'] == selected else ''}",
                    "title": preset["color"],
                    "disabled": busy,
                    "on_click": lambda event, color=preset["color"]: on_pick(color),
                },
                dot(preset["color"]),
                preset["name"],
            )
            for preset in presets
        ],
    )


def task_meta(task: Dict[str, Any], person: str | None = None) -> List[Any]:
    """Ticket id, priority, status, due label, the chosen person, tags and comment count."""
    status = task.get("status")
    items: List[Any] = [
        html.span({"class": "ticket-id"}, task.get("ticket_id") or ""),
        pill(priority_label(task.get("priority")), priority_class(task.get("priority"))),
    ]
    if status not in ("todo", "done"):
        items.append(pill(status_label(status), status_class(status)))
    due = days_remaining(task.get("due_date"))
    if due and status != "done":
        items.append(pill(due["text"], due["class"]))
    if person == "creator" and task.get("creator"):
        items.append(html.span({"class": "meta"}, f"from {task['creator']['name']}"))
    elif person == "assignee" and task.get("assignee"):
        items.append(html.span({"class": "meta"}, f"to {task['assignee']['name']}"))
    elif person == "category" and task.get("category"):
        category = task["category"]
        items.append(html.span({"class": "meta"}, dot(category["color"]), f" {category['name']}"))
    items.extend(tag_chips(task.get("tags") or []))
    count = len(task.get("comments") or [])
    if count:
        items.append(html.span({"class": "meta"}, f"{count} comment{'s' if count != 1 else ''}"))
    return items


def task_card(
    task: Dict[str, Any],
    person: str | None = None,
    selected: bool = False,
    busy: bool = False,
    on_open: Callable[[], None] | None = None,
    on_toggle: Callable[[bool], None] | None = None,
    on_move: Callable[[str], None] | None = None,
):
    done = task.get("status") == "done"
    classes = "task-card glass-surface glass-panel"
    if done:
        classes += " is-done"
    if selected:
        classes += " is-selected"

    main: List[Any] = []
    if on_toggle is not None:
        main.append(
            html.button(
                {
                    "class": f"check{' checked' if done else ''}",
                    "type": "button",
                    "title": "Mark as not done" if done else "Mark as done",
                    "disabled": busy,
                    "on_click": lambda event: on_toggle(not done),
                },
                "✓" if done else "",
            )
        )
    if on_open is not None:
        title = html.button(
            {"class": "task-title link", "type": "button", "on_click": lambda event: on_open()},
            task.get("title") or "",
        )
    else:
        title = html.span({"class": "task-title"}, task.get("title") or "")
    main.append(html.div(title, html.div({"class": "task-meta"}, *task_meta(task, person))))

    children: List[Any] = [html.div({"class": "task-main"}, *main)]
    if on_move is not None:
        children.append(
            html.div(
                {"class": "mover"},
                html.button(
                    {
                        "class": "btn ghost small",
                        "type": "button",
                        "title": "Move up",
                        "disabled": busy,
                        "on_click": lambda event: on_move("up"),
                    },
                    "▲",
                ),
                html.button(
                    {
                        "class": "btn ghost small",
                        "type": "button",
                        "title": "Move down",
                        "disabled": busy,
                        "on_click": lambda event: on_move("down"),
                    },
                    "▼",
                ),
            )
        )
    return html.article({"class": classes, "key": task.get("id")}, *children)


def completed_list(tasks: Sequence[Dict[str, Any]], render_card: Callable[[Dict[str, Any]], Any]):
    if not tasks:
        return None
    return html.details(
        {"class": "completed"},
        html.summary(f"Completed ({len(tasks)})"),
        html.div({"class": "list"}, *[render_card(task) for task in tasks]),
    )


def comment_list(comments: Sequence[Dict[str, Any]]):
    if not comments:
        return html.div({"class": "list"}, html.div({"class": "meta"}, "No comments yet."))
    return html.div(
        {"class": "list"},
        *[
            html.div(
                {"class": "comment glass-surface glass-panel", "key": comment.get("id", idx)},
                html.div(
                    {"class": "comment-head"},
                    html.strong(comment["user"]["name"] if comment.get("user") else "Unknown"),
                    html.span({"class": "meta"}, format_comment_time(comment.get("created_at"))),
                ),
                html.div({"class": "pre-wrap"}, comment.get("content") or ""),
            )
            for idx, comment in enumerate(comments)
        ],
    )


def stat_grid(stats: Dict[str, int], labels: Sequence[tuple]):
    return html.section(
        {"class": "stats"},
        *[
            html.div(
                {"class": "stat glass-surface glass-panel", "key": key},
                html.span({"class": "meta"}, label),
                html.strong(str(stats.get(key, 0))),
            )
            for key, label in labels
        ],
    )


def nav_header(subtitle: str, meta: str = "", actions: Sequence[Any] = ()):
    left: List[Any] = [html.div({"class": "nav-eyebrow"}, APP_TITLE), html.div({"class": "nav-title"}, subtitle)]
    if meta:
        left.append(html.div({"class": "nav-meta"}, meta))
    return html.header(
        {"class": "navbar glass-surface"},
        html.div({"class": "nav-left"}, *left),
        html.nav({"class": "nav-actions"}, *actions),
    )


# Server-rendered pages (sign-in happens before the board's websocket exists)


def render_document(title: str, body: Any, script: str = "") -> str:
    return (
        "<!doctype html>\n"
        '<html lang="en"><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        f"<title>{escape(title)}</title><style>{GLASS_CSS}</style></head>"
        f"<body>{vdom_to_html(body)}{script}</body></html>"
    )


def static_page(
    title: str,
    subtitle: str,
    notices: Sequence[tuple],
    *content: Any,
    actions: Sequence[Any] = (),
    script: str = "",
) -> str:
    flashes = [html.div({"class": f"flash pill-{kind}"}, message) for kind, message in notices]
    body = html.div(
        nav_header(subtitle, actions=actions or [html.a({"class": "btn ghost", "href": "/"}, "Home")]),
        html.main({"class": "page"}, *flashes, *content),
    )
    return render_document(title, body, script)


def landing_page(pages: Sequence[Dict[str, str]], notices: Sequence[tuple] = ()) -> str:
    cards = [
        html.a(
            {"href": page["href"]},
            html.div(
                {"class": "card glass-surface landing-card"},
                html.div(pill(page["badge"], page["pill"])),
                html.h2(page["title"]),
                html.div({"class": "meta"}, page["description"]),
            ),
        )
        for page in pages
    ]
    return static_page(
        APP_TITLE,
        APP_TITLE,
        notices,
        html.section(
            {"class": "card glass-surface"},
            html.div({"class": "eyebrow"}, "Task reminders"),
            html.h1(APP_TITLE),
            html.div({"class": "meta"}, "Choose where to work today."),
        ),
        html.section({"class": "landing"}, *cards),
        actions=[html.a({"class": "btn primary", "href": APP_PATH}, "Open board")],
    )


def login_page(
    mode: str,
    next_url: str,
    notices: Sequence[tuple],
    auth_enabled: bool,
    action_url: str,
    switch_url: str,
    email: str = "",
    name: str = "",
) -> str:
    signup = mode == "signup"
    heading = "Create account" if signup else "Sign in"
    controls: List[Any] = [
        html.input({"type": "hidden", "name": "mode", "value": mode}),
        html.input({"type": "hidden", "name": "next", "value": next_url}),
    ]
    if signup:
        controls.append(field("Name", html.input({"class": "input", "name": "name", "value": name})))
    controls.append(
        field(
            "Email",
            html.input({"class": "input", "type": "email", "name": "email", "value": email, "required": "required"}),
        )
    )
    controls.append(
        field(
            "Password",
            html.input(
                {"class": "input", "type": "password", "name": "password", "minlength": "6", "required": "required"}
            ),
        )
    )
    submit = {"class": "btn primary", "type": "submit"}
    if not auth_enabled:
        submit["disabled"] = "disabled"
    controls.append(
        html.div(
            {"class": "form-actions"},
            html.a(
                {"class": "btn ghost", "href": switch_url},
                "I already have an account" if signup else "Create an account",
            ),
            html.button(submit, "Sign up" if signup else "Sign in"),
        )
    )

    card: List[Any] = [html.h1(heading)]
    if not auth_enabled:
        card.append(
            html.div(
                {"class": "flash pill-warning"},
                "Sign-in is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY.",
            )
        )
    card.append(html.form({"class": "form", "method": "post", "action": action_url}, *controls))
    return static_page(
        f"{heading} · {APP_TITLE}",
        heading,
        notices,
        html.section({"class": "card glass-surface auth-card"}, *card),
    )


def auth_callback_page(post_url: str, login_url: str) -> str:
    """Invite and magic links put the tokens in the URL fragment; post them back to the server."""
    script = (
        "<script>(function () {"
        'var params = new URLSearchParams(window.location.hash.replace(/^#/, ""));'
        'var token = params.get("access_token");'
        f"if (!token) {{ window.location.replace({json.dumps(login_url)}); return; }}"
        'document.getElementById("access_token").value = token;'
        'document.getElementById("refresh_token").value = params.get("refresh_token") || "";'
        'document.getElementById("callback-form").submit();'
        "})();</script>"
    )
    return static_page(
        APP_TITLE,
        "Signing in",
        (),
        html.section(
            {"class": "card glass-surface auth-card"},
            html.h1("Finishing sign-in…"),
            html.form(
                {"id": "callback-form", "method": "post", "action": post_url},
                html.input({"type": "hidden", "name": "access_token", "id": "access_token"}),
                html.input({"type": "hidden", "name": "refresh_token", "id": "refresh_token"}),
                html.noscript(html.div({"class": "meta"}, "JavaScript is required to complete this link.")),
            ),
        ),
        script=script,
    )


def unavailable_card(error: str, retry: Any):
    return html.section(
        {"class": "card glass-surface"},
        html.h1("Data unavailable"),
        html.div(
            {"class": "meta"},
            "The app started, but data could not be loaded. Check DATABASE_URL and database connectivity.",
        ),
        html.pre({"class": "meta pre-wrap"}, error or "Unknown error"),
        html.div({"class": "form-actions"}, retry),
    )


def unavailable_page(error: str, retry_url: str) -> str:
    return static_page(
        APP_TITLE,
        "Data unavailable",
        (),
        unavailable_card(error, html.a({"class": "btn primary", "href": retry_url}, "Retry")),
    )
