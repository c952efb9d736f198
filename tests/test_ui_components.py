from __future__ import annotations

from datetime import datetime, timezone

from reactpy.utils import vdom_to_html

import ui_components as ui


def make_task(**fields):
    task = {
        "id": 7,
        "ticket_id": "GLUG-0007",
        "title": "Renew domain",
        "status": "todo",
        "priority": "urgent",
        "due_date": None,
        "tags": ["ops"],
        "creator": {"id": "mika", "name": "Mika"},
        "assignee": {"id": "sato", "name": "Sato"},
        "comments": [],
    }
    task.update(fields)
    return task


def test_task_card_shows_meta():
    page = vdom_to_html(ui.task_card(make_task(comments=[{"id": 1}, {"id": 2}]), "creator"))
    assert "GLUG-0007" in page
    assert "Renew domain" in page
    assert "Urgent" in page
    assert "from Mika" in page
    assert "#ops" in page
    assert "2 comments" in page
    assert "is-done" not in page


def test_task_card_done_and_status_pills():
    done = vdom_to_html(ui.task_card(make_task(status="done"), "assignee"))
    assert "is-done" in done
    assert "to Sato" in done
    assert "Done" not in done

    blocked = vdom_to_html(ui.task_card(make_task(status="in_progress")))
    assert "In progress" in blocked


def test_notice_banner():
    assert ui.notice_banner(None) is None
    banner = vdom_to_html(ui.notice_banner({"kind": "danger", "text": "Nope"}))
    assert "pill-danger" in banner
    assert "Nope" in banner


def test_comment_list():
    assert "No comments yet." in vdom_to_html(ui.comment_list([]))
    comments = [
        {
            "id": 1,
            "content": "Looks good",
            "user": {"name": "Sato"},
            "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        }
    ]
    page = vdom_to_html(ui.comment_list(comments))
    assert "Sato" in page
    assert "Looks good" in page


def test_stat_grid():
    page = vdom_to_html(ui.stat_grid({"total_tasks": 4}, [("total_tasks", "Total tasks"), ("overdue_tasks", "Overdue")]))
    assert "Total tasks" in page
    assert "4" in page
    assert "Overdue" in page


def test_landing_page():
    pages = [{"href": "/app/?view=admin", "title": "Admin console", "badge": "Admin", "pill": "pill-warning", "description": "Categories"}]
    page = ui.landing_page(pages, [("info", "Signed out")])
    assert page.startswith("<!doctype html>")
    assert "<title>GLUG Reminders</title>" in page
    assert 'href="/app/?view=admin"' in page
    assert "Signed out" in page
    assert ui.GLASS_CSS.strip()[:20] in page


def test_login_page_modes():
    signin = ui.login_page("signin", "/app/", (), True, "/login", "/login?mode=signup")
    assert 'name="name"' not in signin
    assert 'value="/app/"' in signin
    assert "Create an account" in signin
    assert "Sign-in is not configured" not in signin

    signup = ui.login_page("signup", "", [("danger", "Bad <password>")], False, "/login", "/login", email="a@example.test")
    assert 'name="name"' in signup
    assert 'value="a@example.test"' in signup
    assert "Sign-in is not configured" in signup
    assert "Bad &lt;password&gt;" in signup


def test_auth_callback_page_posts_tokens():
    page = ui.auth_callback_page("/auth/callback", "/login")
    assert 'action="/auth/callback"' in page
    assert 'id="access_token"' in page
    assert 'window.location.replace("/login")' in page


def test_unavailable_page():
    page = ui.unavailable_page("connection refused", "/app/")
    assert "Data unavailable" in page
    assert "connection refused" in page
    assert 'href="/app/"' in page
