from __future__ import annotations

from datetime import date
from unittest.mock import patch

import psycopg2
import pytest

import auth_backend
import website

from .fakes import FakeStore


@pytest.fixture()
def team(fake_store: FakeStore):
    """Two staff members, an admin, one client and a category."""
    fake_store.add_profile("mika", "Mika")
    fake_store.add_profile("sato", "Sato")
    fake_store.add_profile("boss", "Boss", role="admin")
    fake_store.add_profile("acme", "Tanaka", user_type="client", role="client", company="Acme Inc")
    design = fake_store.add_category("Design", "#ef4444")
    return {"design": design}


def test_home_is_public(client, auth_enabled):
    response = client.get("/")
    assert response.status_code == 200
    assert b"Staff dashboard" in response.data
    assert b"Client portal" in response.data


# auth guard


def test_pages_redirect_to_login_when_signed_out(client, auth_enabled):
    response = client.get("/dashboard?tab=requested")
    assert response.status_code == 302
    assert response.headers["Location"].startswith("/login?next=")


def test_api_requires_auth(client, auth_enabled):
    response = client.get("/api/tasks")
    assert response.status_code == 401
    assert response.get_json() == {"error": "Authentication required"}


def test_guard_is_open_without_auth_config(client, team):
    assert client.get("/api/tasks").status_code == 200
    assert client.get("/api/me").status_code == 401


def test_login_starts_session(client, fake_store, auth_enabled):
    body = {
        "access_token": "tok",
        "refresh_token": "ref",
        "user": {"id": "new-user", "email": "rin@example.test", "user_metadata": {"name": "Rin"}},
    }
    with patch.object(auth_backend, "sign_in", return_value=(body, 200)):
        response = client.post("/login", data={"email": "rin@example.test", "password": "secret"})

    assert response.status_code == 302
    assert response.headers["Location"] == "/app/"
    assert fake_store.profiles["new-user"]["name"] == "Rin"
    with client.session_transaction() as session:
        assert session["user_id"] == "new-user"
        assert session["access_token"] == "tok"

    assert client.get("/api/me").get_json()["name"] == "Rin"


def test_login_redirects_clients_to_portal_and_honours_next(client, team, auth_enabled):
    body = {"access_token": "tok", "user": {"id": "acme"}}
    with patch.object(auth_backend, "sign_in", return_value=(body, 200)):
        response = client.post("/login", data={"email": "a@example.test", "password": "pw"})
    assert response.headers["Location"] == "/app/?view=client"

    with patch.object(auth_backend, "sign_in", return_value=(body, 200)):
        response = client.post("/login", data={"email": "a@example.test", "password": "pw", "next": "/app/?view=client&task=3"})
    assert response.headers["Location"] == "/app/?view=client&task=3"

    with patch.object(auth_backend, "sign_in", return_value=(body, 200)):
        response = client.post("/login", data={"email": "a@example.test", "password": "pw", "next": "//evil.test/"})
    assert response.headers["Location"] == "/app/?view=client"


def test_login_failure_flashes_error(client, fake_store, auth_enabled):
    failure = ({"error": "Invalid login credentials", "status": 400}, 400)
    with patch.object(auth_backend, "sign_in", return_value=failure):
        response = client.post("/login", data={"email": "a@example.test", "password": "bad"})
    assert response.status_code == 400
    assert b"Invalid login credentials" in response.data


def test_signup_waiting_for_confirmation(client, fake_store, auth_enabled):
    with patch.object(auth_backend, "sign_up", return_value=({"id": "u9", "email": "n@example.test"}, 200)) as sign_up:
        response = client.post(
            "/login",
            data={"mode": "signup", "email": "n@example.test", "password": "secret1", "name": "Nao"},
            follow_redirects=True,
        )
    sign_up.assert_called_once_with("n@example.test", "secret1", "Nao")
    assert b"Check your email" in response.data
    assert "u9" not in fake_store.profiles


def test_bearer_token_authenticates_api(client, team, auth_enabled):
    with patch.object(auth_backend, "get_user", return_value={"id": "sato"}) as get_user:
        response = client.get("/api/me", headers={"Authorization": "Bearer abc"})
    get_user.assert_called_once_with("abc")
    assert response.status_code == 200
    assert response.get_json()["name"] == "Sato"


def test_logout_clears_session(client, team, auth_enabled):
    with client.session_transaction() as session:
        session["user_id"] = "mika"
        session["access_token"] = "tok"
    with patch.object(auth_backend, "sign_out", return_value=True) as sign_out:
        response = client.post("/logout")
    sign_out.assert_called_once_with("tok")
    assert response.headers["Location"] == "/login"
    assert client.get("/dashboard").status_code == 302


def test_deleted_profile_ends_session(client, fake_store, auth_enabled):
    with client.session_transaction() as session:
        session["user_id"] = "gone"
    assert client.get("/dashboard").status_code == 302
    with client.session_transaction() as session:
        assert "user_id" not in session


# pages


def test_home_links_into_the_board(client):
    page = client.get("/").get_data(as_text=True)
    assert 'href="/app/?view=dashboard"' in page
    assert 'href="/app/?view=admin"' in page
    assert 'href="/app/?view=client"' in page


def test_login_page_renders_without_auth_config(client):
    page = client.get("/login").get_data(as_text=True)
    assert "Sign-in is not configured" in page
    assert 'action="/login"' in page


def test_old_page_routes_open_the_board(client, team, act_as):
    act_as("mika")
    assert client.get("/dashboard").headers["Location"] == "/app/"
    assert client.get("/client").headers["Location"] == "/app/?view=client"
    assert client.get("/tasks/7").headers["Location"] == "/app/?task=7"

    act_as("acme")
    assert client.get("/dashboard").headers["Location"] == "/app/?view=client"
    assert client.get("/tasks/7").headers["Location"] == "/app/?view=client&task=7"


def test_admin_route_needs_admin_role(client, team, act_as):
    act_as("mika")
    response = client.get("/admin")
    assert response.headers["Location"] == "/app/"
    with client.session_transaction() as session:
        assert ("danger", "Admin access required") in session["_flashes"]

    act_as("boss")
    assert client.get("/admin").headers["Location"] == "/app/?view=admin"


def test_board_is_mounted(client, team, act_as):
    act_as("mika")
    response = client.get("/app/")
    assert response.status_code == 200
    assert b"GLUG Reminders" in response.data




# JSON API


def test_api_lists_my_tasks_with_iso_dates(client, fake_store, team, act_as):
    act_as("mika")
    fake_store.add_task("Dated", "mika", assignee_id="mika", due_date=date(2026, 8, 1))
    fake_store.add_task("Not mine", "mika", assignee_id="sato")

    payload = client.get("/api/tasks?view=my_tasks").get_json()

    assert [t["title"] for t in payload] == ["Dated"]
    assert payload[0]["due_date"] == "2026-08-01"


def test_api_task_lifecycle(client, fake_store, team, act_as):
    act_as("mika")
    response = client.post("/api/tasks", json={"title": "API task", "assignee_id": "sato", "priority": "low"})
    assert response.status_code == 201
    task = response.get_json()
    assert task["ticket_id"] == "GLUG-0001"
    assert task["assignee"]["name"] == "Sato"

    task_id = task["id"]
    assert client.put(f"/api/tasks/{task_id}", json={"title": "Renamed"}).get_json()["title"] == "Renamed"
    assert client.post(f"/api/tasks/{task_id}/status", json={"status": "in_progress"}).get_json()["status"] == "in_progress"
    assert client.post(f"/api/tasks/{task_id}/complete", json={"completed": True}).get_json()["status"] == "done"

    comment = client.post(f"/api/tasks/{task_id}/comments", json={"content": "Done!"})
    assert comment.status_code == 201
    assert comment.get_json()["user"]["name"] == "Mika"

    assert client.delete(f"/api/tasks/{task_id}").get_json() == {"ok": True}
    assert client.get(f"/api/tasks/{task_id}").status_code == 404


def test_api_validation_errors(client, fake_store, team, act_as):
    act_as("mika")
    assert client.post("/api/tasks", json={"title": "x", "priority": "whenever"}).status_code == 400
    assert client.post("/api/tasks", data="not json").status_code == 400
    assert client.get("/api/tasks/12345").get_json() == {"error": "Not found"}
    assert client.post("/api/tasks/reorder", json={"orders": [{"id": "x"}]}).status_code == 400


def test_api_reorder(client, fake_store, team, act_as):
    act_as("mika")
    a = fake_store.add_task("A", "mika", assignee_id="mika")
    b = fake_store.add_task("B", "mika", assignee_id="mika")

    response = client.post("/api/tasks/reorder", json={"ids": [b["id"], a["id"]]})

    assert response.get_json() == {"ok": True, "updated": 2}
    assert fake_store.tasks[b["id"]]["display_order"] == 0
    assert fake_store.tasks[a["id"]]["display_order"] == 1


def test_api_category_writes_need_admin(client, fake_store, team, act_as):
    act_as("mika")
    assert client.get("/api/categories").get_json()[0]["name"] == "Design"
    assert client.post("/api/categories", json={"name": "X"}).status_code == 403

    act_as("boss")
    created = client.post("/api/categories", json={"name": "Billing"})
    assert created.status_code == 201
    category_id = created.get_json()["id"]
    assert client.put(f"/api/categories/{category_id}", json={"color": "#ec4899"}).get_json() == {"ok": True}
    assert client.delete(f"/api/categories/{category_id}").get_json() == {"ok": True}
    assert client.delete(f"/api/categories/{category_id}").status_code == 404


def test_api_client_sees_only_assigned_tasks(client, fake_store, team, act_as):
    act_as("acme")
    fake_store.add_task("For client", "mika", assignee_id="acme")
    fake_store.add_task("Internal", "mika", assignee_id="sato")

    assert [t["title"] for t in client.get("/api/tasks").get_json()] == ["For client"]
    assert client.post("/api/tasks", json={"title": "Nope"}).status_code == 403
    assert client.get("/api/profiles").status_code == 403


def test_api_profiles_filter(client, team, act_as):
    act_as("mika")
    names = [p["name"] for p in client.get("/api/profiles?type=client").get_json()]
    assert names == ["Tanaka"]


def test_api_database_error_is_json_500(client, fake_store, team, act_as, monkeypatch):
    act_as("mika")

    def broken():
        raise psycopg2.OperationalError("db down")

    monkeypatch.setattr(fake_store, "get_tasks", broken)
    response = client.get("/api/tasks")
    assert response.status_code == 500
    assert response.get_json() == {"error": "Database error"}


def test_api_cors_headers(client, team, act_as):
    act_as("mika")
    response = client.get("/api/db-health", headers={"Origin": "http://localhost:3000"})
    assert response.get_json() == {"ok": True}
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
    assert "DELETE" in response.headers["Access-Control-Allow-Methods"]

    preflight = client.open("/api/tasks", method="OPTIONS", headers={"Origin": "http://evil.test"})
    assert preflight.status_code == 204
    assert "Access-Control-Allow-Origin" not in preflight.headers



def test_api_client_status_choices_are_limited(client, fake_store, team, act_as):
    task = fake_store.add_task("Sign off", "mika", assignee_id="acme")
    act_as("acme")

    for status in ("cancelled", "backlog"):
        response = client.post(f"/api/tasks/{task['id']}/status", json={"status": status})
        assert response.status_code == 400
        assert response.get_json()["error"].startswith("Clients can only set the status to")
    assert fake_store.tasks[task["id"]]["status"] == "todo"

    response = client.post(f"/api/tasks/{task['id']}/status", json={"status": "in_progress"})
    assert response.get_json()["status"] == "in_progress"

    act_as("mika")
    response = client.post(f"/api/tasks/{task['id']}/status", json={"status": "cancelled"})
    assert response.get_json()["status"] == "cancelled"


def test_api_reorder_rejects_malformed_payloads(client, fake_store, team, act_as):
    act_as("mika")
    fake_store.add_task("A", "mika", assignee_id="mika")

    assert client.post("/api/tasks/reorder", json={"ids": "12"}).status_code == 400
    assert client.post("/api/tasks/reorder", json={"ids": [True]}).status_code == 400
    assert client.post("/api/tasks/reorder", json={"orders": "12"}).status_code == 400
    assert client.post("/api/tasks/reorder", json={"orders": [[1, 0]]}).status_code == 400
    assert fake_store.reorders == []


def test_api_complete_reads_string_flags(client, fake_store, team, act_as):
    act_as("mika")
    task_id = fake_store.add_task("Flag", "mika", assignee_id="mika")["id"]

    assert client.post(f"/api/tasks/{task_id}/complete", json={}).get_json()["status"] == "done"
    assert client.post(f"/api/tasks/{task_id}/complete", json={"completed": "false"}).get_json()["status"] == "todo"
    assert client.post(f"/api/tasks/{task_id}/complete", json={"completed": "true"}).get_json()["status"] == "done"
    assert client.post(f"/api/tasks/{task_id}/complete", json={"completed": 0}).get_json()["status"] == "todo"

    response = client.post(f"/api/tasks/{task_id}/complete", json={"completed": "maybe"})
    assert response.status_code == 400
    assert fake_store.tasks[task_id]["status"] == "todo"


def test_api_unknown_references_are_bad_requests(client, fake_store, team, act_as):
    act_as("mika")
    response = client.post("/api/tasks", json={"title": "Lost", "assignee_id": "ghost"})
    assert response.status_code == 400
    assert response.get_json() == {"error": "Unknown assignee: 'ghost'"}

    task_id = fake_store.add_task("Real", "mika", assignee_id="mika")["id"]
    response = client.put(f"/api/tasks/{task_id}", json={"category_id": 999})
    assert response.status_code == 400
    assert response.get_json() == {"error": "Unknown category: 999"}


def test_api_move_within_category(client, fake_store, team, act_as):
    act_as("mika")
    a = fake_store.add_task("A", "mika", assignee_id="mika", display_order=0)
    b = fake_store.add_task("B", "mika", assignee_id="mika", display_order=1)

    response = client.post(f"/api/tasks/{b['id']}/move", json={"direction": "up"})
    assert response.get_json() == {"ok": True, "moved": True}
    assert fake_store.reorders == [[(b["id"], 0), (a["id"], 1)]]

    assert client.post(f"/api/tasks/{b['id']}/move", json={"direction": "up"}).get_json()["moved"] is False
    assert client.post(f"/api/tasks/{b['id']}/move", json={"direction": "sideways"}).status_code == 400


def test_api_members(client, fake_store, team, act_as):
    act_as("mika")
    assert client.post("/api/members", json={"name": "Kim", "email": "kim@example.test"}).status_code == 403

    act_as("boss")
    response = client.post(
        "/api/members",
        json={"type": "client", "name": "Kim", "email": "kim@example.test", "company": "Kimco"},
    )
    assert response.status_code == 201
    member_id = response.get_json()["user_id"]
    assert fake_store.profiles[member_id]["company"] == "Kimco"
    assert fake_store.profiles[member_id]["type"] == "client"

    assert client.post("/api/members", json={"name": "", "email": "x@example.test"}).status_code == 400

    assert client.put(f"/api/members/{member_id}", json={"name": "Kim L."}).status_code == 200
    assert fake_store.profiles[member_id]["name"] == "Kim L."

    response = client.delete("/api/members/boss")
    assert response.status_code == 400
    assert response.get_json() == {"error": "You cannot delete your own account"}

    assert client.delete(f"/api/members/{member_id}").status_code == 200
    assert member_id not in fake_store.profiles
