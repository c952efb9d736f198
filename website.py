from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, Dict
from urllib.parse import urlencode

import psycopg2
from flask import Flask, flash, g, get_flashed_messages, jsonify, redirect, request, session, url_for
from flask.json.provider import DefaultJSONProvider
from reactpy.backend.flask import Options, configure

import app_config
import auth_backend
import board_actions as actions
import ticket_store as store
from board_app import App
from ui_components import (
    APP_PATH,
    APP_TITLE,
    auth_callback_page,
    landing_page,
    login_page,
    unavailable_page,
)


class IsoJSONProvider(DefaultJSONProvider):
    @staticmethod
    def default(o: Any) -> Any:
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


app = Flask(__name__)
app.config["SECRET_KEY"] = app_config.SECRET_KEY
app.json = IsoJSONProvider(app)
app.logger.setLevel(app_config.LOG_LEVEL)

store.init_app(app)
store.maybe_init_db_on_startup()

PUBLIC_ENDPOINTS = {"home", "login", "signup", "auth_callback", "static"}


# Session and auth


def bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


def current_user_id() -> str:
    return actions.user_id_of(g.get("current_user"))


def resolve_current_user() -> Dict[str, Any] | None:
    token = bearer_token()
    if token and app_config.auth_configured():
        auth_user = auth_backend.get_user(token)
        return store.ensure_profile(auth_user) if auth_user else None

    profile = actions.profile_for_session(session)
    if profile is None and session.get("user_id"):
        # Profile removed by an admin while the session was alive.
        session.clear()
    return profile


def start_session(auth_session: Dict[str, Any]) -> Dict[str, Any]:
    profile = store.ensure_profile(auth_session["user"])
    session.clear()
    session["access_token"] = auth_session["access_token"]
    session["refresh_token"] = auth_session.get("refresh_token") or ""
    session["user_id"] = profile["id"]
    session["profile"] = {key: profile.get(key) for key in store.PROFILE_FIELDS}
    app.logger.info("Signed in %s", profile["id"])
    return profile


def board_url(view: str = "", **params: Any) -> str:
    query = {"view": view, **params} if view else params
    if not query:
        return APP_PATH
    return f"{APP_PATH}?{urlencode(query)}"


def landing_url(user: Dict[str, Any] | None) -> str:
    return board_url("client") if actions.is_client(user) else board_url()


def safe_next(default: str = "") -> str:
    target = (request.values.get("next") or "").strip()
    if target.startswith("/") and not target.startswith("//"):
        return target
    return default


def wants_json() -> bool:
    return request.path.startswith("/api/")


def notices() -> list:
    return get_flashed_messages(with_categories=True)


def cors_origin_for_request() -> str | None:
    origin = request.headers.get("Origin")
    if not origin:
        return None
    if "*" in app_config.CORS_ALLOWED_ORIGINS:
        return "*"
    if origin in app_config.CORS_ALLOWED_ORIGINS:
        return origin
    return None


@app.before_request
def api_cors_preflight():
    if request.method == "OPTIONS" and request.path.startswith("/api/"):
        return "", 204


@app.before_request
def require_login():
    g.current_user = None
    if request.endpoint == "static":
        return None
    try:
        g.current_user = resolve_current_user()
    except psycopg2.Error:
        app.logger.exception("Failed to resolve the current user")
        store.reset_connection()

    if g.current_user is not None or not app_config.auth_configured():
        return None
    if request.endpoint in PUBLIC_ENDPOINTS:
        return None
    if wants_json():
        return jsonify({"error": "Authentication required"}), 401
    return redirect(url_for("login", next=request.full_path.rstrip("?")))


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


@app.errorhandler(psycopg2.Error)
def database_error(exc: psycopg2.Error):
    app.logger.exception("Database error on %s %s", request.method, request.path)
    store.reset_connection()
    if wants_json():
        return jsonify({"error": "Database error"}), 500
    retry_url = request.full_path.rstrip("?") if request.method == "GET" else url_for("home")
    return unavailable_page(str(exc), retry_url), 500


@app.errorhandler(actions.Forbidden)
def forbidden(exc: actions.Forbidden):
    if wants_json():
        return jsonify({"error": str(exc)}), 403
    flash(str(exc), "danger")
    return redirect(landing_url(g.get("current_user")))


@app.errorhandler(actions.NotFound)
def missing_record(exc: actions.NotFound):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(404)
def not_found(exc):
    if wants_json():
        return jsonify({"error": "Not found"}), 404
    return exc


# Pages


@app.route("/")
def home():
    pages = [
        {
            "href": board_url("dashboard"),
            "title": "Staff dashboard",
            "badge": "Team",
            "pill": "pill-info",
            "description": "Your tasks, the requests you made, and work waiting on clients.",
        },
        {
            "href": board_url("admin"),
            "title": "Admin console",
            "badge": "Admin",
            "pill": "pill-warning",
            "description": "Categories, internal members and client accounts.",
        },
        {
            "href": board_url("client"),
            "title": "Client portal",
            "badge": "Clients",
            "pill": "pill-success",
            "description": "Tasks assigned to a client, with status updates and comments.",
        },
    ]
    return landing_page(pages, notices())


def render_login(mode: str, next_url: str, email: str = "", name: str = "") -> str:
    switch_mode = None if mode == "signup" else "signup"
    return login_page(
        mode,
        next_url,
        notices(),
        app_config.auth_configured(),
        action_url=url_for("login"),
        switch_url=url_for("login", mode=switch_mode, next=next_url or None),
        email=email,
        name=name,
    )


@app.route("/login", methods=["GET", "POST"])
def login():
    mode = "signup" if request.values.get("mode") == "signup" else "signin"
    next_url = safe_next()

    if request.method == "GET":
        if g.current_user is not None and app_config.auth_configured():
            return redirect(next_url or landing_url(g.current_user))
        return render_login(mode, next_url)

    email = request.form.get("email", "").strip()
    password = request.form.get("password", "")
    name = request.form.get("name", "").strip()

    if not app_config.auth_configured():
        flash("Sign-in is not configured", "warning")
        return redirect(url_for("login"))
    if not email or not password:
        flash("Email and password are required", "danger")
        return render_login(mode, next_url, email, name), 400

    if mode == "signup":
        body, status = auth_backend.sign_up(email, password, name)
    else:
        body, status = auth_backend.sign_in(email, password)

    if status >= 400:
        app.logger.warning("Auth %s failed for %s with status %s", mode, email, status)
        fallback = "Sign-up failed" if mode == "signup" else "Invalid email or password"
        flash(auth_backend.error_message(body, fallback), "danger")
        return render_login(mode, next_url, email, name), 400

    auth_session = auth_backend.session_from_response(body)
    if auth_session is None:
        flash("Check your email to confirm your account, then sign in.", "info")
        return redirect(url_for("login", next=next_url or None))

    profile = start_session(auth_session)
    return redirect(next_url or landing_url(profile))


@app.route("/signup")
def signup():
    return redirect(url_for("login", mode="signup"))


@app.route("/auth/callback", methods=["GET", "POST"])
def auth_callback():
    if request.method == "GET":
        return auth_callback_page(url_for("auth_callback"), url_for("login"))

    token = request.form.get("access_token", "").strip()
    auth_user = auth_backend.get_user(token)
    if auth_user is None:
        flash("This link is invalid or has expired", "danger")
        return redirect(url_for("login"))

    profile = start_session(
        {"access_token": token, "refresh_token": request.form.get("refresh_token", ""), "user": auth_user}
    )
    return redirect(landing_url(profile))


@app.route("/logout", methods=["POST"])
def logout():
    token = session.get("access_token")
    if token and not auth_backend.sign_out(token):
        app.logger.warning("Remote sign-out failed; clearing the local session anyway")
    session.clear()
    flash("Signed out", "info")
    return redirect(url_for("login") if app_config.auth_configured() else url_for("home"))


@app.route("/dashboard")
def dashboard():
    return redirect(landing_url(g.current_user))


@app.route("/admin")
def admin():
    actions.require_admin(g.current_user)
    return redirect(board_url("admin"))


@app.route("/client")
def client_portal():
    return redirect(board_url("client"))


@app.route("/tasks/<int:task_id>")
def task_detail(task_id: int):
    view = "client" if actions.is_client(g.current_user) else ""
    return redirect(board_url(view, task=task_id))


# JSON API


def json_body() -> Dict[str, Any] | None:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else None


def bad_request(message: str):
    return jsonify({"error": message}), 400


def member_response(result: Dict[str, Any], status: int = 200):
    if not result["success"]:
        return jsonify({"error": result["message"]}), 400
    return jsonify(result), status


@app.route("/api/me")
def api_me():
    if g.current_user is None:
        return jsonify({"error": "Not signed in"}), 401
    return jsonify(g.current_user)


@app.route("/api/profiles")
def api_profiles():
    actions.require_internal(g.current_user)
    profiles = store.get_profiles()
    user_type = request.args.get("type")
    if user_type:
        profiles = [p for p in profiles if p.get("type") == user_type]
    return jsonify(profiles)


@app.route("/api/members", methods=["POST"])
def api_member_create():
    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    return member_response(actions.add_member(g.current_user, payload), 201)


@app.route("/api/members/<member_id>", methods=["PUT", "DELETE"])
def api_member_item(member_id: str):
    if request.method == "DELETE":
        return member_response(actions.delete_member(g.current_user, member_id))

    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    return member_response(actions.update_member(g.current_user, member_id, payload))


@app.route("/api/categories", methods=["GET"])
def api_categories():
    return jsonify(store.get_categories())


@app.route("/api/categories", methods=["POST"])
def api_category_create():
    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    try:
        category = actions.create_category(g.current_user, payload)
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify(category), 201


@app.route("/api/categories/<int:category_id>", methods=["PUT", "DELETE"])
def api_category_item(category_id: int):
    if request.method == "DELETE":
        actions.delete_category(g.current_user, category_id)
        return jsonify({"ok": True})

    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    try:
        actions.update_category(g.current_user, category_id, payload)
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify({"ok": True})


@app.route("/api/tasks", methods=["GET"])
def api_tasks():
    return jsonify(actions.list_tasks(g.current_user, request.args.get("view"), request.args.get("q", "")))


@app.route("/api/tasks", methods=["POST"])
def api_task_create():
    actions.require_internal(g.current_user)
    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    try:
        task = actions.create_task(g.current_user, payload)
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify(task), 201


@app.route("/api/tasks/<int:task_id>", methods=["GET"])
def api_task(task_id: int):
    return jsonify(actions.visible_task(g.current_user, task_id))


@app.route("/api/tasks/<int:task_id>", methods=["PUT", "DELETE"])
def api_task_item(task_id: int):
    if request.method == "DELETE":
        actions.delete_task(g.current_user, task_id)
        return jsonify({"ok": True})

    actions.require_internal(g.current_user)
    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    try:
        task = actions.update_task(g.current_user, task_id, payload)
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify(task)


@app.route("/api/tasks/<int:task_id>/complete", methods=["POST"])
def api_task_complete(task_id: int):
    payload = json_body() or {}
    try:
        task = actions.set_completed(g.current_user, task_id, payload.get("completed"))
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify(task)


@app.route("/api/tasks/<int:task_id>/status", methods=["POST"])
def api_task_status(task_id: int):
    actions.visible_task(g.current_user, task_id)
    payload = json_body()
    if payload is None or "status" not in payload:
        return bad_request("Field 'status' is required")
    try:
        task = actions.change_status(g.current_user, task_id, payload["status"])
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify(task)


@app.route("/api/tasks/<int:task_id>/comments", methods=["POST"])
def api_task_comment(task_id: int):
    actions.visible_task(g.current_user, task_id)
    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    try:
        comment = actions.add_comment(g.current_user, task_id, payload.get("content"))
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify(comment), 201


@app.route("/api/tasks/<int:task_id>/move", methods=["POST"])
def api_task_move(task_id: int):
    payload = json_body() or {}
    try:
        moved = actions.move_task(g.current_user, task_id, payload.get("direction", "up"))
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify({"ok": True, "moved": moved})


@app.route("/api/tasks/reorder", methods=["POST"])
def api_tasks_reorder():
    actions.require_internal(g.current_user)
    payload = json_body()
    if payload is None:
        return bad_request("Expected a JSON object body")
    try:
        updated = actions.reorder_tasks(g.current_user, payload)
    except ValueError as exc:
        return bad_request(str(exc))
    return jsonify({"ok": True, "updated": updated})


@app.route("/api/db-health")
def api_db_health():
    return jsonify({"ok": store.ping()})


configure(
    app,
    App,
    Options(
        head=(
            {"tagName": "title", "children": [APP_TITLE]},
            {
                "tagName": "meta",
                "attributes": {"name": "viewport", "content": "width=device-width, initial-scale=1"},
            },
        ),
        url_prefix=APP_PATH.rstrip("/"),
    ),
)


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5001")),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
