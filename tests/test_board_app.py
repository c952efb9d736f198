from __future__ import annotations

import flask
import pytest

import board_app

STAFF = {"id": "mika", "type": "internal", "role": "staff"}
ADMIN = {"id": "boss", "type": "internal", "role": "admin"}
CLIENT = {"id": "acme", "type": "client", "role": "client"}


@pytest.mark.parametrize(
    "user, search, expected",
    [
        (STAFF, "", ("dashboard", None)),
        (STAFF, "?view=dashboard", ("dashboard", None)),
        (STAFF, "?view=admin", ("dashboard", None)),
        (ADMIN, "?view=admin", ("admin", None)),
        (None, "?view=admin", ("admin", None)),
        (STAFF, "?view=client", ("client", None)),
        (STAFF, "?task=12", ("task", 12)),
        (STAFF, "?task=abc", ("dashboard", None)),
        (CLIENT, "?view=admin", ("client", None)),
        (CLIENT, "?view=client&task=4", ("client", 4)),
    ],
)
def test_initial_page(user, search, expected):
    assert board_app.initial_page(user, search) == expected


def test_prefixed_collects_one_form():
    fields = {"task.title": "Call", "task.tags": "ops", "taskforce.x": 1, "edit.name": "Ops"}
    assert board_app.prefixed(fields, "task") == {"title": "Call", "tags": "ops"}
    assert board_app.prefixed(fields, "member-client") == {}


def test_event_value():
    assert board_app.event_value({"target": {"value": "Hello"}}) == "Hello"
    assert board_app.event_value({"target": {"value": None}}) == ""
    assert board_app.event_value({}) == ""


def test_session_user_reads_signed_cookie(app, fake_store):
    fake_store.add_profile("mika", "Mika")
    cookie = app.session_interface.get_signing_serializer(app).dumps({"user_id": "mika"})
    headers = {"Cookie": f"{app.config['SESSION_COOKIE_NAME']}={cookie}"}

    with app.test_request_context("/app/", headers=headers):
        assert board_app.session_user(flask.request)["name"] == "Mika"

    with app.test_request_context("/app/"):
        assert board_app.session_user(flask.request) is None
