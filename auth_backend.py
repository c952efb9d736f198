from __future__ import annotations

from typing import Any, Dict

import psycopg2
import requests
from flask import current_app

import app_config
import ticket_store as store


def _headers(api_key: str, token: str | None = None) -> Dict[str, str]:
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {token or api_key}",
        "Content-Type": "application/json",
    }


def auth_json_request(
    method: str,
    path: str,
    payload: dict[str, Any] | None = None,
    token: str | None = None,
    service: bool = False,
) -> tuple[Any, int]:
    api_key = app_config.SUPABASE_SERVICE_ROLE_KEY if service else app_config.SUPABASE_ANON_KEY
    if not app_config.SUPABASE_URL or not api_key:
        return {"error": "Authentication service is not configured"}, 503

    url = f"{app_config.SUPABASE_URL}/auth/v1{path}"
    try:
        response = requests.request(
            method,
            url,
            json=payload,
            headers=_headers(api_key, token),
            timeout=app_config.AUTH_TIMEOUT_SECONDS,
        )
    except requests.RequestException:
        current_app.logger.exception("Auth request %s %s failed", method, path)
        return {"error": "Authentication service is unavailable"}, 502

    try:
        body: Any = response.json()
    except ValueError:
        body = {"raw": response.text}

    if response.status_code >= 400:
        return {
            "error": error_message(body, "Authentication service returned an error"),
            "status": response.status_code,
            "response": body,
        }, response.status_code

    return body, response.status_code


def error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return fallback


# User-facing calls


def sign_in(email: str, password: str) -> tuple[Any, int]:
    return auth_json_request(
        "POST",
        "/token?grant_type=password",
        payload={"email": email.strip(), "password": password},
    )


def sign_up(email: str, password: str, name: str = "") -> tuple[Any, int]:
    payload: dict[str, Any] = {"email": email.strip(), "password": password}
    if name.strip():
        payload["data"] = {"name": name.strip()}
    return auth_json_request("POST", "/signup", payload=payload)


def get_user(access_token: str) -> Dict[str, Any] | None:
    if not access_token:
        return None
    body, status = auth_json_request("GET", "/user", token=access_token)
    if status != 200 or not isinstance(body, dict) or not body.get("id"):
        return None
    return body


def sign_out(access_token: str) -> bool:
    if not access_token:
        return False
    _, status = auth_json_request("POST", "/logout", token=access_token)
    return status < 400


def session_from_response(body: Any) -> Dict[str, Any] | None:
    """Extract ``{access_token, refresh_token, user}`` from a token/signup response.

    Sign-up returns only the user object while email confirmation is pending.
    """
    if not isinstance(body, dict) or not body.get("access_token"):
        return None
    user = body.get("user") or {}
    if not user.get("id"):
        return None
    return {
        "access_token": body["access_token"],
        "refresh_token": body.get("refresh_token"),
        "user": user,
    }


# Admin calls


def _result(success: bool, message: str, user_id: str | None = None) -> Dict[str, Any]:
    return {"success": success, "message": message, "user_id": user_id}


def _member_metadata(name: str, user_type: str, role: str, company: str | None) -> Dict[str, Any]:
    return {"name": name, "type": user_type, "role": role or "staff", "company": company}


def invite_user(
    email: str,
    name: str,
    user_type: str,
    role: str = "staff",
    company: str | None = None,
) -> Dict[str, Any]:
    if not app_config.admin_configured():
        return _result(False, "User administration is not configured")

    body, status = auth_json_request(
        "POST",
        "/invite",
        payload={"email": email.strip(), "data": _member_metadata(name, user_type, role, company)},
        service=True,
    )
    if status >= 400:
        current_app.logger.error("Invite for %s failed: %s", email, body)
        return _result(False, error_message(body, "Invitation failed"))

    user_id = body.get("id") if isinstance(body, dict) else None
    if user_id:
        _backup_profile(user_id, name, email, user_type, role, company)
    return _result(True, f"Invitation sent to {email.strip()}", user_id)


def create_user_with_password(
    email: str,
    password: str,
    name: str,
    user_type: str,
    role: str = "staff",
    company: str | None = None,
) -> Dict[str, Any]:
    if not app_config.admin_configured():
        return _result(False, "User administration is not configured")

    body, status = auth_json_request(
        "POST",
        "/admin/users",
        payload={
            "email": email.strip(),
            "password": password,
            "email_confirm": True,
            "user_metadata": _member_metadata(name, user_type, role, company),
        },
        service=True,
    )
    if status >= 400:
        current_app.logger.error("Creating user %s failed: %s", email, body)
        return _result(False, error_message(body, "User creation failed"))

    user_id = body.get("id") if isinstance(body, dict) else None
    if user_id:
        _backup_profile(user_id, name, email, user_type, role, company)
    return _result(True, f"Created {name}", user_id)


def _backup_profile(
    user_id: str,
    name: str,
    email: str,
    user_type: str,
    role: str,
    company: str | None,
) -> None:
    # Write the profile now so the member is listed before their first sign-in.
    try:
        store.upsert_profile(user_id, name, email, user_type, role=role, company=company)
    except (psycopg2.Error, ValueError):
        current_app.logger.exception("Backup profile upsert for %s failed", user_id)
        store.rollback()


def update_user_profile(user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    try:
        updated = store.update_profile(user_id, updates)
    except ValueError as exc:
        return _result(False, str(exc))
    except psycopg2.Error:
        current_app.logger.exception("Updating profile %s failed", user_id)
        store.rollback()
        return _result(False, "Profile update failed")
    if not updated:
        return _result(False, "Profile not found")
    return _result(True, "Profile updated", user_id)


def delete_user(user_id: str) -> Dict[str, Any]:
    """Delete the auth account, then its profile row, which takes the tasks they created and their comments with it."""
    if not app_config.admin_configured():
        return _result(False, "User administration is not configured")

    body, status = auth_json_request("DELETE", f"/admin/users/{user_id}", service=True)
    if status >= 400 and status != 404:
        current_app.logger.error("Deleting user %s failed: %s", user_id, body)
        return _result(False, error_message(body, "User deletion failed"))

    try:
        profile_deleted = store.delete_profile(user_id)
    except psycopg2.Error:
        current_app.logger.exception("Deleting profile %s failed", user_id)
        store.rollback()
        return _result(False, "Account deleted, but its profile could not be removed")

    if status == 404:
        if not profile_deleted:
            return _result(False, error_message(body, "User not found"))
        return _result(True, "Profile deleted (no sign-in account existed)", user_id)
    return _result(True, "User deleted", user_id)
