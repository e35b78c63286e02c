"""Authentication against the backend auth REST API.

Every call returns a ``{"data": ..., "error": ...}`` dictionary mirroring the
backend client libraries: network failures and non-2xx responses become an
``error`` with a ``message`` and are logged, never raised.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Optional

import requests

from . import datastore

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"
PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

_LISTENERS: List[Callable[[str, Optional[Dict[str, Any]]], None]] = []


def _base_url() -> str:
    url = os.environ.get("SUPABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_URL is not set")
    return url.rstrip("/") + "/auth/v1"


def _timeout() -> float:
    try:
        return float(os.environ.get("HTTP_TIMEOUT", "30"))
    except ValueError:
        return 30.0


def _headers(access_token: Optional[str] = None) -> Dict[str, str]:
    key = os.environ.get("SUPABASE_ANON_KEY", "")
    headers = {"apikey": key, "Content-Type": "application/json"}
    headers["Authorization"] = f"Bearer {access_token or key}"
    return headers


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {resp.status_code}"
    for field in ("msg", "error_description", "message", "error"):
        if body.get(field):
            return str(body[field])
    return f"HTTP {resp.status_code}"


def _request(method: str, path: str, access_token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
    try:
        resp = requests.request(
            method,
            f"{_base_url()}{path}",
            headers=_headers(access_token),
            timeout=_timeout(),
            **kwargs,
        )
    except requests.RequestException as exc:
        logger.error("Auth request %s %s failed: %s", method, path, exc)
        return {"data": None, "error": {"message": str(exc)}}
    if not resp.ok:
        message = _error_message(resp)
        logger.warning("Auth request %s %s returned %s: %s", method, path, resp.status_code, message)
        return {"data": None, "error": {"message": message, "status": resp.status_code}}
    if not resp.content:
        return {"data": {}, "error": None}
    try:
        return {"data": resp.json(), "error": None}
    except ValueError:
        return {"data": {}, "error": None}


def on_auth_state_change(callback: Callable[[str, Optional[Dict[str, Any]]], None]) -> Callable[[], None]:
    """Register ``callback(event, session)``; returns a function that unregisters it.

    Registering the same callback again is a no-op.
    """
    if callback not in _LISTENERS:
        _LISTENERS.append(callback)

    def _unsubscribe() -> None:
        if callback in _LISTENERS:
            _LISTENERS.remove(callback)

    return _unsubscribe


def emit(event: str, session: Optional[Dict[str, Any]] = None) -> None:
    for callback in list(_LISTENERS):
        try:
            callback(event, session)
        except Exception:
            logger.exception("Auth state listener failed for %s", event)


def claims_for(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """JWT claims used to run database statements as ``user``."""
    if not user or not user.get("id"):
        return None
    return {"sub": user["id"], "email": user.get("email"), "role": "authenticated"}


def sign_in_user(email: str, password: str) -> Dict[str, Any]:
    res = _request("POST", "/token", params={"grant_type": "password"}, json={"email": email, "password": password})
    if res["error"] is None:
        emit(SIGNED_IN, res["data"])
    return res


def sign_out_user(access_token: Optional[str]) -> Dict[str, Any]:
    res = {"data": None, "error": None}
    if access_token:
        res = _request("POST", "/logout", access_token=access_token)
    emit(SIGNED_OUT, None)
    return res


def refresh_session(refresh_token: Optional[str]) -> Dict[str, Any]:
    """Trade a refresh token for a new access token."""
    if not refresh_token:
        return {"data": None, "error": {"message": "Sesión expirada."}}
    res = _request("POST", "/token", params={"grant_type": "refresh_token"}, json={"refresh_token": refresh_token})
    if res["error"] is None:
        emit(TOKEN_REFRESHED, res["data"])
    return res


def get_user(access_token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not access_token:
        return None
    res = _request("GET", "/user", access_token=access_token)
    if res["error"] is not None:
        return None
    return res["data"] or None


def _fallback_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    email = user.get("email") or ""
    return {"role": None, "name": email.split("@")[0], "avatar_url": None}


def get_user_profile(access_token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return ``{"user": ..., "profile": ...}`` for the session, or None.

    The user is returned even when the profile row cannot be read, with a
    profile derived from the email address.
    """
    user = get_user(access_token)
    if not user:
        return None
    profile = datastore.get_profile(user["id"], claims=claims_for(user))
    if profile is None:
        logger.error("Error fetching user profile for %s", user.get("id"))
        profile = _fallback_profile(user)
    return {"user": user, "profile": profile}


def update_user_name(access_token: str, new_name: str) -> Dict[str, Any]:
    """Update the name in both the profile row and the auth user metadata."""
    user = get_user(access_token)
    if not user:
        return {"error": {"message": "Usuario no autenticado."}}
    profile_res = datastore.update_profile(user["id"], {"name": new_name}, claims=claims_for(user))
    auth_res = _request("PUT", "/user", access_token=access_token, json={"data": {"name": new_name}})
    error = profile_res["error"] or auth_res["error"]
    if error:
        logger.error("Error updating user name: %s", error.get("message"))
    else:
        emit(USER_UPDATED, {"user": auth_res["data"]})
    return {"error": error}


def update_user_password(access_token: str, new_password: str) -> Dict[str, Any]:
    res = _request("PUT", "/user", access_token=access_token, json={"password": new_password})
    if res["error"] is None:
        emit(USER_UPDATED, {"user": res["data"]})
    return res


def send_password_reset_email(email: str, redirect_to: Optional[str] = None) -> Dict[str, Any]:
    params = {"redirect_to": redirect_to} if redirect_to else None
    return _request("POST", "/recover", params=params, json={"email": email})


def start_password_recovery(access_token: str) -> Optional[Dict[str, Any]]:
    """Validate a recovery token from the reset link and announce the recovery."""
    user = get_user(access_token)
    if user:
        emit(PASSWORD_RECOVERY, {"access_token": access_token, "user": user})
    return user


__all__ = [
    "claims_for",
    "get_user",
    "get_user_profile",
    "on_auth_state_change",
    "refresh_session",
    "send_password_reset_email",
    "sign_in_user",
    "sign_out_user",
    "start_password_recovery",
    "update_user_name",
    "update_user_password",
]
