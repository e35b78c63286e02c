"""Shared page widgets: theme, notifications, confirmation page, user menu."""

from __future__ import annotations

import secrets
from typing import Any, Dict, Optional

from flask import Blueprint, abort, flash, redirect, render_template, request, session, url_for

bp = Blueprint('ui', __name__)

THEME_COOKIE = 'theme'
THEMES = ('light', 'dark')
AVATAR_PLACEHOLDER = 'https://placehold.co/40x40/e2e8f0/64748b?text=%E2%9A%BD'
THEME_MAX_AGE = 60 * 60 * 24 * 365
CSRF_FIELD = 'csrf_token'
# Blueprints whose POST forms must carry the session token
CSRF_PROTECTED = ('ui', 'admin')


def current_theme() -> str:
    theme = request.cookies.get(THEME_COOKIE)
    return theme if theme in THEMES else 'light'


def notify(message: str, kind: str = 'success') -> None:
    """Queue a toast for the next rendered page (kinds: success, error, warning, info)."""
    flash(message, kind)


def confirm_page(
    title: str,
    message: str,
    action: str,
    cancel: str,
    confirm_text: str = 'Confirmar',
    cancel_text: str = 'Cancelar',
    confirm_class: str = 'button-danger',
):
    """Render the confirmation step that guards destructive actions.

    ``action`` receives the confirming POST; ``cancel`` is where the cancel
    link goes back to.
    """
    return render_template(
        'confirm.html',
        title=title,
        message=message,
        action=action,
        cancel=cancel,
        confirm_text=confirm_text,
        cancel_text=cancel_text,
        confirm_class=confirm_class,
    )


def user_menu(user: Optional[Dict[str, Any]], profile: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    profile = profile or {}
    email = user.get('email') or ''
    return {
        'name': profile.get('name') or email.split('@')[0],
        'email': email,
        'avatar_url': profile.get('avatar_url') or AVATAR_PLACEHOLDER,
    }


@bp.before_app_request
def _check_csrf():
    token = session.get(CSRF_FIELD)
    if not token:
        token = session[CSRF_FIELD] = secrets.token_hex(32)
    if request.method == 'POST' and request.blueprint in CSRF_PROTECTED:
        sent = request.form.get(CSRF_FIELD) or ''
        if not secrets.compare_digest(sent.encode(), token.encode()):
            abort(400)


@bp.app_context_processor
def _inject_widgets():
    return {
        'csrf_token': session.get(CSRF_FIELD, ''),
        'theme': current_theme(),
        'user_menu': user_menu(session.get('user'), session.get('profile')),
    }


@bp.route('/theme/toggle', methods=['POST'])
def toggle_theme():
    new_theme = 'dark' if current_theme() == 'light' else 'light'
    target = request.form.get('next') or ''
    # Only same-site paths
    if not target.startswith('/') or target.startswith('//'):
        target = url_for('public.index')
    resp = redirect(target)
    resp.set_cookie(THEME_COOKIE, new_theme, max_age=THEME_MAX_AGE, samesite='Lax')
    return resp
