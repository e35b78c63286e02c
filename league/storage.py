"""Uploads to the backend object storage."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

PLAYER_PHOTOS_BUCKET = "player-photos"
AVATARS_BUCKET = "avatars"

CACHE_CONTROL_SECONDS = 3600


def _storage_url() -> str:
    url = os.environ.get("SUPABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_URL is not set")
    return url.rstrip("/") + "/storage/v1"


def public_url(bucket: str, path: str) -> str:
    return f"{_storage_url()}/object/public/{quote(bucket)}/{quote(path)}"


def upload_file(
    bucket: str,
    path: str,
    content: bytes,
    content_type: str = "application/octet-stream",
    access_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Upload ``content`` to ``bucket/path``, replacing any existing object.

    Returns:
        ``{"public_url": url, "error": None}`` on success, otherwise
        ``{"public_url": None, "error": {"message": ...}}``.
    """
    key = os.environ.get("SUPABASE_ANON_KEY", "")
    headers = {
        "apikey": key,
        "Authorization": f"Bearer {access_token or key}",
        "Content-Type": content_type or "application/octet-stream",
        "cache-control": f"max-age={CACHE_CONTROL_SECONDS}",
        "x-upsert": "true",
    }
    try:
        timeout = float(os.environ.get("HTTP_TIMEOUT", "30"))
    except ValueError:
        timeout = 30.0
    url = f"{_storage_url()}/object/{quote(bucket)}/{quote(path)}"
    try:
        resp = requests.post(url, headers=headers, data=content, timeout=timeout)
    except requests.RequestException as exc:
        logger.error("Error uploading to %s: %s", bucket, exc)
        return {"public_url": None, "error": {"message": str(exc)}}
    if not resp.ok:
        try:
            body = resp.json()
            message = body.get("message") or body.get("error") or resp.text
        except ValueError:
            message = resp.text or f"HTTP {resp.status_code}"
        logger.error("Error uploading to %s: %s", bucket, message)
        return {"public_url": None, "error": {"message": message, "status": resp.status_code}}
    return {"public_url": public_url(bucket, path), "error": None}
