import logging
from typing import Any, Dict, List, Optional

# Facade over datastore_pg used by the route handlers.
# Reads never raise: a failure is logged and an empty collection returned so
# pages always render. Mutations return {"data": ..., "error": ...} and leave
# surfacing the error to the caller.

from . import datastore_pg as _pg

logger = logging.getLogger(__name__)

Result = Dict[str, Any]


def _ok(data: Any) -> Result:
    return {"data": data, "error": None}


def _fail(exc: Exception) -> Result:
    message = str(getattr(exc, "pgerror", None) or exc).strip() or exc.__class__.__name__
    return {"data": None, "error": {"message": message}}


def get_players(claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    try:
        return _pg.list_players(claims=claims)
    except Exception:
        logger.exception("Error fetching players")
        return []


def get_matches(claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    try:
        return _pg.list_matches(claims=claims)
    except Exception:
        logger.exception("Error fetching matches")
        return []


def get_users_with_roles(claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    try:
        return _pg.list_users_with_roles(claims=claims)
    except Exception:
        logger.exception("Error fetching users with roles")
        return []


def get_profile(user_id: str, claims: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    try:
        return _pg.fetch_profile(user_id, claims=claims)
    except Exception:
        logger.exception("Error fetching profile %s", user_id)
        return None


def _mutate(label: str, fn, *args, **kwargs) -> Result:
    try:
        data = fn(*args, **kwargs)
    except Exception as exc:
        logger.error("%s failed: %s", label, exc)
        return _fail(exc)
    if data is None or data == 0:
        return {"data": None, "error": {"message": "No se encontró el registro."}}
    return _ok(data)


def insert_player(fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("insert_player", _pg.insert_player, fields, claims=claims)


def update_player(player_id: int, fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("update_player", _pg.update_player, player_id, fields, claims=claims)


def delete_player(player_id: int, claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("delete_player", _pg.delete_player, player_id, claims=claims)


def insert_match(fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("insert_match", _pg.insert_match, fields, claims=claims)


def update_match(match_id: int, fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("update_match", _pg.update_match, match_id, fields, claims=claims)


def delete_match(match_id: int, claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("delete_match", _pg.delete_match, match_id, claims=claims)


def update_profile(user_id: str, fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Result:
    return _mutate("update_profile", _pg.update_profile, user_id, fields, claims=claims)


def broadcast(payload: Any) -> None:
    _pg.broadcast(payload)
