import os
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor
from contextlib import contextmanager


logger = logging.getLogger(__name__)

_POOL: Optional[pg_pool.AbstractConnectionPool] = None

CHANGES_CHANNEL = "db-changes"

PLAYER_FIELDS = ("name", "status", "role", "photo_url")
MATCH_FIELDS = (
    "match_date",
    "result",
    "team_white_players",
    "team_dark_players",
    "chamigo_votes",
    "tt_attendees",
)
PROFILE_FIELDS = ("name", "role", "avatar_url")

_JSON_FIELDS = {"chamigo_votes"}


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except Exception:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled by default; can be disabled by DB_KEEPALIVES=0
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {}
    ct_env = _env_int("DB_CONNECT_TIMEOUT")
    kwargs["connect_timeout"] = ct_env if ct_env is not None else 10

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    for suffix in ("IDLE", "INTERVAL", "COUNT"):
        val = _env_int(f"DB_KEEPALIVES_{suffix}")
        if val is not None:
            kwargs[f"keepalives_{suffix.lower()}"] = val
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Initialize a global connection pool using DATABASE_URL.

    Safe to call multiple times; subsequent calls are ignored once a pool exists.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        # Leave _POOL as None; callers will fall back to direct connections
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def connect():
    """Open a dedicated (unpooled) connection, e.g. for LISTEN."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    return psycopg2.connect(url, **_connect_kwargs())


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False
    except Exception:
        return False
    return True


def _release(conn) -> None:
    # status 1 = active, 2 = intrans, 3 = inerror
    if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
        if getattr(conn, "status", 0) in (1, 2, 3):
            try:
                conn.rollback()
            except Exception:
                logger.debug("rollback on release failed", exc_info=True)
    _POOL.putconn(conn)


@contextmanager
def _get_conn():
    """Yield a database connection from the pool if available, else direct.

    A pooled connection that fails its liveness ping is discarded and one
    more checkout is attempted before giving up.
    """
    if not os.environ.get("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return

    conn = _POOL.getconn()
    if not _is_healthy(conn):
        _POOL.putconn(conn, close=True)
        conn = _POOL.getconn()
        if not _is_healthy(conn):
            _POOL.putconn(conn, close=True)
            raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _release(conn)


def _apply_claims(cur, claims: Optional[Dict[str, Any]]) -> None:
    """Run the current transaction as the signed-in user so row-level security applies."""
    if not claims:
        return
    cur.execute("SELECT set_config('request.jwt.claims', %s, true)", (json.dumps(claims),))
    cur.execute("SET LOCAL ROLE authenticated")


def _notify(cur, table: str, change_type: str, record: Optional[Dict[str, Any]]) -> None:
    payload = {"table": table, "type": change_type, "record": record}
    cur.execute("SELECT pg_notify(%s, %s)", (CHANGES_CHANNEL, json.dumps(payload, default=str)))


def _clean(fields: Dict[str, Any], allowed: Sequence[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in allowed:
        if key not in fields:
            continue
        value = fields[key]
        if key in _JSON_FIELDS and value is not None:
            value = Json(value)
        out[key] = value
    return out


def _select_all(query: str, params: Sequence[Any] = (), claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        _apply_claims(cur, claims)
        cur.execute(query, params)
        return [dict(r) for r in cur.fetchall() or []]


def list_players(claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return _select_all(
        "SELECT id, name, status, role, photo_url FROM players ORDER BY id ASC",
        claims=claims,
    )


def list_matches(claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return _select_all(
        """
        SELECT id, match_date, result, team_white_players, team_dark_players,
               chamigo_votes, tt_attendees
        FROM matches
        ORDER BY match_date DESC NULLS LAST, id DESC
        """,
        claims=claims,
    )


def list_users_with_roles(claims: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return _select_all("SELECT * FROM get_all_users_with_roles()", claims=claims)


def fetch_profile(user_id: str, claims: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    rows = _select_all(
        "SELECT id, role, name, avatar_url FROM profiles WHERE id = %s",
        (user_id,),
        claims=claims,
    )
    return rows[0] if rows else None


def _insert(table: str, fields: Dict[str, Any], allowed: Sequence[str], claims) -> Dict[str, Any]:
    values = _clean(fields, allowed)
    if not values:
        raise ValueError(f"No columns to insert into {table}")
    query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
        sql.Identifier(table),
        sql.SQL(", ").join(sql.Identifier(k) for k in values),
        sql.SQL(", ").join(sql.Placeholder() for _ in values),
    )
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        _apply_claims(cur, claims)
        cur.execute(query, list(values.values()))
        row = dict(cur.fetchone())
        _notify(cur, table, "INSERT", row)
    return row


def _update(table: str, row_id: Any, fields: Dict[str, Any], allowed: Sequence[str], claims) -> Optional[Dict[str, Any]]:
    values = _clean(fields, allowed)
    if not values:
        raise ValueError(f"No columns to update in {table}")
    query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
        sql.Identifier(table),
        sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(k), sql.Placeholder()) for k in values
        ),
    )
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        _apply_claims(cur, claims)
        cur.execute(query, list(values.values()) + [row_id])
        fetched = cur.fetchone()
        row = dict(fetched) if fetched else None
        if row is not None:
            _notify(cur, table, "UPDATE", row)
    return row


def _delete(table: str, row_id: Any, claims) -> int:
    query = sql.SQL("DELETE FROM {} WHERE id = %s").format(sql.Identifier(table))
    with _get_conn() as conn, conn.cursor() as cur:
        _apply_claims(cur, claims)
        cur.execute(query, (row_id,))
        count = cur.rowcount
        if count:
            _notify(cur, table, "DELETE", {"id": row_id})
    return count


def insert_player(fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _insert("players", fields, PLAYER_FIELDS, claims)


def update_player(player_id: int, fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return _update("players", player_id, fields, PLAYER_FIELDS, claims)


def delete_player(player_id: int, claims: Optional[Dict[str, Any]] = None) -> int:
    return _delete("players", player_id, claims)


def insert_match(fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _insert("matches", fields, MATCH_FIELDS, claims)


def update_match(match_id: int, fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return _update("matches", match_id, fields, MATCH_FIELDS, claims)


def delete_match(match_id: int, claims: Optional[Dict[str, Any]] = None) -> int:
    return _delete("matches", match_id, claims)


def update_profile(user_id: str, fields: Dict[str, Any], claims: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return _update("profiles", user_id, fields, PROFILE_FIELDS, claims)


def broadcast(payload: Any) -> None:
    """Rebroadcast an arbitrary JSON payload on the changes channel."""
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT pg_notify(%s, %s)", (CHANGES_CHANNEL, json.dumps(payload, default=str)))
