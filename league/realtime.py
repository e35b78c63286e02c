"""Change notification: the broadcast relay and the LISTEN side used by the admin."""

from __future__ import annotations

import json
import select
from typing import Any, Callable, Iterator, List, Optional

from flask import Blueprint, current_app, request
from psycopg2 import sql

from . import datastore
from . import datastore_pg as _pg

bp = Blueprint('realtime', __name__)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
}


def _decode(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class ChangeListener:
    """Dedicated connection LISTENing on the changes channel.

    Use as a context manager; :meth:`poll` waits up to ``timeout`` seconds
    and returns the decoded payloads received meanwhile.
    """

    def __init__(self, channel: str = _pg.CHANGES_CHANNEL, connect: Optional[Callable[[], Any]] = None):
        self.channel = channel
        self._connect = connect or _pg.connect
        self.conn = None

    def __enter__(self) -> "ChangeListener":
        self.conn = self._connect()
        self.conn.autocommit = True
        with self.conn.cursor() as cur:
            cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.channel)))
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        return False

    def poll(self, timeout: float = 15.0) -> List[Any]:
        if select.select([self.conn], [], [], timeout) == ([], [], []):
            return []
        self.conn.poll()
        payloads = []
        while self.conn.notifies:
            note = self.conn.notifies.pop(0)
            payloads.append(_decode(note.payload))
        return payloads


def event_stream(listener: ChangeListener, heartbeat: float = 15.0) -> Iterator[str]:
    """Server-sent events for every change; a comment line keeps idle streams open."""
    with listener:
        yield ': connected\n\n'
        while True:
            payloads = listener.poll(heartbeat)
            if not payloads:
                yield ': ping\n\n'
                continue
            for payload in payloads:
                yield f"event: change\ndata: {json.dumps(payload, default=str)}\n\n"


@bp.route('/functions/broadcast-changes', methods=['POST', 'OPTIONS'])
def broadcast_changes():
    """Relay any JSON payload to clients listening on the changes channel."""
    if request.method == 'OPTIONS':
        return 'ok', 200, CORS_HEADERS
    try:
        payload = request.get_json(force=True)
        current_app.logger.info("Payload received: %s", payload)
        datastore.broadcast(payload)
    except Exception as e:
        current_app.logger.error("Error in broadcast relay: %s", e)
        return {'error': str(e)}, 500, CORS_HEADERS
    return {'success': True, 'status': 'ok'}, 200, CORS_HEADERS
