import importlib

import pytest


class _Cursor:
    def __init__(self, fail=False):
        self.fail = fail
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        if self.fail:
            from psycopg2 import OperationalError

            raise OperationalError("SSL connection has been closed unexpectedly")
        self.executed.append((sql, params))


class _Conn:
    autocommit = False
    status = 1

    def __init__(self, fail=False):
        self.fail = fail
        self.closed = 0
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return _Cursor(self.fail)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = 1


class _Pool:
    def __init__(self, conns):
        self.conns = list(conns)
        self.calls_get = 0
        self.calls_put = []

    def getconn(self):
        self.calls_get += 1
        return self.conns.pop(0)

    def putconn(self, conn, close=False):
        self.calls_put.append((conn, close))
        if close:
            conn.close()


def test_pool_checkout_retries_on_stale_connection(monkeypatch):
    import league.datastore_pg as pg
    pg = importlib.reload(pg)

    bad, good = _Conn(fail=True), _Conn()
    pool = _Pool([bad, good])
    monkeypatch.setattr(pg, "_POOL", pool)

    with pg._get_conn() as conn:
        # The stale connection is replaced by a healthy one
        assert conn is good

    assert pool.calls_get == 2
    assert (bad, True) in pool.calls_put
    assert bad.closed == 1
    assert good.commits == 1
    # Healthy connection goes back to the pool without being closed
    assert pool.calls_put[-1] == (good, False)


def test_pool_checkout_gives_up_after_second_stale_connection(monkeypatch):
    import league.datastore_pg as pg
    pg = importlib.reload(pg)

    pool = _Pool([_Conn(fail=True), _Conn(fail=True)])
    monkeypatch.setattr(pg, "_POOL", pool)

    with pytest.raises(pg.psycopg2.OperationalError):
        with pg._get_conn():
            pass
    assert all(close for (_c, close) in pool.calls_put)


def test_failed_statement_rolls_back_pooled_connection(monkeypatch):
    import league.datastore_pg as pg
    pg = importlib.reload(pg)

    conn = _Conn()
    pool = _Pool([conn])
    monkeypatch.setattr(pg, "_POOL", pool)

    with pytest.raises(ValueError):
        with pg._get_conn():
            raise ValueError("boom")
    assert conn.commits == 0
    assert conn.rollbacks >= 1
    assert pool.calls_put[-1] == (conn, False)
