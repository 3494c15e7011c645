"""Shared fixtures: an in-memory MySQL driver and a live health server."""

import http.client
import threading
from dataclasses import replace

import mysql.connector
import pytest

from health_check import AppConfig, make_server

HEALTHY_ROW = {
    "Slave_IO_State": "Waiting for source to send event",
    "Master_Log_File": "mysql-bin.000123",
    "Slave_IO_Running": "Yes",
    "Slave_SQL_Running": "Yes",
    "Last_Errno": "0",
    "Seconds_Behind_Master": "0",
    "Last_IO_Errno": "0",
    "Last_SQL_Errno": "0",
}


def raw_row(values):
    return tuple(None if v is None else bytearray(str(v).encode()) for v in values)


class FakeCursor:
    """Raw cursor double that, like the real driver, refuses to close with unread rows."""

    def __init__(self, columns=(), rows=(), execute_error=None, fetch_error=None,
                 drain_error=None):
        self.description = [(name, 253, None, None, None, None, 1, 0, 45) for name in columns]
        self.rows = [raw_row(r) for r in rows]
        self.execute_error = execute_error
        self.fetch_error = fetch_error
        self.drain_error = drain_error
        self.executed = []
        self.has_result = False
        self.closed = False

    def execute(self, statement):
        self.executed.append(statement)
        if self.execute_error:
            raise self.execute_error
        self.has_result = True

    def fetchone(self):
        if self.fetch_error:
            raise self.fetch_error
        return self.rows.pop(0) if self.rows else None

    def fetchall(self):
        if self.drain_error:
            raise self.drain_error
        rest, self.rows = self.rows, []
        return rest

    def close(self):
        if self.has_result and self.rows:
            raise mysql.connector.errors.InternalError("Unread result found")
        self.closed = True


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.cursor_kwargs = None
        self.closed = False

    def cursor(self, **kwargs):
        self.cursor_kwargs = kwargs
        return self._cursor

    def close(self):
        self.closed = True


class FakeDriver:
    """Stands in for mysql.connector.connect and records each call."""

    def __init__(self):
        self.cursor = FakeCursor()
        self.connection = FakeConnection(self.cursor)
        self.connect_error = None
        self.calls = []

    def set_rows(self, *rows, **cursor_kwargs):
        columns = list(rows[0]) if rows else list(HEALTHY_ROW)
        self.cursor = FakeCursor(
            columns, [[r.get(c) for c in columns] for r in rows], **cursor_kwargs
        )
        self.connection = FakeConnection(self.cursor)

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.connect_error:
            raise self.connect_error
        return self.connection


@pytest.fixture
def fake_db(monkeypatch):
    driver = FakeDriver()
    monkeypatch.setattr(mysql.connector, "connect", driver)
    return driver


@pytest.fixture
def serve():
    """Start a health server for a given config and return a GET helper."""
    servers = []

    def start(config=None):
        config = config or AppConfig()
        httpd = make_server(replace(config, address="127.0.0.1", port=0))
        thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        thread.start()
        servers.append(httpd)
        host, port = httpd.server_address[:2]

        def get(path="/current-bin-log", method="GET"):
            conn = http.client.HTTPConnection(host, port, timeout=5)
            try:
                conn.request(method, path)
                resp = conn.getresponse()
                return resp.status, resp.read().decode(), resp
            finally:
                conn.close()

        return get

    yield start

    for httpd in servers:
        httpd.shutdown()
        httpd.server_close()
