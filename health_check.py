import argparse
import datetime
import functools
import json
import sys
from dataclasses import dataclass, replace
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import mysql.connector

from replica_status import parse_dsn, status_from_row, validate_column_map

ROUTE = "/current-bin-log"
NOT_READY = "err: server not ready"


def log_debug(message):
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    print(f"[{timestamp}] {message}", flush=True)


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class AppConfig:
    address: str = "127.0.0.1"
    port: int = 12345
    mysql_dsn: str = "root:123456@tcp(127.0.0.1:3306)/"
    timeout: float = 5.0
    status_query: str = "SHOW SLAVE STATUS"


# JSON key -> (attribute, accepted JSON types)
CONFIG_KEYS = {
    "address": ("address", (str,)),
    "port": ("port", (int,)),
    "mysql-dsn": ("mysql_dsn", (str,)),
    "timeout": ("timeout", (int, float)),
    "status-query": ("status_query", (str,)),
}


def load_config(path="config.json"):
    """Load configuration from a JSON file on top of the built-in defaults.

    A missing file keeps the defaults. Anything that does not decode into
    the expected shape raises ConfigError.
    """
    config = AppConfig()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError:
        log_debug(f"cannot open file: {path}, use default values")
        return config
    except ValueError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"cannot parse {path}: expected a JSON object")

    # keys match case-insensitively; a later duplicate wins
    overrides = {}
    for key, value in data.items():
        known = CONFIG_KEYS.get(key.lower())
        if known is None or value is None:
            continue
        attr, types = known
        # bool is an int subclass but never a valid port or timeout
        if isinstance(value, bool) or not isinstance(value, types):
            raise ConfigError(f"cannot parse {path}: wrong type for {key!r}")
        overrides[attr] = value
    return replace(config, **overrides)


class HealthCheckHandler(BaseHTTPRequestHandler):
    def __init__(self, config, *args, **kwargs):
        self.config = config
        super().__init__(*args, **kwargs)

    def do_GET(self):
        if self.path.split("?", 1)[0] != ROUTE:
            self.send_error(404)
            return

        log_debug(f"Request started: {self.path}")
        body = self.current_bin_log()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)
        log_debug(f"Request finished: {body.decode() or '<no rows>'}")

    def current_bin_log(self):
        try:
            connect_args = {"connection_timeout": self.config.timeout}
            connect_args.update(parse_dsn(self.config.mysql_dsn))
            conn = mysql.connector.connect(**connect_args)
        except (mysql.connector.Error, ValueError) as e:
            log_debug(f"connection failed: {e}")
            return b"err: connection"

        try:
            return self.query_status(conn)
        finally:
            conn.close()

    def query_status(self, conn):
        try:
            cur = conn.cursor(raw=True)
        except mysql.connector.Error as e:
            log_debug(f"query failed: {e}")
            return b"err: query"

        try:
            try:
                cur.execute(self.config.status_query)
            except mysql.connector.Error as e:
                log_debug(f"query failed: {e}")
                return b"err: query"

            columns = [d[0] for d in cur.description or ()]

            try:
                row = cur.fetchone()
            except mysql.connector.Error as e:
                log_debug(f"row scan failed: {e}")
                return b"err: row scan"
            if row is None:
                log_debug("replication status returned no rows")
                return b""

            # the cursor refuses to close while rows are still unread
            try:
                extra = cur.fetchall()
            except mysql.connector.Error as e:
                log_debug(f"getting rows failed: {e}")
                return b"err: getting rows"
            if extra:
                log_debug(f"ignoring {len(extra)} extra replication status rows")

            try:
                status = status_from_row(columns, row)
            except ValueError as e:
                log_debug(f"convert failed: {e}")
                return b"err: convert"

            if status.is_healthy():
                return status.primary_log_file.encode()
            log_debug(f"replica not ready: {status}")
            return NOT_READY.encode()
        finally:
            try:
                cur.close()
            except mysql.connector.Error as e:
                log_debug(f"closing cursor failed: {e}")

    def log_message(self, format, *args):
        return


def make_server(config, server_class=ThreadingHTTPServer, handler_class=HealthCheckHandler):
    handler = functools.partial(handler_class, config)
    return server_class((config.address, config.port), handler)


def main(argv=None, server_class=ThreadingHTTPServer):
    parser = argparse.ArgumentParser(description="MySQL replica health check server")
    parser.add_argument("-c", dest="config", default="config.json",
                        help="path to configuration file")
    args = parser.parse_args(argv)

    validate_column_map()
    try:
        config = load_config(args.config)
    except ConfigError as e:
        log_debug(f"fatal: {e}")
        sys.exit(1)

    httpd = make_server(config, server_class=server_class)
    print(f"Starting health check server on {config.address}:{config.port}...", flush=True)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        httpd.server_close()


if __name__ == "__main__":
    main()
