import re
from dataclasses import dataclass, fields

DEFAULT_MYSQL_PORT = 3306
DEFAULT_TCP_ADDRESS = f"127.0.0.1:{DEFAULT_MYSQL_PORT}"


@dataclass
class ReplicaStatus:
    primary_log_file: str = ""
    io_running: str = ""
    sql_running: str = ""
    seconds_behind: int = 0
    last_errno: int = 0
    last_io_errno: int = 0
    last_sql_errno: int = 0

    def is_healthy(self):
        # last_errno is read but deliberately not part of the check
        return (
            self.io_running == "Yes"
            and self.sql_running == "Yes"
            and self.seconds_behind == 0
            and self.last_io_errno == 0
            and self.last_sql_errno == 0
        )


def _text(raw):
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8")
    return str(raw)


_INT_RE = re.compile(r"[+-]?[0-9]+")


def _int(raw):
    text = _text(raw)
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def text_setter(field_name):
    def setter(status, raw):
        setattr(status, field_name, _text(raw))
    setter.field_name = field_name
    return setter


def int_setter(field_name):
    def setter(status, raw):
        setattr(status, field_name, _int(raw))
    setter.field_name = field_name
    return setter


# SHOW SLAVE STATUS names first, SHOW REPLICA STATUS (MySQL 8.0.22+) aliases after
COLUMN_SETTERS = {
    "Master_Log_File": text_setter("primary_log_file"),
    "Source_Log_File": text_setter("primary_log_file"),
    "Slave_IO_Running": text_setter("io_running"),
    "Replica_IO_Running": text_setter("io_running"),
    "Slave_SQL_Running": text_setter("sql_running"),
    "Replica_SQL_Running": text_setter("sql_running"),
    "Seconds_Behind_Master": int_setter("seconds_behind"),
    "Seconds_Behind_Source": int_setter("seconds_behind"),
    "Last_IO_Errno": int_setter("last_io_errno"),
    "Last_SQL_Errno": int_setter("last_sql_errno"),
    "Last_Errno": int_setter("last_errno"),
}


def validate_column_map(column_setters=COLUMN_SETTERS):
    """Check that the column map and ReplicaStatus agree.

    Every setter must target a real field and every field must be reachable
    from at least one column. Raises RuntimeError otherwise.
    """
    field_names = {f.name for f in fields(ReplicaStatus)}
    targeted = set()
    for column, setter in column_setters.items():
        target = getattr(setter, "field_name", None)
        if target not in field_names:
            raise RuntimeError(f"column {column} maps to unknown field {target!r}")
        targeted.add(target)
    missing = field_names - targeted
    if missing:
        raise RuntimeError(f"no column maps to fields: {', '.join(sorted(missing))}")


def status_from_row(columns, row, column_setters=COLUMN_SETTERS):
    """Build a ReplicaStatus from one result row.

    NULL values and unknown columns are skipped. A value that cannot be
    converted raises ValueError.
    """
    status = ReplicaStatus()
    for column, raw in zip(columns, row):
        if raw is None:
            continue
        setter = column_setters.get(column)
        if setter is not None:
            setter(status, raw)
    return status


_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}


def parse_duration(value):
    """Parse a Go-style duration such as "500ms" or "5s" into seconds."""
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def parse_dsn(dsn):
    """Translate a Go MySQL driver DSN into mysql.connector.connect kwargs.

    Format: [user[:password]@][protocol[(address)]]/dbname[?param=value&...]
    """
    slash = dsn.rfind("/")
    if slash < 0:
        raise ValueError("invalid DSN: missing the slash separating the database name")
    head, tail = dsn[:slash], dsn[slash + 1:]

    kwargs = {}
    at = head.rfind("@")
    if at >= 0:
        credentials, head = head[:at], head[at + 1:]
        user, _, password = credentials.partition(":")
        kwargs["user"] = user
        if password:
            kwargs["password"] = password

    protocol, address = head, ""
    if "(" in head:
        if not head.endswith(")"):
            raise ValueError("invalid DSN: network address not terminated (missing closing brace)")
        protocol, address = head[:-1].split("(", 1)

    if protocol in ("", "tcp"):
        host, port = _split_host_port(address or DEFAULT_TCP_ADDRESS)
        kwargs["host"] = host
        kwargs["port"] = port
    elif protocol == "unix":
        if not address:
            raise ValueError("invalid DSN: unix protocol requires a socket path")
        kwargs["unix_socket"] = address
    else:
        raise ValueError(f"invalid DSN: unknown network {protocol!r}")

    database, _, query = tail.partition("?")
    if database:
        kwargs["database"] = database

    for pair in filter(None, query.split("&")):
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"invalid DSN: invalid parameter {pair!r}")
        if key == "charset":
            # Go accepts a comma separated fallback list; use the first
            kwargs["charset"] = value.split(",")[0]
        elif key == "timeout":
            kwargs["connection_timeout"] = parse_duration(value)
    return kwargs


def _split_host_port(address):
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"invalid DSN: bad address {address!r}")
        host, rest = address[1:end], address[end + 1:]
        port = rest[1:] if rest.startswith(":") else ""
    else:
        host, _, port = address.rpartition(":")
        if not host:
            host, port = port, ""
    if not port:
        return host, DEFAULT_MYSQL_PORT
    if not port.isdigit():
        raise ValueError(f"invalid DSN: bad port {port!r}")
    return host, int(port)
