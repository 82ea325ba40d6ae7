import os
import sqlite3
from wsm.utils.log import get_logger

logger = get_logger(__name__)

# (column, type) pairs added to `observations` after the first release, in order
ADDITIVE_COLUMNS: list[tuple[str, str]] = [
    ("display_name", "TEXT"),
    ("location_key", "TEXT"),
    ("location_label", "TEXT"),
]


def get_connection(db_path: str) -> sqlite3.Connection:
    """
    Get a SQLite connection with rows returned as sqlite3.Row.

    The connection may be handed to the event-loop thread of the HTTP server,
    so same-thread checking is disabled.
    """
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    """
    Add a nullable column if it is missing. Returns True when a column was added.
    """
    cols = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
    if column in cols:
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
    logger.info("Upgraded schema: added %s.%s", table, column)
    return True


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize (or migrate) the database by running the
    DDL in schema.sql plus the additive column upgrades,
    then return a live connection.
    """
    conn = get_connection(db_path)
    schema_path = os.path.join(os.path.dirname(__file__), "schema.sql")
    logger.debug("Initializing DB schema: %s", schema_path)
    with open(schema_path, "r") as f:
        conn.executescript(f.read())
    for column, definition in ADDITIVE_COLUMNS:
        _ensure_column(conn, "observations", column, definition)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_observations_location ON observations(location_key)"
    )
    conn.commit()
    return conn
