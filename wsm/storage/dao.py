import sqlite3
from sqlite3 import Connection
from typing import Optional
from wsm.errors import PersistenceFailure
from wsm.utils.validate import Observation
from wsm.storage.db import init_db
from wsm.utils.log import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "id, access_point_id, display_name, signal_strength, "
    "captured_at, location_key, location_label"
)


def _to_observation(row: sqlite3.Row) -> Observation:
    return Observation(
        id=row["id"],
        access_point_id=row["access_point_id"],
        display_name=row["display_name"],
        signal_strength=row["signal_strength"],
        captured_at=row["captured_at"],
        location_key=row["location_key"],
        location_label=row["location_label"],
    )


class DAO:
    """
    Append-only record store for signal-strength observations.

    Every sqlite3 error is re-raised as PersistenceFailure so callers can
    decide per write whether to carry on.
    """

    def __init__(self, db_path: str):
        """
        Create/connect and apply schema if needed.
        """
        self.db_path = db_path
        self.conn: Connection = init_db(db_path)

    def close(self) -> None:
        self.conn.close()

    def insert(self, obs: Observation) -> int:
        """
        Record a single observation and return its row id.
        """
        try:
            cur = self.conn.execute(
                """
                INSERT INTO observations
                  (access_point_id, display_name, signal_strength,
                   captured_at, location_key, location_label)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    obs.access_point_id,
                    obs.display_name,
                    obs.signal_strength,
                    obs.captured_at,
                    obs.location_key,
                    obs.location_label,
                ),
            )
            self.conn.commit()
        except sqlite3.Error as err:
            raise PersistenceFailure(f"insert {obs.access_point_id}: {err}") from err
        return cur.lastrowid

    def distinct_locations(self) -> list[str]:
        """
        Return every location key in the order it was first recorded.
        """
        cursor = self._query(
            """
            SELECT location_key
            FROM observations
            WHERE location_key IS NOT NULL
            GROUP BY location_key
            ORDER BY MIN(id)
            """
        )
        return [row["location_key"] for row in cursor.fetchall()]

    def by_location(self, key: str) -> list[Observation]:
        """
        Return all observations at one location, oldest first.
        """
        cursor = self._query(
            f"SELECT {_COLUMNS} FROM observations WHERE location_key = ? ORDER BY id",
            (key,),
        )
        return [_to_observation(row) for row in cursor.fetchall()]

    def by_access_point(self, access_point_id: str) -> list[Observation]:
        """
        Return all observations of one access point, oldest first.
        """
        cursor = self._query(
            f"SELECT {_COLUMNS} FROM observations WHERE access_point_id = ? ORDER BY id",
            (access_point_id,),
        )
        return [_to_observation(row) for row in cursor.fetchall()]

    def label_for(self, key: str) -> Optional[str]:
        """
        Return the first label stored for a location key, if any.
        """
        cursor = self._query(
            """
            SELECT location_label
            FROM observations
            WHERE location_key = ? AND location_label IS NOT NULL
            ORDER BY id
            LIMIT 1
            """,
            (key,),
        )
        row = cursor.fetchone()
        return row["location_label"] if row else None

    def rename_access_point(self, access_point_id: str, display_name: str, key: str) -> int:
        """
        Set the display name of an access point at one location.
        Returns the number of rows touched.
        """
        try:
            cur = self.conn.execute(
                """
                UPDATE observations SET display_name = ?
                WHERE access_point_id = ? AND location_key = ?
                """,
                (display_name, access_point_id, key),
            )
            self.conn.commit()
        except sqlite3.Error as err:
            raise PersistenceFailure(f"rename {access_point_id}: {err}") from err
        return cur.rowcount

    def count(self) -> int:
        return self._query("SELECT COUNT(*) FROM observations").fetchone()[0]

    def clear_all(self) -> None:
        """
        Delete every stored observation.
        """
        try:
            with self.conn:
                self.conn.execute("DELETE FROM observations")
        except sqlite3.Error as err:
            raise PersistenceFailure(f"clear: {err}") from err
        logger.info("Cleared all observations in %s", self.db_path)

    def _query(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as err:
            raise PersistenceFailure(f"query failed: {err}") from err
