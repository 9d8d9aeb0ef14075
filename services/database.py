"""
SQLite-backed persistence for installations, instances and their Thing IDs.

The database is the durable system of record of the connector: it is read once at start-up to
rebuild the provider's registry and written on every lifecycle callback. Background workers
only read instance tokens from it when relaying events.

Five tables are used:

- `installations` (id, token)
- `installation_configuration` (installation_id, id, value)
- `instances` (id, installation_id, token)
- `instance_configuration` (instance_id, id, value)
- `instance_thing_mapping` (instance_id, thing_id)

Every call opens its own connection, so the store can be used from request threads and worker
threads alike. Foreign keys are declared but not enforced (SQLite default), which means an
instance may reference an installation that is not stored; removals cascade explicitly instead.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from shared.errors import NotFoundError
from shared.models import Configuration, Installation, InstallationRequest, Instance, InstantiationRequest

DEFAULT_DB_PATH = "data/giphy_connector.db"

MIGRATIONS = [
    """
    CREATE TABLE IF NOT EXISTS installations (
        id    CHAR(36) NOT NULL PRIMARY KEY,
        token TEXT     NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS instances (
        id              CHAR(36) NOT NULL PRIMARY KEY,
        token           TEXT     NOT NULL,
        installation_id CHAR(36) NOT NULL
            REFERENCES installations(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS instance_thing_mapping (
        instance_id CHAR(36) NOT NULL
            REFERENCES instances(id) ON DELETE CASCADE,
        thing_id    CHAR(36) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS installation_configuration (
        installation_id CHAR(36)     NOT NULL
            REFERENCES installations(id) ON DELETE CASCADE,
        id              CHAR(36)     NOT NULL,
        value           VARCHAR(200) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS instance_configuration (
        instance_id CHAR(36)     NOT NULL
            REFERENCES instances(id) ON DELETE CASCADE,
        id          CHAR(36)     NOT NULL,
        value       VARCHAR(200) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_thing_mapping_thing ON instance_thing_mapping (thing_id)",
]


class Database:
    """
    Small repository over a SQLite file.

    Args:
        db_path (str): Filesystem path to the SQLite database file. Parent directories are
            created on first use.
        logger (logging.Logger, optional): Logger; defaults to the module logger.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, logger: Optional[logging.Logger] = None):
        self.db_path = db_path
        self._logger = logger or logging.getLogger(__name__)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(self.db_path)
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def migrate(self) -> None:
        """Create all tables. Safe to run repeatedly."""
        with self._connect() as con:
            for statement in MIGRATIONS:
                con.execute(statement)
        self._logger.info("Database migrated at %s", self.db_path)

    # --- installations ---

    def add_installation(self, request: InstallationRequest) -> None:
        with self._connect() as con:
            con.execute("INSERT INTO installations (id, token) VALUES (?, ?)", (request.id, request.token))

    def add_installation_configuration(self, installation_id: str, configuration: List[Configuration]) -> None:
        with self._connect() as con:
            con.executemany(
                "INSERT INTO installation_configuration (installation_id, id, value) VALUES (?, ?, ?)",
                [(installation_id, c.id, c.value) for c in configuration],
            )

    def get_installations(self) -> List[Installation]:
        with self._connect() as con:
            rows = con.execute("SELECT id, token FROM installations ORDER BY rowid").fetchall()
            return [
                Installation(
                    id=installation_id,
                    token=token,
                    configuration=self._configuration(
                        con, "installation_configuration", "installation_id", installation_id
                    ),
                )
                for installation_id, token in rows
            ]

    def remove_installation(self, installation_id: str) -> None:
        """
        Delete the installation together with its configuration, instances, instance
        configuration and Thing mappings.

        Raises:
            NotFoundError: If no installation with this id is stored.
        """
        with self._connect() as con:
            cur = con.execute("DELETE FROM installations WHERE id = ?", (installation_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"installation {installation_id} not found")
            con.execute("DELETE FROM installation_configuration WHERE installation_id = ?", (installation_id,))
            instance_subquery = "SELECT id FROM instances WHERE installation_id = ?"
            con.execute(
                f"DELETE FROM instance_configuration WHERE instance_id IN ({instance_subquery})",
                (installation_id,),
            )
            con.execute(
                f"DELETE FROM instance_thing_mapping WHERE instance_id IN ({instance_subquery})",
                (installation_id,),
            )
            con.execute("DELETE FROM instances WHERE installation_id = ?", (installation_id,))

    # --- instances ---

    def add_instance(self, request: InstantiationRequest) -> None:
        with self._connect() as con:
            con.execute(
                "INSERT INTO instances (id, installation_id, token) VALUES (?, ?, ?)",
                (request.id, request.installation_id, request.token),
            )

    def add_instance_configuration(self, instance_id: str, configuration: List[Configuration]) -> None:
        with self._connect() as con:
            con.executemany(
                "INSERT INTO instance_configuration (instance_id, id, value) VALUES (?, ?, ?)",
                [(instance_id, c.id, c.value) for c in configuration],
            )

    def get_instance(self, instance_id: str) -> Instance:
        """
        Raises:
            NotFoundError: If no instance with this id is stored.
        """
        with self._connect() as con:
            row = con.execute(
                "SELECT id, installation_id, token FROM instances WHERE id = ?", (instance_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"instance {instance_id} not found")
            return self._instance(con, row)

    def get_instance_by_thing_id(self, thing_id: str) -> Instance:
        """
        Raises:
            NotFoundError: If no instance owns this Thing.
        """
        with self._connect() as con:
            row = con.execute(
                """
                SELECT i.id, i.installation_id, i.token
                FROM instances i
                JOIN instance_thing_mapping m ON m.instance_id = i.id
                WHERE m.thing_id = ?
                LIMIT 1
                """,
                (thing_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"no instance for thing {thing_id}")
            return self._instance(con, row)

    def get_instances(self) -> List[Instance]:
        with self._connect() as con:
            rows = con.execute("SELECT id, installation_id, token FROM instances ORDER BY rowid").fetchall()
            return [self._instance(con, row) for row in rows]

    def get_instance_configuration(self, instance_id: str) -> List[Configuration]:
        with self._connect() as con:
            return self._configuration(con, "instance_configuration", "instance_id", instance_id)

    def get_thing_ids(self, instance_id: str) -> List[str]:
        with self._connect() as con:
            return self._thing_ids(con, instance_id)

    def remove_instance(self, instance_id: str) -> None:
        """
        Delete the instance together with its configuration and Thing mappings.

        Raises:
            NotFoundError: If no instance with this id is stored.
        """
        with self._connect() as con:
            cur = con.execute("DELETE FROM instances WHERE id = ?", (instance_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"instance {instance_id} not found")
            con.execute("DELETE FROM instance_configuration WHERE instance_id = ?", (instance_id,))
            con.execute("DELETE FROM instance_thing_mapping WHERE instance_id = ?", (instance_id,))

    def add_thing_id(self, instance_id: str, thing_id: str) -> None:
        with self._connect() as con:
            con.execute(
                "INSERT INTO instance_thing_mapping (instance_id, thing_id) VALUES (?, ?)",
                (instance_id, thing_id),
            )

    # --- row mapping ---

    def _instance(self, con: sqlite3.Connection, row) -> Instance:
        instance_id, installation_id, token = row
        return Instance(
            id=instance_id,
            installation_id=installation_id,
            token=token,
            thing_ids=self._thing_ids(con, instance_id),
            configuration=self._configuration(con, "instance_configuration", "instance_id", instance_id),
        )

    @staticmethod
    def _thing_ids(con: sqlite3.Connection, instance_id: str) -> List[str]:
        rows = con.execute(
            "SELECT thing_id FROM instance_thing_mapping WHERE instance_id = ? ORDER BY rowid", (instance_id,)
        ).fetchall()
        return [thing_id for (thing_id,) in rows]

    @staticmethod
    def _configuration(con: sqlite3.Connection, table: str, owner_column: str, owner_id: str) -> List[Configuration]:
        # Table and column names come from the fixed call sites above, never from input.
        rows = con.execute(
            f"SELECT id, value FROM {table} WHERE {owner_column} = ? ORDER BY rowid", (owner_id,)
        ).fetchall()
        return [Configuration(id=config_id, value=value) for config_id, value in rows]
