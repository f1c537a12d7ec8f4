"""SQLite-based implementation of the extension catalog used by maintenance jobs."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set

from ExtRegistry.Maintenance.catalog.models import (
    DOWNLOAD,
    DOWNLOAD_SIG,
    ROLE_OWNER,
    UNIVERSAL_TARGET,
    AdminStatistics,
    Extension,
    ExtensionIdentity,
    ExtensionVersion,
    FileResource,
    MigrationItem,
    Namespace,
    SignatureKeyPair,
)
from ExtRegistry.Maintenance.errors import DataIntegrityError
from ExtRegistry.Maintenance.kinds import EntityType

logger = logging.getLogger(__name__)

_VERSION_FLAG_COLUMNS = (
    "pre_release",
    "preview",
    "potentially_malicious",
    "signature_key_pair_id",
    "target_platform",
)

_ENTITY_SOURCES = {
    EntityType.EXTENSION: ("SELECT id FROM extensions", ()),
    EntityType.EXTENSION_VERSION: ("SELECT id FROM extension_versions", ()),
    EntityType.FILE_RESOURCE: ("SELECT id FROM file_resources WHERE type = ?", (DOWNLOAD,)),
}

_VERSION_SELECT = """
    SELECT v.*, e.name AS extension_name, n.name AS namespace_name
    FROM extension_versions v
    JOIN extensions e ON e.id = v.extension_id
    JOIN namespaces n ON n.id = e.namespace_id
"""

_FILE_SELECT = """
    SELECT f.*, v.version AS version, v.target_platform AS target_platform,
           e.name AS extension_name, n.name AS namespace_name
    FROM file_resources f
    JOIN extension_versions v ON v.id = f.extension_version_id
    JOIN extensions e ON e.id = v.extension_id
    JOIN namespaces n ON n.id = e.namespace_id
"""

_EXTENSION_SELECT = """
    SELECT e.*, n.name AS namespace_name
    FROM extensions e
    JOIN namespaces n ON n.id = e.namespace_id
"""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SQLiteCatalog:
    """SQLite-backed catalog of namespaces, extensions, versions and artifacts.

    One connection is shared by all worker threads and guarded by a re-entrant
    lock. :meth:`transaction` opens an immediate write transaction; calls made
    inside it (from the same thread) join the outer transaction, so services
    can read-then-write atomically.
    """

    def __init__(self, path: str, wal_mode: bool = True):
        """Initialize SQLite catalog store.

        Args:
            path: Path to SQLite database file
            wal_mode: If True, enable WAL mode for better concurrency

        Raises:
            sqlite3.Error: If database initialization fails
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.wal_mode = wal_mode
        self._lock = threading.RLock()
        self._depth = 0

        self.conn = sqlite3.connect(
            str(self.path), check_same_thread=False, timeout=30.0, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row

        if wal_mode:
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")

        self._init_schema()
        logger.info(f"Initialized SQLite catalog at {self.path}")

    def _init_schema(self) -> None:
        """Load and execute schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")
        self.conn.executescript(schema_path.read_text())
        logger.debug("Schema initialized successfully")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the catalog lock and run the block in one write transaction."""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self.conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self.conn
            except BaseException:
                self._depth -= 1
                if outermost:
                    self.conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                self.conn.execute("COMMIT")

    def _fetchone(self, sql: str, params: Sequence = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Entities (publish-side inserts used by the registry and by tests)
    # ------------------------------------------------------------------

    def add_user(self, login_name: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("INSERT INTO users (login_name) VALUES (?)", (login_name,))
            return int(cursor.lastrowid)

    def add_namespace(self, name: str, public_id: Optional[str] = None) -> Namespace:
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO namespaces (name, public_id) VALUES (?, ?)", (name, public_id)
            )
            return Namespace(id=int(cursor.lastrowid), name=name, public_id=public_id)

    def add_membership(self, namespace_id: int, user_id: int, role: str) -> bool:
        """Grant ``role`` to a user; returns False if a membership already exists."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO namespace_memberships (namespace_id, user_id, role)
                VALUES (?, ?, ?)
                """,
                (namespace_id, user_id, role),
            )
            return cursor.rowcount == 1

    def add_extension(
        self, namespace_id: int, name: str, public_id: Optional[str] = None
    ) -> Extension:
        if self.get_namespace(namespace_id) is None:
            raise DataIntegrityError(f"Namespace {namespace_id} not found", entity_id=namespace_id)
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO extensions (namespace_id, name, public_id) VALUES (?, ?, ?)",
                (namespace_id, name, public_id),
            )
            extension_id = int(cursor.lastrowid)
        extension = self.get_extension(extension_id)
        if extension is None:
            raise DataIntegrityError(
                f"Extension {extension_id} vanished after insert", entity_id=extension_id
            )
        return extension

    def add_version(
        self,
        extension_id: int,
        version: str,
        *,
        target_platform: str = UNIVERSAL_TARGET,
        published_by: Optional[int] = None,
        active: bool = True,
        timestamp: Optional[str] = None,
    ) -> ExtensionVersion:
        if self.get_extension(extension_id) is None:
            raise DataIntegrityError(f"Extension {extension_id} not found", entity_id=extension_id)
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO extension_versions
                (extension_id, version, target_platform, active, published_by, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    extension_id,
                    version,
                    target_platform,
                    int(active),
                    published_by,
                    timestamp or _utcnow(),
                ),
            )
            version_id = int(cursor.lastrowid)
        record = self.get_version(version_id)
        if record is None:
            raise DataIntegrityError(
                f"Version {version_id} vanished after insert", entity_id=version_id
            )
        return record

    def insert_file_resource(self, resource: FileResource) -> FileResource:
        with self.transaction() as conn:
            return self._insert_file(conn, resource)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_namespace(self, namespace_id: int) -> Optional[Namespace]:
        row = self._fetchone("SELECT * FROM namespaces WHERE id = ?", (namespace_id,))
        return self._row_to_namespace(row) if row else None

    def find_namespace(self, name: str) -> Optional[Namespace]:
        row = self._fetchone("SELECT * FROM namespaces WHERE name = ?", (name,))
        return self._row_to_namespace(row) if row else None

    def list_namespaces(self) -> List[Namespace]:
        rows = self._fetchall("SELECT * FROM namespaces ORDER BY id")
        return [self._row_to_namespace(row) for row in rows]

    def get_extension(self, extension_id: int) -> Optional[Extension]:
        row = self._fetchone(_EXTENSION_SELECT + " WHERE e.id = ?", (extension_id,))
        return self._row_to_extension(row) if row else None

    def find_extension(self, namespace_name: str, name: str) -> Optional[Extension]:
        row = self._fetchone(
            _EXTENSION_SELECT + " WHERE n.name = ? AND e.name = ?", (namespace_name, name)
        )
        return self._row_to_extension(row) if row else None

    def find_extensions(self, namespace_id: int) -> List[Extension]:
        rows = self._fetchall(
            _EXTENSION_SELECT + " WHERE e.namespace_id = ? ORDER BY e.id", (namespace_id,)
        )
        return [self._row_to_extension(row) for row in rows]

    def get_version(self, version_id: int) -> Optional[ExtensionVersion]:
        row = self._fetchone(_VERSION_SELECT + " WHERE v.id = ?", (version_id,))
        return self._row_to_version(row) if row else None

    def find_versions(self, extension_id: int, active_only: bool = False) -> List[ExtensionVersion]:
        sql = _VERSION_SELECT + " WHERE v.extension_id = ?"
        if active_only:
            sql += " AND v.active = 1"
        rows = self._fetchall(sql + " ORDER BY v.id", (extension_id,))
        return [self._row_to_version(row) for row in rows]

    def find_published_version_ids(self) -> List[int]:
        """Ids of all active versions of active extensions, oldest first."""
        rows = self._fetchall(
            """
            SELECT v.id FROM extension_versions v
            JOIN extensions e ON e.id = v.extension_id
            WHERE v.active = 1 AND e.active = 1
            ORDER BY v.id
            """
        )
        return [row[0] for row in rows]

    def find_version_ids_without_signature(self, key_pair_id: int) -> List[int]:
        """Ids of published versions not yet signed with ``key_pair_id``."""
        rows = self._fetchall(
            """
            SELECT v.id FROM extension_versions v
            JOIN extensions e ON e.id = v.extension_id
            WHERE v.active = 1 AND e.active = 1
              AND (v.signature_key_pair_id IS NULL OR v.signature_key_pair_id != ?)
            ORDER BY v.id
            """,
            (key_pair_id,),
        )
        return [row[0] for row in rows]

    def get_file_resource(self, resource_id: int) -> Optional[FileResource]:
        row = self._fetchone(_FILE_SELECT + " WHERE f.id = ?", (resource_id,))
        return self._row_to_file(row) if row else None

    def find_file(self, version_id: int, type: str) -> Optional[FileResource]:
        row = self._fetchone(
            _FILE_SELECT + " WHERE f.extension_version_id = ? AND f.type = ? ORDER BY f.id",
            (version_id, type),
        )
        return self._row_to_file(row) if row else None

    def find_files(self, version_id: int, type: Optional[str] = None) -> List[FileResource]:
        sql = _FILE_SELECT + " WHERE f.extension_version_id = ?"
        params: List[object] = [version_id]
        if type is not None:
            sql += " AND f.type = ?"
            params.append(type)
        rows = self._fetchall(sql + " ORDER BY f.id", params)
        return [self._row_to_file(row) for row in rows]

    def find_files_by_type(self, type: str) -> List[FileResource]:
        rows = self._fetchall(_FILE_SELECT + " WHERE f.type = ? ORDER BY f.id", (type,))
        return [self._row_to_file(row) for row in rows]

    # ------------------------------------------------------------------
    # Artifact rows
    # ------------------------------------------------------------------

    def replace_file_resources(
        self,
        version_id: int,
        type: str,
        resources: Iterable[FileResource],
        *,
        version_updates: Optional[Dict[str, object]] = None,
    ) -> List[FileResource]:
        """Swap every ``type`` row of a version for ``resources`` in one transaction.

        Leaves exactly the given rows of that type, so re-running a handler can
        never accumulate duplicates.
        """
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM file_resources WHERE extension_version_id = ? AND type = ?",
                (version_id, type),
            )
            inserted = [self._insert_file(conn, resource) for resource in resources]
            if version_updates:
                self._update_version(conn, version_id, version_updates)
            return inserted

    def delete_file_resources(self, version_id: int, type: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM file_resources WHERE extension_version_id = ? AND type = ?",
                (version_id, type),
            )
            return cursor.rowcount

    def rename_file_resource(self, resource_id: int, name: str) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE file_resources SET name = ? WHERE id = ?", (name, resource_id))

    def update_version_flags(self, version_id: int, **flags: object) -> None:
        """Update scalar columns of one version (pre_release, preview, ...)."""
        with self.transaction() as conn:
            self._update_version(conn, version_id, flags)

    # ------------------------------------------------------------------
    # Signature key pairs
    # ------------------------------------------------------------------

    def find_active_key_pair(self) -> Optional[SignatureKeyPair]:
        row = self._fetchone("SELECT * FROM signature_key_pairs WHERE active = 1")
        return self._row_to_key_pair(row) if row else None

    def get_key_pair(self, key_pair_id: int) -> Optional[SignatureKeyPair]:
        row = self._fetchone("SELECT * FROM signature_key_pairs WHERE id = ?", (key_pair_id,))
        return self._row_to_key_pair(row) if row else None

    def find_key_pair(self, public_id: str) -> Optional[SignatureKeyPair]:
        row = self._fetchone(
            "SELECT * FROM signature_key_pairs WHERE public_id = ?", (public_id,)
        )
        return self._row_to_key_pair(row) if row else None

    def list_key_pairs(self) -> List[SignatureKeyPair]:
        rows = self._fetchall("SELECT * FROM signature_key_pairs ORDER BY id")
        return [self._row_to_key_pair(row) for row in rows]

    def insert_key_pair(
        self, public_id: str, private_key: bytes, public_key_text: str, *, active: bool = True
    ) -> SignatureKeyPair:
        """Insert a key pair.

        Raises:
            sqlite3.IntegrityError: if ``active`` and another key is still active.
        """
        created_at = _utcnow()
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO signature_key_pairs
                (public_id, private_key, public_key_text, created_at, active)
                VALUES (?, ?, ?, ?, ?)
                """,
                (public_id, private_key, public_key_text, created_at, int(active)),
            )
            return SignatureKeyPair(
                id=int(cursor.lastrowid),
                public_id=public_id,
                private_key=private_key,
                public_key_text=public_key_text,
                created_at=created_at,
                active=active,
            )

    def deactivate_key_pairs(self) -> int:
        with self.transaction() as conn:
            return conn.execute(
                "UPDATE signature_key_pairs SET active = 0 WHERE active = 1"
            ).rowcount

    def purge_signatures(self) -> Dict[str, int]:
        """Remove every signature row and key pair in one transaction."""
        with self.transaction() as conn:
            signatures = conn.execute(
                "DELETE FROM file_resources WHERE type = ?", (DOWNLOAD_SIG,)
            ).rowcount
            conn.execute(
                "UPDATE extension_versions SET signature_key_pair_id = NULL"
                " WHERE signature_key_pair_id IS NOT NULL"
            )
            key_pairs = conn.execute("DELETE FROM signature_key_pairs").rowcount
        return {"signatures": signatures, "key_pairs": key_pairs}

    # ------------------------------------------------------------------
    # Migration items
    # ------------------------------------------------------------------

    def is_kind_introduced(self, kind: str) -> bool:
        return self._fetchone("SELECT 1 FROM migration_kinds WHERE kind = ?", (kind,)) is not None

    def introduce_migration_kind(self, kind: str, entity_type: EntityType) -> int:
        """Seed one migration item per existing entity the first time ``kind`` is seen.

        Returns:
            Number of items created (0 if the kind was already introduced).
        """
        source_sql, source_params = _ENTITY_SOURCES[entity_type]
        with self.transaction() as conn:
            seen = conn.execute("SELECT 1 FROM migration_kinds WHERE kind = ?", (kind,)).fetchone()
            if seen:
                return 0
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO migration_items (kind, entity_id) "
                f"SELECT ?, id FROM ({source_sql})",
                (kind, *source_params),
            )
            conn.execute(
                "INSERT INTO migration_kinds (kind, introduced_at) VALUES (?, ?)",
                (kind, _utcnow()),
            )
            return cursor.rowcount

    def create_migration_item(self, kind: str, entity_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO migration_items (kind, entity_id) VALUES (?, ?)",
                (kind, entity_id),
            )
            return cursor.rowcount == 1

    def get_migration_item(self, item_id: int) -> Optional[MigrationItem]:
        row = self._fetchone("SELECT * FROM migration_items WHERE id = ?", (item_id,))
        return self._row_to_item(row) if row else None

    def find_not_migrated(self, kind: str, limit: int) -> List[MigrationItem]:
        """Return up to ``limit`` items of ``kind`` that have no job yet."""
        rows = self._fetchall(
            """
            SELECT * FROM migration_items
            WHERE kind = ? AND migration_scheduled = 0
            ORDER BY id LIMIT ?
            """,
            (kind, limit),
        )
        return [self._row_to_item(row) for row in rows]

    def find_incomplete(self, kind: str) -> List[MigrationItem]:
        """Items whose job was enqueued but never reported success."""
        rows = self._fetchall(
            """
            SELECT * FROM migration_items
            WHERE kind = ? AND migration_scheduled = 1 AND migration_completed = 0
            ORDER BY id
            """,
            (kind,),
        )
        return [self._row_to_item(row) for row in rows]

    def mark_migration_scheduled(self, item_id: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE migration_items SET migration_scheduled = 1 WHERE id = ?", (item_id,)
            )

    def mark_migration_completed(self, item_id: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE migration_items SET migration_scheduled = 1, migration_completed = 1"
                " WHERE id = ?",
                (item_id,),
            )

    def count_pending(self, kind: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) FROM migration_items WHERE kind = ? AND migration_completed = 0",
            (kind,),
        )
        return int(row[0])

    # ------------------------------------------------------------------
    # Orphan namespaces
    # ------------------------------------------------------------------

    def find_orphan_namespaces(self) -> List[Namespace]:
        """Namespaces without any membership."""
        rows = self._fetchall(
            """
            SELECT n.* FROM namespaces n
            WHERE NOT EXISTS (
                SELECT 1 FROM namespace_memberships m WHERE m.namespace_id = n.id
            )
            ORDER BY n.id
            """
        )
        return [self._row_to_namespace(row) for row in rows]

    def count_extensions(self, namespace_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) FROM extensions WHERE namespace_id = ?", (namespace_id,)
        )
        return int(row[0])

    def find_active_publishers(self, namespace_id: int) -> List[int]:
        """Distinct publishers of the active versions in a namespace."""
        rows = self._fetchall(
            """
            SELECT DISTINCT v.published_by FROM extension_versions v
            JOIN extensions e ON e.id = v.extension_id
            WHERE e.namespace_id = ? AND v.active = 1 AND v.published_by IS NOT NULL
            ORDER BY v.published_by
            """,
            (namespace_id,),
        )
        return [row[0] for row in rows]

    def find_memberships(self, namespace_id: int) -> List[Dict[str, object]]:
        rows = self._fetchall(
            "SELECT user_id, role FROM namespace_memberships WHERE namespace_id = ? ORDER BY id",
            (namespace_id,),
        )
        return [{"user_id": row["user_id"], "role": row["role"]} for row in rows]

    def delete_namespace(self, namespace_id: int) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM namespaces WHERE id = ?", (namespace_id,))

    # ------------------------------------------------------------------
    # Public ids
    # ------------------------------------------------------------------

    def find_extension_identities(self) -> List[ExtensionIdentity]:
        """Public ids of every extension and its namespace, in catalog order."""
        rows = self._fetchall(
            """
            SELECT e.id AS extension_id, n.id AS namespace_id, n.name AS namespace_name,
                   e.name AS extension_name, e.public_id AS extension_public_id,
                   n.public_id AS namespace_public_id
            FROM extensions e JOIN namespaces n ON n.id = e.namespace_id
            ORDER BY e.id
            """
        )
        return [ExtensionIdentity(**dict(row)) for row in rows]

    def find_extension_by_public_id(self, public_id: str) -> Optional[Extension]:
        row = self._fetchone(_EXTENSION_SELECT + " WHERE e.public_id = ?", (public_id,))
        return self._row_to_extension(row) if row else None

    def find_namespace_by_public_id(self, public_id: str) -> Optional[Namespace]:
        row = self._fetchone("SELECT * FROM namespaces WHERE public_id = ?", (public_id,))
        return self._row_to_namespace(row) if row else None

    def extension_public_ids(self) -> Set[str]:
        rows = self._fetchall("SELECT public_id FROM extensions WHERE public_id IS NOT NULL")
        return {row[0] for row in rows}

    def namespace_public_ids(self) -> Set[str]:
        rows = self._fetchall("SELECT public_id FROM namespaces WHERE public_id IS NOT NULL")
        return {row[0] for row in rows}

    def update_extension_public_ids(self, mapping: Dict[int, str]) -> int:
        return self._bulk_update_public_ids("extensions", mapping)

    def update_namespace_public_ids(self, mapping: Dict[int, str]) -> int:
        return self._bulk_update_public_ids("namespaces", mapping)

    def _bulk_update_public_ids(self, table: str, mapping: Dict[int, str]) -> int:
        # Two phases so the unique index never sees two rows with one id while
        # values move between entities.
        if not mapping:
            return 0
        with self.transaction() as conn:
            conn.executemany(
                f"UPDATE {table} SET public_id = NULL WHERE id = ?",
                [(entity_id,) for entity_id in mapping],
            )
            conn.executemany(
                f"UPDATE {table} SET public_id = ? WHERE id = ?",
                [(public_id, entity_id) for entity_id, public_id in mapping.items()],
            )
        logger.debug(f"Updated {len(mapping)} public ids in {table}")
        return len(mapping)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def count_statistics(self, until: str) -> Dict[str, int]:
        """Counts of active catalog content published at or before ``until``."""
        with self._lock:
            extensions = self.conn.execute(
                """
                SELECT COUNT(DISTINCT e.id) FROM extensions e
                JOIN extension_versions v ON v.extension_id = e.id
                WHERE e.active = 1 AND v.active = 1 AND v.timestamp <= ?
                """,
                (until,),
            ).fetchone()[0]
            versions = self.conn.execute(
                "SELECT COUNT(*) FROM extension_versions WHERE active = 1 AND timestamp <= ?",
                (until,),
            ).fetchone()[0]
            publishers = self.conn.execute(
                """
                SELECT COUNT(DISTINCT published_by) FROM extension_versions
                WHERE active = 1 AND timestamp <= ? AND published_by IS NOT NULL
                """,
                (until,),
            ).fetchone()[0]
            owners = self.conn.execute(
                "SELECT COUNT(DISTINCT user_id) FROM namespace_memberships WHERE role = ?",
                (ROLE_OWNER,),
            ).fetchone()[0]
            signed = self.conn.execute(
                """
                SELECT COUNT(*) FROM extension_versions
                WHERE active = 1 AND timestamp <= ? AND signature_key_pair_id IS NOT NULL
                """,
                (until,),
            ).fetchone()[0]
        return {
            "extensions": extensions,
            "versions": versions,
            "publishers": publishers,
            "namespace_owners": owners,
            "signed_versions": signed,
        }

    def save_admin_statistics(self, stats: AdminStatistics) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO admin_statistics
                (year, month, extensions, versions, publishers, namespace_owners,
                 signed_versions, computed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(year, month) DO UPDATE SET
                  extensions = excluded.extensions,
                  versions = excluded.versions,
                  publishers = excluded.publishers,
                  namespace_owners = excluded.namespace_owners,
                  signed_versions = excluded.signed_versions,
                  computed_at = excluded.computed_at
                """,
                (
                    stats.year,
                    stats.month,
                    stats.extensions,
                    stats.versions,
                    stats.publishers,
                    stats.namespace_owners,
                    stats.signed_versions,
                    stats.computed_at or _utcnow(),
                ),
            )

    def get_admin_statistics(self, year: int, month: int) -> Optional[AdminStatistics]:
        row = self._fetchone(
            "SELECT * FROM admin_statistics WHERE year = ? AND month = ?", (year, month)
        )
        return AdminStatistics(**dict(row)) if row else None

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                logger.debug("Catalog connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_file(conn: sqlite3.Connection, resource: FileResource) -> FileResource:
        cursor = conn.execute(
            """
            INSERT INTO file_resources
            (extension_version_id, type, name, storage_type, content, content_type)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                resource.extension_version_id,
                resource.type,
                resource.name,
                resource.storage_type,
                resource.content,
                resource.content_type,
            ),
        )
        return resource.with_changes(id=int(cursor.lastrowid))

    @staticmethod
    def _update_version(
        conn: sqlite3.Connection, version_id: int, updates: Dict[str, object]
    ) -> None:
        unknown = set(updates) - set(_VERSION_FLAG_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported version columns: {sorted(unknown)}")
        assignments = ", ".join(f"{column} = ?" for column in updates)
        values = [int(v) if isinstance(v, bool) else v for v in updates.values()]
        conn.execute(
            f"UPDATE extension_versions SET {assignments} WHERE id = ?", (*values, version_id)
        )

    @staticmethod
    def _row_to_namespace(row: sqlite3.Row) -> Namespace:
        return Namespace(id=row["id"], name=row["name"], public_id=row["public_id"])

    @staticmethod
    def _row_to_extension(row: sqlite3.Row) -> Extension:
        return Extension(
            id=row["id"],
            namespace_id=row["namespace_id"],
            namespace_name=row["namespace_name"],
            name=row["name"],
            public_id=row["public_id"],
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_version(row: sqlite3.Row) -> ExtensionVersion:
        return ExtensionVersion(
            id=row["id"],
            extension_id=row["extension_id"],
            namespace_name=row["namespace_name"],
            extension_name=row["extension_name"],
            version=row["version"],
            target_platform=row["target_platform"],
            active=bool(row["active"]),
            pre_release=bool(row["pre_release"]),
            preview=bool(row["preview"]),
            potentially_malicious=bool(row["potentially_malicious"]),
            published_by=row["published_by"],
            signature_key_pair_id=row["signature_key_pair_id"],
            timestamp=row["timestamp"],
        )

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> FileResource:
        return FileResource(
            id=row["id"],
            extension_version_id=row["extension_version_id"],
            type=row["type"],
            name=row["name"],
            storage_type=row["storage_type"],
            namespace_name=row["namespace_name"],
            extension_name=row["extension_name"],
            version=row["version"],
            target_platform=row["target_platform"],
            content=row["content"],
            content_type=row["content_type"],
        )

    @staticmethod
    def _row_to_key_pair(row: sqlite3.Row) -> SignatureKeyPair:
        return SignatureKeyPair(
            id=row["id"],
            public_id=row["public_id"],
            private_key=bytes(row["private_key"]),
            public_key_text=row["public_key_text"],
            created_at=row["created_at"],
            active=bool(row["active"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> MigrationItem:
        return MigrationItem(
            id=row["id"],
            kind=row["kind"],
            entity_id=row["entity_id"],
            migration_scheduled=bool(row["migration_scheduled"]),
            migration_completed=bool(row["migration_completed"]),
        )
