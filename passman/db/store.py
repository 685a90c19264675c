"""
Vault Store
===========

SQLite persistence for a single vault file.

Stores:
- The vault_metadata singleton (salt, verifier, cost parameters, lockout)
- Password entries with cleartext metadata and an opaque secret blob
- An FTS5 index over the cleartext fields only

Security Notes:
    - The store never interprets ciphertext; it only moves bytes
    - All queries are parameterized
    - The vault file is created owner-only on POSIX systems
"""

from __future__ import annotations

import os
import platform
import sqlite3
import stat
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final, Iterator, List, Mapping, Optional

from passman.core.crypto.cipher import Ciphertext
from passman.core.crypto.kdf import CostParameters
from passman.db.models import PasswordEntry, VaultMetadata, utcnow


class StoreError(Exception):
    """Base exception for storage errors."""
    pass


class VaultNotInitializedError(StoreError):
    """Raised when the vault has no metadata record yet."""

    def __init__(self) -> None:
        super().__init__("Vault not initialized. Create it first")


class VaultAlreadyExistsError(StoreError):
    """Raised when creating a vault whose metadata already exists."""

    def __init__(self) -> None:
        super().__init__("Vault already exists")


class EntryNotFoundError(StoreError):
    """Raised when an entry id or title does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Entry not found: {key}")


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    description: str
    sql: str


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(
        version=1,
        description="Initial schema",
        sql="""
        CREATE TABLE vault_metadata (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            created_at TEXT NOT NULL,
            last_access TEXT NOT NULL,
            schema_version INTEGER NOT NULL DEFAULT 1,
            salt BLOB NOT NULL,
            verifier BLOB NOT NULL,
            memory_cost INTEGER NOT NULL,
            time_cost INTEGER NOT NULL,
            parallelism INTEGER NOT NULL,
            failed_attempts INTEGER NOT NULL DEFAULT 0,
            locked_until TEXT
        );

        CREATE TABLE password_entries (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            username TEXT NOT NULL,
            encrypted_secret BLOB NOT NULL,
            url TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX idx_password_entries_title ON password_entries(title);
        CREATE INDEX idx_password_entries_username ON password_entries(username);
        CREATE INDEX idx_password_entries_url ON password_entries(url);
        CREATE INDEX idx_password_entries_created_at ON password_entries(created_at);
        CREATE INDEX idx_password_entries_updated_at ON password_entries(updated_at);

        CREATE VIRTUAL TABLE password_entries_fts USING fts5(
            id UNINDEXED,
            title,
            username,
            url,
            notes
        );

        CREATE TRIGGER password_entries_fts_insert AFTER INSERT ON password_entries BEGIN
            INSERT INTO password_entries_fts(id, title, username, url, notes)
            VALUES (new.id, new.title, new.username, new.url, new.notes);
        END;

        CREATE TRIGGER password_entries_fts_delete AFTER DELETE ON password_entries BEGIN
            DELETE FROM password_entries_fts WHERE id = old.id;
        END;

        CREATE TRIGGER password_entries_fts_update AFTER UPDATE ON password_entries BEGIN
            DELETE FROM password_entries_fts WHERE id = old.id;
            INSERT INTO password_entries_fts(id, title, username, url, notes)
            VALUES (new.id, new.title, new.username, new.url, new.notes);
        END;
        """,
    ),
)

_ENTRY_COLUMNS: Final[str] = (
    "id, title, username, encrypted_secret, url, notes, created_at, updated_at"
)


def _fts_query(text: str) -> str:
    """Turn free text into an FTS5 query: every word as a quoted prefix term."""
    terms = []
    for word in text.split():
        escaped = word.replace('"', '""')
        terms.append(f'"{escaped}"*')
    return " ".join(terms)


class VaultStore:
    """
    SQLite-backed vault storage.

    Usage:
        store = VaultStore(db_path)

        store.create_metadata(metadata)   # once, at vault creation
        store.add_entry(entry)
        hits = store.search_entries("github")

    Security Notes:
        - Only cleartext columns are indexed or searchable
        - vault_metadata can hold exactly one row (CHECK id = 1)
    """

    __slots__ = ("_db_path",)

    def __init__(self, db_path: Path | str) -> None:
        """
        Open (and migrate) the vault file.

        Args:
            db_path: Path to the SQLite vault file
        """
        self._db_path = Path(db_path)
        self.initialize_db()

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, roll back on error, always close."""
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize_db(self) -> None:
        """Create the vault file if needed and apply pending migrations."""
        new_file = not self._db_path.exists()
        self._db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    description TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
            """)
            conn.commit()
            current = conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0] or 0

            for migration in MIGRATIONS:
                if migration.version > current:
                    self._apply_migration(conn, migration)

        if new_file and platform.system().lower() != "windows":
            os.chmod(self._db_path, stat.S_IRUSR | stat.S_IWUSR)

    @staticmethod
    def _apply_migration(conn: sqlite3.Connection, migration: Migration) -> None:
        """Run one migration and record it in a single transaction."""
        script = (
            "BEGIN;\n"
            f"{migration.sql}\n"
            "INSERT INTO migrations (version, description, applied_at) "
            f"VALUES ({migration.version:d}, '{migration.description}', datetime('now'));\n"
            "COMMIT;"
        )
        try:
            conn.executescript(script)
        except sqlite3.Error:
            conn.rollback()
            raise

    def schema_version(self) -> int:
        """Highest applied migration."""
        with self._get_connection() as conn:
            return conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0] or 0

    # Vault metadata

    def create_metadata(self, metadata: VaultMetadata) -> None:
        """
        Insert the metadata singleton.

        Raises:
            VaultAlreadyExistsError: If the vault already has metadata
        """
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO vault_metadata (
                        id, created_at, last_access, schema_version, salt, verifier,
                        memory_cost, time_cost, parallelism, failed_attempts, locked_until
                    ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    metadata.created_at.isoformat(),
                    metadata.last_access.isoformat(),
                    metadata.schema_version,
                    metadata.salt,
                    metadata.verifier,
                    metadata.cost.memory_cost,
                    metadata.cost.time_cost,
                    metadata.cost.parallelism,
                    metadata.failed_attempts,
                    metadata.locked_until.isoformat() if metadata.locked_until else None,
                ))
        except sqlite3.IntegrityError:
            raise VaultAlreadyExistsError() from None

    def is_initialized(self) -> bool:
        with self._get_connection() as conn:
            count = conn.execute("SELECT COUNT(*) FROM vault_metadata WHERE id = 1").fetchone()[0]
            return count > 0

    def get_metadata(self) -> VaultMetadata:
        """
        Load the metadata singleton.

        Raises:
            VaultNotInitializedError: If the vault has not been created
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM vault_metadata WHERE id = 1").fetchone()

        if not row:
            raise VaultNotInitializedError()

        return VaultMetadata(
            salt=bytes(row["salt"]),
            verifier=bytes(row["verifier"]),
            cost=CostParameters(
                memory_cost=row["memory_cost"],
                time_cost=row["time_cost"],
                parallelism=row["parallelism"],
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_access=datetime.fromisoformat(row["last_access"]),
            schema_version=row["schema_version"],
            failed_attempts=row["failed_attempts"],
            locked_until=(
                datetime.fromisoformat(row["locked_until"]) if row["locked_until"] else None
            ),
        )

    def _update_metadata(self, assignments: str, params: tuple) -> None:
        with self._get_connection() as conn:
            result = conn.execute(
                f"UPDATE vault_metadata SET {assignments} WHERE id = 1", params
            )
            if result.rowcount == 0:
                raise VaultNotInitializedError()

    def touch_last_access(self, when: Optional[datetime] = None) -> None:
        """Record an access. Informational only."""
        self._update_metadata("last_access = ?", ((when or utcnow()).isoformat(),))

    def save_lockout(self, failed_attempts: int, locked_until: Optional[datetime]) -> None:
        """Persist the failed-attempt counter and lockout deadline."""
        self._update_metadata(
            "failed_attempts = ?, locked_until = ?",
            (failed_attempts, locked_until.isoformat() if locked_until else None),
        )

    # Password entries

    def add_entry(self, entry: PasswordEntry) -> None:
        """
        Insert a new entry.

        Raises:
            StoreError: If an entry with the same id exists
        """
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"INSERT INTO password_entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    self._entry_params(entry),
                )
        except sqlite3.IntegrityError as e:
            raise StoreError(f"Entry {entry.id} already exists") from e

    def get_entry(self, entry_id: str) -> PasswordEntry:
        """
        Raises:
            EntryNotFoundError: If no entry has this id
        """
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM password_entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
        if not row:
            raise EntryNotFoundError(entry_id)
        return self._row_to_entry(row)

    def get_entry_by_title(self, title: str) -> PasswordEntry:
        """
        Raises:
            EntryNotFoundError: If no entry has this title
        """
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM password_entries WHERE title = ? "
                "ORDER BY created_at LIMIT 1",
                (title,),
            ).fetchone()
        if not row:
            raise EntryNotFoundError(title)
        return self._row_to_entry(row)

    def list_entries(self) -> List[PasswordEntry]:
        """All entries ordered by title."""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM password_entries ORDER BY title COLLATE NOCASE"
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def search_entries(self, query: str) -> List[PasswordEntry]:
        """
        Full-text search over title, username, url and notes.

        Every word in query must prefix-match some cleartext field.
        An empty query returns all entries.
        """
        match = _fts_query(query)
        if not match:
            return self.list_entries()

        columns = ", ".join(f"e.{c.strip()}" for c in _ENTRY_COLUMNS.split(","))
        with self._get_connection() as conn:
            rows = conn.execute(f"""
                SELECT {columns}
                FROM password_entries e
                JOIN password_entries_fts ON password_entries_fts.id = e.id
                WHERE password_entries_fts MATCH ?
                ORDER BY e.title COLLATE NOCASE
            """, (match,)).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def update_entry(self, entry: PasswordEntry) -> None:
        """
        Overwrite an existing entry.

        Raises:
            EntryNotFoundError: If no entry has this id
        """
        with self._get_connection() as conn:
            result = conn.execute("""
                UPDATE password_entries
                SET title = ?, username = ?, encrypted_secret = ?, url = ?, notes = ?,
                    created_at = ?, updated_at = ?
                WHERE id = ?
            """, (*self._entry_params(entry)[1:], entry.id))
            if result.rowcount == 0:
                raise EntryNotFoundError(entry.id)

    def delete_entry(self, entry_id: str) -> None:
        """
        Raises:
            EntryNotFoundError: If no entry has this id
        """
        with self._get_connection() as conn:
            result = conn.execute("DELETE FROM password_entries WHERE id = ?", (entry_id,))
            if result.rowcount == 0:
                raise EntryNotFoundError(entry_id)

    def replace_secrets_and_verifier(
        self,
        secrets_by_id: Mapping[str, Ciphertext],
        verifier: bytes,
        when: Optional[datetime] = None,
    ) -> None:
        """
        Swap every listed entry's secret and the verifier in one transaction.

        Used when the master password changes; either everything is
        re-keyed or nothing is.
        """
        now = (when or utcnow()).isoformat()
        with self._get_connection() as conn:
            for entry_id, sealed in secrets_by_id.items():
                result = conn.execute(
                    "UPDATE password_entries SET encrypted_secret = ?, updated_at = ? WHERE id = ?",
                    (sealed.to_bytes(), now, entry_id),
                )
                if result.rowcount == 0:
                    raise EntryNotFoundError(entry_id)
            result = conn.execute(
                "UPDATE vault_metadata SET verifier = ? WHERE id = 1", (verifier,)
            )
            if result.rowcount == 0:
                raise VaultNotInitializedError()

    @staticmethod
    def _entry_params(entry: PasswordEntry) -> tuple:
        return (
            entry.id,
            entry.title,
            entry.username,
            bytes(entry.encrypted_secret),
            entry.url,
            entry.notes,
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
        )

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> PasswordEntry:
        return PasswordEntry(
            id=row["id"],
            title=row["title"],
            username=row["username"],
            encrypted_secret=bytes(row["encrypted_secret"]),
            url=row["url"],
            notes=row["notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
