"""Tests for the SQLite vault store."""

import os
import sqlite3
import stat
from datetime import datetime, timedelta, timezone

import pytest

from passman.core.crypto.cipher import Ciphertext
from passman.core.crypto.kdf import generate_salt
from passman.db.models import SCHEMA_VERSION, PasswordEntry, VaultMetadata
from passman.db.store import (
    EntryNotFoundError,
    StoreError,
    VaultAlreadyExistsError,
    VaultNotInitializedError,
    VaultStore,
)


def _sealed(marker: bytes = b"x") -> Ciphertext:
    return Ciphertext(nonce=b"\x01" * 12, tag=b"\x02" * 16, data=marker)


def _entry(title: str, username: str = "alice", url=None, notes=None) -> PasswordEntry:
    return PasswordEntry(
        id=PasswordEntry.new_id(),
        title=title,
        username=username,
        encrypted_secret=_sealed().to_bytes(),
        url=url,
        notes=notes,
    )


@pytest.fixture
def metadata(fast_cost) -> VaultMetadata:
    return VaultMetadata(salt=generate_salt(), verifier=b"v" * 32, cost=fast_cost)


@pytest.fixture
def populated(store: VaultStore) -> VaultStore:
    store.add_entry(_entry("GitHub", "octocat", url="https://github.com", notes="work account"))
    store.add_entry(_entry("Gmail", "alice@gmail.com", url="https://mail.google.com"))
    store.add_entry(_entry("AWS", "admin", notes="Production account"))
    return store


class TestSchema:
    def test_migrations_applied(self, store):
        assert store.schema_version() == SCHEMA_VERSION

    def test_reopen_does_not_reapply(self, vault_path, store):
        """Opening an existing file leaves the schema as is."""
        VaultStore(vault_path)
        with sqlite3.connect(vault_path) as conn:
            count = conn.execute("SELECT COUNT(*) FROM migrations").fetchone()[0]
        assert count == 1

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_file_is_owner_only(self, vault_path, store):
        mode = stat.S_IMODE(os.stat(vault_path).st_mode)
        assert mode == 0o600

    def test_second_metadata_row_rejected_by_schema(self, vault_path, store, metadata):
        store.create_metadata(metadata)
        with sqlite3.connect(vault_path) as conn:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO vault_metadata (id, created_at, last_access, salt, verifier, "
                    "memory_cost, time_cost, parallelism) VALUES (2, '', '', x'00', x'00', 1, 1, 1)"
                )


class TestMetadata:
    def test_not_initialized(self, store):
        assert not store.is_initialized()
        with pytest.raises(VaultNotInitializedError):
            store.get_metadata()

    def test_create_and_load(self, store, metadata, fast_cost):
        store.create_metadata(metadata)
        loaded = store.get_metadata()
        assert store.is_initialized()
        assert loaded.salt == metadata.salt
        assert loaded.verifier == metadata.verifier
        assert loaded.cost == fast_cost
        assert loaded.failed_attempts == 0
        assert loaded.locked_until is None

    def test_create_twice(self, store, metadata):
        store.create_metadata(metadata)
        with pytest.raises(VaultAlreadyExistsError):
            store.create_metadata(metadata)

    def test_save_lockout(self, store, metadata):
        store.create_metadata(metadata)
        until = datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc)
        store.save_lockout(3, until)
        loaded = store.get_metadata()
        assert loaded.failed_attempts == 3
        assert loaded.locked_until == until

        store.save_lockout(0, None)
        assert store.get_metadata().locked_until is None

    def test_save_lockout_uninitialized(self, store):
        with pytest.raises(VaultNotInitializedError):
            store.save_lockout(1, None)

    def test_touch_last_access(self, store, metadata):
        store.create_metadata(metadata)
        later = metadata.last_access + timedelta(hours=1)
        store.touch_last_access(later)
        assert store.get_metadata().last_access == later

    def test_repr_hides_salt_and_verifier(self, metadata):
        assert metadata.salt.hex() not in repr(metadata)
        assert "salt" not in repr(metadata)


class TestEntries:
    def test_add_and_get(self, store):
        entry = _entry("GitHub", url="https://github.com", notes="note")
        store.add_entry(entry)
        loaded = store.get_entry(entry.id)
        assert loaded.title == "GitHub"
        assert loaded.url == "https://github.com"
        assert loaded.notes == "note"
        assert loaded.encrypted_secret == entry.encrypted_secret

    def test_duplicate_id(self, store):
        entry = _entry("GitHub")
        store.add_entry(entry)
        with pytest.raises(StoreError):
            store.add_entry(entry)

    def test_get_missing(self, store):
        with pytest.raises(EntryNotFoundError) as excinfo:
            store.get_entry("missing")
        assert excinfo.value.key == "missing"

    def test_get_by_title(self, populated):
        assert populated.get_entry_by_title("Gmail").username == "alice@gmail.com"
        with pytest.raises(EntryNotFoundError):
            populated.get_entry_by_title("Nope")

    def test_list_ordered_by_title(self, populated):
        titles = [e.title for e in populated.list_entries()]
        assert titles == ["AWS", "GitHub", "Gmail"]

    def test_update(self, store):
        entry = _entry("GitHub")
        store.add_entry(entry)
        entry.title = "GitHub Enterprise"
        entry.encrypted_secret = _sealed(b"y").to_bytes()
        store.update_entry(entry)
        loaded = store.get_entry(entry.id)
        assert loaded.title == "GitHub Enterprise"
        assert loaded.encrypted_secret == _sealed(b"y").to_bytes()

    def test_update_missing(self, store):
        with pytest.raises(EntryNotFoundError):
            store.update_entry(_entry("Ghost"))

    def test_delete(self, populated):
        entry = populated.get_entry_by_title("AWS")
        populated.delete_entry(entry.id)
        with pytest.raises(EntryNotFoundError):
            populated.get_entry(entry.id)
        with pytest.raises(EntryNotFoundError):
            populated.delete_entry(entry.id)

    def test_secret_stored_as_blob(self, vault_path, store):
        entry = _entry("GitHub")
        store.add_entry(entry)
        with sqlite3.connect(vault_path) as conn:
            blob = conn.execute(
                "SELECT encrypted_secret FROM password_entries WHERE id = ?", (entry.id,)
            ).fetchone()[0]
        assert blob == entry.encrypted_secret

    def test_blob_returned_without_parsing(self, vault_path, populated):
        """A truncated secret does not stop the cleartext fields from loading."""
        gmail = populated.get_entry_by_title("Gmail")
        with sqlite3.connect(vault_path) as conn:
            conn.execute(
                "UPDATE password_entries SET encrypted_secret = x'00' WHERE id = ?", (gmail.id,)
            )

        assert [e.title for e in populated.list_entries()] == ["AWS", "GitHub", "Gmail"]
        assert populated.get_entry_by_title("Gmail").encrypted_secret == b"\x00"
        assert [e.title for e in populated.search_entries("gmail")] == ["Gmail"]


class TestSearch:
    def test_search_by_title_prefix(self, populated):
        assert [e.title for e in populated.search_entries("git")] == ["GitHub"]

    def test_search_matches_username(self, populated):
        assert [e.title for e in populated.search_entries("octocat")] == ["GitHub"]

    def test_search_matches_notes(self, populated):
        assert [e.title for e in populated.search_entries("production")] == ["AWS"]

    def test_search_all_words_required(self, populated):
        assert [e.title for e in populated.search_entries("work github")] == ["GitHub"]
        assert populated.search_entries("work gmail") == []

    def test_search_empty_query_lists_all(self, populated):
        assert len(populated.search_entries("  ")) == 3

    def test_search_with_fts_syntax_characters(self, populated):
        """Quotes and operators in user input are treated as text."""
        assert populated.search_entries('"OR NOT*') == []

    def test_search_reflects_updates_and_deletes(self, populated):
        entry = populated.get_entry_by_title("Gmail")
        entry.notes = "personal mailbox"
        populated.update_entry(entry)
        assert [e.title for e in populated.search_entries("mailbox")] == ["Gmail"]

        populated.delete_entry(entry.id)
        assert populated.search_entries("mailbox") == []


class TestReplaceSecrets:
    def test_replaces_secrets_and_verifier(self, populated, metadata):
        populated.create_metadata(metadata)
        entries = populated.list_entries()
        resealed = {e.id: _sealed(b"new") for e in entries}

        populated.replace_secrets_and_verifier(resealed, b"n" * 32)

        assert populated.get_metadata().verifier == b"n" * 32
        assert all(
            e.encrypted_secret == _sealed(b"new").to_bytes() for e in populated.list_entries()
        )

    def test_uses_given_timestamp(self, populated, metadata):
        populated.create_metadata(metadata)
        when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        entry = populated.list_entries()[0]

        populated.replace_secrets_and_verifier({entry.id: _sealed(b"new")}, b"n" * 32, when)

        assert populated.get_entry(entry.id).updated_at == when

    def test_all_or_nothing(self, populated, metadata):
        """A missing entry aborts the whole re-key."""
        populated.create_metadata(metadata)
        entry = populated.list_entries()[0]
        resealed = {entry.id: _sealed(b"new"), "missing": _sealed(b"new")}

        with pytest.raises(EntryNotFoundError):
            populated.replace_secrets_and_verifier(resealed, b"n" * 32)

        assert populated.get_metadata().verifier == metadata.verifier
        assert populated.get_entry(entry.id).encrypted_secret == _sealed(b"x").to_bytes()
