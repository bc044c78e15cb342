"""AES-GCM secure store over SQLite."""

from __future__ import annotations

import platform
import stat

import pytest

from app.database import DatabaseManager
from app.errors import SecureStoreError
from app.schema import CURRENT_SCHEMA_VERSION, initialize_schema
from app.services.secure_store import EncryptedSecureStore, MemorySecureStore

_FAST_KDF = 1_000


@pytest.fixture
def db(tmp_path, logger):
    manager = DatabaseManager(sqlite_path=tmp_path / "secure_store.db", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def encrypted(db, tmp_path, logger) -> EncryptedSecureStore:
    return EncryptedSecureStore(
        db=db, logger=logger, salt_path=tmp_path / "salt", kdf_iterations=_FAST_KDF,
    )


class TestEncryptedSecureStore:

    async def test_set_get_delete(self, encrypted):
        assert await encrypted.get_item("accessPatient") is None

        await encrypted.set_item("accessPatient", "eyJhbGciOi.token")
        assert await encrypted.get_item("accessPatient") == "eyJhbGciOi.token"

        await encrypted.set_item("accessPatient", "rotated")
        assert await encrypted.get_item("accessPatient") == "rotated"

        await encrypted.delete_item("accessPatient")
        assert await encrypted.get_item("accessPatient") is None

    async def test_delete_missing_key_is_noop(self, encrypted):
        await encrypted.delete_item("neverWritten")

    async def test_plaintext_never_reaches_disk(self, encrypted, db):
        await encrypted.set_item("refreshPatient", "super-secret-refresh")
        row = db.sqlite.execute(
            "SELECT encrypted_payload FROM secure_items WHERE key = ?", ("refreshPatient",),
        ).fetchone()
        assert b"super-secret-refresh" not in bytes(row["encrypted_payload"])

    async def test_tampered_row_reads_as_absent(self, encrypted, db):
        await encrypted.set_item("accessPatient", "value")
        with db.write_lock:
            db.sqlite.execute(
                "UPDATE secure_items SET tag = ? WHERE key = ?", (b"\x00" * 16, "accessPatient"),
            )
            db.sqlite.commit()
        assert await encrypted.get_item("accessPatient") is None

    async def test_other_salt_cannot_read(self, encrypted, db, tmp_path, logger):
        await encrypted.set_item("accessPatient", "value")
        stranger = EncryptedSecureStore(
            db=db, logger=logger, salt_path=tmp_path / "other-salt", kdf_iterations=_FAST_KDF,
        )
        assert await stranger.get_item("accessPatient") is None

    async def test_salt_is_reused(self, encrypted, db, tmp_path, logger):
        await encrypted.set_item("accessPatient", "value")
        reopened = EncryptedSecureStore(
            db=db, logger=logger, salt_path=tmp_path / "salt", kdf_iterations=_FAST_KDF,
        )
        assert await reopened.get_item("accessPatient") == "value"

    async def test_unusable_salt_path_raises_store_error_on_read(self, encrypted, db, tmp_path, logger):
        await encrypted.set_item("accessPatient", "value")
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        broken = EncryptedSecureStore(
            db=db, logger=logger, salt_path=blocker / "salt", kdf_iterations=_FAST_KDF,
        )

        with pytest.raises(SecureStoreError):
            await broken.get_item("accessPatient")

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
    async def test_salt_file_is_owner_only(self, encrypted, tmp_path):
        await encrypted.set_item("accessPatient", "value")
        mode = stat.S_IMODE((tmp_path / "salt").stat().st_mode)
        assert mode == 0o600


class TestSchema:

    def test_initialize_is_idempotent(self, db, logger):
        initialize_schema(db.sqlite, logger)
        version = db.sqlite.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
        assert version == CURRENT_SCHEMA_VERSION

    def test_close_is_idempotent(self, db):
        db.close()
        db.close()


class TestMemorySecureStore:

    async def test_initial_items_are_copied(self):
        seed = {"accessPatient": "a"}
        store = MemorySecureStore(seed)
        await store.delete_item("accessPatient")
        assert seed == {"accessPatient": "a"}
        assert store.snapshot() == {}
