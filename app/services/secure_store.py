"""
Secure Key/Value Store.

Device-local persistence for credential pairs and biometric state.  The
core only consumes the :class:`SecureStore` interface; two
implementations are provided.

``EncryptedSecureStore``
    Every value is encrypted individually with AES-256-GCM and written
    to the ``secure_items`` SQLite table, one row per key.

``MemorySecureStore``
    A plain dict, for tests and throw-away sessions.

Security model
--------------
- The encryption key is derived from machine characteristics
  (hostname + OS username) via PBKDF2-HMAC-SHA256 with a per-machine
  random salt.  The key is derived once per store instance and is
  **never** persisted.
- GCM authentication means a tampered row, or a database copied to
  another machine, reads back as *absent* rather than as garbage.

Storage layout::

    secure_items
    ├── key               TEXT PRIMARY KEY
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    └── tag               BLOB
"""

from __future__ import annotations

import asyncio
import getpass
import os
import platform
import socket
import stat
from pathlib import Path
from typing import Optional, Protocol, Union

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from app.database import DatabaseManager
from app.errors import SecureStoreError
from app.logger import StructuredLogger

__all__ = [
    "ACCESS_PATIENT_KEY",
    "REFRESH_PATIENT_KEY",
    "ACCESS_NURSE_KEY",
    "REFRESH_NURSE_KEY",
    "BIOMETRIC_PREFERENCES_KEY",
    "BIOMETRIC_FAILED_ATTEMPTS_KEY",
    "BIOMETRIC_LOCKOUT_TIMESTAMP_KEY",
    "SecureStore",
    "EncryptedSecureStore",
    "MemorySecureStore",
]

# ---------------------------------------------------------------------------
# Storage keys
# ---------------------------------------------------------------------------

ACCESS_PATIENT_KEY: str = "accessPatient"
REFRESH_PATIENT_KEY: str = "refreshPatient"
ACCESS_NURSE_KEY: str = "accessNurse"
REFRESH_NURSE_KEY: str = "refreshNurse"
BIOMETRIC_PREFERENCES_KEY: str = "biometricPreferences"
BIOMETRIC_FAILED_ATTEMPTS_KEY: str = "biometricFailedAttempts"
BIOMETRIC_LOCKOUT_TIMESTAMP_KEY: str = "biometricLockoutTimestamp"


class SecureStore(Protocol):
    """Awaitable key/value interface over an OS-level secure store.

    Implementations serialise their own per-key reads and writes.  No
    operation spans more than one key.
    """

    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def delete_item(self, key: str) -> None: ...


class MemorySecureStore:
    """Dict-backed ``SecureStore``.  Nothing survives the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def delete_item(self, key: str) -> None:
        self._items.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        """Return a copy of every stored item."""
        return dict(self._items)


class EncryptedSecureStore:
    """AES-256-GCM encrypted ``SecureStore`` on top of local SQLite.

    Blocking SQLite and KDF work runs in ``asyncio.to_thread`` so each
    public call is a single suspend point on the event loop.

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager`` whose schema contains the
        ``secure_items`` table.
    logger:
        A ``StructuredLogger`` instance.
    salt_path:
        Location of the per-machine random salt file.
    kdf_iterations:
        PBKDF2 iteration count.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Union[Path, str],
        kdf_iterations: Optional[int] = None,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = Path(salt_path).expanduser()
        self._iterations: int = kdf_iterations or self._PBKDF2_ITERATIONS
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_item(self, key: str) -> Optional[str]:
        """Return the decrypted value for *key*, or ``None``.

        Undecryptable rows (tampering, machine identity change) are
        logged and reported as absent.

        Raises
        ------
        SecureStoreError
            If the key cannot be derived.
        """
        return await asyncio.to_thread(self._get_item_sync, key)

    async def set_item(self, key: str, value: str) -> None:
        """Encrypt *value* and upsert it under *key*.

        Raises
        ------
        SecureStoreError
            If the key cannot be derived or the row cannot be written.
        """
        await asyncio.to_thread(self._set_item_sync, key, value)

    async def delete_item(self, key: str) -> None:
        """Delete *key*.  Safe to call when the key does not exist."""
        await asyncio.to_thread(self._delete_item_sync, key)

    # ------------------------------------------------------------------
    # Synchronous workers
    # ------------------------------------------------------------------

    def _get_item_sync(self, key: str) -> Optional[str]:
        with self._db.write_lock:
            row = self._db.sqlite.execute(
                "SELECT encrypted_payload, nonce, tag FROM secure_items WHERE key = ?",
                (key,),
            ).fetchone()

        if row is None:
            return None

        try:
            key_bytes = self._derive_key()
        except OSError as exc:
            raise SecureStoreError(f"Could not read secure item '{key}': {exc}") from exc

        try:
            cipher = AES.new(key_bytes, AES.MODE_GCM, nonce=row["nonce"])
            plaintext: bytes = cipher.decrypt_and_verify(row["encrypted_payload"], row["tag"])
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of secure item '%s' failed (corrupted data or "
                "machine identity changed): %s",
                key,
                exc,
            )
            return None

        return plaintext.decode("utf-8")

    def _set_item_sync(self, key: str, value: str) -> None:
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM)
            ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
            nonce: bytes = cipher.nonce
        except (OSError, ValueError) as exc:
            raise SecureStoreError(f"Could not encrypt secure item '{key}': {exc}") from exc

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO secure_items (key, encrypted_payload, nonce, tag)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        encrypted_payload = excluded.encrypted_payload,
                        nonce             = excluded.nonce,
                        tag               = excluded.tag,
                        updated_at        = CURRENT_TIMESTAMP
                    """,
                    (key, ciphertext, nonce, tag),
                )
                self._db.sqlite.commit()
        except Exception as exc:
            raise SecureStoreError(f"Could not write secure item '{key}': {exc}") from exc

        self._logger.debug("Secure item '%s' written.", key)

    def _delete_item_sync(self, key: str) -> None:
        try:
            with self._db.write_lock:
                self._db.sqlite.execute("DELETE FROM secure_items WHERE key = ?", (key,))
                self._db.sqlite.commit()
        except Exception as exc:
            raise SecureStoreError(f"Could not delete secure item '{key}': {exc}") from exc

        self._logger.debug("Secure item '%s' deleted.", key)

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key from machine identity.

        The key is deterministic for a given (hostname, OS username,
        salt) triple.  ``hostname:username`` binds the database to this
        machine; the random salt supplies the entropy.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.  Encryption is
            refused rather than degrading to a static salt.
        """
        if self._key is None:
            password: str = f"{socket.gethostname()}:{getpass.getuser()}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine salt, creating it on first use.

        The salt file is restricted to the owner (``0o600``) on POSIX
        systems.  On Windows the user profile ACLs apply.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )

        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine secure-store salt created at %s.", self._salt_path)
        return salt
