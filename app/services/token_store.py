"""
Role-Namespaced Token Store.

Thin layer over :class:`~app.services.secure_store.SecureStore` that
knows which keys hold which role's credential pair.  A role's access
token is only ever read together with that same role's refresh token.
"""

from __future__ import annotations

from typing import Optional

from app.logger import StructuredLogger
from app.models.auth_models import CredentialPair
from app.models.enums import UserRole
from app.services.secure_store import (
    ACCESS_NURSE_KEY,
    ACCESS_PATIENT_KEY,
    REFRESH_NURSE_KEY,
    REFRESH_PATIENT_KEY,
    SecureStore,
)

_KEYS_BY_ROLE: dict[UserRole, tuple[str, str]] = {
    UserRole.PATIENT: (ACCESS_PATIENT_KEY, REFRESH_PATIENT_KEY),
    UserRole.NURSE: (ACCESS_NURSE_KEY, REFRESH_NURSE_KEY),
}

# Start-up scan order.
_DETECTION_ORDER: tuple[UserRole, ...] = (UserRole.PATIENT, UserRole.NURSE)


def token_keys(role: UserRole) -> tuple[str, str]:
    """Return the ``(access_key, refresh_key)`` pair for *role*."""
    return _KEYS_BY_ROLE[UserRole(role)]


class TokenStore:
    """Credential-pair CRUD keyed by role.

    Parameters
    ----------
    store:
        The secure key/value store.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(self, store: SecureStore, logger: StructuredLogger) -> None:
        self._store: SecureStore = store
        self._logger: StructuredLogger = logger

    @property
    def store(self) -> SecureStore:
        return self._store

    async def get_access_token(self, role: UserRole) -> Optional[str]:
        access_key, _ = token_keys(role)
        return await self._store.get_item(access_key)

    async def get_refresh_token(self, role: UserRole) -> Optional[str]:
        _, refresh_key = token_keys(role)
        return await self._store.get_item(refresh_key)

    async def get_credentials(self, role: UserRole) -> Optional[CredentialPair]:
        """Return *role*'s pair, or ``None`` unless both tokens exist."""
        access = await self.get_access_token(role)
        refresh = await self.get_refresh_token(role)
        if not access or not refresh:
            return None
        return CredentialPair(role=role, access_token=access, refresh_token=refresh)

    async def save_credentials(self, role: UserRole, access: str, refresh: str) -> None:
        """Persist a freshly issued pair (login)."""
        access_key, refresh_key = token_keys(role)
        await self._store.set_item(access_key, access)
        await self._store.set_item(refresh_key, refresh)
        self._logger.info("Credentials stored.", extra={"role": str(role)})

    async def apply_refresh(
        self,
        role: UserRole,
        access: str,
        refresh: Optional[str] = None,
    ) -> None:
        """Store a refreshed access token, rotating the refresh token if given.

        When *refresh* is ``None`` the stored refresh token is left
        untouched.
        """
        access_key, refresh_key = token_keys(role)
        await self._store.set_item(access_key, access)
        if refresh:
            await self._store.set_item(refresh_key, refresh)
            self._logger.info("Refresh token rotated.", extra={"role": str(role)})

    async def clear_role(self, role: UserRole) -> None:
        """Delete both of *role*'s tokens."""
        for key in token_keys(role):
            await self._store.delete_item(key)
        self._logger.info("Credentials cleared.", extra={"role": str(role)})

    async def clear_all(self) -> None:
        """Delete every role's credential pair."""
        for role in _DETECTION_ORDER:
            await self.clear_role(role)

    async def detect_role(self) -> Optional[UserRole]:
        """Return the first role holding a complete pair, or ``None``."""
        for role in _DETECTION_ORDER:
            if await self.get_credentials(role) is not None:
                return role
        return None
