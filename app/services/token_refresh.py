"""
Raw Token Refresh.

Exchanges a refresh token for a new access token by calling the refresh
endpoint directly, without bearer auth.  Used by the authenticated
request client after a 401 and by Session Bootstrap at start-up (when
no access token exists yet).
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx
from pydantic import ValidationError

from app.config import AppConfig
from app.errors import TokenRefreshError
from app.logger import StructuredLogger
from app.models.auth_models import TokenPair

# Sentinel meaning "use the HTTP client's default timeout".
_CLIENT_DEFAULT = httpx.USE_CLIENT_DEFAULT


class TokenRefresher:
    """Calls ``POST {TOKEN_REFRESH_PATH}`` with ``{"refresh": ...}``.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient`` whose ``base_url`` is the backend.
    config:
        Application configuration.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        self._http: httpx.AsyncClient = http
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger

    async def refresh(
        self,
        refresh_token: str,
        timeout: Optional[float] = None,
    ) -> TokenPair:
        """Return the new access token (and rotated refresh token, if any).

        Parameters
        ----------
        refresh_token:
            The stored refresh token.
        timeout:
            Deadline in seconds for the whole exchange, enforced with
            ``asyncio.timeout`` on top of the per-phase httpx timeout.
            ``None`` keeps the HTTP client's default and sets no deadline.

        Raises
        ------
        TokenRefreshError
            On network error or timeout, a non-2xx status, a body that
            is not JSON, or a payload without ``access``.
        """
        try:
            async with asyncio.timeout(timeout):
                response = await self._http.post(
                    self._config.TOKEN_REFRESH_PATH,
                    json={"refresh": refresh_token},
                    headers={"Content-Type": "application/json"},
                    timeout=timeout if timeout is not None else _CLIENT_DEFAULT,
                )
        except (httpx.TimeoutException, TimeoutError) as exc:
            self._logger.warning("Token refresh timed out: %s", exc)
            raise TokenRefreshError("timeout") from exc
        except httpx.HTTPError as exc:
            self._logger.warning("Token refresh network error: %s", exc)
            raise TokenRefreshError("network_error") from exc

        if not response.is_success:
            self._logger.warning(
                "Token refresh rejected with status %d.",
                response.status_code,
                extra={"status": response.status_code},
            )
            raise TokenRefreshError("rejected", status=response.status_code)

        try:
            pair = TokenPair.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            self._logger.warning("Token refresh payload is malformed: %s", exc)
            raise TokenRefreshError("malformed_payload", status=response.status_code) from exc

        self._logger.info(
            "Token refresh succeeded.",
            extra={"rotated": str(pair.refresh is not None)},
        )
        return pair
