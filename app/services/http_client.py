"""
Authenticated Request Client.

Every backend call made on behalf of a signed-in user goes through
:class:`AuthenticatedClient`.  It injects the role's bearer token and,
on a 401, performs exactly one refresh-and-retry cycle:

    request ──► 401 ──► refresh ──► persist ──► retry ──► return (any status)
                           │
                           └── fails ──► wipe role tokens, end session,
                                         reset to login, SessionExpiredError

Business-level errors (any status other than 401) are returned
verbatim; ``get_json`` turns them into :class:`~app.errors.RequestFailure`.

A 401 whose token has already been replaced in the store by a sibling
request's refresh is retried with the stored token, without refreshing
again.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import httpx

from app.auth import SessionManager
from app.config import AppConfig
from app.errors import AuthRequiredError, RequestFailure, SessionExpiredError, TokenRefreshError
from app.logger import StructuredLogger
from app.models.auth_models import CredentialPair, TokenPair
from app.models.enums import UserRole
from app.services.navigation import SESSION_EXPIRED_NOTICE, Navigator
from app.services.token_refresh import TokenRefresher
from app.services.token_store import TokenStore
from app.utils.audit import AuditAction, log_audit_event


class AuthenticatedClient:
    """Bearer-token HTTP client with a single silent refresh cycle.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient`` whose ``base_url`` is the backend.
    tokens:
        Role-namespaced token store.
    session:
        The shared session; supplies the current role and is reset on
        forced logout.
    refresher:
        Raw refresh-endpoint caller.
    navigator:
        UI side-channel used for the forced "reset to login".
    config:
        Application configuration.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenStore,
        session: SessionManager,
        refresher: TokenRefresher,
        navigator: Navigator,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        self._http: httpx.AsyncClient = http
        self._tokens: TokenStore = tokens
        self._session: SessionManager = session
        self._refresher: TokenRefresher = refresher
        self._navigator: Navigator = navigator
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger
        self._inflight_refresh: dict[UserRole, asyncio.Future[TokenPair]] = {}

    # ==================================================================
    # Public API
    # ==================================================================

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        content: Optional[bytes | str] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> httpx.Response:
        """Send an authenticated request and return the final response.

        Parameters
        ----------
        endpoint:
            API path relative to the backend base URL.
        method:
            HTTP method.
        headers:
            Extra headers.  Any ``Authorization`` header is discarded.
        json, content, params:
            Passed through to ``httpx``.

        Returns
        -------
        httpx.Response
            The first response when it is not a 401, otherwise the
            response of the single retry, whatever its status.

        Raises
        ------
        AuthRequiredError
            No complete credential pair for the current role.  Raised
            before any network I/O, after a forced logout.
        SessionExpiredError
            The 401 could not be recovered by a refresh.  Raised after
            a forced logout.
        """
        role = self._session.current_role
        credentials = await self._tokens.get_credentials(role) if role is not None else None
        if credentials is None:
            self._logger.warning(
                "No authentication tokens found. Forcing logout.",
                extra={"endpoint": endpoint},
            )
            await self._tokens.clear_all()
            self._force_logout(role, reason="missing_tokens")
            raise AuthRequiredError()

        response = await self._send(endpoint, method, credentials.access_token, headers, json, content, params)
        if response.status_code != 401:
            return response

        self._logger.info(
            "Access token rejected (401). Attempting refresh.",
            extra={"endpoint": endpoint, "role": str(credentials.role)},
        )
        pair = await self._refresh(credentials)

        retried = await self._send(endpoint, method, pair.access, headers, json, content, params)
        self._logger.info(
            "Retried request after refresh.",
            extra={"endpoint": endpoint, "status": retried.status_code},
        )
        return retried

    async def get_json(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        content: Optional[bytes | str] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """``request`` followed by JSON decoding and status checking.

        Returns ``None`` for an OK response with an empty body.

        Raises
        ------
        RequestFailure
            The final status is not 2xx (carries status and parsed
            body), or an OK body is not valid JSON.
        AuthRequiredError, SessionExpiredError
            As for :meth:`request`.
        """
        response = await self.request(
            endpoint, method, headers=headers, json=json, content=content, params=params,
        )

        body: Any = None
        parse_failed = False
        if response.content:
            try:
                body = response.json()
            except ValueError:
                parse_failed = True

        if not response.is_success:
            self._logger.warning(
                "Request failed with status %d.",
                response.status_code,
                extra={"endpoint": endpoint},
            )
            raise RequestFailure(response.status_code, body)

        if parse_failed:
            raise RequestFailure(
                response.status_code, {"detail": "Response body is not valid JSON."},
            )
        return body

    # ==================================================================
    # Internals
    # ==================================================================

    async def _send(
        self,
        endpoint: str,
        method: str,
        access_token: str,
        headers: Optional[Mapping[str, str]],
        json: Any,
        content: Optional[bytes | str],
        params: Optional[Mapping[str, Any]],
    ) -> httpx.Response:
        merged: dict[str, str] = {"Content-Type": "application/json"}
        for name, value in (headers or {}).items():
            if name.lower() == "authorization":
                self._logger.warning(
                    "Caller-supplied Authorization header ignored.",
                    extra={"endpoint": endpoint},
                )
                continue
            merged[name] = value
        merged["Authorization"] = f"Bearer {access_token}"

        return await self._http.request(
            method,
            endpoint,
            headers=merged,
            json=json,
            content=content,
            params=params,
        )

    async def _refresh(self, credentials: CredentialPair) -> TokenPair:
        """Run (or join) the refresh for *credentials.role*.

        With coalescing enabled, concurrent callers for the same role
        share one in-flight refresh and all receive its outcome.
        """
        if not self._config.COALESCE_TOKEN_REFRESH:
            return await self._refresh_and_persist(credentials)

        role = credentials.role
        inflight = self._inflight_refresh.get(role)
        if inflight is None:
            inflight = asyncio.ensure_future(self._refresh_and_persist(credentials))
            self._inflight_refresh[role] = inflight
            inflight.add_done_callback(lambda _f: self._inflight_refresh.pop(role, None))
        else:
            self._logger.debug(
                "Joining in-flight token refresh.", extra={"role": str(role)},
            )
        # Shielded so one cancelled waiter does not abort the others' refresh.
        return await asyncio.shield(inflight)

    async def _refresh_and_persist(self, credentials: CredentialPair) -> TokenPair:
        """Refresh from the stored pair, not the request's snapshot.

        A sibling request may already have refreshed (and rotated) the
        pair after this request was sent; its tokens are reused as-is.
        """
        role = credentials.role
        stored = await self._tokens.get_credentials(role)
        if stored is None:
            self._logger.warning(
                "Tokens were cleared while the request was in flight.",
                extra={"role": str(role)},
            )
            raise SessionExpiredError()
        if stored.access_token != credentials.access_token:
            self._logger.info(
                "Access token already refreshed. Retrying with stored token.",
                extra={"role": str(role)},
            )
            return TokenPair(access=stored.access_token, refresh=stored.refresh_token)

        try:
            pair = await self._refresher.refresh(stored.refresh_token)
        except TokenRefreshError as exc:
            self._logger.error(
                "Failed to refresh access token. Forcing logout.",
                extra={"role": str(role), "reason": exc.reason},
            )
            await self._tokens.clear_role(role)
            self._force_logout(role, reason=exc.reason, notice=True)
            raise SessionExpiredError() from exc

        await self._tokens.apply_refresh(role, pair.access, pair.refresh)
        log_audit_event(
            self._logger,
            AuditAction.TOKEN_REFRESHED,
            role,
            {"rotated": pair.refresh is not None},
        )
        return pair

    def _force_logout(self, role: Optional[UserRole], reason: str, notice: bool = False) -> None:
        self._session.end_session()
        log_audit_event(self._logger, AuditAction.FORCED_LOGOUT, role, {"reason": reason})
        self._navigator.reset_to_login(SESSION_EXPIRED_NOTICE if notice else None)
