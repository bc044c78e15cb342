"""
Session Core Services Package.

The ``create_services()`` factory wires the token store, session,
refresh, request client, biometric gatekeeper, bootstrap and account
services together, returning a typed dict that the UI layer can consume
without knowing the internal dependency graph.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, TypedDict

import httpx

from app.auth import SessionManager
from app.config import AppConfig
from app.logger import get_logger
from app.services.auth_service import AuthService
from app.services.biometric_gatekeeper import BiometricGatekeeper, BiometricHardware, ConsentCallback
from app.services.http_client import AuthenticatedClient
from app.services.navigation import Navigator
from app.services.secure_store import SecureStore
from app.services.session_bootstrap import SessionBootstrap
from app.services.token_refresh import TokenRefresher
from app.services.token_store import TokenStore


class ServiceContainer(TypedDict):
    """Typed container for all session core services."""

    http: httpx.AsyncClient
    token_store: TokenStore
    session: SessionManager
    token_refresher: TokenRefresher
    client: AuthenticatedClient
    biometric_gatekeeper: BiometricGatekeeper
    session_bootstrap: SessionBootstrap
    auth_service: AuthService


def create_services(
    config: AppConfig,
    store: SecureStore,
    hardware: BiometricHardware,
    navigator: Navigator,
    http: Optional[httpx.AsyncClient] = None,
    consent: Optional[ConsentCallback] = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """
    Wire all services together.

    This is the single composition root for the session core.  The
    entry point calls this once at start-up; tests call it with an
    in-memory store and a mock transport.

    Args:
        config: Application configuration.
        store: Secure key/value store backing tokens and biometric state.
        hardware: Device biometric adapter.
        navigator: UI side-channel.
        http: Pre-built HTTP client.  When omitted one is created for
            ``config.API_BASE_URL``; the caller owns closing it either way.
        consent: Optional biometric set-up prompt for patients.
        clock: Epoch-seconds clock used for lockout timing.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    if http is None:
        http = httpx.AsyncClient(base_url=config.API_BASE_URL)

    # ------------------------------------------------------------------
    # 1. State and storage
    # ------------------------------------------------------------------
    token_store = TokenStore(store=store, logger=logger)
    session = SessionManager(logger=logger)

    # ------------------------------------------------------------------
    # 2. Network
    # ------------------------------------------------------------------
    token_refresher = TokenRefresher(http=http, config=config, logger=logger)
    client = AuthenticatedClient(
        http=http,
        tokens=token_store,
        session=session,
        refresher=token_refresher,
        navigator=navigator,
        config=config,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Orchestration
    # ------------------------------------------------------------------
    biometric_gatekeeper = BiometricGatekeeper(
        store=store,
        tokens=token_store,
        hardware=hardware,
        navigator=navigator,
        config=config,
        logger=logger,
        clock=clock,
    )
    session_bootstrap = SessionBootstrap(
        tokens=token_store,
        session=session,
        gatekeeper=biometric_gatekeeper,
        refresher=token_refresher,
        navigator=navigator,
        config=config,
        logger=logger,
    )
    auth_service = AuthService(
        http=http,
        client=client,
        tokens=token_store,
        session=session,
        gatekeeper=biometric_gatekeeper,
        navigator=navigator,
        config=config,
        logger=logger,
        consent=consent,
    )

    return ServiceContainer(
        http=http,
        token_store=token_store,
        session=session,
        token_refresher=token_refresher,
        client=client,
        biometric_gatekeeper=biometric_gatekeeper,
        session_bootstrap=session_bootstrap,
        auth_service=auth_service,
    )
