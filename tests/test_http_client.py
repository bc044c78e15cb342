"""Authenticated request client: bearer injection and the single refresh cycle."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from app.config import AppConfig
from app.errors import AuthRequiredError, RequestFailure, SessionExpiredError
from app.models.enums import LandingScreen, UserRole
from app.services import create_services
from app.services.navigation import SESSION_EXPIRED_NOTICE
from app.services.secure_store import (
    ACCESS_NURSE_KEY,
    ACCESS_PATIENT_KEY,
    REFRESH_NURSE_KEY,
    REFRESH_PATIENT_KEY,
)
from tests.fakes import bearer, body_of, seed_nurse, seed_patient

DASHBOARD = "/users/dashboard/"
REFRESH = "/api/token/refresh/"


def _auth_gated(valid_token: str = "access-new", status_ok: int = 200):
    """Endpoint that only accepts *valid_token*."""

    async def reply(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        if bearer(request) == f"Bearer {valid_token}":
            return httpx.Response(status_ok, json={"ok": True})
        return httpx.Response(401, json={"detail": "Token expired."})

    return reply


class TestMissingCredentials:
    """No complete pair means forced logout before any network I/O."""

    async def test_no_tokens_raises_without_network(self, services, store, backend, navigator):
        """A signed-in role with an empty store never hits the network."""
        services["session"].begin_session(UserRole.PATIENT)

        with pytest.raises(AuthRequiredError):
            await services["client"].request(DASHBOARD)

        assert backend.requests == []
        assert navigator.landing == LandingScreen.LOGIN
        assert services["session"].current_role is None

    async def test_half_pair_is_treated_as_missing(self, services, store, backend):
        """An access token without its refresh token is not usable."""
        await store.set_item(ACCESS_PATIENT_KEY, "access-old")
        services["session"].begin_session(UserRole.PATIENT)

        with pytest.raises(AuthRequiredError):
            await services["client"].request(DASHBOARD)

        assert backend.requests == []
        assert store.snapshot() == {}

    async def test_no_role_raises(self, services, store, backend):
        """Stored tokens are not used when no session role is set."""
        await seed_patient(store)

        with pytest.raises(AuthRequiredError):
            await services["client"].request(DASHBOARD)

        assert backend.requests == []


class TestBearerInjection:

    async def test_non_401_is_returned_verbatim(self, services, store, backend):
        """Business errors pass through without a refresh."""
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (500, {"detail": "boom"}))

        response = await services["client"].request(DASHBOARD)

        assert response.status_code == 500
        assert backend.calls(REFRESH) == []
        assert bearer(backend.requests[0]) == "Bearer access-old"
        assert backend.requests[0].headers["Content-Type"] == "application/json"

    async def test_caller_authorization_header_is_replaced(self, services, store, backend):
        """The stored token wins over a caller-supplied Authorization header."""
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (200, {"ok": True}))

        await services["client"].request(
            DASHBOARD, headers={"Authorization": "Bearer forged", "X-Trace": "1"},
        )

        sent = backend.requests[0]
        assert bearer(sent) == "Bearer access-old"
        assert sent.headers["X-Trace"] == "1"

    async def test_nurse_session_uses_nurse_tokens(self, services, store, backend):
        await seed_patient(store)
        await seed_nurse(store)
        services["session"].begin_session(UserRole.NURSE)
        backend.add("GET", DASHBOARD, (200, {"ok": True}))

        await services["client"].request(DASHBOARD)

        assert bearer(backend.requests[0]) == "Bearer nurse-access"


class TestRefreshCycle:
    """A 401 triggers exactly one refresh and one retry."""

    async def test_refresh_then_single_retry(self, services, store, backend):
        """The retry's response is returned whatever its status."""
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (401, {"detail": "expired"}), (403, {"detail": "nope"}))
        backend.add("POST", REFRESH, (200, {"access": "access-new"}))

        response = await services["client"].request(DASHBOARD)

        assert response.status_code == 403
        assert len(backend.calls(DASHBOARD)) == 2
        assert len(backend.calls(REFRESH)) == 1
        assert bearer(backend.calls(DASHBOARD)[1]) == "Bearer access-new"

    async def test_refresh_call_is_anonymous(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, _auth_gated())
        backend.add("POST", REFRESH, (200, {"access": "access-new"}))

        await services["client"].request(DASHBOARD)

        refresh_call = backend.calls(REFRESH)[0]
        assert body_of(refresh_call) == {"refresh": "refresh-old"}
        assert bearer(refresh_call) is None

    async def test_retry_401_is_not_refreshed_again(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (401, {"detail": "expired"}))
        backend.add("POST", REFRESH, (200, {"access": "access-new"}))

        response = await services["client"].request(DASHBOARD)

        assert response.status_code == 401
        assert len(backend.calls(REFRESH)) == 1
        assert len(backend.calls(DASHBOARD)) == 2

    async def test_refresh_without_rotation_keeps_refresh_token(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, _auth_gated())
        backend.add("POST", REFRESH, (200, {"access": "access-new"}))

        await services["client"].request(DASHBOARD)

        assert await store.get_item(ACCESS_PATIENT_KEY) == "access-new"
        assert await store.get_item(REFRESH_PATIENT_KEY) == "refresh-old"

    async def test_refresh_with_rotation_stores_new_refresh_token(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, _auth_gated())
        backend.add("POST", REFRESH, (200, {"access": "access-new", "refresh": "refresh-new"}))

        await services["client"].request(DASHBOARD)

        assert await store.get_item(ACCESS_PATIENT_KEY) == "access-new"
        assert await store.get_item(REFRESH_PATIENT_KEY) == "refresh-new"


class TestRefreshFailure:
    """An unrecoverable 401 wipes the role's tokens and resets to login."""

    @pytest.mark.parametrize(
        "refresh_reply",
        [
            (401, {"detail": "Token is invalid or expired"}),
            (200, {"unexpected": "shape"}),
            httpx.ConnectError("connection refused"),
        ],
        ids=["rejected", "malformed", "network"],
    )
    async def test_refresh_failure_forces_logout(
        self, services, store, backend, navigator, refresh_reply,
    ):
        await seed_patient(store)
        await seed_nurse(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (401, {"detail": "expired"}))
        backend.add("POST", REFRESH, refresh_reply)

        with pytest.raises(SessionExpiredError):
            await services["client"].request(DASHBOARD)

        assert len(backend.calls(DASHBOARD)) == 1
        assert await store.get_item(ACCESS_PATIENT_KEY) is None
        assert await store.get_item(REFRESH_PATIENT_KEY) is None
        assert await store.get_item(ACCESS_NURSE_KEY) == "nurse-access"
        assert await store.get_item(REFRESH_NURSE_KEY) == "nurse-refresh"
        assert services["session"].current_role is None
        assert navigator.landing == LandingScreen.LOGIN
        assert navigator.notices[-1] == SESSION_EXPIRED_NOTICE


class TestConcurrentRefresh:

    async def test_concurrent_401s_share_one_refresh(self, services, store, backend):
        """Two requests racing on an expired token refresh once."""
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, _auth_gated())

        async def slow_refresh(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"access": "access-new", "refresh": "refresh-new"})

        backend.add("POST", REFRESH, slow_refresh)

        first, second = await asyncio.gather(
            services["client"].request(DASHBOARD),
            services["client"].request(DASHBOARD),
        )

        assert first.status_code == 200
        assert second.status_code == 200
        assert len(backend.calls(REFRESH)) == 1

    async def test_late_401_reuses_rotated_tokens(self, services, store, backend, navigator):
        """A 401 arriving after a sibling's refresh finished keeps the rotated session."""
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        stale_sends = 0
        both_sent = asyncio.Event()

        async def dashboard(request: httpx.Request) -> httpx.Response:
            nonlocal stale_sends
            if bearer(request) == "Bearer access-new":
                return httpx.Response(200, json={"ok": True})
            stale_sends += 1
            if stale_sends == 1:
                await both_sent.wait()
            else:
                both_sent.set()
                await asyncio.sleep(0.1)
            return httpx.Response(401, json={"detail": "Token expired."})

        used_refresh_tokens: set[str] = set()

        def rotating_refresh(request: httpx.Request) -> httpx.Response:
            token = body_of(request)["refresh"]
            if token in used_refresh_tokens:
                return httpx.Response(401, json={"detail": "Token is blacklisted"})
            used_refresh_tokens.add(token)
            return httpx.Response(200, json={"access": "access-new", "refresh": "refresh-new"})

        backend.add("GET", DASHBOARD, dashboard)
        backend.add("POST", REFRESH, rotating_refresh)

        first, second = await asyncio.gather(
            services["client"].request(DASHBOARD),
            services["client"].request(DASHBOARD),
        )

        assert first.status_code == 200
        assert second.status_code == 200
        assert len(backend.calls(REFRESH)) == 1
        assert await store.get_item(ACCESS_PATIENT_KEY) == "access-new"
        assert await store.get_item(REFRESH_PATIENT_KEY) == "refresh-new"
        assert services["session"].current_role == UserRole.PATIENT
        assert navigator.notices == []

    async def test_cleared_store_during_request_expires_without_refresh(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)

        async def logged_out_meanwhile(request: httpx.Request) -> httpx.Response:
            await store.delete_item(ACCESS_PATIENT_KEY)
            await store.delete_item(REFRESH_PATIENT_KEY)
            return httpx.Response(401, json={"detail": "Token expired."})

        backend.add("GET", DASHBOARD, logged_out_meanwhile)

        with pytest.raises(SessionExpiredError):
            await services["client"].request(DASHBOARD)

        assert backend.calls(REFRESH) == []

    async def test_coalescing_can_be_disabled(
        self, store, backend, http, hardware, navigator, clock,
    ):
        config = AppConfig(_env_file=None, API_BASE_URL="https://api.test", COALESCE_TOKEN_REFRESH=False)
        services = create_services(
            config=config, store=store, hardware=hardware, navigator=navigator, http=http, clock=clock,
        )
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, _auth_gated())

        async def slow_refresh(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"access": "access-new"})

        backend.add("POST", REFRESH, slow_refresh)

        await asyncio.gather(
            services["client"].request(DASHBOARD),
            services["client"].request(DASHBOARD),
        )

        assert len(backend.calls(REFRESH)) == 2


class TestGetJson:

    async def test_ok_body_is_decoded(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (200, {"modules": [1, 2]}))

        assert await services["client"].get_json(DASHBOARD) == {"modules": [1, 2]}

    async def test_empty_ok_body_is_none(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("POST", DASHBOARD, (204, None))

        assert await services["client"].get_json(DASHBOARD, "POST") is None

    async def test_failure_carries_status_and_detail(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, (404, {"detail": "Patient not found."}))

        with pytest.raises(RequestFailure) as excinfo:
            await services["client"].get_json(DASHBOARD)

        assert excinfo.value.status == 404
        assert excinfo.value.body == {"detail": "Patient not found."}
        assert str(excinfo.value) == "Patient not found."

    async def test_failure_without_detail_uses_generic_message(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, lambda request: httpx.Response(502, text="Bad gateway"))

        with pytest.raises(RequestFailure) as excinfo:
            await services["client"].get_json(DASHBOARD)

        assert excinfo.value.status == 502
        assert excinfo.value.body is None
        assert str(excinfo.value) == "Request failed"

    async def test_ok_body_that_is_not_json_raises(self, services, store, backend):
        await seed_patient(store)
        services["session"].begin_session(UserRole.PATIENT)
        backend.add("GET", DASHBOARD, lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(RequestFailure) as excinfo:
            await services["client"].get_json(DASHBOARD)

        assert excinfo.value.status == 200
