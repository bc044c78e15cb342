"""Role-namespaced credential pairs."""

from __future__ import annotations

import pytest

from app.models.enums import UserRole
from app.services.secure_store import ACCESS_PATIENT_KEY, REFRESH_PATIENT_KEY
from app.services.token_store import TokenStore, token_keys
from tests.fakes import seed_nurse, seed_patient


@pytest.fixture
def tokens(store, logger) -> TokenStore:
    return TokenStore(store=store, logger=logger)


class TestTokenStore:

    def test_keys_per_role(self):
        assert token_keys(UserRole.PATIENT) == ("accessPatient", "refreshPatient")
        assert token_keys(UserRole.NURSE) == ("accessNurse", "refreshNurse")
        assert token_keys("nurse") == ("accessNurse", "refreshNurse")

    async def test_credentials_need_both_tokens(self, tokens, store):
        await store.set_item(ACCESS_PATIENT_KEY, "a")
        assert await tokens.get_credentials(UserRole.PATIENT) is None

        await store.set_item(REFRESH_PATIENT_KEY, "r")
        pair = await tokens.get_credentials(UserRole.PATIENT)
        assert (pair.role, pair.access_token, pair.refresh_token) == (UserRole.PATIENT, "a", "r")

    async def test_roles_are_isolated(self, tokens, store):
        await seed_patient(store)
        assert await tokens.get_credentials(UserRole.NURSE) is None

    async def test_apply_refresh_without_rotation(self, tokens, store):
        await seed_patient(store)
        await tokens.apply_refresh(UserRole.PATIENT, "access-new")
        assert await tokens.get_access_token(UserRole.PATIENT) == "access-new"
        assert await tokens.get_refresh_token(UserRole.PATIENT) == "refresh-old"

    async def test_apply_refresh_with_rotation(self, tokens, store):
        await seed_patient(store)
        await tokens.apply_refresh(UserRole.PATIENT, "access-new", "refresh-new")
        assert await tokens.get_refresh_token(UserRole.PATIENT) == "refresh-new"

    async def test_clear_role_leaves_other_role(self, tokens, store):
        await seed_patient(store)
        await seed_nurse(store)
        await tokens.clear_role(UserRole.PATIENT)
        assert set(store.snapshot()) == {"accessNurse", "refreshNurse"}

    async def test_clear_all(self, tokens, store):
        await seed_patient(store)
        await seed_nurse(store)
        await store.set_item("biometricPreferences", "{}")
        await tokens.clear_all()
        assert set(store.snapshot()) == {"biometricPreferences"}

    @pytest.mark.parametrize(
        "patient,nurse,expected",
        [
            (False, False, None),
            (True, False, UserRole.PATIENT),
            (False, True, UserRole.NURSE),
            (True, True, UserRole.PATIENT),
        ],
    )
    async def test_detect_role_prefers_patient(self, tokens, store, patient, nurse, expected):
        if patient:
            await seed_patient(store)
        if nurse:
            await seed_nurse(store)
        assert await tokens.detect_role() == expected
