"""Tests for dailymir.profile.onboarding: wizard, payload and redirect gate."""

import pytest

from dailymir.profile.onboarding import (
    AVAILABLE,
    DASHBOARD_PATH,
    DISPLAY_NAME_MUST_CHANGE,
    MAIN_GOAL_REQUIRED,
    ONBOARDING_PATH,
    USERNAME_CHECKING,
    USERNAME_UNVERIFIED,
    OnboardingWizard,
    build_payload,
    completion_redirect,
    onboarding_redirect,
    update_avatar_realtime,
)
from dailymir.profile.resolver import (
    DISPLAY_NAME_LENGTH,
    USERNAME_LENGTH,
    USERNAME_TAKEN,
    ProfileResolver,
)
from dailymir.schemas import OnboardingDraft, Profile
from dailymir.tests.conftest import reply

PROFILE = "/api/profile"
CHECK = "/api/profile/check-username"


def _draft(**overrides) -> OnboardingDraft:
    data = {
        "display_name": "Bea",
        "username": "bea.mir",
        "main_goal": "prepare_mir",
        "university_id": 9,
        "medical_year": 6,
        "mir_specialty_id": 2,
        "profile_public": True,
    }
    data.update(overrides)
    return OnboardingDraft(**data)


@pytest.fixture
def make_wizard(fake_api, make_client, make_profile_payload):
    """Returns an async factory for a wizard whose profile is already loaded."""

    async def _make(**profile_overrides) -> OnboardingWizard:
        fake_api.on("GET", PROFILE, reply(200, make_profile_payload(**profile_overrides)))
        client = make_client()
        resolver = ProfileResolver(client)
        await resolver.get()
        return OnboardingWizard(client, resolver)

    return _make


class TestPayload:
    def test_full_payload(self) -> None:
        payload = build_payload(_draft(display_name="  Bea   R ", username=" BEA.mir "))
        assert payload == {
            "displayName": "Bea R",
            "username": "bea.mir",
            "medicalYear": 6,
            "mirSpecialtyId": 2,
            "mainGoal": "prepare_mir",
            "universityId": 9,
            "customUniversity": None,
            "profilePublic": True,
        }

    def test_custom_university_replaces_id(self) -> None:
        payload = build_payload(_draft(use_custom_university=True, custom_university="  Uni Nueva "))
        assert payload["universityId"] is None
        assert payload["customUniversity"] == "Uni Nueva"

    def test_display_and_username_only(self) -> None:
        payload = build_payload(_draft(), display_and_username_only=True)
        assert payload["mainGoal"] is None
        assert payload["universityId"] is None
        assert payload["profilePublic"] is False
        assert payload["username"] == "bea.mir"


class TestRedirectGate:
    def _profile(self, **overrides) -> Profile:
        return Profile(id="u", **overrides)

    def test_unfinished_goes_to_onboarding(self) -> None:
        assert onboarding_redirect("/dashboard", self._profile(), deferred=False) == ONBOARDING_PATH
        assert onboarding_redirect(ONBOARDING_PATH, self._profile(), deferred=False) is None

    def test_finished_leaves_onboarding_unless_deferred(self) -> None:
        done = self._profile(onboarding_completed=True)
        assert onboarding_redirect(ONBOARDING_PATH, done, deferred=False) == DASHBOARD_PATH
        assert onboarding_redirect(ONBOARDING_PATH, done, deferred=True) is None
        assert onboarding_redirect("/stats", done, deferred=False) is None

    def test_public_paths_and_anonymous_untouched(self) -> None:
        assert onboarding_redirect("/auth/callback", self._profile(), deferred=False) is None
        assert onboarding_redirect("/dashboard", None, deferred=False) is None

    def test_completion_redirect(self) -> None:
        assert completion_redirect(None) == "/auth"
        assert completion_redirect(self._profile(username="ana")) == DASHBOARD_PATH
        assert completion_redirect(self._profile()) is None


class TestCatalogs:
    @pytest.mark.asyncio
    async def test_sorted_and_filtered(self, fake_api, make_wizard) -> None:
        fake_api.on(
            "GET", "/api/profile/universities",
            reply(200, {"universities": [
                {"id": 1, "name": "Zaragoza", "country": "ES"},
                {"id": 2, "name": "Buenos Aires", "country": "AR"},
                {"id": 3, "name": "Alcalá", "country": "ES"},
                {"id": "x", "name": "Mala", "country": "ES"},
            ]}),
        )
        fake_api.on(
            "GET", "/api/profile/mir-specialties",
            reply(200, {"specialties": [{"id": 2, "name": "Urología"}, {"id": 1, "name": "cardiología"}]}),
        )
        wizard = await make_wizard()
        await wizard.load_catalogs()
        assert [u.name for u in wizard.universities] == ["Buenos Aires", "Alcalá", "Zaragoza"]
        assert [s.name for s in wizard.specialties] == ["cardiología", "Urología"]
        assert wizard.loading_catalogs is False

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_other(self, fake_api, make_wizard) -> None:
        fake_api.on("GET", "/api/profile/universities", reply(500, {"error": "Caído"}))
        fake_api.on("GET", "/api/profile/mir-specialties", reply(200, {"specialties": [{"id": 1, "name": "A"}]}))
        wizard = await make_wizard()
        await wizard.load_catalogs()
        assert wizard.universities == []
        assert wizard.universities_error == "Caído"
        assert len(wizard.specialties) == 1


class TestUsernameCheck:
    @pytest.mark.asyncio
    async def test_invalid_not_sent(self, fake_api, make_wizard) -> None:
        wizard = await make_wizard()
        assert await wizard.check_username("ab") == "invalid"
        assert wizard.username_message == USERNAME_LENGTH
        assert fake_api.count("POST", CHECK) == 0

    @pytest.mark.asyncio
    async def test_own_username_available_without_call(self, fake_api, make_wizard) -> None:
        wizard = await make_wizard()
        assert await wizard.check_username(" ANA.MIR") == "available"
        assert fake_api.count("POST", CHECK) == 0

    @pytest.mark.asyncio
    async def test_remote_answers(self, fake_api, make_wizard) -> None:
        fake_api.on("POST", CHECK, reply(200, {"available": True}), reply(200, {"available": "yes"}))
        wizard = await make_wizard()
        assert await wizard.check_username("bea.mir") == "available"
        assert wizard.username_message == AVAILABLE
        assert await wizard.check_username("carla") == "unavailable"
        assert wizard.username_message == USERNAME_TAKEN
        assert fake_api.bodies("POST", CHECK) == [{"username": "bea.mir"}, {"username": "carla"}]

    @pytest.mark.asyncio
    async def test_check_error(self, fake_api, make_wizard) -> None:
        fake_api.on("POST", CHECK, reply(500, {"error": "Caído"}))
        wizard = await make_wizard()
        assert await wizard.check_username("bea.mir") == "error"
        assert wizard.username_message == "Caído"


class TestValidation:
    @pytest.mark.asyncio
    async def test_blocking_order(self, make_wizard) -> None:
        wizard = await make_wizard()
        assert wizard.validate_step_two(_draft(main_goal=None)) == MAIN_GOAL_REQUIRED
        assert wizard.validate_step_two(_draft(display_name="B")) == DISPLAY_NAME_LENGTH
        assert wizard.validate_step_two(_draft(username="b")) == USERNAME_LENGTH
        assert wizard.validate_step_two(_draft()) == USERNAME_UNVERIFIED

    @pytest.mark.asyncio
    async def test_checking_blocks(self, make_wizard) -> None:
        wizard = await make_wizard()
        wizard.username_status = "checking"
        assert wizard.validate_step_two(_draft()) == USERNAME_CHECKING

    @pytest.mark.asyncio
    async def test_flagged_display_name_must_change(self, make_wizard) -> None:
        wizard = await make_wizard(must_update_display_name=True, display_name="Bea")
        wizard.username_status = "available"
        assert wizard.validate_step_two(_draft(display_name="Bea")) == DISPLAY_NAME_MUST_CHANGE
        assert wizard.validate_step_two(_draft(display_name="Bea Nueva")) is None


class TestSubmit:
    @pytest.mark.asyncio
    async def test_blocked_submit_sends_nothing(self, fake_api, make_wizard) -> None:
        wizard = await make_wizard()
        result = await wizard.submit(_draft())
        assert result.ok is False
        assert wizard.error == USERNAME_UNVERIFIED
        assert fake_api.count("POST", "/api/profile/onboarding") == 0

    @pytest.mark.asyncio
    async def test_success_refreshes_profile(self, fake_api, make_wizard) -> None:
        fake_api.on("POST", "/api/profile/onboarding", reply(200, {"ok": True}))
        wizard = await make_wizard()
        wizard.username_status = "available"
        wizard.deferred = True

        result = await wizard.submit(_draft())

        assert result.ok is True
        assert wizard.deferred is False
        assert fake_api.count("GET", PROFILE) == 2
        [body] = fake_api.bodies("POST", "/api/profile/onboarding")
        assert body["username"] == "bea.mir"

    @pytest.mark.asyncio
    async def test_server_error_kept(self, fake_api, make_wizard) -> None:
        fake_api.on("POST", "/api/profile/onboarding", reply(400, {"error": "Username ocupado"}))
        wizard = await make_wizard()
        wizard.username_status = "available"
        result = await wizard.submit(_draft())
        assert result.error == "Username ocupado"
        assert wizard.saving is False


class TestSkipAndAvatar:
    @pytest.mark.asyncio
    async def test_skip(self, make_wizard) -> None:
        wizard = await make_wizard()
        assert wizard.skip() is True
        assert wizard.redirect_for(ONBOARDING_PATH) is None

    @pytest.mark.asyncio
    async def test_skip_refused_when_name_flagged(self, make_wizard) -> None:
        wizard = await make_wizard(must_update_display_name=True)
        assert wizard.skip() is False
        assert wizard.deferred is False

    @pytest.mark.asyncio
    async def test_avatar_falls_back_to_patch(self, fake_api, make_client) -> None:
        fake_api.on("POST", "/api/profile/avatar", reply(404))
        fake_api.on("PATCH", "/api/profile/avatar", reply(200, {"ok": True}))
        await update_avatar_realtime(make_client(), 5)
        assert fake_api.bodies("PATCH", "/api/profile/avatar") == [{"avatarId": 5}]

    @pytest.mark.asyncio
    async def test_change_avatar_mirrors_profile(self, fake_api, make_wizard) -> None:
        fake_api.on("POST", "/api/profile/avatar", reply(200, {"ok": True}))
        wizard = await make_wizard()
        result = await wizard.change_avatar(8)
        assert result.ok is True
        assert wizard._profile.profile.avatar_id == 8

    @pytest.mark.asyncio
    async def test_same_avatar_not_sent(self, fake_api, make_wizard) -> None:
        wizard = await make_wizard()
        assert (await wizard.change_avatar(3)).ok is True
        assert fake_api.count("POST", "/api/profile/avatar") == 0
