"""Onboarding wizard state and the onboarding redirect gate.

The wizard loads two catalogs (universities, MIR specialties), checks
username availability as the user types, validates step two, and submits
everything in one POST /api/profile/onboarding. Users may defer the wizard
unless their display name was flagged for correction.

Tier 3 module: imports from client, errors, schemas, scheduling and the
profile resolver/validation modules.
"""

import asyncio
import logging
from typing import Any, Literal

import httpx

from dailymir.client import AuthenticatedClient, error_message, read_payload
from dailymir.errors import ApiRequestError
from dailymir.profile.resolver import DISPLAY_NAME_LENGTH, USERNAME_LENGTH, USERNAME_TAKEN, ProfileResolver
from dailymir.profile.validation import (
    CUSTOM_UNIVERSITY_MAX_LENGTH,
    is_catalog_avatar,
    is_valid_display_name,
    is_valid_username,
    normalize_display_name_input,
    normalize_username_input,
)
from dailymir.scheduling import LatestTask
from dailymir.schemas import MirSpecialty, OnboardingDraft, Profile, ProfileUpdateResult, University

logger = logging.getLogger(__name__)

UsernameCheckStatus = Literal["idle", "invalid", "checking", "available", "unavailable", "error"]

ONBOARDING_PATH = "/onboarding"
DASHBOARD_PATH = "/dashboard"

MAIN_GOAL_REQUIRED = "Debes seleccionar tu objetivo principal para continuar."
DISPLAY_NAME_MUST_CHANGE = "Debes corregir tu display name para continuar."
USERNAME_CHECKING = "Comprobando disponibilidad del username..."
USERNAME_UNVERIFIED = "Debes validar un username disponible para continuar."
USERNAME_CHECK_FAILED = "No se pudo validar el username."
AVAILABLE = "Disponible ✔"

_FAILURES = (ApiRequestError, httpx.TransportError)


# ---------------------------------------------------------------------------
# Remote calls
# ---------------------------------------------------------------------------


def _valid_university(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("id"), int)
        and not isinstance(item.get("id"), bool)
        and isinstance(item.get("name"), str)
        and isinstance(item.get("country"), str)
    )


def _valid_specialty(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("id"), int)
        and not isinstance(item.get("id"), bool)
        and isinstance(item.get("name"), str)
    )


async def fetch_universities(client: AuthenticatedClient) -> list[University]:
    """GET /api/profile/universities, sorted by country then name."""
    payload = await client.fetch_json("GET", "/api/profile/universities")
    raw = payload.get("universities") if isinstance(payload, dict) else None
    if not isinstance(raw, list):
        return []
    items = [University(**item) for item in raw if _valid_university(item)]
    return sorted(items, key=lambda u: (u.country.casefold(), u.name.casefold()))


async def fetch_mir_specialties(client: AuthenticatedClient) -> list[MirSpecialty]:
    """GET /api/profile/mir-specialties, sorted by name."""
    payload = await client.fetch_json("GET", "/api/profile/mir-specialties")
    raw = payload.get("specialties") if isinstance(payload, dict) else None
    if not isinstance(raw, list):
        return []
    items = [MirSpecialty(id=item["id"], name=item["name"]) for item in raw if _valid_specialty(item)]
    return sorted(items, key=lambda s: s.name.casefold())


async def check_username_availability(client: AuthenticatedClient, username: str) -> bool:
    """POST /api/profile/check-username. Only ``available: true`` counts."""
    payload = await client.fetch_json(
        "POST", "/api/profile/check-username", json={"username": username}
    )
    return isinstance(payload, dict) and payload.get("available") is True


async def update_avatar_realtime(client: AuthenticatedClient, avatar_id: int) -> None:
    """Saves the avatar immediately. Older APIs only accept PATCH."""
    body = {"avatarId": avatar_id}
    response = await client.request("POST", "/api/profile/avatar", json=body)
    if response.status_code == 404:
        response = await client.request("PATCH", "/api/profile/avatar", json=body)
    if not response.is_success:
        payload = read_payload(response)
        raise ApiRequestError(
            response.status_code,
            error_message(payload, f"Error ({response.status_code})"),
            payload,
        )


def build_payload(draft: OnboardingDraft, display_and_username_only: bool = False) -> dict[str, Any]:
    """The POST /api/profile/onboarding body.

    With ``display_and_username_only`` every optional field is cleared and
    the profile stays private.
    """
    custom = draft.custom_university.strip()[:CUSTOM_UNIVERSITY_MAX_LENGTH]
    only = display_and_username_only
    return {
        "displayName": normalize_display_name_input(draft.display_name),
        "username": normalize_username_input(draft.username),
        "medicalYear": None if only else draft.medical_year,
        "mirSpecialtyId": None if only else draft.mir_specialty_id,
        "mainGoal": None if only else draft.main_goal,
        "universityId": None if only or draft.use_custom_university else draft.university_id,
        "customUniversity": None if only or not draft.use_custom_university else custom or None,
        "profilePublic": False if only else draft.profile_public,
    }


async def submit_onboarding(client: AuthenticatedClient, payload: dict[str, Any]) -> None:
    await client.fetch_json("POST", "/api/profile/onboarding", json=payload)


# ---------------------------------------------------------------------------
# Redirect gate
# ---------------------------------------------------------------------------


def is_public_path(path: str) -> bool:
    return path == "/auth" or path.startswith("/auth/")


def onboarding_redirect(path: str, profile: Profile | None, deferred: bool) -> str | None:
    """Where a signed-in user on ``path`` must be sent, or None to stay.

    Unfinished onboarding always leads to /onboarding. Finished users are
    sent from /onboarding to /dashboard unless they deferred the wizard.
    """
    if profile is None or is_public_path(path):
        return None
    if not profile.onboarding_completed and path != ONBOARDING_PATH:
        return ONBOARDING_PATH
    if profile.onboarding_completed and path == ONBOARDING_PATH and not deferred:
        return DASHBOARD_PATH
    return None


def completion_redirect(profile: Profile | None) -> str | None:
    """The complete-profile page is only for signed-in users without a username."""
    if profile is None:
        return "/auth"
    if profile.username:
        return DASHBOARD_PATH
    return None


# ---------------------------------------------------------------------------
# Wizard
# ---------------------------------------------------------------------------


class OnboardingWizard:
    """One user's onboarding wizard.

    Args:
        client: The user's authenticated API client.
        profile: The user's profile resolver (refreshed after submission).
    """

    def __init__(self, client: AuthenticatedClient, profile: ProfileResolver) -> None:
        self._client = client
        self._profile = profile
        self._username_check = LatestTask("username availability")

        self.universities: list[University] = []
        self.specialties: list[MirSpecialty] = []
        self.universities_error: str | None = None
        self.specialties_error: str | None = None
        self.loading_catalogs = False

        self.username_status: UsernameCheckStatus = "idle"
        self.username_message: str | None = None
        self.deferred = False
        self.saving = False
        self.saving_avatar = False
        self.error: str | None = None

    # -- catalogs -------------------------------------------------------------

    async def load_catalogs(self) -> None:
        """Loads universities and specialties side by side. Failures empty the list."""
        self.loading_catalogs = True
        try:
            await asyncio.gather(self._load_universities(), self._load_specialties())
        finally:
            self.loading_catalogs = False

    async def _load_universities(self) -> None:
        self.universities_error = None
        try:
            self.universities = await fetch_universities(self._client)
        except _FAILURES as exc:
            self.universities = []
            self.universities_error = getattr(exc, "message", None) or "No se pudieron cargar universidades."

    async def _load_specialties(self) -> None:
        self.specialties_error = None
        try:
            self.specialties = await fetch_mir_specialties(self._client)
        except _FAILURES as exc:
            self.specialties = []
            self.specialties_error = getattr(exc, "message", None) or "No se pudieron cargar especialidades."

    # -- username -------------------------------------------------------------

    def _set_status(self, status: UsernameCheckStatus, message: str | None) -> None:
        self.username_status = status
        self.username_message = message

    async def check_username(self, username: str) -> UsernameCheckStatus:
        """Re-evaluates the username as typed. A newer check supersedes this one."""
        normalized = normalize_username_input(username)
        current = normalize_username_input(self._profile.profile.username if self._profile.profile else "")
        if not normalized or not is_valid_username(normalized) or normalized == current:
            self._username_check.cancel()
        if not normalized:
            self._set_status("idle", None)
        elif not is_valid_username(normalized):
            self._set_status("invalid", USERNAME_LENGTH)
        elif normalized == current:
            self._set_status("available", AVAILABLE)
        else:
            self._set_status("checking", "Comprobando...")
            await self._username_check.run(lambda: self._query_username(normalized))
        return self.username_status

    async def _query_username(self, username: str) -> None:
        try:
            available = await check_username_availability(self._client, username)
        except _FAILURES as exc:
            self._set_status("error", getattr(exc, "message", None) or "No se pudo comprobar el username.")
            return
        if available:
            self._set_status("available", AVAILABLE)
        else:
            self._set_status("unavailable", USERNAME_TAKEN)

    # -- validation and submission ------------------------------------------

    def validate_step_two(self, draft: OnboardingDraft) -> str | None:
        """Returns the first blocking message for step two, or None."""
        display_name = normalize_display_name_input(draft.display_name)
        username = normalize_username_input(draft.username)
        profile = self._profile.profile

        if not draft.main_goal:
            return MAIN_GOAL_REQUIRED
        if not is_valid_display_name(display_name):
            return DISPLAY_NAME_LENGTH
        if not is_valid_username(username):
            return USERNAME_LENGTH
        if (
            profile is not None
            and profile.must_update_display_name
            and display_name == normalize_display_name_input(profile.display_name)
        ):
            return DISPLAY_NAME_MUST_CHANGE
        if self.username_status != "available":
            return _status_block(self.username_status, self.username_message)
        return None

    async def submit(self, draft: OnboardingDraft) -> ProfileUpdateResult:
        """Validates and posts the wizard. On success the profile is refetched."""
        blocking = self.validate_step_two(draft)
        if blocking:
            self.error = blocking
            return ProfileUpdateResult(ok=False, error=blocking)

        self.saving = True
        self.error = None
        try:
            await submit_onboarding(self._client, build_payload(draft))
        except _FAILURES as exc:
            self.error = getattr(exc, "message", None) or "No se pudo guardar el onboarding."
            return ProfileUpdateResult(ok=False, error=self.error)
        finally:
            self.saving = False
        self.deferred = False
        await self._profile.refresh()
        return ProfileUpdateResult(ok=True)

    def skip(self) -> bool:
        """Defers the wizard. Refused while the display name must be corrected."""
        profile = self._profile.profile
        if profile is None or profile.must_update_display_name:
            return False
        self.deferred = True
        return True

    async def change_avatar(self, avatar_id: int) -> ProfileUpdateResult:
        """Saves the avatar right away and mirrors it into the cached profile."""
        profile = self._profile.profile
        if profile is None:
            return ProfileUpdateResult(ok=False, error="Perfil no disponible.")
        if not is_catalog_avatar(avatar_id):
            return ProfileUpdateResult(ok=False, error="Avatar invalido.")
        if profile.avatar_id == avatar_id:
            return ProfileUpdateResult(ok=True)
        self.saving_avatar = True
        self.error = None
        try:
            await update_avatar_realtime(self._client, avatar_id)
        except _FAILURES as exc:
            self.error = getattr(exc, "message", None) or "No se pudo guardar el avatar."
            return ProfileUpdateResult(ok=False, error=self.error)
        finally:
            self.saving_avatar = False
        if self._profile.profile is not None:
            self._profile.profile = self._profile.profile.model_copy(update={"avatar_id": avatar_id})
        return ProfileUpdateResult(ok=True)

    def redirect_for(self, path: str) -> str | None:
        return onboarding_redirect(path, self._profile.profile, self.deferred)

    def snapshot(self) -> dict[str, Any]:
        return {
            "universities": [u.model_dump() for u in self.universities],
            "specialties": [s.model_dump() for s in self.specialties],
            "universities_error": self.universities_error,
            "specialties_error": self.specialties_error,
            "username_status": self.username_status,
            "username_message": self.username_message,
            "deferred": self.deferred,
            "error": self.error,
        }

    async def aclose(self) -> None:
        await self._username_check.close()


def _status_block(status: UsernameCheckStatus, message: str | None) -> str:
    if status == "checking":
        return USERNAME_CHECKING
    if status == "unavailable":
        return USERNAME_TAKEN
    if status == "invalid":
        return USERNAME_LENGTH
    if status == "error":
        return message or USERNAME_CHECK_FAILED
    return USERNAME_UNVERIFIED
