"""ProfileResolver: fetches, caches and mutates the current user's profile.

GET /api/profile is cached per user id and de-duplicated: concurrent get()
calls share one in-flight request. force=True bypasses the cache (but
still joins a request already in flight). A 401 clears the profile and
returns None; the session accessor has already scheduled the redirect.

Display-name and avatar changes are optimistic and roll back on failure.
Username changes are not optimistic: the server may refuse with 403 and a
``nextAvailableAt`` lock, which is remembered until it passes.

Tier 2 service module: imports from client, errors, schemas, optimistic,
profile.validation.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from dailymir.client import AuthenticatedClient, error_message, read_payload
from dailymir.errors import ApiRequestError, SessionExpiredError
from dailymir.optimistic import OptimisticUpdate
from dailymir.profile.validation import (
    collapse_display_name,
    is_catalog_avatar,
    is_valid_display_name,
    is_valid_username,
    normalize_display_name_input,
    normalize_username_input,
)
from dailymir.quiz.normalize import first_of
from dailymir.schemas import (
    MirSpecialty,
    Profile,
    ProfileUpdateResult,
    Session,
    University,
)

logger = logging.getLogger(__name__)

PROFILE_UNAVAILABLE = "Perfil no disponible."
INVALID_PROFILE = "Perfil invalido."
INVALID_AVATAR = "Avatar invalido."
INVALID_USERNAME = "Username invalido."
USERNAME_LOCKED = "Username bloqueado temporalmente."
USERNAME_TAKEN = "Este nombre de usuario ya está en uso."
USERNAME_LENGTH = "El username debe tener entre 3 y 30 caracteres."
DISPLAY_NAME_LENGTH = "El nombre visible debe tener entre 2 y 16 caracteres."

_MAIN_GOALS = ("prepare_mir", "reinforce_degree", "explore")
_FAILURES = (ApiRequestError, httpx.TransportError)


# ---------------------------------------------------------------------------
# Payload coercion
# ---------------------------------------------------------------------------


def _university(value: Any) -> University | None:
    if not isinstance(value, dict):
        return None
    uid = first_of(value, ("id",), (int,))
    name = first_of(value, ("name",), (str,))
    country = first_of(value, ("country",), (str,))
    if uid is None or name is None:
        return None
    return University(id=uid, name=name, country=country or "")


def _specialty(value: Any) -> MirSpecialty | None:
    if not isinstance(value, dict):
        return None
    sid = first_of(value, ("id",), (int,))
    name = first_of(value, ("name",), (str,))
    if sid is None or name is None:
        return None
    return MirSpecialty(id=sid, name=name)


def coerce_profile(payload: Any, session: Session) -> Profile | None:
    """Builds a Profile from GET /api/profile, tolerating both casings.

    The record may be wrapped in ``{profile: ...}``. id and email fall back
    to the session's user; avatar defaults to 1; created_at to now.

    Returns:
        The Profile, or None when the payload is not an object.
    """
    if not isinstance(payload, dict):
        return None
    wrapped = payload.get("profile")
    source = wrapped if isinstance(wrapped, dict) else payload

    main_goal = first_of(source, ("main_goal", "mainGoal"), (str,))
    return Profile(
        id=first_of(source, ("id",), (str,)) or session.user.id,
        email=first_of(source, ("email",), (str,)) or session.user.email,
        display_name=first_of(source, ("display_name", "displayName"), (str,)) or "",
        username=first_of(source, ("username",), (str,)) or "",
        avatar_id=first_of(source, ("avatar_id", "avatarId"), (int,)) or 1,
        medical_year=first_of(source, ("medical_year", "medicalYear"), (int,)),
        mir_specialty=_specialty(source.get("mir_specialty") or source.get("mirSpecialty")),
        main_goal=main_goal if main_goal in _MAIN_GOALS else None,
        university=_university(source.get("university")),
        profile_public=first_of(source, ("profile_public", "profilePublic"), (bool,)) is True,
        onboarding_completed=first_of(
            source, ("onboarding_completed", "onboardingCompleted"), (bool,)
        )
        is True,
        must_update_display_name=first_of(
            source, ("must_update_display_name", "mustUpdateDisplayName"), (bool,)
        )
        is True,
        created_at=first_of(source, ("created_at", "createdAt"), (str,))
        or datetime.now(timezone.utc).isoformat(),
    )


def _lock_active(value: str | None, now: datetime | None = None) -> bool:
    if not value:
        return False
    try:
        until = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    if until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)
    return until > (now or datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ProfileResolver:
    """The current user's profile, cached for the life of the workspace.

    Args:
        client: The user's authenticated API client.
    """

    def __init__(self, client: AuthenticatedClient) -> None:
        self._client = client
        self._in_flight: asyncio.Task | None = None
        self._username_lock: str | None = None

        self.profile: Profile | None = None
        self.loading = False
        self.error: str | None = None
        self.updating_display_name = False
        self.updating_avatar = False
        self.updating_username = False

    @property
    def username_locked_until(self) -> str | None:
        """The server's ``nextAvailableAt`` while it is still in the future."""
        if not _lock_active(self._username_lock):
            self._username_lock = None
        return self._username_lock

    # -- fetching -------------------------------------------------------------

    async def get(self, force: bool = False) -> Profile | None:
        """Returns the profile, fetching it when not cached for this user.

        Raises:
            ApiRequestError: For non-2xx answers other than 401, or an
                unusable payload.
            httpx.TransportError: On network failures.
        """
        session = await self._client.accessor.get_session()
        if session is None:
            self.profile = None
            return None
        if not force and self.profile is not None and self.profile.id == session.user.id:
            return self.profile

        task = self._in_flight
        if task is None or task.done():
            task = asyncio.ensure_future(self._fetch(session))
            self._in_flight = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._in_flight is task and task.done():
                self._in_flight = None

    async def _fetch(self, session: Session) -> Profile | None:
        self.loading = True
        try:
            response = await self._client.get("/api/profile")
        except SessionExpiredError:
            self.profile = None
            return None
        finally:
            self.loading = False
        payload = read_payload(response)
        if not response.is_success:
            raise ApiRequestError(
                response.status_code,
                error_message(payload, f"Error ({response.status_code})"),
                payload,
            )
        profile = coerce_profile(payload, session)
        if profile is None:
            raise ApiRequestError(response.status_code, INVALID_PROFILE, payload)
        self.profile = profile
        return profile

    async def refresh(self) -> bool:
        """Refetches the profile. Failures land in ``error``."""
        self.error = None
        try:
            return await self.get(force=True) is not None
        except _FAILURES as exc:
            self.error = str(exc) or "No se pudo cargar el perfil."
            return False

    # -- mutations ------------------------------------------------------------

    def _set_profile(self, profile: Profile | None) -> None:
        self.profile = profile

    def _field_update(self, field: str, new: Any, old: Any) -> OptimisticUpdate:
        def _change(profile: Profile | None) -> Profile | None:
            return profile.model_copy(update={field: new}) if profile else profile

        def _revert(profile: Profile | None) -> Profile | None:
            return profile.model_copy(update={field: old}) if profile else profile

        return OptimisticUpdate(lambda: self.profile, self._set_profile, _change, _revert)

    async def _post_optimistic(
        self, update: OptimisticUpdate, path: str, body: dict[str, Any], fallback: str
    ) -> ProfileUpdateResult:
        update.apply()
        try:
            await self._client.fetch_json("POST", path, json=body)
        except _FAILURES as exc:
            update.rollback()
            message = getattr(exc, "message", None) or fallback
            self.error = message
            logger.info("POST %s failed, reverted: %s", path, message)
            return ProfileUpdateResult(ok=False, error=message)
        except BaseException:
            update.rollback()
            raise
        update.commit()
        return ProfileUpdateResult(ok=True)

    async def update_display_name(self, name: str) -> ProfileUpdateResult:
        """Sets the display name optimistically; rolls back on failure.

        Names that break the 2-16 letters/digits/spaces rule after collapsing
        whitespace are refused without a request.
        """
        if self.profile is None:
            return ProfileUpdateResult(ok=False, error=PROFILE_UNAVAILABLE)
        next_name = collapse_display_name(name)
        if not is_valid_display_name(next_name):
            return ProfileUpdateResult(ok=False, error=DISPLAY_NAME_LENGTH)
        self.updating_display_name = True
        self.error = None
        try:
            return await self._post_optimistic(
                self._field_update("display_name", next_name, self.profile.display_name),
                "/api/profile/display-name",
                {"displayName": next_name},
                "No se pudo actualizar el nombre.",
            )
        finally:
            self.updating_display_name = False

    async def update_avatar(self, avatar_id: int) -> ProfileUpdateResult:
        """Sets the avatar optimistically. Ids outside the catalog never hit the API."""
        if self.profile is None:
            return ProfileUpdateResult(ok=False, error=PROFILE_UNAVAILABLE)
        if not is_catalog_avatar(avatar_id):
            return ProfileUpdateResult(ok=False, error=INVALID_AVATAR)
        self.updating_avatar = True
        self.error = None
        try:
            return await self._post_optimistic(
                self._field_update("avatar_id", avatar_id, self.profile.avatar_id),
                "/api/profile/avatar",
                {"avatarId": avatar_id},
                "No se pudo actualizar el avatar.",
            )
        finally:
            self.updating_avatar = False

    async def update_username(self, username: str) -> ProfileUpdateResult:
        """Changes the username; a 403 carries the rate-limit lock.

        While a remembered lock is still in the future the change is refused
        locally with the same ``next_available_at``.
        """
        if self.profile is None:
            return ProfileUpdateResult(ok=False, error=PROFILE_UNAVAILABLE)
        normalized = username.strip().lower()
        if not is_valid_username(normalized):
            return ProfileUpdateResult(ok=False, error=INVALID_USERNAME)
        locked_until = self.username_locked_until
        if locked_until:
            return ProfileUpdateResult(ok=False, error=USERNAME_LOCKED, next_available_at=locked_until)

        self.updating_username = True
        self.error = None
        try:
            response = await self._client.post("/api/profile/username", json={"username": normalized})
            payload = read_payload(response)
            if response.is_success:
                self._username_lock = None
                await self.get(force=True)
                return ProfileUpdateResult(ok=True)
            if response.status_code == 403:
                body = payload if isinstance(payload, dict) else {}
                message = body.get("error") if isinstance(body.get("error"), str) else USERNAME_LOCKED
                next_at = body.get("nextAvailableAt")
                next_at = next_at if isinstance(next_at, str) else None
                if next_at:
                    self._username_lock = next_at
                self.error = message
                return ProfileUpdateResult(ok=False, error=message, next_available_at=next_at)
            message = error_message(payload, f"Error ({response.status_code})")
        except _FAILURES as exc:
            message = getattr(exc, "message", None) or "No se pudo actualizar el username."
        finally:
            self.updating_username = False
        self.error = message
        return ProfileUpdateResult(ok=False, error=message)

    async def complete_registration(self, username: str, display_name: str) -> ProfileUpdateResult:
        """Claims a username and display name for a profile created without them.

        409 means the username is taken.
        """
        normalized_username = normalize_username_input(username)
        normalized_name = normalize_display_name_input(display_name)
        if not is_valid_username(normalized_username):
            return ProfileUpdateResult(ok=False, error=USERNAME_LENGTH)
        if not is_valid_display_name(normalized_name):
            return ProfileUpdateResult(ok=False, error=DISPLAY_NAME_LENGTH)

        try:
            response = await self._client.post(
                "/api/profile/complete-registration",
                json={"username": normalized_username, "displayName": normalized_name},
            )
        except httpx.TransportError as exc:
            logger.warning("Complete registration failed: %s", exc)
            return ProfileUpdateResult(ok=False, error="No se pudo completar el registro.")
        if response.status_code == 409:
            return ProfileUpdateResult(ok=False, error=USERNAME_TAKEN)
        if not response.is_success:
            message = error_message(read_payload(response), "No se pudo completar el registro.")
            return ProfileUpdateResult(ok=False, error=message)
        await self.get(force=True)
        return ProfileUpdateResult(ok=True)

    async def aclose(self) -> None:
        task = self._in_flight
        self._in_flight = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
