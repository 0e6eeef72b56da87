"""Profile and onboarding API routes.

Profile reads go through the cached ProfileResolver; mutations return a
ProfileUpdateResult (ok / error / next_available_at) plus the profile as it
stands afterwards, so an optimistic change that was rolled back is visible
to the browser.

Tier 3 orchestration module: imports from deps, workspace, profile/*,
config, schemas.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from dailymir.api.deps import get_workspace
from dailymir.config import get_settings
from dailymir.profile.onboarding import completion_redirect
from dailymir.profile.validation import AVATAR_CATALOG, avatar_url, default_username, safe_avatar_id
from dailymir.schemas import ApiError, ApiResponse, OnboardingDraft, ProfileUpdateResult
from dailymir.workspace import UserWorkspace

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class DisplayNameRequest(BaseModel):
    display_name: str


class AvatarRequest(BaseModel):
    avatar_id: int


class UsernameRequest(BaseModel):
    username: str


class RegistrationRequest(BaseModel):
    username: str
    display_name: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _profile_data(workspace: UserWorkspace) -> dict[str, Any] | None:
    profile = workspace.profile.profile
    if profile is None:
        return None
    data = profile.model_dump()
    data["avatar_url"] = avatar_url(get_settings().avatar_base_url, safe_avatar_id(profile.avatar_id))
    return data


def _mutation(workspace: UserWorkspace, result: ProfileUpdateResult) -> dict:
    return ApiResponse(
        ok=True,
        data={
            **result.model_dump(),
            "profile": _profile_data(workspace),
            "username_locked_until": workspace.profile.username_locked_until,
        },
    ).model_dump()


async def _require_profile(workspace: UserWorkspace) -> None:
    """Loads the profile if needed. Raises 404 when there is none."""
    if await workspace.profile.get() is None:
        raise HTTPException(
            status_code=404,
            detail=ApiResponse(
                ok=False,
                error=ApiError(code="PROFILE_NOT_FOUND", message="Perfil no disponible."),
            ).model_dump(),
        )


# ---------------------------------------------------------------------------
# Profile endpoints
# ---------------------------------------------------------------------------


@router.get("")
async def get_profile(
    force: bool = False,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    """The current profile. Cached per user unless force=true."""
    await workspace.profile.get(force=force)
    return ApiResponse(
        ok=True,
        data={
            "profile": _profile_data(workspace),
            "username_locked_until": workspace.profile.username_locked_until,
            "avatar_catalog": list(AVATAR_CATALOG),
        },
    ).model_dump()


@router.post("/display-name")
async def update_display_name(
    body: DisplayNameRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await _require_profile(workspace)
    result = await workspace.profile.update_display_name(body.display_name)
    return _mutation(workspace, result)


@router.post("/avatar")
async def update_avatar(
    body: AvatarRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await _require_profile(workspace)
    result = await workspace.profile.update_avatar(body.avatar_id)
    return _mutation(workspace, result)


@router.post("/username")
async def update_username(
    body: UsernameRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await _require_profile(workspace)
    result = await workspace.profile.update_username(body.username)
    return _mutation(workspace, result)


@router.get("/complete-registration")
async def registration_state(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Where the complete-profile page should go, plus a suggested username."""
    profile = await workspace.profile.get()
    suggested = default_username(profile.username, profile.email) if profile else ""
    return ApiResponse(
        ok=True,
        data={"redirect_to": completion_redirect(profile), "suggested_username": suggested},
    ).model_dump()


@router.post("/complete-registration")
async def complete_registration(
    body: RegistrationRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    result = await workspace.profile.complete_registration(body.username, body.display_name)
    return _mutation(workspace, result)


# ---------------------------------------------------------------------------
# Onboarding endpoints
# ---------------------------------------------------------------------------


def _onboarding_state(workspace: UserWorkspace) -> dict:
    profile = workspace.profile.profile
    data = workspace.onboarding.snapshot()
    data["profile"] = _profile_data(workspace)
    data["suggested_username"] = default_username(profile.username, profile.email) if profile else ""
    data["redirect_to"] = workspace.onboarding.redirect_for("/onboarding")
    return ApiResponse(ok=True, data=data).model_dump()


@router.get("/onboarding")
async def onboarding_state(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Loads the catalogs (first call only) and returns the wizard state."""
    await workspace.profile.get()
    if not workspace.onboarding.universities and not workspace.onboarding.specialties:
        await workspace.onboarding.load_catalogs()
    return _onboarding_state(workspace)


@router.post("/onboarding/check-username")
async def check_username(
    body: UsernameRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await workspace.profile.get()
    await workspace.onboarding.check_username(body.username)
    return _onboarding_state(workspace)


@router.post("/onboarding/validate")
async def validate_step_two(
    body: OnboardingDraft,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await workspace.profile.get()
    message = workspace.onboarding.validate_step_two(body)
    return ApiResponse(ok=True, data={"valid": message is None, "error": message}).model_dump()


@router.post("/onboarding")
async def submit_onboarding(
    body: OnboardingDraft,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await _require_profile(workspace)
    result = await workspace.onboarding.submit(body)
    return _mutation(workspace, result)


@router.post("/onboarding/avatar")
async def onboarding_avatar(
    body: AvatarRequest,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    await _require_profile(workspace)
    result = await workspace.onboarding.change_avatar(body.avatar_id)
    return _mutation(workspace, result)


@router.post("/onboarding/skip")
async def skip_onboarding(workspace: UserWorkspace = Depends(get_workspace)) -> dict:
    """Defers the wizard; refused while the display name must be corrected."""
    await _require_profile(workspace)
    deferred = workspace.onboarding.skip()
    return ApiResponse(
        ok=True,
        data={"deferred": deferred, "redirect_to": "/dashboard" if deferred else None},
    ).model_dump()


@router.get("/redirect")
async def redirect_for_path(
    path: str,
    workspace: UserWorkspace = Depends(get_workspace),
) -> dict:
    """The onboarding gate: where a signed-in user on ``path`` must go."""
    await workspace.profile.get()
    return ApiResponse(
        ok=True,
        data={"redirect_to": workspace.onboarding.redirect_for(path)},
    ).model_dump()
