"""Account deletion route.

The bearer token is checked against the auth collaborator first; only a
live session may delete its own account. Deletion needs the service-role
credential, so a deployment without AUTH_SERVICE_ROLE_KEY answers 501.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from dailymir.api.deps import error_detail, get_auth_client, get_bearer_token
from dailymir.errors import ApiRequestError, ConfigError
from dailymir.hooks.interfaces import AuthClient
from dailymir.schemas import ApiResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.delete("")
async def delete_account(
    token: str = Depends(get_bearer_token),
    auth: AuthClient = Depends(get_auth_client),
) -> dict:
    """Deletes the caller's account.

    Raises:
        HTTPException: 401 for an invalid session, 501 when the
            service-role key is missing, 500 when the auth server refuses.
    """
    session = await auth.get_session(token)
    if session is None:
        raise HTTPException(status_code=401, detail=error_detail("UNAUTHORIZED", "Sesion no valida."))

    try:
        await auth.admin_delete_user(session.user.id)
    except ConfigError as exc:
        raise HTTPException(status_code=501, detail=error_detail("NOT_IMPLEMENTED", str(exc))) from exc
    except ApiRequestError as exc:
        logger.error("Account deletion failed for %s: %s", session.user.id, exc.message)
        raise HTTPException(status_code=500, detail=error_detail("DELETE_FAILED", exc.message)) from exc

    logger.info("Account deleted: %s", session.user.id)
    return ApiResponse(ok=True, data={"deleted": True}).model_dump()
