from fastapi import Header, HTTPException, Request

from services.organization.OrganizationService import MEMBERS_TABLE
from shared.clients.backend.models.Query import TableQuery
from shared.models.errors import AuthorizationError
from shared.models.session import AppSession


async def get_session(
    request: Request,
    authorization: str = Header(...),
    x_org_id: str = Header(...),
) -> AppSession:
    """Resolve the caller's bearer token and verify membership in the requested organization.

    Args:
        request (Request): FastAPI request (provides app.state.backend_client).
        authorization (str): ``Bearer <access token>`` issued by the backend's auth service.
        x_org_id (str): Organization the request acts on.

    Returns:
        AppSession: The user, organization, role and token for the services.

    Raises:
        HTTPException: 401 for a missing or invalid token, 403 when the user is not a member.
    """
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    backend = request.app.state.backend_client
    try:
        user = await backend.do_fetch_user(token)
    except AuthorizationError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    membership = await backend.do_select_single(
        TableQuery(table=MEMBERS_TABLE, select="role").eq("org_id", x_org_id).eq("user_id", user["id"]),
        access_token=token,
    )
    if membership is None:
        request.app.state.logging.warning("User %s is not a member of org %s", user["id"], x_org_id)
        raise HTTPException(status_code=403, detail="Not a member of this organization")

    metadata = user.get("user_metadata") or {}
    return AppSession(
        user_id=user["id"],
        org_id=x_org_id,
        access_token=token,
        role=membership.get("role"),
        email=user.get("email"),
        display_name=metadata.get("full_name"),
    )
