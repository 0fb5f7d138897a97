import hmac

from fastapi import Depends, Header, HTTPException, status

from salonref_api.api.dependencies.services import get_clients
from salonref_api.services.clients import ServiceClients


def _bearer_token(authorization: str) -> str:
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


async def require_admin_key(
    x_admin_key: str = Header("", alias="X-Admin-Key"),
    authorization: str = Header("", alias="Authorization"),
    clients: ServiceClients = Depends(get_clients),
) -> None:
    expected = clients.settings.analytics_admin_key
    if not expected:
        return

    supplied = x_admin_key or _bearer_token(authorization)
    if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
        )
