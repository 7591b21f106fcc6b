"""Request-scoped access to the services built at startup."""

from __future__ import annotations

import hmac
from typing import Annotated, Final, cast

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader

from milesbridge.app import Services
from milesbridge.domain.errors import ForbiddenError, UnauthorizedError

ADMIN_TOKEN_HEADER: Final[str] = "X-Admin-Token"

_admin_token_header = APIKeyHeader(name=ADMIN_TOKEN_HEADER, auto_error=False)


def get_services(request: Request) -> Services:
    return cast("Services", request.app.state.services)


ServicesDep = Annotated[Services, Depends(get_services)]


def require_admin(
    request: Request, token: Annotated[str | None, Security(_admin_token_header)]
) -> None:
    """Gate operator endpoints on ``ADMIN_API_TOKEN``.

    Without a configured token the operator endpoints are closed to everyone.
    """

    expected: str | None = request.app.state.admin_token
    if expected is None:
        raise ForbiddenError("The admin API is disabled; set ADMIN_API_TOKEN to enable it")
    if not token:
        raise UnauthorizedError(f"Missing {ADMIN_TOKEN_HEADER} header")
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise ForbiddenError("Invalid admin token")
