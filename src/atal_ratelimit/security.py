from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer


@dataclass(frozen=True)
class AuthContext:
    credential: str
    scheme: str  # "bearer" | "api_key"
    role: str  # "service" | "admin"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _is_allowed(value: str, allowed: list[str]) -> bool:
    for item in allowed:
        if secrets.compare_digest(value.encode("utf-8"), item.encode("utf-8")):
            return True
    return False


_bearer = HTTPBearer(auto_error=False)
_api_key = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_auth(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = Depends(_bearer),
    api_key: str | None = Depends(_api_key),
) -> AuthContext:
    config = request.app.state.state.config

    if bearer and bearer.scheme.lower() == "bearer":
        token = bearer.credentials.strip()
        if token and _is_allowed(token, config.admin_tokens):
            return AuthContext(credential=token, scheme="bearer", role="admin")
        if token and _is_allowed(token, config.service_tokens):
            return AuthContext(credential=token, scheme="bearer", role="service")

    if api_key:
        api_key = api_key.strip()
        if api_key and _is_allowed(api_key, config.api_keys):
            return AuthContext(credential=api_key, scheme="api_key", role="service")

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "unauthorized"},
    )


async def require_admin(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    if not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden"},
        )
    return auth
