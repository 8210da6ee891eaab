import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from bots.controllers.generic.leverage_domain.components import Caller
from config import settings
from services.controller_registry import ControllerRegistry

security = HTTPBasic(auto_error=False)


def get_controller_registry(request: Request) -> ControllerRegistry:
    return request.app.state.controller_registry


def _credentials_match(credentials: HTTPBasicCredentials, username: str, password: str) -> bool:
    user_ok = secrets.compare_digest(credentials.username.encode("utf8"), username.encode("utf8"))
    pass_ok = secrets.compare_digest(credentials.password.encode("utf8"), password.encode("utf8"))
    return user_ok and pass_ok


def get_principal(credentials: Optional[HTTPBasicCredentials] = Depends(security)) -> str:
    if settings.security.debug_mode:
        return credentials.username if credentials else settings.security.username
    if credentials is not None:
        sec = settings.security
        if _credentials_match(credentials, sec.username, sec.password):
            return credentials.username
        if _credentials_match(credentials, sec.keeper_username, sec.keeper_password):
            return credentials.username
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Incorrect username or password",
        headers={"WWW-Authenticate": "Basic"},
    )


def get_caller(
    principal: str = Depends(get_principal),
    x_relayed_for: Optional[str] = Header(default=None),
) -> Caller:
    """A request forwarded on behalf of someone else is a relayed call."""
    return Caller(principal=principal, relayed=bool(x_relayed_for))
