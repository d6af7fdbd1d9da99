from __future__ import annotations

import os
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials


security = HTTPBasic(auto_error=False)


def _expected_password() -> Optional[str]:
    pw = os.environ.get("APP_PASSWORD")
    if pw is not None and pw.strip() == "":
        return None
    return pw


def auth_enabled() -> bool:
    return _expected_password() is not None


def default_user_id() -> str:
    return (os.environ.get("APP_USER_DEFAULT") or "local").strip() or "local"


def get_user_from_request(request: Optional[Request]) -> str:
    if request is None:
        return default_user_id()
    return (request.headers.get("X-User-Id") or "").strip() or default_user_id()


def require_user(request: Request, credentials: Optional[HTTPBasicCredentials] = Depends(security)) -> str:
    """
    Resolve the acting user id. Every query downstream is scoped to it.

    With APP_PASSWORD set, HTTP Basic is required and the Basic username is the user id.
    """
    expected = _expected_password()
    if expected is None:
        return get_user_from_request(request)

    if credentials is None or credentials.password != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username or default_user_id()
