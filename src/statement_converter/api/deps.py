from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statement_converter.core.db import db_session
from statement_converter.core.logging import get_logger, log_event, log_exception, set_user_context
from statement_converter.modules.identity.models import User
from statement_converter.modules.identity.service import resolve_token_user
from statement_converter.modules.usage.service import Identity

bearer_scheme = HTTPBearer(auto_error=False)
logger = get_logger(__name__)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(db_session),
) -> User:
    token = credentials.credentials if credentials else None
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_token_user(session, token=token)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    set_user_context(str(user.id))
    return user


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    cf_ip = (request.headers.get("cf-connecting-ip") or "").strip()
    if cf_ip:
        return cf_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_request_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(db_session),
) -> Identity:
    """Authenticated identity for a valid bearer token, anonymous by address otherwise."""
    token = credentials.credentials if credentials else None
    if token:
        try:
            user = resolve_token_user(session, token=token)
        except SQLAlchemyError:
            log_exception(logger, "identity.lookup.failure")
            user = None
        if user:
            set_user_context(str(user.id))
            return Identity.authenticated(str(user.id))
        log_event(logger, "identity.token.rejected")
    return Identity.anonymous(client_address(request))
