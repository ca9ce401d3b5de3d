from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from statement_converter.api.deps import get_current_user
from statement_converter.core.db import db_session
from statement_converter.core.logging import get_logger, log_event
from statement_converter.core.security import create_access_token
from statement_converter.modules.identity.models import User
from statement_converter.modules.identity.schemas import TokenOut, UserCreate, UserOut
from statement_converter.modules.identity.service import authenticate_user, create_user

router = APIRouter(tags=["identity"])
logger = get_logger(__name__)


@router.post("/auth/register", response_model=UserOut)
def register(payload: UserCreate, session: Session = Depends(db_session)) -> UserOut:
    user = create_user(
        session,
        email=str(payload.email),
        password=payload.password,
        full_name=payload.full_name,
    )
    log_event(logger, "identity.user.registered", registered_user_id=str(user.id))
    return UserOut.model_validate(user, from_attributes=True)


@router.post("/auth/token", response_model=TokenOut)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(db_session),
) -> TokenOut:
    user = authenticate_user(session, email=form_data.username, password=form_data.password)
    token = create_access_token(subject=str(user.id))
    return TokenOut(access_token=token)


@router.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user, from_attributes=True)
