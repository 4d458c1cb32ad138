"""Shared dependencies for authentication and authorization."""

import os
import secrets
from typing import Annotated, Optional
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

import schemas
import auth
from database import get_db
from utils.validation import get_user_by_email


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Shared secret used by cron jobs to trigger notification automation
AUTOMATION_SECRET = os.getenv("AUTOMATION_SECRET", "development-secret")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Session = Depends(get_db)
):
    """Get the current authenticated user from the JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    email = auth.decode_access_token(token)
    if email is None:
        raise credentials_exception
    token_data = schemas.TokenData(email=email)
    user = get_user_by_email(db, email=token_data.email)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


async def verify_automation_secret(authorization: Annotated[Optional[str], Header()] = None):
    """Only allow callers presenting the automation bearer secret."""
    expected = f"Bearer {AUTOMATION_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return True
