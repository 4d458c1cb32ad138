"""Authentication router: login, register, refresh token, logout, user lookup."""

from typing import Annotated, Optional
from datetime import timedelta, datetime
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

import models
import schemas
import auth
from database import get_db
from dependencies import get_current_user
from utils.audit import AuditLogger, Actions, EntityTypes, audit_user_login
from utils.rate_limiter import auth_rate_limiter
from utils.validation import get_user_by_email


router = APIRouter(tags=["auth"])


def issue_tokens(db: Session, user: models.User) -> dict:
    """Create an access token and a stored (hashed) refresh token for a user."""
    access_token_expires = timedelta(minutes=auth.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = auth.create_access_token(
        data={"sub": user.email}, expires_delta=access_token_expires
    )

    refresh_token = auth.create_refresh_token()
    db_refresh_token = models.RefreshToken(
        user_id=user.id,
        token_hash=auth.hash_token(refresh_token),
        expires_at=auth.get_refresh_token_expiry()
    )
    db.add(db_refresh_token)
    db.commit()

    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer"
    }


@router.post("/register", response_model=schemas.Token, dependencies=[Depends(auth_rate_limiter)])
def register_user(
    user: schemas.UserCreate,
    request: Request,
    db: Session = Depends(get_db)
):
    db_user = get_user_by_email(db, email=user.email)
    if db_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    hashed_password = auth.get_password_hash(user.password)
    db_user = models.User(email=user.email, hashed_password=hashed_password, full_name=user.full_name)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    tokens = issue_tokens(db, db_user)

    AuditLogger.log_with_request(
        db, request,
        user_id=db_user.id,
        action=Actions.USER_SIGNUP,
        entity_type=EntityTypes.USER,
        entity_id=db_user.id,
    )
    return tokens


@router.post("/token", response_model=schemas.Token, dependencies=[Depends(auth_rate_limiter)])
def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    request: Request,
    db: Session = Depends(get_db)
):
    user = get_user_by_email(db, form_data.username)
    if not user or not auth.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")

    tokens = issue_tokens(db, user)
    audit_user_login(db, user.id, request)
    return tokens


@router.post("/auth/refresh", response_model=schemas.Token)
def refresh_access_token(body: schemas.RefreshTokenRequest, db: Session = Depends(get_db)):
    """Exchange a valid refresh token for a new access token"""
    token_hash = auth.hash_token(body.refresh_token)

    db_token = db.query(models.RefreshToken).filter(
        models.RefreshToken.token_hash == token_hash,
        models.RefreshToken.revoked == False,
        models.RefreshToken.expires_at > datetime.utcnow()
    ).first()

    if not db_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )

    user = db.query(models.User).filter(models.User.id == db_token.user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    access_token_expires = timedelta(minutes=auth.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = auth.create_access_token(
        data={"sub": user.email}, expires_delta=access_token_expires
    )

    return {
        "access_token": access_token,
        "token_type": "bearer"
    }


@router.post("/auth/logout", response_model=schemas.Message)
def logout(body: schemas.RefreshTokenRequest, request: Request, db: Session = Depends(get_db)):
    """Revoke a refresh token (logout)"""
    token_hash = auth.hash_token(body.refresh_token)

    db_token = db.query(models.RefreshToken).filter(
        models.RefreshToken.token_hash == token_hash
    ).first()

    if db_token:
        db_token.revoked = True
        db.commit()
        AuditLogger.log_with_request(
            db, request,
            user_id=db_token.user_id,
            action=Actions.USER_LOGOUT,
            entity_type=EntityTypes.USER,
            entity_id=db_token.user_id,
        )

    return {"message": "Logged out successfully"}


@router.get("/users/me", response_model=schemas.User)
async def read_users_me(current_user: Annotated[models.User, Depends(get_current_user)]):
    return current_user


@router.get("/users/search", response_model=list[schemas.UserSearchResult])
def search_users(
    current_user: Annotated[models.User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    query: Optional[str] = None
):
    """Case-insensitive search on full name, used to pick members and expense participants."""
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="A search query is required.")

    return db.query(models.User).filter(
        models.User.full_name.ilike(f"%{query.strip()}%")
    ).order_by(models.User.full_name, models.User.id).all()
