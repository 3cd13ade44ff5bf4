"""
Account endpoints: registration, login and profile.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from countries_api_server.auth import (
    get_current_user,
    hash_password,
    token_for_user,
    verify_password,
)
from countries_api_server.database import get_db
from countries_api_server.db_models import User
from countries_api_server.logging_config import get_logger
from countries_api_server.models import LoginRequest, RegisterRequest, TokenResponse, UserProfile

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = get_logger(__name__)


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    """Create an account and return a token for it."""
    existing = db.execute(
        select(User.id).where(
            or_(User.username == payload.username, User.email == payload.email)
        )
    ).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email already exists",
        )

    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email already exists",
        )

    logger.info("user_registered", user_id=user.id, username=user.username)
    return TokenResponse(message="User registered successfully", token=token_for_user(user))


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = db.execute(
        select(User).where(User.username == payload.username)
    ).scalar_one_or_none()

    # Same message for unknown users and wrong passwords
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    logger.info("user_logged_in", user_id=user.id)
    return TokenResponse(message="Login successful", token=token_for_user(user))


@router.get("/profile")
def profile(user: User = Depends(get_current_user)):
    return {
        "success": True,
        "user": UserProfile.model_validate(user).model_dump(mode="json"),
    }
