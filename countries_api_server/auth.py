"""
Authentication module.

Two credentials are accepted:
- JWT bearer tokens for account owners (login, key management)
- API keys in the X-API-Key header for machine clients (country data),
  checked by the API key gateway
"""
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from countries_api_server.config import settings
from countries_api_server.database import SessionLocal, get_db
from countries_api_server.db_models import User
from countries_api_server.gateway import (
    APIKeyGateway,
    ApiKeyRecord,
    BackgroundDispatcher,
    DecisionKind,
    GatewayError,
    utcnow,
)
from countries_api_server.logging_config import log_exception
from countries_api_server.stores import SqlCredentialStore, SqlUsageLog

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# auto_error=False so a missing header reaches the gateway as MISSING_CREDENTIAL
api_key_header = APIKeyHeader(name=settings.api_key_header, auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)

REJECTION_MESSAGES = {
    DecisionKind.MISSING_CREDENTIAL: "API key is required",
    DecisionKind.UNKNOWN_CREDENTIAL: "Invalid API key - not found",
    DecisionKind.INACTIVE_CREDENTIAL: "API key is inactive - please activate it first",
    DecisionKind.EXPIRED_CREDENTIAL: "API key is expired",
}
UNIFORM_REJECTION_MESSAGE = "Invalid or missing API key"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims; ``sub`` is coerced to a string
        expires_delta: Lifetime (defaults to JWT_EXPIRE_MINUTES)

    Returns:
        Encoded JWT
    """
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode.update({
        "exp": expire,
        "sub": str(to_encode.get("sub", "")),
    })
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token, returning None if it is invalid or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def token_for_user(user: User) -> str:
    return create_access_token({"sub": user.id, "username": user.username, "email": user.email})


def generate_api_key() -> str:
    """Generate a new API key secret."""
    return str(uuid.uuid4())


def generate_expiry_date(days: int = 30, now: Optional[datetime] = None) -> datetime:
    """Expiry timestamp ``days`` from now (naive UTC)."""
    return (now or utcnow()) + timedelta(days=days)


# FastAPI dependencies

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency to require a valid bearer token.

    Usage:
        @router.get("/endpoint")
        def endpoint(user: User = Depends(get_current_user)):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    invalid_token = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise invalid_token

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise invalid_token

    user = db.get(User, user_id)
    if user is None:
        raise invalid_token
    return user


_gateway = APIKeyGateway(SqlCredentialStore(SessionLocal), SqlUsageLog(SessionLocal))
usage_dispatcher = BackgroundDispatcher()


def get_gateway() -> APIKeyGateway:
    return _gateway


def rejection_detail(kind: DecisionKind) -> str:
    if settings.uniform_auth_errors:
        return UNIFORM_REJECTION_MESSAGE
    return REJECTION_MESSAGES[kind]


def require_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
    gateway: APIKeyGateway = Depends(get_gateway),
) -> ApiKeyRecord:
    """
    FastAPI dependency to require a valid API key.

    Usage bookkeeping is handed to a thread pool, so the handler never waits
    for it and it still runs when the handler fails.

    Raises:
        HTTPException: 401 for rejected keys, 500 if the key store failed
    """
    try:
        decision = gateway.authorize(
            api_key,
            request.url.path,
            dispatch=usage_dispatcher,
        )
    except GatewayError as e:
        log_exception(e, context={"path": request.url.path, "stage": "api_key_lookup"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if not decision.authorized:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=rejection_detail(decision.kind),
        )

    return decision.record
