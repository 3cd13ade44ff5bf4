"""
API key management endpoints for key owners.

All routes require a bearer token and only ever touch keys owned by the
caller; a key owned by someone else is reported as not found.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from countries_api_server.auth import (
    generate_api_key,
    generate_expiry_date,
    get_current_user,
)
from countries_api_server.database import get_db
from countries_api_server.db_models import APIKey, APIKeyUsage, User
from countries_api_server.logging_config import get_logger, mask_api_key
from countries_api_server.models import (
    ApiKeyCreateRequest,
    ApiKeyOut,
    UsageEntryOut,
    UsageLogOut,
    UsageSummaryItem,
)

router = APIRouter(prefix="/api/keys", tags=["api-keys"])
logger = get_logger(__name__)


def _serialize(key: APIKey, masked: bool = False) -> dict:
    data = ApiKeyOut.model_validate(key).model_dump(mode="json")
    if masked:
        data["key"] = mask_api_key(data["key"])
    return data


def get_owned_key(key_id: int, user: User, db: Session) -> APIKey:
    """Fetch a key owned by ``user`` or raise 404."""
    key = db.execute(
        select(APIKey).where(APIKey.id == key_id, APIKey.user_id == user.id)
    ).scalar_one_or_none()
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found or not authorized",
        )
    return key


@router.get("")
def list_api_keys(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """List every key of the current user, including the full secret."""
    keys = db.execute(
        select(APIKey).where(APIKey.user_id == user.id).order_by(APIKey.id)
    ).scalars().all()

    logger.debug("api_keys_listed", user_id=user.id, count=len(keys))
    return {"success": True, "keys": [_serialize(key) for key in keys]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_api_key(
    payload: ApiKeyCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Issue a new key.

    The response carries the full secret. Toggle and usage views mask it.
    """
    key = APIKey(
        user_id=user.id,
        key=generate_api_key(),
        name=payload.name,
        expires_at=generate_expiry_date(payload.expiry_days) if payload.expiry_days else None,
        is_active=True,
        usage_count=0,
    )
    db.add(key)
    db.commit()
    db.refresh(key)

    logger.info(
        "api_key_created",
        user_id=user.id,
        api_key_id=key.id,
        expires_at=key.expires_at.isoformat() if key.expires_at else None,
    )
    return {
        "success": True,
        "message": "API key created successfully",
        "key": _serialize(key),
    }


@router.get("/check-status")
def check_status(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Key counts and previews for the current user."""
    keys = db.execute(
        select(APIKey).where(APIKey.user_id == user.id).order_by(APIKey.id)
    ).scalars().all()
    active = [key for key in keys if key.is_active]

    return {
        "success": True,
        "keysCount": len(keys),
        "activeKeysCount": len(active),
        "keys": [
            {
                "id": key.id,
                "name": key.name,
                "isActive": bool(key.is_active),
                "keyPreview": f"{key.key[:8]}...",
            }
            for key in keys
        ],
    }


@router.get("/logs")
def list_usage_logs(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Usage entries across all keys of the current user, newest first."""
    rows = db.execute(
        select(
            APIKeyUsage.id,
            APIKeyUsage.api_key_id,
            APIKeyUsage.endpoint,
            APIKeyUsage.request_timestamp,
            APIKey.name,
            APIKey.key,
        )
        .join(APIKey, APIKeyUsage.api_key_id == APIKey.id)
        .where(APIKey.user_id == user.id)
        .order_by(APIKeyUsage.request_timestamp.desc(), APIKeyUsage.id.desc())
    ).all()

    logs = [
        UsageLogOut(
            usage_id=row[0],
            api_key_id=row[1],
            endpoint=row[2],
            request_timestamp=row[3],
            key_name=row[4],
            key_value=mask_api_key(row[5]),
        ).model_dump(mode="json")
        for row in rows
    ]
    return {"success": True, "logs": logs}


@router.delete("/{key_id}")
def delete_api_key(key_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Delete a key; its usage entries go with it."""
    key = get_owned_key(key_id, user, db)
    db.delete(key)
    db.commit()

    logger.info("api_key_deleted", user_id=user.id, api_key_id=key_id)
    return {"success": True, "message": "API key deleted successfully"}


@router.patch("/{key_id}/toggle")
def toggle_api_key(key_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Activate an inactive key or deactivate an active one."""
    key = get_owned_key(key_id, user, db)
    key.is_active = not key.is_active
    db.commit()

    state = "activated" if key.is_active else "deactivated"
    logger.info("api_key_toggled", user_id=user.id, api_key_id=key_id, state=state)
    return {
        "success": True,
        "message": f"API key {state} successfully",
        "key": _serialize(key, masked=True),
    }


@router.get("/{key_id}/usage")
def get_api_key_usage(key_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Usage entries and per-endpoint counts for one key."""
    key = get_owned_key(key_id, user, db)

    usage = db.execute(
        select(APIKeyUsage)
        .where(APIKeyUsage.api_key_id == key.id)
        .order_by(APIKeyUsage.request_timestamp.desc(), APIKeyUsage.id.desc())
    ).scalars().all()

    summary = db.execute(
        select(APIKeyUsage.endpoint, func.count(APIKeyUsage.id))
        .where(APIKeyUsage.api_key_id == key.id)
        .group_by(APIKeyUsage.endpoint)
        .order_by(APIKeyUsage.endpoint)
    ).all()

    return {
        "success": True,
        "key": _serialize(key, masked=True),
        "usage": [UsageEntryOut.model_validate(entry).model_dump(mode="json") for entry in usage],
        "summary": [
            UsageSummaryItem(endpoint=endpoint, count=count).model_dump()
            for endpoint, count in summary
        ],
        "usage_count": key.usage_count,
        "last_used_at": key.last_used_at.isoformat() if key.last_used_at else None,
    }
