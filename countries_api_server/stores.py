"""
SQLAlchemy implementations of the gateway's credential store and usage log.

Every call opens its own short-lived session and runs a single statement,
so the stores can be used from background tasks after the request session
has closed.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import sessionmaker

from countries_api_server.database import session_scope
from countries_api_server.db_models import APIKey, APIKeyUsage
from countries_api_server.gateway import (
    AmbiguousCredentialError,
    ApiKeyRecord,
    CredentialStore,
    UsageLog,
)


class SqlCredentialStore(CredentialStore):
    """Issued API keys stored in the ``api_keys`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_by_secret(self, secret: str) -> Optional[ApiKeyRecord]:
        with session_scope(self.session_factory) as session:
            # Limit 2 is enough to detect a duplicated secret
            rows = session.execute(
                select(APIKey).where(APIKey.key == secret).limit(2)
            ).scalars().all()

            if len(rows) > 1:
                raise AmbiguousCredentialError(len(rows))
            if not rows:
                return None
            return rows[0].to_record()

    def touch_usage(self, api_key_id: int, used_at: datetime) -> None:
        with session_scope(self.session_factory) as session:
            session.execute(
                update(APIKey)
                .where(APIKey.id == api_key_id)
                .values(usage_count=APIKey.usage_count + 1, last_used_at=used_at)
            )


class SqlUsageLog(UsageLog):
    """Usage entries stored in the ``api_key_usage`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def append(self, api_key_id: int, endpoint: str, timestamp: datetime) -> None:
        with session_scope(self.session_factory) as session:
            session.execute(
                insert(APIKeyUsage).values(
                    api_key_id=api_key_id,
                    endpoint=endpoint,
                    request_timestamp=timestamp,
                )
            )
