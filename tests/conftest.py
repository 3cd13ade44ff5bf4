"""Shared test fixtures"""
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from countries_api_server.auth import hash_password, token_for_user, usage_dispatcher
from countries_api_server.database import SessionLocal, engine
from countries_api_server.db_models import APIKey, APIKeyUsage, Base, User
from countries_api_server.gateway import ApiKeyRecord, CredentialStore, UsageLog


class InMemoryCredentialStore(CredentialStore):
    """Credential store held in a dict, with a locked increment."""

    def __init__(self, records: Optional[List[ApiKeyRecord]] = None):
        self._records: Dict[int, ApiKeyRecord] = {r.id: r for r in records or []}
        self._lock = threading.Lock()
        self.lookups = 0
        self.touches = 0

    def add(self, record: ApiKeyRecord) -> ApiKeyRecord:
        self._records[record.id] = record
        return record

    def get(self, api_key_id: int) -> ApiKeyRecord:
        return self._records[api_key_id]

    def find_by_secret(self, secret: str) -> Optional[ApiKeyRecord]:
        self.lookups += 1
        matches = [r for r in self._records.values() if r.secret == secret]
        return matches[0] if matches else None

    def touch_usage(self, api_key_id: int, used_at: datetime) -> None:
        with self._lock:
            self.touches += 1
            record = self._records[api_key_id]
            self._records[api_key_id] = replace(
                record, usage_count=record.usage_count + 1, last_used_at=used_at
            )


class InMemoryUsageLog(UsageLog):
    def __init__(self):
        self.entries: List[tuple] = []
        self._lock = threading.Lock()

    def append(self, api_key_id: int, endpoint: str, timestamp: datetime) -> None:
        with self._lock:
            self.entries.append((api_key_id, endpoint, timestamp))


def make_record(
    id: int = 1,
    secret: str = "K1",
    active: bool = True,
    expires_at: Optional[datetime] = None,
    usage_count: int = 0,
) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=id,
        owner_id=1,
        secret=secret,
        display_name=f"key-{id}",
        created_at=datetime(2024, 1, 1),
        expires_at=expires_at,
        active=active,
        usage_count=usage_count,
    )


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def usage_log() -> InMemoryUsageLog:
    return InMemoryUsageLog()


@pytest.fixture
def database():
    """Fresh schema in the test database; yields the session factory."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield SessionLocal
    usage_dispatcher.drain(timeout=10)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def create_user(database) -> Callable[..., User]:
    """Insert a user directly and return it (detached, attributes loaded)."""
    def _create(username: str = None, email: str = None, password: str = "secret-pass") -> User:
        username = username or f"user_{uuid.uuid4().hex[:8]}"
        with database() as session:
            user = User(
                username=username,
                email=email or f"{username}@example.com",
                password_hash=hash_password(password),
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user
    return _create


@pytest.fixture
def create_api_key(database) -> Callable[..., APIKey]:
    """Insert an API key row for a user."""
    def _create(
        user: User,
        key: str = None,
        name: str = "Test Key",
        is_active: bool = True,
        expires_at: Optional[datetime] = None,
        usage_count: int = 0,
    ) -> APIKey:
        with database() as session:
            api_key = APIKey(
                user_id=user.id,
                key=key or str(uuid.uuid4()),
                name=name,
                is_active=is_active,
                expires_at=expires_at,
                usage_count=usage_count,
            )
            session.add(api_key)
            session.commit()
            session.refresh(api_key)
            session.expunge(api_key)
            return api_key
    return _create


@pytest.fixture
def fetch_key(database) -> Callable[[int], Optional[APIKey]]:
    def _fetch(api_key_id: int) -> Optional[APIKey]:
        with database() as session:
            api_key = session.get(APIKey, api_key_id)
            if api_key is not None:
                session.expunge(api_key)
            return api_key
    return _fetch


@pytest.fixture
def count_usage(database) -> Callable[[int], int]:
    def _count(api_key_id: int) -> int:
        with database() as session:
            return session.query(APIKeyUsage).filter(APIKeyUsage.api_key_id == api_key_id).count()
    return _count


@pytest.fixture
def client(database) -> TestClient:
    from countries_api_server.main_api import app
    return TestClient(app)


@pytest.fixture
def auth_headers(create_user) -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token_for_user(user)}"}
    return _headers
