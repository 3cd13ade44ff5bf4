"""
SQLAlchemy database models for persistent storage.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import declarative_base, relationship

from countries_api_server.gateway import ApiKeyRecord, utcnow

Base = declarative_base()


class User(Base):
    """Registered account that owns API keys."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    api_keys = relationship(
        "APIKey",
        back_populates="owner",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class APIKey(Base):
    """API key management table."""
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    key = Column(String(64), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)

    owner = relationship("User", back_populates="api_keys")
    usage = relationship(
        "APIKeyUsage",
        back_populates="api_key",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_api_keys_user", "user_id"),
    )

    def to_record(self) -> ApiKeyRecord:
        return ApiKeyRecord(
            id=self.id,
            owner_id=self.user_id,
            secret=self.key,
            display_name=self.name,
            created_at=self.created_at,
            expires_at=self.expires_at,
            active=bool(self.is_active),
            last_used_at=self.last_used_at,
            usage_count=self.usage_count or 0,
        )


class APIKeyUsage(Base):
    """Append-only log of requests authorized by an API key."""
    __tablename__ = "api_key_usage"

    id = Column(Integer, primary_key=True, index=True)
    api_key_id = Column(Integer, ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False)
    endpoint = Column(String, nullable=False)
    request_timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    api_key = relationship("APIKey", back_populates="usage")

    __table_args__ = (
        Index("idx_api_key_usage_lookup", "api_key_id", "request_timestamp"),
    )
