"""
API key gateway.

Decides whether a request carrying an API key may proceed and records the
use of keys that pass. The gateway is transport-agnostic: it returns an
AuthDecision and leaves the mapping to HTTP status codes to the caller.

Decision order:
1. Missing key        -> MISSING_CREDENTIAL
2. No matching record -> UNKNOWN_CREDENTIAL
3. Record inactive    -> INACTIVE_CREDENTIAL
4. Expiry in the past -> EXPIRED_CREDENTIAL
5. Otherwise          -> AUTHORIZED (usage bookkeeping dispatched)

Store faults during the lookup raise GatewayError. Faults during bookkeeping
are logged and never change the decision.
"""
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Set

from countries_api_server.logging_config import (
    get_logger,
    log_api_key_rejected,
    log_bookkeeping_failure,
)

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DecisionKind(str, Enum):
    """Outcome of an authorization attempt."""
    AUTHORIZED = "authorized"
    MISSING_CREDENTIAL = "missing_credential"
    UNKNOWN_CREDENTIAL = "unknown_credential"
    INACTIVE_CREDENTIAL = "inactive_credential"
    EXPIRED_CREDENTIAL = "expired_credential"


class KeyState(str, Enum):
    """Derived state of a stored key at check time."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class GatewayError(Exception):
    """Store-layer fault; the request cannot be decided."""
    pass


class CredentialLookupError(GatewayError):
    """The credential store could not be queried."""
    pass


class AmbiguousCredentialError(GatewayError):
    """More than one stored record matched a single secret."""

    def __init__(self, matches: int):
        super().__init__(f"{matches} API key records share the same secret")
        self.matches = matches


@dataclass(frozen=True)
class ApiKeyRecord:
    """Snapshot of a stored API key, read fresh for every decision."""
    id: int
    owner_id: int
    secret: str
    display_name: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    active: bool = True
    last_used_at: Optional[datetime] = None
    usage_count: int = 0


@dataclass(frozen=True)
class AuthDecision:
    """Typed result of ``APIKeyGateway.authorize``."""
    kind: DecisionKind
    record: Optional[ApiKeyRecord] = None

    @property
    def authorized(self) -> bool:
        return self.kind is DecisionKind.AUTHORIZED

    @classmethod
    def reject(cls, kind: DecisionKind, record: Optional[ApiKeyRecord] = None) -> "AuthDecision":
        return cls(kind=kind, record=record)


class CredentialStore(ABC):
    @abstractmethod
    def find_by_secret(self, secret: str) -> Optional[ApiKeyRecord]: ...

    @abstractmethod
    def touch_usage(self, api_key_id: int, used_at: datetime) -> None:
        """Atomically add one to the usage counter and set last-used time."""


class UsageLog(ABC):
    @abstractmethod
    def append(self, api_key_id: int, endpoint: str, timestamp: datetime) -> None: ...


def key_state(active: bool, expires_at: Optional[datetime], now: datetime) -> KeyState:
    """
    Derive the state of a key.

    Inactive wins over expired. A key whose expiry equals ``now`` is still
    active; only strictly past expiries count.
    """
    if not active:
        return KeyState.INACTIVE
    if expires_at is not None and as_naive_utc(expires_at) < as_naive_utc(now):
        return KeyState.EXPIRED
    return KeyState.ACTIVE


Dispatcher = Callable[..., None]


def run_inline(func: Callable[..., None], *args) -> None:
    """Default dispatcher: run bookkeeping before returning."""
    func(*args)


class BackgroundDispatcher:
    """
    Fire-and-forget dispatcher backed by a thread pool.

    Bookkeeping submitted here runs whatever happens to the request after
    authorization, including handlers that fail.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="usage-bookkeeping",
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def __call__(self, func: Callable[..., None], *args) -> None:
        future = self._executor.submit(func, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted work; returns False if some is still running."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)


class APIKeyGateway:
    """Authorize requests by API key and record successful uses."""

    def __init__(
        self,
        credential_store: CredentialStore,
        usage_log: UsageLog,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            credential_store: Lookup and usage counter for issued keys
            usage_log: Append-only log of authorized requests
            clock: Returns the current naive UTC time
        """
        self.credential_store = credential_store
        self.usage_log = usage_log
        self.clock = clock

    def authorize(
        self,
        candidate_key: Optional[str],
        endpoint: str,
        dispatch: Dispatcher = run_inline,
    ) -> AuthDecision:
        """
        Decide whether a request carrying ``candidate_key`` may proceed.

        Args:
            candidate_key: Raw key from the request, may be None or empty
            endpoint: Request path, recorded in the usage log
            dispatch: Schedules the bookkeeping callable, e.g. a
                BackgroundDispatcher. Defaults to running it inline.

        Returns:
            AuthDecision with the matched record when one was found

        Raises:
            GatewayError: If the store lookup fails or is inconsistent
        """
        if not candidate_key:
            return self._reject(DecisionKind.MISSING_CREDENTIAL, candidate_key, endpoint)

        record = self._lookup(candidate_key)
        if record is None:
            return self._reject(DecisionKind.UNKNOWN_CREDENTIAL, candidate_key, endpoint)

        now = self.clock()
        state = key_state(record.active, record.expires_at, now)
        if state is KeyState.INACTIVE:
            return self._reject(DecisionKind.INACTIVE_CREDENTIAL, candidate_key, endpoint, record)
        if state is KeyState.EXPIRED:
            return self._reject(DecisionKind.EXPIRED_CREDENTIAL, candidate_key, endpoint, record)

        try:
            dispatch(self.record_usage, record.id, endpoint, now)
        except Exception as e:
            log_bookkeeping_failure("dispatch", record.id, endpoint, e)

        logger.debug("api_key_authorized", api_key_id=record.id, endpoint=endpoint)
        return AuthDecision(kind=DecisionKind.AUTHORIZED, record=record)

    def record_usage(self, api_key_id: int, endpoint: str, used_at: datetime) -> None:
        """Bump the usage counter and append a log entry, each best-effort."""
        try:
            self.credential_store.touch_usage(api_key_id, used_at)
        except Exception as e:
            log_bookkeeping_failure("touch_usage", api_key_id, endpoint, e)

        try:
            self.usage_log.append(api_key_id, endpoint, used_at)
        except Exception as e:
            log_bookkeeping_failure("append_usage", api_key_id, endpoint, e)

    def _lookup(self, candidate_key: str) -> Optional[ApiKeyRecord]:
        try:
            return self.credential_store.find_by_secret(candidate_key)
        except GatewayError:
            raise
        except Exception as e:
            raise CredentialLookupError(f"API key lookup failed: {e}") from e

    def _reject(
        self,
        kind: DecisionKind,
        candidate_key: Optional[str],
        endpoint: str,
        record: Optional[ApiKeyRecord] = None,
    ) -> AuthDecision:
        log_api_key_rejected(
            api_key=candidate_key or "",
            reason=kind.value,
            endpoint=endpoint,
            api_key_id=record.id if record else None,
        )
        return AuthDecision.reject(kind, record)
