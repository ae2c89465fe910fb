"""Durable storage of in-flight checkout attempts

A record is written before the gateway is engaged so that a payment whose
order never reached the backend can be reconciled later, even after the
process exits or the user navigates away.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any

import redis

from ..config import config
from ..redis_service import RedisAttemptManager, get_redis_attempt_manager
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AttemptStatus:
    """Lifecycle of a retained attempt record"""
    IN_FLIGHT = "in_flight"
    ABANDONED = "abandoned"
    NEEDS_RECONCILIATION = "needs_reconciliation"


@dataclass
class PendingAttempt:
    """One retained checkout attempt"""
    attempt_id: str
    amount: float
    method: str
    idempotency_key: str
    status: str = AttemptStatus.IN_FLIGHT
    order_payload: Dict[str, Any] = field(default_factory=dict)
    payment: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attempt_id': self.attempt_id,
            'status': self.status,
            'method': self.method,
            'amount': self.amount,
            'idempotency_key': self.idempotency_key,
            'order_payload': self.order_payload,
            'payment': self.payment,
            'error': self.error,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PendingAttempt':
        created_at = data.get('created_at')
        updated_at = data.get('updated_at')
        return cls(
            attempt_id=data['attempt_id'],
            amount=float(data['amount']),
            method=data['method'],
            idempotency_key=data.get('idempotency_key') or data['attempt_id'],
            status=data.get('status', AttemptStatus.IN_FLIGHT),
            order_payload=data.get('order_payload') or {},
            payment=data.get('payment'),
            error=data.get('error'),
            created_at=datetime.fromisoformat(created_at) if isinstance(created_at, str) else (created_at or datetime.utcnow()),
            updated_at=datetime.fromisoformat(updated_at) if isinstance(updated_at, str) else (updated_at or datetime.utcnow())
        )

    def summary(self) -> Dict[str, Any]:
        """Short description for listings"""
        payment = self.payment or {}
        return {
            'attempt_id': self.attempt_id,
            'status': self.status,
            'method': self.method,
            'amount': self.amount,
            'payment_status': payment.get('status'),
            'payment_id': payment.get('gateway_payment_id'),
            'updated_at': self.updated_at.isoformat()
        }


class PendingAttemptStore(ABC):
    """Storage backend for pending attempts"""

    @abstractmethod
    def save(self, attempt: PendingAttempt) -> bool:
        """
        Write or replace a record

        Returns:
            True if successful
        """

    @abstractmethod
    def get(self, attempt_id: str) -> Optional[PendingAttempt]:
        """Load a record or None"""

    @abstractmethod
    def delete(self, attempt_id: str) -> bool:
        """Remove a record"""

    @abstractmethod
    def list(self) -> List[PendingAttempt]:
        """All retained records, oldest first"""

    def update_status(self, attempt_id: str, status: str, **changes: Any) -> Optional[PendingAttempt]:
        """Change the status of an existing record, plus any other fields"""
        attempt = self.get(attempt_id)
        if attempt is None:
            return None
        attempt.status = status
        for name, value in changes.items():
            setattr(attempt, name, value)
        attempt.touch()
        if not self.save(attempt):
            return None
        return attempt


class MemoryAttemptStore(PendingAttemptStore):
    """Process-local store, mostly for tests"""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    def save(self, attempt: PendingAttempt) -> bool:
        self._records[attempt.attempt_id] = attempt.to_dict()
        return True

    def get(self, attempt_id: str) -> Optional[PendingAttempt]:
        data = self._records.get(attempt_id)
        return PendingAttempt.from_dict(data) if data else None

    def delete(self, attempt_id: str) -> bool:
        return self._records.pop(attempt_id, None) is not None

    def list(self) -> List[PendingAttempt]:
        attempts = [PendingAttempt.from_dict(data) for data in self._records.values()]
        return sorted(attempts, key=lambda a: a.created_at)


class FileAttemptStore(PendingAttemptStore):
    """One JSON file per attempt under a directory"""

    def __init__(self, storage_dir: Optional[str] = None):
        """
        Args:
            storage_dir: Directory for attempt files (defaults to ATTEMPT_STORE_PATH)
        """
        self.storage_dir = storage_dir or config.storage.store_path
        os.makedirs(self.storage_dir, exist_ok=True)
        logger.info(f"FileAttemptStore initialized at: {self.storage_dir}")

    def _path(self, attempt_id: str) -> str:
        safe_id = "".join(c for c in attempt_id if c.isalnum() or c in ('_', '-'))
        return os.path.join(self.storage_dir, f"{safe_id}.json")

    def save(self, attempt: PendingAttempt) -> bool:
        path = self._path(attempt.attempt_id)
        try:
            # Atomic replace
            fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, suffix='.tmp')
            with os.fdopen(fd, 'w') as f:
                json.dump(attempt.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
            logger.debug(f"[AttemptStore] Saved {attempt.attempt_id} ({attempt.status})")
            return True
        except OSError as e:
            logger.error(f"Failed to save attempt {attempt.attempt_id}: {e}")
            return False

    def get(self, attempt_id: str) -> Optional[PendingAttempt]:
        path = self._path(attempt_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r') as f:
                return PendingAttempt.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load attempt {attempt_id}: {e}")
            return None

    def delete(self, attempt_id: str) -> bool:
        path = self._path(attempt_id)
        try:
            os.remove(path)
            logger.debug(f"[AttemptStore] Deleted {attempt_id}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete attempt {attempt_id}: {e}")
            return False

    def list(self) -> List[PendingAttempt]:
        attempts = []
        for filename in os.listdir(self.storage_dir):
            if filename.endswith('.json'):
                attempt = self.get(filename[:-5])
                if attempt:
                    attempts.append(attempt)
        return sorted(attempts, key=lambda a: a.created_at)


class RedisAttemptStore(PendingAttemptStore):
    """Redis-backed store with a TTL per record"""

    def __init__(self, manager: Optional[RedisAttemptManager] = None, ttl_hours: Optional[int] = None):
        self.manager = manager or get_redis_attempt_manager()
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else config.storage.ttl_hours)

    def save(self, attempt: PendingAttempt) -> bool:
        try:
            saved = self.manager.set_attempt(
                attempt.attempt_id, attempt.to_dict(), ex=int(self.ttl.total_seconds())
            )
            if not saved:
                logger.error(f"Redis unavailable, attempt {attempt.attempt_id} was not persisted")
            return saved
        except Exception as e:
            logger.error(f"Failed to save attempt {attempt.attempt_id} to Redis: {e}")
            return False

    def get(self, attempt_id: str) -> Optional[PendingAttempt]:
        try:
            data = self.manager.get_attempt(attempt_id)
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to load attempt {attempt_id} from Redis: {e}")
            return None
        return PendingAttempt.from_dict(data) if data else None

    def delete(self, attempt_id: str) -> bool:
        try:
            if not self.manager.exists_attempt(attempt_id):
                return False
            self.manager.delete_attempt(attempt_id)
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to delete attempt {attempt_id} from Redis: {e}")
            return False
        return True

    def list(self) -> List[PendingAttempt]:
        try:
            attempt_ids = self.manager.list_attempt_ids()
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to list attempts in Redis: {e}")
            return []
        attempts = [self.get(attempt_id) for attempt_id in attempt_ids]
        return sorted([a for a in attempts if a], key=lambda a: a.created_at)


_attempt_store: Optional[PendingAttemptStore] = None


def get_attempt_store() -> PendingAttemptStore:
    """Get the configured PendingAttemptStore"""
    global _attempt_store
    if _attempt_store is None:
        store_type = config.storage.store_type
        if store_type == "redis":
            _attempt_store = RedisAttemptStore()
        elif store_type == "memory":
            _attempt_store = MemoryAttemptStore()
        else:
            _attempt_store = FileAttemptStore()
    return _attempt_store
