from datetime import datetime
import json
import logging
import os
from typing import Any, Dict, List, Optional
import copy


import redis

from .config import config


logger = logging.getLogger(__name__)

ATTEMPT_KEY_PREFIX = "checkout_attempt:"


class RedisAttemptManager:
    def __init__(self, host=None, port=None, db=None, client=None):
        if client is not None:
            self.client = client
            return

        host = host or os.getenv("REDIS_HOST", "localhost")
        port = int(port or os.getenv("REDIS_PORT", 6379))
        db = int(db if db is not None else os.getenv("REDIS_DB", 0))
        try:
            self.client = redis.Redis(host=host, port=port, db=db, decode_responses=True)
            self.client.ping()
            logger.info(f"Connected to Redis for checkout attempts. db {db}")
        except redis.exceptions.ConnectionError as e:
            logger.error(f"Could not connect to Redis: {e}. Pending attempts will not be persisted.")
            self.client = None

    @staticmethod
    def key(attempt_id: str) -> str:
        return f"{ATTEMPT_KEY_PREFIX}{attempt_id}"

    def get_attempt(self, attempt_id: str) -> Optional[Dict[str, Any]]:
        if not self.client:
            return None
        data = self.client.get(self.key(attempt_id))
        if data:
            return json.loads(data)
        return None

    def set_attempt(self, attempt_id: str, record: Dict[str, Any], ex: Optional[int] = None) -> bool:
        if not self.client:
            return False
        # datetime values are stored as isoformat strings
        record_copy = copy.deepcopy(record)
        for name in ('created_at', 'updated_at'):
            if isinstance(record_copy.get(name), datetime):
                record_copy[name] = record_copy[name].isoformat()
        self.client.set(self.key(attempt_id), json.dumps(record_copy), ex=ex)
        return True

    def delete_attempt(self, attempt_id: str):
        if not self.client:
            return
        self.client.delete(self.key(attempt_id))

    def exists_attempt(self, attempt_id: str) -> bool:
        if not self.client:
            return False
        return self.client.exists(self.key(attempt_id)) > 0

    def list_attempt_ids(self) -> List[str]:
        if not self.client:
            return []
        ids = []
        for key in self.client.scan_iter(f"{ATTEMPT_KEY_PREFIX}*"):
            if isinstance(key, bytes):
                key = key.decode('utf-8')
            ids.append(key[len(ATTEMPT_KEY_PREFIX):])
        return sorted(ids)


_redis_attempt_manager = None


def get_redis_attempt_manager() -> RedisAttemptManager:
    """Return the global RedisAttemptManager instance, creating it if necessary."""
    global _redis_attempt_manager
    if _redis_attempt_manager is None or not _redis_attempt_manager.client:
        _redis_attempt_manager = RedisAttemptManager(
            host=config.storage.redis_host,
            port=config.storage.redis_port,
            db=config.storage.redis_db
        )
    return _redis_attempt_manager
