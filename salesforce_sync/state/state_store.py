"""
同步状态存储

保存删除检测时间戳、推送/拉取最近运行时间等小量状态。
配置了 Redis 时存入 Redis，否则保存在进程内存中。
"""
import json
import threading
from typing import Any, Dict, Optional

import redis
from loguru import logger


class StateStore:
    """键值状态存储"""

    PREFIX = "salesforce_sync:state:"

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client
        self.use_redis = redis_client is not None

        # 内存状态（当Redis不可用时使用）
        self.memory_state: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    def get(self, key: str, default: Any = None) -> Any:
        if self.use_redis:
            raw = self.redis.get(self._key(key))
        else:
            with self._lock:
                raw = self.memory_state.get(self._key(key))

        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value)
        if self.use_redis:
            self.redis.set(self._key(key), raw)
        else:
            with self._lock:
                self.memory_state[self._key(key)] = raw

    def delete(self, key: str) -> None:
        if self.use_redis:
            self.redis.delete(self._key(key))
        else:
            with self._lock:
                self.memory_state.pop(self._key(key), None)
        logger.debug(f"Deleted state {key}")

    # 常用状态键

    @staticmethod
    def delete_timestamp_key(object_type: str) -> str:
        return f"pull_info:{object_type}:last_delete_timestamp"

    @staticmethod
    def pull_timestamp_key(mapping_id: str) -> str:
        return f"pull_info:{mapping_id}:last_pull_timestamp"

    @staticmethod
    def pull_attempt_key(mapping_id: str) -> str:
        return f"pull_info:{mapping_id}:last_attempt"

    @staticmethod
    def pull_retry_key() -> str:
        return "pull_info:retry_items"

    @staticmethod
    def push_attempt_key(mapping_id: str) -> str:
        return f"push_info:{mapping_id}:last_attempt"
