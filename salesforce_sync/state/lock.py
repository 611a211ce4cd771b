"""同步锁，防止多个运行实例同时处理同一对象类型"""

import threading
import time
from typing import Dict, Optional

import redis


class SyncLock:
    """基于 Redis SET NX EX 的锁，未配置 Redis 时退化为进程内锁"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, lock_ttl: int = 600):
        self.redis = redis_client
        self.lock_ttl = lock_ttl  # 锁过期时间（秒）
        self._local: Dict[str, float] = {}
        self._mutex = threading.Lock()

    def acquire(self, key: str) -> bool:
        """获取锁"""
        if self.redis is not None:
            return bool(self.redis.set(f"sync_lock:{key}", "1", nx=True, ex=self.lock_ttl))

        now = time.time()
        with self._mutex:
            expires = self._local.get(key)
            if expires is not None and expires > now:
                return False
            self._local[key] = now + self.lock_ttl
            return True

    def release(self, key: str) -> None:
        """释放锁"""
        if self.redis is not None:
            self.redis.delete(f"sync_lock:{key}")
            return
        with self._mutex:
            self._local.pop(key, None)

    def is_locked(self, key: str) -> bool:
        """检查是否被锁定"""
        if self.redis is not None:
            return bool(self.redis.exists(f"sync_lock:{key}"))
        with self._mutex:
            expires = self._local.get(key)
            return expires is not None and expires > time.time()
