"""
缓存工具

make_key: 稳定序列化后取 sha256，用作缓存指纹。
TTLCache:  线程安全的内存 TTL 缓存：读时清理过期条目，满额时按创建时间淘汰最旧条目。
"""

from __future__ import annotations

import hashlib
import json
import time
from threading import RLock
from typing import Any, Callable, Hashable, Iterator, Optional


def make_key(prefix: str, *parts: Any) -> str:
    """生成缓存键。parts 会做稳定序列化。"""
    raw = [prefix]
    for p in parts:
        if p is None:
            raw.append("")
        elif isinstance(p, (str, int, float, bool)):
            raw.append(str(p))
        else:
            try:
                raw.append(json.dumps(p, sort_keys=True, default=str))
            except (TypeError, ValueError):
                raw.append(repr(p))
    blob = "|".join(raw).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()


class TTLCache:
    """
    线程安全的内存 TTL 缓存。
    - maxsize: 最大条目数，超过时淘汰创建时间最早的条目（命中不刷新位置）。
    - ttl_seconds: 条目有效期，0 表示不过期。
    - clock: 时间源，默认 time.monotonic，测试可注入。
    """

    __slots__ = ("_store", "_created", "_maxsize", "_ttl", "_lock", "_clock")

    def __init__(
        self,
        maxsize: int = 1024,
        ttl_seconds: float = 3600,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._store: dict[Hashable, Any] = {}
        self._created: dict[Hashable, float] = {}
        self._maxsize = max(1, maxsize)
        self._ttl = max(0.0, float(ttl_seconds))
        self._clock = clock or time.monotonic
        self._lock = RLock()

    def _expired(self, key: Hashable, now: float) -> bool:
        return self._ttl > 0 and (now - self._created.get(key, 0.0)) >= self._ttl

    def _purge_expired(self, now: float) -> int:
        expired = [k for k in self._store if self._expired(k, now)]
        for k in expired:
            self._store.pop(k, None)
            self._created.pop(k, None)
        return len(expired)

    def _evict_if_needed(self) -> None:
        # dict 保持插入顺序；set 时先删后插，因此首个键即创建最早的条目
        while self._store and len(self._store) >= self._maxsize:
            oldest = next(iter(self._store))
            self._store.pop(oldest, None)
            self._created.pop(oldest, None)

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            self._purge_expired(self._clock())
            return self._store.get(key)

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._store.pop(key, None)
            self._created.pop(key, None)
            self._evict_if_needed()
            self._store[key] = value
            self._created[key] = now

    def delete_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """删除所有 predicate(key) 为真的条目，返回删除数量。"""
        with self._lock:
            doomed = [k for k in self._store if predicate(k)]
            for k in doomed:
                self._store.pop(k, None)
                self._created.pop(k, None)
            return len(doomed)

    def keys(self) -> Iterator[Hashable]:
        with self._lock:
            return iter(list(self._store))

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._created.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

