# services/cache/cache_backend.py
"""
Two-level JSON cache for registry lookups.

L1 is an in-process dict with its own (shorter) TTL. L2 is Redis, shared
across instances, and only used when UPSTASH_REDIS_URL is set. Redis errors
degrade to L1-only; they never fail an import.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import redis as redis_sync

logger = logging.getLogger(__name__)

JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]

DEFAULT_TTL_SEC = int(os.getenv("CACHE_DEFAULT_TTL_SEC", "300"))
LOCAL_CACHE_TTL_SEC = int(os.getenv("CACHE_LOCAL_TTL_SEC", "3600"))

# isolates app + env, e.g. "holdings-import:prod:"
REDIS_PREFIX = os.getenv("REDIS_PREFIX", "holdings-import:")
UPSTASH_REDIS_URL = os.getenv("UPSTASH_REDIS_URL")

# key -> (expires_at_epoch, payload)
_LOCAL: Dict[str, Tuple[float, JsonValue]] = {}
_LOCAL_LOCK = threading.Lock()

_redis_client: Optional[redis_sync.Redis] = None


def get_redis_client() -> Optional[redis_sync.Redis]:
    """Lazy sync client. None when Redis is not configured."""
    global _redis_client
    if _redis_client is not None or not UPSTASH_REDIS_URL:
        return _redis_client
    try:
        _redis_client = redis_sync.from_url(
            UPSTASH_REDIS_URL,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    except (redis_sync.RedisError, ValueError):
        logger.warning("cache_backend.redis_init_failed; using local cache only")
        _redis_client = None
    return _redis_client


def normalize_key(key: str) -> str:
    return (key or "").strip().upper()


def _redis_key(k: str) -> str:
    return f"{REDIS_PREFIX}{k}"


def local_clear() -> None:
    with _LOCAL_LOCK:
        _LOCAL.clear()


def _local_lookup(keys: Iterable[str]) -> Tuple[Dict[str, JsonValue], List[str]]:
    hits: Dict[str, JsonValue] = {}
    misses: List[str] = []
    now = time.time()
    with _LOCAL_LOCK:
        for k in keys:
            entry = _LOCAL.get(k)
            if entry is not None and now <= entry[0]:
                hits[k] = entry[1]
                continue
            _LOCAL.pop(k, None)
            misses.append(k)
    return hits, misses


def _local_store(items: Dict[str, JsonValue], ttl_seconds: int) -> None:
    expires_at = time.time() + ttl_seconds
    with _LOCAL_LOCK:
        for k, payload in items.items():
            _LOCAL[k] = (expires_at, payload)


def cache_get_many(keys: Iterable[str]) -> Dict[str, JsonValue]:
    """
    Read-through bulk lookup. Returns only the hits, keyed by normalized key.
    L2 hits are copied into L1.
    """
    wanted = list(dict.fromkeys(k for k in (normalize_key(x) for x in keys) if k))
    if not wanted:
        return {}

    hits, misses = _local_lookup(wanted)
    r = get_redis_client() if misses else None
    if r is None:
        return hits

    try:
        raws = r.mget([_redis_key(k) for k in misses])
    except redis_sync.RedisError:
        logger.warning("cache_backend.redis_mget_failed keys=%s", len(misses))
        return hits

    promoted: Dict[str, JsonValue] = {}
    for k, raw in zip(misses, raws):
        if not isinstance(raw, (str, bytes, bytearray)):
            continue
        try:
            promoted[k] = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("cache_backend.bad_payload key=%s", k)
    if promoted:
        _local_store(promoted, LOCAL_CACHE_TTL_SEC)
        hits.update(promoted)
    return hits


def cache_set_many(items: Dict[str, JsonValue], ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
    """Write-through bulk store. L1 keeps min(LOCAL_CACHE_TTL_SEC, ttl_seconds)."""
    normalized = {normalize_key(k): v for k, v in items.items() if normalize_key(k)}
    if not normalized:
        return
    ttl_seconds = int(ttl_seconds) if ttl_seconds and ttl_seconds > 0 else DEFAULT_TTL_SEC

    _local_store(normalized, min(LOCAL_CACHE_TTL_SEC, ttl_seconds))

    r = get_redis_client()
    if r is None:
        return
    try:
        pipe = r.pipeline(transaction=False)
        for k, payload in normalized.items():
            pipe.setex(_redis_key(k), ttl_seconds, json.dumps(payload, separators=(",", ":")))
        pipe.execute()
    except redis_sync.RedisError:
        logger.warning("cache_backend.redis_set_failed keys=%s", len(normalized))
