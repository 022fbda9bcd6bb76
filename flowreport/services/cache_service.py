"""
Cache Service.

Thin key-value cache used for:
  - Pipedrive pipeline / stage listings (slow, rarely changing)
  - The active flow-metric configuration list (invalidated on every write)
  - QR-ID counters (no TTL)

Uses Redis when REDIS_URL points at a Redis server, falls back to a simple
in-memory dict for development/testing (REDIS_URL unset or ``memory://``).
"""

import json
import logging
import os
import threading
import time

logger = logging.getLogger(__name__)

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value, expire_ts | None)
_memory_lock = threading.Lock()


class _MemoryBackend:
    """Dict-backed subset of the redis-py client API."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def set(self, key, value, nx=False):
        with _memory_lock:
            if nx and self.get(key) is not None:
                return None
            _memory_store[key] = (str(value), None)
            return True

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def incr(self, key):
        with _memory_lock:
            current = self.get(key)
            value = int(current) + 1 if current is not None else 1
            _memory_store[key] = (str(value), None)
            return value

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def keys(self, pattern):
        """Glob matching for 'prefix*' patterns only."""
        if pattern.endswith("*"):
            prefix = pattern[:-1]
            return [k for k in _memory_store if k.startswith(prefix)]
        return [k for k in _memory_store if k == pattern]

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None
_redis_url = None
_redis_required = False


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = _redis_url or os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except Exception as exc:
            if _redis_required:
                logger.error("Redis unavailable (%s) and REDIS_REQUIRED is set", exc)
                _backend = None
                raise
            logger.warning("Redis unavailable (%s), falling back to memory cache", exc)
            _backend = _MemoryBackend()
    elif _redis_required:
        raise RuntimeError("REDIS_REQUIRED is set but REDIS_URL is not a Redis server")
    else:
        _backend = _MemoryBackend()
    return _backend


def get_backend():
    """Expose the backend for callers needing raw counter ops (get/set/incr)."""
    return _get_backend()


def reset_backend():
    """Drop the backend singleton; the next call re-reads REDIS_URL."""
    global _backend
    _backend = None


def init_cache(app):
    """Bind the cache to the app's REDIS_URL / REDIS_REQUIRED / CACHE_TTL_SECONDS."""
    global _redis_url, _redis_required, DEFAULT_TTL
    _redis_url = app.config.get("REDIS_URL")
    _redis_required = bool(app.config.get("REDIS_REQUIRED", False))
    DEFAULT_TTL = int(app.config.get("CACHE_TTL_SECONDS", DEFAULT_TTL))
    reset_backend()


# ── Default TTLs & keys ──────────────────────────────────────────────────

DEFAULT_TTL = int(os.getenv("CACHE_TTL_SECONDS", "300"))
PIPEDRIVE_TTL = 3600

ACTIVE_CONFIGS_KEY = "flow:active-configs"
PIPELINES_KEY = "pipedrive:pipelines"


def stages_key(pipeline_id=None):
    return f"pipedrive:stages:{pipeline_id if pipeline_id is not None else 'all'}"


# ── Public API ───────────────────────────────────────────────────────────


def get_cached(key, ttl=None, loader=None):
    """Cache-aside read. On miss, call *loader* and cache a non-None result."""
    ttl = ttl or DEFAULT_TTL
    be = _get_backend()
    raw = be.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding undecodable cache entry %s", key)
    if loader is None:
        return None
    value = loader()
    if value is not None:
        be.setex(key, ttl, json.dumps(value, default=str))
    return value


def set_cached(key, value, ttl=None):
    _get_backend().setex(key, ttl or DEFAULT_TTL, json.dumps(value, default=str))


def delete_cached(key):
    _get_backend().delete(key)


def invalidate_prefix(prefix):
    """Delete every key starting with *prefix*; returns the count removed."""
    be = _get_backend()
    keys = be.keys(f"{prefix}*")
    if keys:
        be.delete(*keys)
    return len(keys)


def invalidate_flow_configs():
    """Called after any flow-metric configuration write."""
    delete_cached(ACTIVE_CONFIGS_KEY)


def refresh_all():
    """Drop all cached listings (counters are kept)."""
    removed = invalidate_prefix("flow:") + invalidate_prefix("pipedrive:")
    logger.info("Cache refresh removed %d keys", removed)
    return removed


def clear_all():
    """Flush entire cache (use sparingly, mainly for testing)."""
    _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    try:
        be = _get_backend()
        be.ping()
        backend_type = "redis" if not isinstance(be, _MemoryBackend) else "memory"
        return {"status": "ok", "backend": backend_type}
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
