"""
Stage View Cache

Provides a thin cache wrapper with:
  - Stage view cache (stage + current-round approval status)
  - Fire-and-forget invalidation after lifecycle mutations

Uses Redis in production (via REDIS_URL), falls back to
a simple in-memory dict for development/testing.
"""

import json
import logging
import os
import time

logger = logging.getLogger(__name__)

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)


class _MemoryBackend:
    """Simple dict cache for dev/testing."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def keys(self, pattern):
        """Simple glob matching for 'prefix*' patterns."""
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


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except Exception as exc:
            logger.warning("Redis unavailable (%s); falling back to memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


DEFAULT_TTL = 300


# ── Key builders ─────────────────────────────────────────────────────────

def _stage_view_key(stage_id):
    return f"stage:{stage_id}:view"


def _stage_prefix(stage_id):
    return f"stage:{stage_id}:"


# ── Public API ───────────────────────────────────────────────────────────


def get_cached_stage_view(stage_id):
    """Return the cached stage view dict, or None on miss."""
    try:
        raw = _get_backend().get(_stage_view_key(stage_id))
    except Exception:
        logger.warning("Cache read failed for stage %s", stage_id, exc_info=True)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


def set_cached_stage_view(stage_id, view, ttl=DEFAULT_TTL):
    """Store a stage view dict. Cache failures are logged, never raised."""
    try:
        _get_backend().setex(_stage_view_key(stage_id), ttl, json.dumps(view, default=str))
    except Exception:
        logger.warning("Cache write failed for stage %s", stage_id, exc_info=True)


def invalidate_stage(stage_id):
    """Drop every cached entry for a stage.

    Emitted after each successful lifecycle mutation. Delivery failures are
    logged and swallowed so the mutation itself always stands.
    """
    try:
        backend = _get_backend()
        keys = backend.keys(_stage_prefix(stage_id) + "*")
        if keys:
            backend.delete(*keys)
        logger.debug("Cache invalidated for stage %s (%d keys)", stage_id, len(keys),
                     extra={"stage_id": stage_id, "event_type": "cache_invalidate"})
    except Exception:
        logger.warning("Cache invalidation failed for stage %s", stage_id, exc_info=True)


def invalidate_all():
    """Flush the entire cache (admin / testing)."""
    try:
        _get_backend().flushdb()
    except Exception:
        logger.warning("Cache flush failed", exc_info=True)

