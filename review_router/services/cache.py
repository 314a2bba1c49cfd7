"""
Agent result cache.

Results are cached per (PR number, head commit, config hash, agent id) so
re-runs on an unchanged head skip agents that already succeeded. Entries are
stored as JSON text, in memory and optionally in a directory that CI can
persist between runs, and validated against the AgentResult union on every
load. An entry that fails validation is logged and treated as a miss.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Union

from ..errors import InvalidAgentResultError
from ..logging_config import get_logger, log_with_data
from ..schemas.common import AgentFailure, AgentSkipped, AgentSuccess, parse_agent_result

logger = get_logger(__name__)

# Bump when the stored result shape changes so old entries stop matching
CACHE_SCHEMA_VERSION = 2
CACHE_KEY_PREFIX = f"review-router-v{CACHE_SCHEMA_VERSION}"
DEFAULT_TTL_SECONDS = 3600

CachedResult = Union[AgentSuccess, AgentFailure, AgentSkipped]


def generate_cache_key(pr_number: int, head_sha: str, config_hash: str, agent_id: str) -> str:
    """Build the cache key for one agent's result on one PR head."""
    digest_input = f"{pr_number}:{head_sha}:{config_hash}:{agent_id}"
    digest = hashlib.sha256(digest_input.encode("utf-8")).hexdigest()[:16]
    return f"{CACHE_KEY_PREFIX}-{pr_number}-{digest}"


@dataclass
class CacheEntry:
    """A validated cache entry."""
    key: str
    result: CachedResult
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps({
            "key": self.key,
            "result": self.result.model_dump(mode="json"),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        })


@dataclass
class CacheStats:
    """Statistics for cache performance monitoring."""
    hits: int = 0
    misses: int = 0
    invalid: int = 0
    expired: int = 0
    writes: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "invalid": self.invalid,
            "expired": self.expired,
            "writes": self.writes,
            "hit_rate_percent": round(self.hit_rate, 2),
        }


class ResultCache:
    """
    Agent result cache with TTL and strict shape validation.

    Features:
    - In-memory store, mirrored to ``cache_dir`` when one is given
    - Expired entries are deleted on read and reported as misses
    - Malformed or legacy-shaped entries are logged at WARNING and missed
    - Last write wins; no locking, a cached result is a pure function of its key

    Usage:
        cache = ResultCache(cache_dir=".review-cache")
        cache.set(key, result)
        entry = cache.get(key)  # CacheEntry or None
    """

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._memory: Dict[str, str] = {}
        self._dir = Path(cache_dir) if cache_dir else None
        self._default_ttl = default_ttl
        self._clock = clock
        self._stats = CacheStats()

        if self._dir is not None:
            self._dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Optional[Path]:
        if self._dir is None:
            return None
        return self._dir / f"{key}.json"

    def _read_raw(self, key: str) -> Optional[str]:
        raw = self._memory.get(key)
        if raw is not None:
            return raw
        path = self._path_for(key)
        if path is not None and path.exists():
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Cache entry {key} unreadable ({e}), treating as miss")
        return None

    def _decode(self, key: str, raw: str) -> CacheEntry:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidAgentResultError(f"not JSON: {e.msg}") from e

        if not isinstance(data, dict):
            raise InvalidAgentResultError("entry is not an object")
        for field_name in ("result", "created_at", "expires_at"):
            if field_name not in data:
                raise InvalidAgentResultError(f"missing {field_name}")
        if not isinstance(data["created_at"], (int, float)) or \
           not isinstance(data["expires_at"], (int, float)):
            raise InvalidAgentResultError("timestamps must be numbers")

        result = parse_agent_result(data["result"])
        return CacheEntry(
            key=data.get("key", key),
            result=result,
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
        )

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Look up a cached result.

        Returns:
            The entry, or None on a miss (absent, expired or invalid)
        """
        raw = self._read_raw(key)
        if raw is None:
            self._stats.misses += 1
            logger.debug(f"Cache miss: {key}")
            return None

        try:
            entry = self._decode(key, raw)
        except InvalidAgentResultError as e:
            self._stats.invalid += 1
            self._stats.misses += 1
            log_with_data(
                logger,
                logging.WARNING,
                f"Cache entry {key} has invalid format, treating as miss",
                {"key": key, "error": str(e)},
            )
            self.delete(key)
            return None

        if entry.is_expired(self._clock()):
            self._stats.expired += 1
            self._stats.misses += 1
            logger.debug(f"Cache entry {key} expired")
            self.delete(key)
            return None

        self._stats.hits += 1
        return entry

    def set(self, key: str, result: CachedResult, ttl: Optional[int] = None) -> CacheEntry:
        """
        Store a result under key.

        Args:
            key: Cache key from generate_cache_key
            result: Agent result to store
            ttl: Optional TTL override in seconds
        """
        now = self._clock()
        entry = CacheEntry(
            key=key,
            result=result,
            created_at=now,
            expires_at=now + (ttl or self._default_ttl),
        )
        raw = entry.to_json()
        self._memory[key] = raw

        path = self._path_for(key)
        if path is not None:
            path.write_text(raw, encoding="utf-8")

        self._stats.writes += 1
        logger.debug(f"Cache write: {key}")
        return entry

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if anything was removed."""
        removed = self._memory.pop(key, None) is not None
        path = self._path_for(key)
        if path is not None and path.exists():
            path.unlink()
            removed = True
        return removed

    def _stored_keys(self) -> Set[str]:
        keys = set(self._memory)
        if self._dir is not None:
            keys.update(p.stem for p in self._dir.glob(f"{CACHE_KEY_PREFIX}-*.json"))
        return keys

    def cleanup_expired(self) -> int:
        """Remove expired entries, on disk too. Returns count of removed entries."""
        now = self._clock()
        removed = 0
        for key in sorted(self._stored_keys()):
            raw = self._read_raw(key)
            if raw is None:
                continue
            try:
                entry = self._decode(key, raw)
            except InvalidAgentResultError:
                continue
            if entry.is_expired(now):
                self.delete(key)
                removed += 1
        if removed:
            logger.debug(f"Cache cleanup: removed {removed} expired entries")
        return removed

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._stored_keys())
