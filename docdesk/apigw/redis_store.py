"""Store Redis atomique pour le rate limiting distribué.

Ce module implémente un store Redis pour les buckets à fenêtre fixe, partagé entre instances. Le
check-then-increment de tous les paliers d'une requête est exécuté dans un unique script Lua pour
garantir la cohérence en multi-pods.
"""

import hashlib
import logging
from collections.abc import Sequence

import redis
from redis.exceptions import ConnectionError, NoScriptError, TimeoutError

from docdesk.apigw.rate_limit import AdmissionDecision, Tier
from docdesk.app.metrics import ADMISSION_STORE_ERRORS
from docdesk.core.settings import Settings

log = logging.getLogger(__name__)

# Script Lua pour fenêtres fixes multi-paliers atomiques.
# KEYS[i] = bucket du palier i; ARGV = now_ms, puis (limit, window_ms) par palier.
FIXED_WINDOW_SCRIPT = """
local now = tonumber(ARGV[1])
local starts = {}
local counts = {}

for i, key in ipairs(KEYS) do
    local limit = tonumber(ARGV[2 * i])
    local window = tonumber(ARGV[2 * i + 1])
    local start = tonumber(redis.call('HGET', key, 'start'))
    local count = tonumber(redis.call('HGET', key, 'count')) or 0

    if (not start) or now >= start + window then
        start = now
        count = 0
    end

    if count >= limit then
        -- Refus: rien n'est compté, on renvoie le palier violé et son délai
        return {0, i, start + window - now, 0}
    end

    starts[i] = start
    counts[i] = count
end

local remaining = -1
local tightest = 1
for i, key in ipairs(KEYS) do
    local limit = tonumber(ARGV[2 * i])
    local window = tonumber(ARGV[2 * i + 1])
    redis.call('HSET', key, 'start', starts[i], 'count', counts[i] + 1)
    redis.call('PEXPIREAT', key, starts[i] + window)
    local left = limit - counts[i] - 1
    if remaining < 0 or left < remaining then
        remaining = left
        tightest = i
    end
end

return {1, tightest, 0, remaining}
"""


class RedisBucketStore:
    """Store Redis atomique pour le rate limiting distribué."""

    def __init__(self, settings: Settings, client: redis.Redis | None = None) -> None:
        """Initialize Redis store with settings; the connection is opened lazily."""
        self.settings = settings
        self._redis: redis.Redis | None = client
        self._script_hash: str | None = None

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection with lazy initialization."""
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.settings.REDIS_URL,
                    socket_connect_timeout=self.settings.RL_CONNECT_TIMEOUT_MS / 1000,
                    socket_timeout=self.settings.RL_READ_TIMEOUT_MS / 1000,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
                self._redis.ping()
                log.info("Redis rate limit store connected")
            except (ConnectionError, TimeoutError) as e:
                self._redis = None
                log.error(
                    "Failed to connect to Redis rate limit store",
                    extra={"error": str(e)},
                )
                raise

        return self._redis

    def _get_script_hash(self) -> str:
        """Get Lua script hash for atomic operations."""
        if self._script_hash is None:
            self._script_hash = self._get_redis().script_load(FIXED_WINDOW_SCRIPT)
        return self._script_hash

    def _hash_key(self, identity_key: str) -> str:
        """Hash identity keys so raw IPs and user ids never appear in Redis key names."""
        return hashlib.sha256(identity_key.encode()).hexdigest()[:16]

    def bucket_key(self, identity_key: str, tier: Tier) -> str:
        # rl:{tier}:{identity_hash}
        return f"rl:{tier.name}:{self._hash_key(identity_key)}"

    def admit(self, key: str, tiers: Sequence[Tier], now: float) -> AdmissionDecision:
        """Check and count one request against every tier in a single atomic script.

        Args:
            key: Identity key (user or normalized network origin)
            tiers: Tiers in ascending window order
            now: Current time in seconds since the epoch

        Returns:
            AdmissionDecision; fails open when Redis is unavailable
        """
        keys = [self.bucket_key(key, tier) for tier in tiers]
        args: list[int] = [int(now * 1000)]
        for tier in tiers:
            args.extend([tier.limit, int(tier.window_seconds * 1000)])

        try:
            redis_client = self._get_redis()
            try:
                result = redis_client.evalsha(self._get_script_hash(), len(keys), *keys, *args)
            except NoScriptError:
                # Script cache flushed (restart/failover): reload once
                self._script_hash = None
                result = redis_client.evalsha(self._get_script_hash(), len(keys), *keys, *args)

            # Parse result: [allowed, tier_index (1-based), retry_after_ms, remaining]
            # tier_index is the violated tier on block, the tightest tier on allow
            allowed = bool(int(result[0]))
            tier = tiers[int(result[1]) - 1]
            if not allowed:
                return AdmissionDecision(
                    allowed=False,
                    violated_tier=tier.name,
                    retry_after=min(tier.window_seconds, max(0.0, int(result[2]) / 1000)),
                    limit=tier.limit,
                    remaining=0,
                )
            return AdmissionDecision(
                allowed=True, limit=tier.limit, remaining=max(0, int(result[3]))
            )

        except (ConnectionError, TimeoutError) as e:
            # Fail-open: allow request if Redis is unavailable
            log.warning(
                "Rate limit store unavailable, failing open",
                extra={"tiers": [t.name for t in tiers], "error": str(e)},
            )
            ADMISSION_STORE_ERRORS.labels(error_type="connection_error").inc()
            return AdmissionDecision(allowed=True)

        except Exception as e:
            log.error(
                "Unexpected rate limit store error",
                extra={"tiers": [t.name for t in tiers], "error": str(e)},
            )
            ADMISSION_STORE_ERRORS.labels(error_type="unexpected_error").inc()
            return AdmissionDecision(allowed=True)

    def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            self._redis.close()
            self._redis = None
