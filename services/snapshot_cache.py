#!/usr/bin/env python3
"""
FleetOps - Snapshot Cache

TTL-bounded cache of externally sourced per-site snapshots:

- uptime: status plus 24h / 7d uptime, ping and last status change
- kpis:   search-analytics clicks, impressions, CTR and average position

Entries live in Redis with a key TTL, so expiry is wall-clock based and an
expired entry reads exactly like a miss. Population is the job of the
external collector, which calls put_uptime() / put_kpis().

Miss behaviour differs by kind:
- uptime misses return an "unknown" placeholder and cache it for 10 minutes
- KPI misses return None and are not cached

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import json
import logging
from typing import Any, Dict, Optional

from prometheus_client import Counter

logger = logging.getLogger(__name__)

UPTIME_PLACEHOLDER_TTL = 600     # 10 minutes
UPTIME_DEFAULT_TTL = 600
KPI_DEFAULT_TTL = 86400          # population job runs daily

STATUS_UNKNOWN = 'unknown'

KPI_FIELDS = ('clicks', 'impressions', 'ctr', 'position')

METRIC_SNAPSHOT_CACHE_TOTAL = Counter(
    'fleetops_snapshot_cache_total',
    'Snapshot cache lookups',
    ['kind', 'result']
)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def uptime_placeholder() -> Dict[str, Any]:
    """Record served for a site nobody has polled yet."""
    return {
        'status': STATUS_UNKNOWN,
        'uptime_24h': None,
        'uptime_7d': None,
        'ping_ms': None,
        'last_change': None,
    }


class SnapshotCache:
    """Per-site uptime and KPI snapshots stored under `<prefix>:uptime:<id>` / `<prefix>:kpis:<id>`."""

    def __init__(self, redis_client, prefix: str = "fleetops",
                 placeholder_ttl: int = UPTIME_PLACEHOLDER_TTL):
        self.redis = redis_client
        self.prefix = prefix
        self.placeholder_ttl = placeholder_ttl

    def uptime_key(self, site_id: int) -> str:
        return f"{self.prefix}:uptime:{site_id}"

    def kpis_key(self, site_id: int) -> str:
        return f"{self.prefix}:kpis:{site_id}"

    def get_uptime(self, site_id: int) -> Dict[str, Any]:
        """
        Cached uptime snapshot for a site.

        On a miss the "unknown" placeholder is written with the placeholder
        TTL and returned; reads inside that window are served from it until
        the collector stores a real snapshot. The placeholder is written with
        SET NX, so a snapshot stored between the miss and the write is kept
        and returned instead.
        """
        key = self.uptime_key(site_id)
        cached = self._read(key)
        if cached is not None:
            METRIC_SNAPSHOT_CACHE_TOTAL.labels(kind='uptime', result='hit').inc()
            return cached

        METRIC_SNAPSHOT_CACHE_TOTAL.labels(kind='uptime', result='miss').inc()
        data = uptime_placeholder()
        if self.redis.set(key, json.dumps(data), ex=self.placeholder_ttl, nx=True):
            logger.debug(f"Cached unknown uptime placeholder for site {site_id}")
            return data

        stored = self._read(key)
        if stored is not None:
            logger.debug(f"Uptime snapshot for site {site_id} arrived before the placeholder write")
            return stored

        # Expired or undecodable in the meantime
        self.redis.setex(key, self.placeholder_ttl, json.dumps(data))
        return data

    def get_kpis(self, site_id: int) -> Optional[Dict[str, Any]]:
        """Cached KPI snapshot, or None when nothing is cached (a miss, not zeros)."""
        cached = self._read(self.kpis_key(site_id))
        METRIC_SNAPSHOT_CACHE_TOTAL.labels(
            kind='kpis', result='hit' if cached is not None else 'miss'
        ).inc()
        return cached

    def put_uptime(self, site_id: int, snapshot: Dict[str, Any], ttl: Optional[int] = None) -> Dict[str, Any]:
        """Store a normalized uptime snapshot. Returns what was stored."""
        status = snapshot.get('status')
        record = {
            'status': str(status).strip().lower() if status not in (None, '') else STATUS_UNKNOWN,
            'uptime_24h': _to_float(snapshot.get('uptime_24h')),
            'uptime_7d': _to_float(snapshot.get('uptime_7d')),
            'ping_ms': _to_float(snapshot.get('ping_ms')),
            'last_change': snapshot.get('last_change') or None,
        }
        self.redis.setex(self.uptime_key(site_id), ttl or UPTIME_DEFAULT_TTL, json.dumps(record))
        logger.info(f"Stored uptime snapshot for site {site_id}: status={record['status']}")
        return record

    def put_kpis(self, site_id: int, snapshot: Dict[str, Any], ttl: Optional[int] = None) -> Dict[str, Any]:
        """Store a normalized KPI snapshot. Missing numeric fields become 0.0."""
        record = {field: _to_float(snapshot.get(field)) or 0.0 for field in KPI_FIELDS}
        self.redis.setex(self.kpis_key(site_id), ttl or KPI_DEFAULT_TTL, json.dumps(record))
        logger.info(f"Stored KPI snapshot for site {site_id}")
        return record

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.redis.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8', errors='replace')
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring undecodable snapshot at {key}")
            return None
        if not isinstance(value, dict):
            logger.warning(f"Ignoring non-mapping snapshot at {key}")
            return None
        return value
