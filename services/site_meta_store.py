#!/usr/bin/env python3
"""
FleetOps - Per-Site Metadata Store

Sparse per-site overrides (custom report URL, analytics property and the
uptime-monitor mapping) kept as one JSON object in Redis, keyed by the
decimal site id. Sites without an override fall back to the global
defaults held by SettingsStore.

Usage:
    from services.site_meta_store import SiteMetaStore

    sites = SiteMetaStore(redis_client, settings_store, prefix="fleetops")
    sites.save_one(12, {
        'report_url': 'https://reports.example.com/site-12',
        'analytics_property': 'sc-domain:example.com',
        'monitoring': {'mode': 'badges', 'monitor_ids_raw': '4, 7'},
    })
    sites.get_one(12)['monitoring']['monitor_ids']   # ['4', '7']
    sites.try_get(99)                                 # None
    sites.get_one(99)                                 # synthesized defaults

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import json
import logging
import re
import threading
from typing import Any, Dict, List, Optional

from services.settings_store import (
    DEFAULT_MONITORING_MODE,
    SettingsStoreError,
    decode_json_mapping,
)

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r'\s*([+-]?\d+)')


def parse_site_id(value: Any) -> int:
    """
    Coerce a site identifier to int; anything unusable becomes 0.

    Strings are read up to the first non-digit, so "12abc" is 12 and "3.5"
    is 3. The sign is kept: a negative id stays non-positive.
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return 0
    match = _LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else 0


def parse_monitor_ids(raw: Optional[str]) -> List[str]:
    """
    Split comma-separated monitor ids.

    Tokens are trimmed and empty ones dropped; order and duplicates are kept.

    >>> parse_monitor_ids("a, b ,,c")
    ['a', 'b', 'c']
    """
    if not raw:
        return []
    return [token.strip() for token in str(raw).split(',') if token.strip()]


class SiteMetaStore:
    """
    Site override storage.

    try_get() answers "is there an override?", get_one() always answers with
    a usable record. Listings (see FleetAggregator) are built from get_all()
    and therefore only include sites that have a stored override.
    """

    def __init__(self, redis_client, settings_store, prefix: str = "fleetops"):
        self.redis = redis_client
        self.settings_store = settings_store
        self.key = f"{prefix}:site_meta"
        self._write_lock = threading.Lock()

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        """
        All stored overrides keyed by site id string, in storage order.

        Corrupt data degrades to an empty mapping; entries that are not
        mappings are skipped.
        """
        try:
            raw = self.redis.get(self.key)
        except Exception as e:
            logger.error(f"Failed to read site metadata from Redis: {e}")
            raise SettingsStoreError(f"Failed to read site metadata: {e}") from e

        meta = decode_json_mapping(raw)
        result = {}
        for site_key, override in meta.items():
            if not isinstance(override, dict):
                logger.warning(f"Skipping malformed site override for site {site_key}")
                continue
            result[str(site_key)] = override
        return result

    def try_get(self, site_id: Any) -> Optional[Dict[str, Any]]:
        """Stored override for a site, or None."""
        return self.get_all().get(str(parse_site_id(site_id)))

    def get_one(self, site_id: Any) -> Dict[str, Any]:
        """
        Stored override, or a transient default record.

        The default uses `defaults.report_url` and mirrors the global
        monitoring mode. It is never persisted.
        """
        override = self.try_get(site_id)
        if override is not None:
            return override

        settings = self.settings_store.get()
        return {
            'report_url': settings['defaults'].get('report_url', ''),
            'analytics_property': '',
            'monitoring': {
                'mode': settings['monitoring'].get('mode') or DEFAULT_MONITORING_MODE,
                'status_page_slug': '',
                'monitor_ids': [],
                'monitor_ids_raw': '',
            },
        }

    def save_one(self, site_id: Any, override: Dict[str, Any]) -> bool:
        """
        Replace the override for one site.

        Returns:
            True if written, False if the site id was not a positive integer
            (nothing is changed in that case).
        """
        site_num = parse_site_id(site_id)
        if site_num <= 0:
            logger.info(f"Ignoring site override save for invalid site id {site_id!r}")
            return False

        monitoring = override.get('monitoring') or {}
        raw_ids = str(monitoring.get('monitor_ids_raw') or '')
        record = {
            'report_url': str(override.get('report_url') or ''),
            'analytics_property': str(override.get('analytics_property') or ''),
            'monitoring': {
                'mode': str(monitoring.get('mode') or ''),
                'status_page_slug': str(monitoring.get('status_page_slug') or ''),
                'monitor_ids': parse_monitor_ids(raw_ids),
                'monitor_ids_raw': raw_ids,
            },
        }

        with self._write_lock:
            meta = self.get_all()
            meta[str(site_num)] = record
            self._write(meta)

        logger.info(f"Saved site override for site {site_num}")
        return True

    def delete_one(self, site_id: Any) -> bool:
        """Remove a site's override. Returns False if there was none."""
        site_key = str(parse_site_id(site_id))
        with self._write_lock:
            meta = self.get_all()
            if site_key not in meta:
                return False
            del meta[site_key]
            self._write(meta)

        logger.info(f"Deleted site override for site {site_key}")
        return True

    def _write(self, meta: Dict[str, Dict[str, Any]]) -> None:
        try:
            self.redis.set(self.key, json.dumps(meta))
        except Exception as e:
            logger.error(f"Failed to write site metadata to Redis: {e}")
            raise SettingsStoreError(f"Failed to write site metadata: {e}") from e
