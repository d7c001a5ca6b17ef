#!/usr/bin/env python3
"""
Site directory lookups (name and domain for a site id).

The directory itself belongs to the site registry; FleetOps only reads it.
The registry publishes one Redis hash per site at `<prefix>:directory:<id>`
with `name` and `url` fields. Any failure degrades to empty strings.
"""

import logging
from typing import Dict

logger = logging.getLogger(__name__)


class SiteDirectory:
    """Redis-hash backed directory reader."""

    def __init__(self, redis_client, prefix: str = "fleetops"):
        self.redis = redis_client
        self.prefix = prefix

    def get_site_info(self, site_id: int) -> Dict[str, str]:
        try:
            details = self.redis.hgetall(f"{self.prefix}:directory:{site_id}") or {}
        except Exception as e:
            logger.warning(f"Site directory lookup failed for site {site_id}: {e}")
            return {'name': '', 'domain': ''}

        def _field(name: str) -> str:
            value = details.get(name) or details.get(name.encode()) or ''
            return value.decode('utf-8', errors='replace') if isinstance(value, bytes) else str(value)

        return {'name': _field('name'), 'domain': _field('url')}

    def register_site(self, site_id: int, name: str, url: str) -> None:
        """Publish directory details (used by the CLI for local setups)."""
        self.redis.hset(f"{self.prefix}:directory:{site_id}", mapping={'name': name, 'url': url})
