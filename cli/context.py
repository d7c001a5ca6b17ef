"""
Shared helpers for fleetopsctl commands: Redis connection and store wiring.
"""

from typing import Optional

import redis

from config.environment import KEY_PREFIX, UPTIME_PLACEHOLDER_TTL, get_redis_config
from services.aggregator import FleetAggregator
from services.settings_store import SettingsStore
from services.site_directory import SiteDirectory
from services.site_meta_store import SiteMetaStore
from services.snapshot_cache import SnapshotCache


class Stores:
    """The FleetOps stores bound to one Redis client."""

    def __init__(self, client, prefix: str = KEY_PREFIX):
        self.redis = client
        # One CLI invocation is one settings cache session.
        self.settings = SettingsStore(client, prefix=prefix)
        self.site_meta = SiteMetaStore(client, self.settings, prefix=prefix)
        self.snapshots = SnapshotCache(client, prefix=prefix, placeholder_ttl=UPTIME_PLACEHOLDER_TTL)
        self.directory = SiteDirectory(client, prefix=prefix)
        self.aggregator = FleetAggregator(self.settings, self.site_meta, self.snapshots, self.directory)


def connect_redis() -> redis.Redis:
    """Connect using config/environment.py settings; raises on failure."""
    config = get_redis_config()
    kwargs = {
        'host': config['host'],
        'port': config['port'],
        'db': config['db'],
        'password': config.get('password'),
        'decode_responses': True,
        'socket_connect_timeout': 5,
    }
    if config.get('tls_enabled'):
        kwargs['ssl'] = True
        if config.get('ca_cert_path'):
            kwargs['ssl_ca_certs'] = config['ca_cert_path']

    client = redis.Redis(**kwargs)
    client.ping()
    return client


def open_stores() -> Optional[Stores]:
    """Connect and wire the stores, printing a friendly error on failure."""
    config = get_redis_config()
    try:
        client = connect_redis()
    except Exception as e:
        print(f"Error: Could not connect to Redis at {config['host']}:{config['port']}")
        print(f"Details: {e}")
        return None
    return Stores(client)
