#!/usr/bin/env python3
"""
FleetOps - Global Settings Store

Redis-backed storage for the process-wide settings record (monitoring
integration, analytics OAuth client, report defaults and the connector API
token) with a request-scoped local cache.

Key Features:
- Whole record stored as one JSON value (writes are atomic for readers)
- Local cache held until invalidate(); the API drops it after every request
- Missing top-level sections filled from hard-coded defaults
- Connector token generated once, under WATCH/MULTI, and whenever
  regeneration is asked for

Usage:
    from services.settings_store import SettingsStore

    store = SettingsStore(redis_client, prefix="fleetops")
    settings = store.get()
    settings['defaults']['report_url'] = 'https://reports.example.com/fleet'
    store.save(settings)

    # Rotate the connector token
    store.save(store.get(), regenerate=True)

    # End of request / session
    store.invalidate()

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import copy
import json
import logging
import secrets
import string
import threading
from typing import Any, Dict, Optional

from redis.exceptions import WatchError

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 32
TOKEN_ALPHABET = string.ascii_letters + string.digits

MONITORING_MODES = ('status-page', 'badges', 'metrics')
DEFAULT_MONITORING_MODE = 'status-page'

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    'monitoring': {
        'base_url': '',
        'mode': DEFAULT_MONITORING_MODE,
        'api_key': '',
    },
    'analytics': {
        'client_id': '',
        'client_secret': '',
        'connected': False,
    },
    'connector': {
        'api_token': '',
    },
    'defaults': {
        'report_url': '',
    },
}


class SettingsStoreError(Exception):
    """Raised when the backing store cannot be read or written."""
    pass


def generate_token(length: int = TOKEN_LENGTH) -> str:
    """Random alphanumeric token for connector authentication."""
    return ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def decode_json_mapping(raw: Any) -> Dict[str, Any]:
    """
    Decode a stored JSON value into a dict.

    Anything that is missing, undecodable or not a JSON object yields an
    empty dict.
    """
    if raw is None:
        return {}
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8', errors='replace')
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable JSON value from store")
        return {}
    if not isinstance(value, dict):
        logger.warning(f"Discarding non-mapping value from store (got {type(value).__name__})")
        return {}
    return value


class SettingsStore:
    """
    Global settings with a scoped local cache.

    The first get() loads and caches one merged record; later calls return
    copies of it until save() or invalidate() drops it. Callers bound the
    cache lifetime: the API invalidates at the end of every request, so a
    token rotated by another worker stops working on that worker's next
    request.

    Attributes:
        redis: Redis client instance (decode_responses=True recommended)
        key: Redis key holding the JSON settings record
    """

    def __init__(self, redis_client, prefix: str = "fleetops"):
        self.redis = redis_client
        self.key = f"{prefix}:settings"
        self._cached: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    def get(self) -> Dict[str, Any]:
        """
        Return the merged settings record.

        On a cache miss the stored record is loaded and missing top-level
        sections are filled from DEFAULT_SETTINGS. An empty connector token
        is replaced by a freshly generated one, persisted before returning.

        Returns:
            A copy of the settings; mutating it does not affect the cache.

        Raises:
            SettingsStoreError: If Redis cannot be read or written
        """
        with self._lock:
            if self._cached is not None:
                return copy.deepcopy(self._cached)

        try:
            stored = decode_json_mapping(self.redis.get(self.key))
        except Exception as e:
            logger.error(f"Failed to read settings from Redis: {e}")
            raise SettingsStoreError(f"Failed to read settings: {e}") from e

        settings = self.merge_defaults(stored)

        if not settings['connector'].get('api_token'):
            settings = self._store_generated_token()

        with self._lock:
            self._cached = settings

        return copy.deepcopy(settings)

    def save(self, settings: Dict[str, Any], regenerate: bool = False) -> Dict[str, Any]:
        """
        Persist a complete settings record.

        Field formats are not validated here; callers sanitize input first.
        When `regenerate` is True a new token replaces whatever token the
        record carries.

        Returns:
            The record as written.

        Raises:
            SettingsStoreError: If Redis cannot be written
        """
        record = copy.deepcopy(settings)
        connector = record.get('connector')
        if not isinstance(connector, dict):
            connector = {}
            record['connector'] = connector

        if regenerate:
            connector['api_token'] = generate_token()
            logger.info("Connector API token regenerated")

        self.invalidate()
        self._write(record)
        logger.info("Settings saved")
        return record

    def regenerate_token(self) -> str:
        """Rotate the connector token and return the new value."""
        return self.save(self.get(), regenerate=True)['connector']['api_token']

    def invalidate(self) -> None:
        """Drop the cached record; the next get() reloads from Redis."""
        with self._lock:
            self._cached = None
        logger.debug("Settings cache invalidated")

    def _store_generated_token(self) -> Dict[str, Any]:
        """
        Write a new connector token unless another writer stored one first.

        The record is re-read under WATCH. If it changes before EXEC the
        attempt is retried, and a token found on re-read is adopted as is.
        """
        try:
            with self.redis.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(self.key)
                        settings = self.merge_defaults(decode_json_mapping(pipe.get(self.key)))
                        if settings['connector'].get('api_token'):
                            pipe.unwatch()
                            logger.info("Using connector API token stored by another process")
                            return settings

                        settings['connector']['api_token'] = generate_token()
                        pipe.multi()
                        pipe.set(self.key, json.dumps(settings))
                        pipe.execute()
                        logger.info("Generated connector API token")
                        return settings
                    except WatchError:
                        logger.debug("Settings changed during token generation, retrying")
        except Exception as e:
            logger.error(f"Failed to store generated connector token: {e}")
            raise SettingsStoreError(f"Failed to store connector token: {e}") from e

    def _write(self, settings: Dict[str, Any]) -> None:
        try:
            self.redis.set(self.key, json.dumps(settings))
        except Exception as e:
            logger.error(f"Failed to write settings to Redis: {e}")
            raise SettingsStoreError(f"Failed to write settings: {e}") from e

    @staticmethod
    def merge_defaults(stored: Dict[str, Any]) -> Dict[str, Any]:
        # Shallow per top-level key: a stored section replaces the default one.
        merged = copy.deepcopy(DEFAULT_SETTINGS)
        for section, value in stored.items():
            if section in DEFAULT_SETTINGS and not isinstance(value, dict):
                logger.warning(f"Ignoring malformed settings section: {section}")
                continue
            merged[section] = copy.deepcopy(value)
        return merged
