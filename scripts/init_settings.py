#!/usr/bin/env python3
"""
FleetOps - Settings Initialization Script

Seeds the global settings record in Redis from environment variables.
Should be run once during initial deployment, or with --force to push
changed environment values into an existing record.

Fields without a matching environment variable keep their stored value (or
the built-in default). A connector token is generated when none exists.

Usage:
    # Initialize from environment variables
    python scripts/init_settings.py

    # Dry-run mode (show what would be set)
    python scripts/init_settings.py --dry-run

    # Force overwrite existing values
    python scripts/init_settings.py --force

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import argparse
import json
import logging
import os
import sys
from typing import Dict, Tuple

import redis

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.settings_store import SettingsStore, decode_json_mapping, generate_token  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Settings field -> environment variable
SETTINGS_MAPPINGS: Dict[Tuple[str, str], str] = {
    ('monitoring', 'base_url'): 'FLEETOPS_MONITORING_BASE_URL',
    ('monitoring', 'mode'): 'FLEETOPS_MONITORING_MODE',
    ('monitoring', 'api_key'): 'FLEETOPS_MONITORING_API_KEY',
    ('analytics', 'client_id'): 'FLEETOPS_ANALYTICS_CLIENT_ID',
    ('analytics', 'client_secret'): 'FLEETOPS_ANALYTICS_CLIENT_SECRET',
    ('defaults', 'report_url'): 'FLEETOPS_DEFAULT_REPORT_URL',
    ('connector', 'api_token'): 'FLEETOPS_CONNECTOR_TOKEN',
}

SECRET_FIELDS = {('monitoring', 'api_key'), ('analytics', 'client_secret'), ('connector', 'api_token')}


def connect_to_redis(args) -> redis.Redis:
    """
    Connect to Redis.

    Args:
        args: Command-line arguments with connection parameters

    Returns:
        Redis client instance

    Raises:
        Exception: If connection fails
    """
    try:
        client = redis.Redis(
            host=args.redis_host,
            port=args.redis_port,
            db=args.redis_db,
            password=os.getenv('REDIS_PASSWORD') or None,
            decode_responses=True,
            socket_timeout=5
        )

        client.ping()
        logger.info(f"Connected to Redis: {args.redis_host}:{args.redis_port}")
        return client

    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise


def _shown(field: Tuple[str, str], value) -> str:
    if field in SECRET_FIELDS and value:
        return '********'
    return repr(value)


def initialize_settings(
    redis_client: redis.Redis,
    prefix: str,
    force: bool = False,
    dry_run: bool = False,
    environ: Dict[str, str] = None,
) -> Tuple[int, int, int]:
    """
    Merge environment-supplied values into the stored settings record.

    Args:
        redis_client: Redis client instance
        prefix: Key prefix (e.g., "fleetops")
        force: If True, overwrite fields that already have a value
        dry_run: If True, only show what would be done
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Tuple of (created_count, skipped_count, updated_count)
    """
    environ = os.environ if environ is None else environ
    store = SettingsStore(redis_client, prefix=prefix)
    settings = SettingsStore.merge_defaults(decode_json_mapping(redis_client.get(store.key)))

    created_count = 0
    skipped_count = 0
    updated_count = 0

    logger.info("Initializing FleetOps settings...")
    logger.info(f"Key: {store.key}")
    logger.info(f"Force mode: {force}")
    logger.info(f"Dry-run mode: {dry_run}")
    logger.info("=" * 80)

    for (section, key), env_var in SETTINGS_MAPPINGS.items():
        name = f"{section}.{key}"
        if env_var not in environ:
            logger.debug(f"    {name}: {env_var} not set")
            continue

        value = environ[env_var]
        existing = settings[section].get(key)

        if existing:
            if not force:
                logger.info(f"⏭️  SKIP {name} = {_shown((section, key), existing)} (already set)")
                skipped_count += 1
                continue
            logger.info(
                f"{'[DRY-RUN] ' if dry_run else '✏️  '}UPDATE {name}: "
                f"{_shown((section, key), existing)} → {_shown((section, key), value)}"
            )
            updated_count += 1
        else:
            logger.info(f"{'[DRY-RUN] ' if dry_run else '✅ '}CREATE {name} = {_shown((section, key), value)}")
            created_count += 1

        settings[section][key] = value

    if not settings['connector'].get('api_token'):
        logger.info(f"{'[DRY-RUN] ' if dry_run else '✅ '}CREATE connector.api_token (generated)")
        settings['connector']['api_token'] = generate_token()
        created_count += 1

    if not dry_run and (created_count or updated_count):
        store.save(settings)

    return created_count, skipped_count, updated_count


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='FleetOps - Initialize Global Settings',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Initialize from environment variables
  python scripts/init_settings.py

  # Dry-run (show what would be set)
  python scripts/init_settings.py --dry-run

  # Force overwrite existing values
  python scripts/init_settings.py --force

  # Custom Redis connection
  python scripts/init_settings.py --redis-host redis.example.com --redis-port 6380
        """
    )

    parser.add_argument(
        '--redis-host',
        default=os.getenv('REDIS_HOST', 'localhost'),
        help='Redis host (default: localhost)'
    )
    parser.add_argument(
        '--redis-port',
        type=int,
        default=int(os.getenv('REDIS_PORT', '6379')),
        help='Redis port (default: 6379)'
    )
    parser.add_argument(
        '--redis-db',
        type=int,
        default=int(os.getenv('REDIS_DB', '0')),
        help='Redis database number (default: 0)'
    )
    parser.add_argument(
        '--prefix',
        default=os.getenv('FLEETOPS_KEY_PREFIX', 'fleetops'),
        help='Key prefix (default: fleetops)'
    )
    parser.add_argument(
        '--force',
        action='store_true',
        help='Force overwrite existing values'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be done without making changes'
    )
    parser.add_argument(
        '--show',
        action='store_true',
        help='Print the resulting record (secrets masked)'
    )

    args = parser.parse_args()

    try:
        redis_client = connect_to_redis(args)

        created, skipped, updated = initialize_settings(
            redis_client,
            args.prefix,
            force=args.force,
            dry_run=args.dry_run
        )

        # Summary
        logger.info("")
        logger.info("=" * 80)
        logger.info("Summary:")
        logger.info(f"  ✅ Created: {created}")
        logger.info(f"  ✏️  Updated: {updated}")
        logger.info(f"  ⏭️  Skipped: {skipped}")

        if args.dry_run:
            logger.info("")
            logger.info("🔍 DRY-RUN MODE - No changes were made")
            logger.info("   Run without --dry-run to apply changes")

        logger.info("=" * 80)

        if args.show and not args.dry_run:
            record = SettingsStore(redis_client, prefix=args.prefix).get()
            for section, key in SECRET_FIELDS:
                if record.get(section, {}).get(key):
                    record[section][key] = '********'
            print(json.dumps(record, indent=2, sort_keys=True))

        return 0

    except Exception as e:
        logger.error(f"Initialization failed: {e}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
