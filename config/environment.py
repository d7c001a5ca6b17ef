#!/usr/bin/env python3
"""
FleetOps - Environment Configuration

Central configuration for FleetOps command-line tools and scripts, read from
environment variables. The API service reads the same variables through its
own Config class (services/api_service.py).

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import os


# =====================================================================
# REDIS CONFIGURATION
# =====================================================================

REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
REDIS_PORT = int(os.getenv('REDIS_PORT', '6379'))
REDIS_DB = int(os.getenv('REDIS_DB', '0'))
REDIS_PASSWORD = os.getenv('REDIS_PASSWORD', None)
REDIS_TLS_ENABLED = os.getenv('REDIS_TLS_ENABLED', 'false').lower() == 'true'
REDIS_CA_CERT_PATH = os.getenv('REDIS_CA_CERT_PATH', None)

# Namespace for every FleetOps key (settings, site_meta, uptime, kpis, directory)
KEY_PREFIX = os.getenv('FLEETOPS_KEY_PREFIX', 'fleetops')

# =====================================================================
# CACHE CONFIGURATION
# =====================================================================

# Seconds the "unknown" uptime placeholder stays cached after a miss
UPTIME_PLACEHOLDER_TTL = int(os.getenv('UPTIME_PLACEHOLDER_TTL', '600'))

# =====================================================================
# SERVICE CONFIGURATION
# =====================================================================

API_HOST = os.getenv('API_HOST', 'localhost')
API_PORT = int(os.getenv('SERVER_PORT_API', '8095'))

# =====================================================================
# LOGGING CONFIGURATION
# =====================================================================

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# =====================================================================
# HELPER FUNCTIONS
# =====================================================================

def get_redis_config() -> dict:
    """
    Get Redis configuration as a dictionary.

    Returns:
        dict: Redis connection parameters

    Examples:
        >>> config = get_redis_config()
        >>> print(config['host'])  # 'localhost'
    """
    config = {
        'host': REDIS_HOST,
        'port': REDIS_PORT,
        'db': REDIS_DB,
        'tls_enabled': REDIS_TLS_ENABLED,
    }
    if REDIS_PASSWORD:
        config['password'] = REDIS_PASSWORD
    if REDIS_CA_CERT_PATH:
        config['ca_cert_path'] = REDIS_CA_CERT_PATH
    return config


def get_cache_config() -> dict:
    """Store and snapshot cache settings."""
    return {
        'key_prefix': KEY_PREFIX,
        'uptime_placeholder_ttl': UPTIME_PLACEHOLDER_TTL,
    }


def get_api_url() -> str:
    """Base URL of the local FleetOps API."""
    return f"http://{API_HOST}:{API_PORT}"


def validate_config() -> list:
    """
    Validate configuration and return any warnings.

    Returns:
        list: List of warning messages (empty if all valid)
    """
    warnings = []

    if UPTIME_PLACEHOLDER_TTL < 60:
        warnings.append(
            f"Uptime placeholder TTL ({UPTIME_PLACEHOLDER_TTL}s) is very short. "
            "Unpolled sites will hit Redis on almost every request"
        )

    if not REDIS_PASSWORD:
        warnings.append("REDIS_PASSWORD is not set; connecting without AUTH")

    return warnings


if __name__ == "__main__":
    print("FleetOps Configuration")
    print("=" * 60)

    print("\nRedis:")
    for key, value in get_redis_config().items():
        if key == 'password':
            value = '***' if value else None
        print(f"  {key}: {value}")

    print("\nCache:")
    for key, value in get_cache_config().items():
        print(f"  {key}: {value}")

    print(f"\nAPI: {get_api_url()}")

    print("\nValidation:")
    warnings = validate_config()
    if warnings:
        for warning in warnings:
            print(f"  WARNING: {warning}")
    else:
        print("  Configuration looks good")
