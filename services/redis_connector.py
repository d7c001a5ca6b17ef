#!/usr/bin/env python3
"""
Redis connector for the FleetOps settings store and snapshot cache.

Builds a validated ConnectionPool, trying the CURRENT password first and the
NEXT password second so credentials can rotate without downtime. A single
password (or none, for local development) is also accepted.
"""

from typing import Optional
import logging
import redis


def get_redis_pool(
    *,
    host: str,
    port: int,
    db: int = 0,
    tls_enabled: bool = True,
    ca_cert_path: Optional[str] = None,
    password_current: Optional[str] = None,
    password_next: Optional[str] = None,
    max_connections: int = 10,
    logger: Optional[logging.Logger] = None,
) -> redis.ConnectionPool:
    log = logger or logging.getLogger(__name__)

    def _build_pool(password: Optional[str]) -> redis.ConnectionPool:
        kwargs = {
            'host': host,
            'port': port,
            'db': db,
            'password': password,
            'decode_responses': True,
            'socket_connect_timeout': 5,
            'socket_keepalive': True,
            'max_connections': max_connections,
        }
        if tls_enabled:
            kwargs['connection_class'] = redis.SSLConnection
            kwargs['ssl_cert_reqs'] = 'required'
            if ca_cert_path:
                kwargs['ssl_ca_certs'] = ca_cert_path
        pool = redis.ConnectionPool(**kwargs)
        redis.Redis(connection_pool=pool).ping()
        return pool

    if not password_current and not password_next:
        log.warning("No Redis password supplied; connecting without AUTH")
        return _build_pool(None)

    last_error: Optional[Exception] = None

    for label, password in (('CURRENT', password_current), ('NEXT', password_next)):
        if not password:
            continue
        try:
            log.info(f"Attempting Redis pool at {host}:{port}/{db} with {label} password...")
            return _build_pool(password)
        except Exception as e:
            last_error = e
            log.warning(f"Redis connection with {label} password failed: {e}")

    if last_error is not None:
        raise last_error

    raise RuntimeError("Failed to create Redis pool with provided passwords")
