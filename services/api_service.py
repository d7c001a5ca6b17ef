#!/usr/bin/env python3
"""
=====================================================================
FleetOps Reporting API Service
=====================================================================
Read API for reporting connectors plus the operator endpoints that
maintain global settings and per-site overrides.

It provides:
- Site listing at '/api/v1/sites'
- Per-site uptime at '/api/v1/sites/<id>/uptime'
- Per-site search KPIs at '/api/v1/sites/<id>/search-console'
- Fleet KPI rollup at '/api/v1/rollups/kpis'
- Operator login/logout, settings and site forms under '/admin'
- Health check at '/health'
- Prometheus metrics at '/metrics'

Read endpoints accept either an operator session or the connector token
(X-FleetOps-Connector-Token header or ?token=). Write endpoints require an
operator session plus the session's anti-forgery token and redirect
silently when either is missing.

Author: FleetOps Team
Version: 1.0
=====================================================================
"""

import os
import sys
import redis
import hvac
import logging
import signal
import uuid
import time
import threading
import secrets as secrets_module
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl
from flask import Flask, jsonify, Response, request, session, redirect, url_for, current_app
from prometheus_flask_exporter import PrometheusMetrics
from prometheus_client import Counter, Histogram, generate_latest, REGISTRY
from functools import wraps
from typing import Any, Callable, Dict

from services.redis_connector import get_redis_pool
from services.settings_store import SettingsStore, SettingsStoreError
from services.site_meta_store import SiteMetaStore
from services.snapshot_cache import SnapshotCache
from services.site_directory import SiteDirectory
from services.aggregator import FleetAggregator
from services.access_gate import (
    ADMIN_CAPABILITY,
    AccessGate,
    ConnectorTokenStrategy,
    OperatorSessionStrategy,
    operator_is_admin,
    tokens_match,
)
from services.admin_forms import apply_settings_form, is_checked, site_override_from_form
from services.formatting import canonicalize_date
from services.logging_utils import setup_json_logging

SERVICE_VERSION = "1.0.0"

# =====================================================================
# PROMETHEUS METRICS
# =====================================================================

METRIC_API_REQUESTS_TOTAL = Counter(
    'fleetops_api_requests_total',
    'Total requests to API endpoints',
    ['endpoint', 'status']
)

METRIC_API_LATENCY = Histogram(
    'fleetops_api_latency_seconds',
    'Request processing latency',
    ['endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

METRIC_AUTH_DENIED_TOTAL = Counter(
    'fleetops_auth_denied_total',
    'Requests rejected by the access gate or operator checks',
    ['surface']
)

# =====================================================================
# LOGGING SETUP
# =====================================================================

# Root handlers are installed by main() via setup_json_logging().
logger = logging.getLogger(__name__)


class CorrelationIdFilter(logging.Filter):
    """Automatically adds correlation ID to all log records."""
    def filter(self, record):
        try:
            record.correlation_id = request.correlation_id
        except (RuntimeError, AttributeError):
            record.correlation_id = "system"
        return True


logger.addFilter(CorrelationIdFilter())

# =====================================================================
# CONFIGURATION
# =====================================================================

class Config:
    """Service configuration loaded from environment variables."""

    def __init__(self):
        try:
            # Service Identity
            self.PORT = int(os.environ.get('SERVER_PORT_API', 8095))
            self.LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

            # Redis Config (settings, site metadata, snapshots)
            self.REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
            self.REDIS_PORT = int(os.environ.get('REDIS_PORT', 6379))
            self.REDIS_DB = int(os.environ.get('REDIS_DB', 0))
            self.REDIS_TLS_ENABLED = os.environ.get('REDIS_TLS_ENABLED', 'true').lower() == 'true'
            self.REDIS_CA_CERT_PATH = os.environ.get('REDIS_CA_CERT_PATH')
            self.REDIS_MAX_CONNECTIONS = int(os.environ.get('REDIS_MAX_CONNECTIONS', 10))
            self.KEY_PREFIX = os.environ.get('FLEETOPS_KEY_PREFIX', 'fleetops')

            # Vault Config
            self.VAULT_ADDR = os.environ.get('VAULT_ADDR')
            self.VAULT_ROLE_ID = os.environ.get('VAULT_ROLE_ID')
            self.VAULT_SECRET_ID_FILE = os.environ.get(
                'VAULT_SECRET_ID_FILE', '/etc/fleetops/secrets/vault_secret_id'
            )
            self.VAULT_SECRETS_PATH = os.environ.get('VAULT_SECRETS_PATH', 'secret/fleetops')
            self.VAULT_TOKEN_RENEW_THRESHOLD = int(os.environ.get('VAULT_TOKEN_RENEW_THRESHOLD', 3600))
            self.VAULT_RENEW_CHECK_INTERVAL = int(os.environ.get('VAULT_RENEW_CHECK_INTERVAL', 300))

            # Application Config
            self.UPTIME_PLACEHOLDER_TTL = int(os.environ.get('UPTIME_PLACEHOLDER_TTL', 600))
            self.SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', 'true').lower() == 'true'

            self._validate()

        except Exception as e:
            logger.error(f"FATAL: Configuration error: {e}")
            sys.exit(1)

    def _validate(self):
        """Validate critical configuration values."""
        if os.environ.get('PYTEST_CURRENT_TEST') or os.environ.get('FLEETOPS_TESTING', '').lower() == 'true':
            logger.warning("Testing mode detected: skipping strict config validation")
            logger.setLevel(self.LOG_LEVEL)
            return
        if not self.VAULT_ADDR:
            raise ValueError("VAULT_ADDR is required but not set")
        if not self.VAULT_ROLE_ID:
            raise ValueError("VAULT_ROLE_ID is required but not set")
        if self.PORT < 1 or self.PORT > 65535:
            raise ValueError(f"PORT invalid: {self.PORT}")
        if self.UPTIME_PLACEHOLDER_TTL <= 0:
            raise ValueError(f"UPTIME_PLACEHOLDER_TTL must be positive: {self.UPTIME_PLACEHOLDER_TTL}")

        if self.REDIS_TLS_ENABLED and not self.REDIS_CA_CERT_PATH:
            logger.warning("REDIS_TLS_ENABLED but no CA cert specified. Using system defaults.")

        logger.setLevel(self.LOG_LEVEL)
        logger.info("Configuration loaded and validated successfully")

# =====================================================================
# VAULT SECRET MANAGEMENT
# =====================================================================

def fetch_secrets(app: Flask) -> None:
    """Connects to Vault, fetches secrets, and starts renewal thread."""
    config = app.config["FLEETOPS_CONFIG"]

    try:
        logger.info(f"Connecting to Vault at {config.VAULT_ADDR}...")
        vault_client = hvac.Client(url=config.VAULT_ADDR)

        if not os.path.exists(config.VAULT_SECRET_ID_FILE):
            raise FileNotFoundError(f"Vault secret ID file not found: {config.VAULT_SECRET_ID_FILE}")

        with open(config.VAULT_SECRET_ID_FILE, 'r') as f:
            secret_id = f.read().strip()

        if not secret_id:
            raise ValueError("Vault secret ID file is empty")

        auth_response = vault_client.auth.approle.login(
            role_id=config.VAULT_ROLE_ID,
            secret_id=secret_id
        )

        if not vault_client.is_authenticated():
            raise Exception("Vault authentication failed.")

        logger.info("Successfully authenticated to Vault")
        logger.info(f"Token TTL: {auth_response['auth']['lease_duration']}s")

        response = vault_client.secrets.kv.v2.read_secret_version(
            path=config.VAULT_SECRETS_PATH
        )
        data = response['data']['data']

        app.config["SECRETS"] = {
            "FLASK_SECRET_KEY": data.get('FLASK_SECRET_KEY'),
            "OPERATOR_USERNAME": data.get('OPERATOR_USERNAME', 'operator'),
            "OPERATOR_PASSWORD": data.get('OPERATOR_PASSWORD'),
            "REDIS_PASS_CURRENT": data.get('REDIS_PASS_CURRENT') or data.get('REDIS_PASS'),
            "REDIS_PASS_NEXT": data.get('REDIS_PASS_NEXT'),
        }

        if not app.config["SECRETS"]["FLASK_SECRET_KEY"]:
            raise ValueError("FLASK_SECRET_KEY not found in Vault")
        if not app.config["SECRETS"]["OPERATOR_PASSWORD"]:
            logger.warning("OPERATOR_PASSWORD not set in Vault; operator login is disabled")

        logger.info("Successfully loaded secrets from Vault")

        app.config["VAULT_CLIENT"] = vault_client
        start_vault_token_renewal(app)

    except Exception as e:
        logger.error(f"FATAL: Failed to fetch secrets from Vault: {e}", exc_info=True)
        sys.exit(1)


def start_vault_token_renewal(app: Flask) -> None:
    """Starts a background daemon thread for Vault token renewal."""
    config = app.config["FLEETOPS_CONFIG"]
    vault_client = app.config["VAULT_CLIENT"]
    stop_event = threading.Event()
    app.config["VAULT_RENEWAL_STOP"] = stop_event

    def renewal_loop():
        while not stop_event.is_set():
            try:
                stop_event.wait(config.VAULT_RENEW_CHECK_INTERVAL)
                if stop_event.is_set():
                    break

                token_info = vault_client.auth.token.lookup_self()['data']
                ttl = token_info['ttl']
                renewable = token_info.get('renewable', False)

                logger.debug(f"Vault token TTL: {ttl}s, Renewable: {renewable}")

                if renewable and ttl < config.VAULT_TOKEN_RENEW_THRESHOLD:
                    logger.info(f"Renewing Vault token (TTL: {ttl}s)...")
                    renew_response = vault_client.auth.token.renew_self()
                    logger.info(f"Vault token renewed. New TTL: {renew_response['auth']['lease_duration']}s")
                elif not renewable and ttl < config.VAULT_TOKEN_RENEW_THRESHOLD:
                    logger.warning(
                        f"Vault token is not renewable and has {ttl}s remaining! "
                        "Service restart needed."
                    )

            except Exception as e:
                logger.error(f"Error in Vault token renewal: {e}")

        logger.info("Vault token renewal thread stopped")

    thread = threading.Thread(target=renewal_loop, daemon=True, name="VaultTokenRenewal")
    thread.start()
    app.config["VAULT_RENEWAL_THREAD"] = thread
    logger.info("Vault token renewal thread started")

# =====================================================================
# REDIS CONNECTION POOL
# =====================================================================

def create_redis_pool(app: Flask) -> None:
    """Creates the Redis pool and the shared client used by all stores."""
    config = app.config["FLEETOPS_CONFIG"]
    secrets = app.config["SECRETS"]

    try:
        logger.info(f"Connecting to Redis at {config.REDIS_HOST}:{config.REDIS_PORT}...")
        pool = get_redis_pool(
            host=config.REDIS_HOST,
            port=config.REDIS_PORT,
            db=config.REDIS_DB,
            tls_enabled=config.REDIS_TLS_ENABLED,
            ca_cert_path=config.REDIS_CA_CERT_PATH,
            password_current=secrets.get('REDIS_PASS_CURRENT'),
            password_next=secrets.get('REDIS_PASS_NEXT'),
            max_connections=config.REDIS_MAX_CONNECTIONS,
            logger=logger,
        )
        app.redis_pool = pool
        app.config["REDIS_CLIENT"] = redis.Redis(connection_pool=pool)
        logger.info("Successfully connected to Redis (dual-password aware)")
    except Exception as e:
        logger.error(f"FATAL: Could not create Redis connection pool: {e}", exc_info=True)
        sys.exit(1)

# =====================================================================
# AUTHENTICATION DECORATORS
# =====================================================================

def _unauthorized(surface: str):
    METRIC_AUTH_DENIED_TOTAL.labels(surface=surface).inc()
    logger.warning(f"Authentication failed from {request.remote_addr} on {request.path}")
    return jsonify({"error": "Unauthorized", "correlation_id": request.correlation_id}), 401


def require_access(f: Callable) -> Callable:
    """Read endpoints: operator session or connector token."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        gate = current_app.config["ACCESS_GATE"]
        try:
            allowed = gate.authorize(request, session)
        except (redis.exceptions.ConnectionError, SettingsStoreError) as e:
            logger.error(f"Could not load connector token: {e}")
            return jsonify({"error": "Redis connection failed"}), 503
        if not allowed:
            return _unauthorized('read')
        return f(*args, **kwargs)

    return decorated_function


def require_operator(f: Callable) -> Callable:
    """Operator-only JSON endpoints."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not operator_is_admin(session):
            return _unauthorized('operator')
        return f(*args, **kwargs)

    return decorated_function


def _csrf_valid() -> bool:
    return tokens_match(session.get('csrf_token'), request.form.get('csrf_token'))

# =====================================================================
# UTILITY FUNCTIONS
# =====================================================================

def add_query_arg(url: str, key: str, value: str) -> str:
    """Return `url` with one query parameter set."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def _admin_redirect_target() -> str:
    """The referring page if it is on this host, otherwise the settings view."""
    referrer = request.referrer
    if referrer:
        netloc = urlsplit(referrer).netloc
        if not netloc or netloc == request.host:
            return referrer
    return url_for('admin_get_settings')

# =====================================================================
# FLASK APPLICATION FACTORY
# =====================================================================

def create_app() -> Flask:
    """Creates and configures the Flask application."""

    app = Flask(__name__)

    app.config["FLEETOPS_CONFIG"] = Config()
    config = app.config["FLEETOPS_CONFIG"]

    fetch_secrets(app)
    create_redis_pool(app)

    app.secret_key = app.config["SECRETS"]["FLASK_SECRET_KEY"]
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE='Lax',
        SESSION_COOKIE_SECURE=config.SESSION_COOKIE_SECURE,
    )

    redis_client = app.config["REDIS_CLIENT"]
    settings_store = SettingsStore(redis_client, prefix=config.KEY_PREFIX)
    site_meta_store = SiteMetaStore(redis_client, settings_store, prefix=config.KEY_PREFIX)
    snapshot_cache = SnapshotCache(redis_client, prefix=config.KEY_PREFIX,
                                   placeholder_ttl=config.UPTIME_PLACEHOLDER_TTL)
    site_directory = SiteDirectory(redis_client, prefix=config.KEY_PREFIX)
    aggregator = FleetAggregator(settings_store, site_meta_store, snapshot_cache, site_directory)

    app.config["SETTINGS_STORE"] = settings_store
    app.config["SITE_META_STORE"] = site_meta_store
    app.config["SNAPSHOT_CACHE"] = snapshot_cache
    app.config["AGGREGATOR"] = aggregator
    app.config["ACCESS_GATE"] = AccessGate([
        OperatorSessionStrategy(),
        ConnectorTokenStrategy(settings_store),
    ])

    # First read generates the connector token if none exists yet.
    try:
        settings_store.get()
    except SettingsStoreError as e:
        logger.warning(f"Could not initialize settings at startup: {e}")
    finally:
        settings_store.invalidate()

    PrometheusMetrics(app, path=None)

    def instrumented(endpoint: str) -> Callable:
        """Latency/outcome metrics and uniform infrastructure error handling."""
        def decorator(f: Callable) -> Callable:
            @wraps(f)
            def wrapper(*args, **kwargs):
                with METRIC_API_LATENCY.labels(endpoint=endpoint).time():
                    try:
                        result = f(*args, **kwargs)
                        METRIC_API_REQUESTS_TOTAL.labels(endpoint=endpoint, status='success').inc()
                        return result
                    except (redis.exceptions.ConnectionError, SettingsStoreError) as e:
                        logger.error(f"Redis error in {endpoint}: {e}", exc_info=True)
                        METRIC_API_REQUESTS_TOTAL.labels(endpoint=endpoint, status='fail_redis').inc()
                        return jsonify({"error": "Redis connection failed"}), 503
                    except Exception as e:
                        logger.error(f"Unhandled error in {endpoint}: {e}", exc_info=True)
                        METRIC_API_REQUESTS_TOTAL.labels(endpoint=endpoint, status='fail_unknown').inc()
                        return jsonify({"error": "Internal server error"}), 500
            return wrapper
        return decorator

    # ================================================================
    # REQUEST LIFECYCLE HOOKS
    # ================================================================

    @app.before_request
    def setup_request_context():
        """Set up request-specific context."""
        request.correlation_id = request.headers.get('X-Correlation-ID', str(uuid.uuid4()))
        request.start_time = time.time()

    @app.after_request
    def log_request(response):
        """Log request after processing."""
        if hasattr(request, 'start_time'):
            duration = time.time() - request.start_time
            logger.info(
                f"{request.method} {request.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {duration:.3f}s"
            )
        response.headers['X-Correlation-ID'] = request.correlation_id
        return response

    @app.teardown_request
    def drop_settings_cache(exc=None):
        """Settings are cached for one request only."""
        settings_store.invalidate()

    # ================================================================
    # PUBLIC ENDPOINTS (NO AUTH)
    # ================================================================

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check for load balancers and orchestrators."""
        try:
            app.config["REDIS_CLIENT"].ping()
            return jsonify({
                "status": "healthy",
                "service": "fleetops-api",
                "version": SERVICE_VERSION,
                "redis": "connected",
            }), 200
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return jsonify({
                "status": "unhealthy",
                "service": "fleetops-api",
                "version": SERVICE_VERSION,
                "error": str(e)
            }), 503

    @app.route('/metrics', methods=['GET'])
    def prometheus_metrics():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(REGISTRY), mimetype='text/plain')

    # ================================================================
    # READ API (OPERATOR SESSION OR CONNECTOR TOKEN)
    # ================================================================

    @app.route('/api/v1/sites', methods=['GET'])
    @require_access
    @instrumented('sites')
    def list_sites():
        """Every site with a stored override, joined with directory details."""
        return jsonify(aggregator.list_site_payloads())

    @app.route('/api/v1/sites/<int:site_id>/uptime', methods=['GET'])
    @require_access
    @instrumented('site_uptime')
    def get_site_uptime(site_id: int):
        """Cached uptime snapshot ('unknown' placeholder when not yet collected)."""
        return jsonify(snapshot_cache.get_uptime(site_id))

    @app.route('/api/v1/sites/<int:site_id>/search-console', methods=['GET'])
    @require_access
    @instrumented('site_kpis')
    def get_site_kpis(site_id: int):
        """
        Cached search KPIs for a site with the requested range echoed back.

        KPI fields are omitted entirely when nothing is cached.
        """
        data: Dict[str, Any] = dict(snapshot_cache.get_kpis(site_id) or {})
        data['start'] = canonicalize_date(request.args.get('start'))
        data['end'] = canonicalize_date(request.args.get('end'))
        return jsonify(data)

    @app.route('/api/v1/rollups/kpis', methods=['GET'])
    @require_access
    @instrumented('rollup_kpis')
    def get_rollup_kpis():
        """Fleet-wide KPI rollup."""
        return jsonify(aggregator.compute_rollup())

    # ================================================================
    # OPERATOR SESSION
    # ================================================================

    @app.route('/admin/login', methods=['POST'])
    def admin_login():
        """Start an operator session; returns the anti-forgery token for form posts."""
        payload = request.get_json(silent=True) or request.form
        username = str(payload.get('username', ''))
        password = str(payload.get('password', ''))
        secrets = app.config["SECRETS"]

        user_ok = tokens_match(secrets.get('OPERATOR_USERNAME'), username)
        password_ok = tokens_match(secrets.get('OPERATOR_PASSWORD'), password)
        if not (user_ok and password_ok):
            return _unauthorized('login')

        session.clear()
        session['operator'] = {'name': username, 'capabilities': [ADMIN_CAPABILITY]}
        session['csrf_token'] = secrets_module.token_urlsafe(32)
        logger.info(f"Operator session started for {username}")
        return jsonify({"operator": username, "csrf_token": session['csrf_token']})

    @app.route('/admin/logout', methods=['POST'])
    def admin_logout():
        """End the operator session."""
        session.clear()
        return jsonify({"status": "logged_out"})

    @app.route('/admin/settings', methods=['GET'])
    @require_operator
    @instrumented('admin_settings')
    def admin_get_settings():
        """Current global settings for the operator settings form."""
        return jsonify({
            "settings": settings_store.get(),
            "csrf_token": session.get('csrf_token'),
            "updated": request.args.get('settings-updated') == '1',
        })

    @app.route('/admin/sites/<int:site_id>', methods=['GET'])
    @require_operator
    @instrumented('admin_site')
    def admin_get_site(site_id: int):
        """Operator overview of one site (override or defaults, snapshots, display values)."""
        overview = aggregator.site_overview(site_id)
        overview['csrf_token'] = session.get('csrf_token')
        return jsonify(overview)

    # ================================================================
    # OPERATOR FORM POSTS (SILENT REDIRECT ON REJECTION)
    # ================================================================

    @app.route('/admin/settings', methods=['POST'])
    def admin_save_settings():
        """Save the global settings form."""
        target = _admin_redirect_target()
        if not operator_is_admin(session) or not _csrf_valid():
            METRIC_AUTH_DENIED_TOTAL.labels(surface='settings_form').inc()
            logger.warning(f"Ignoring unauthorized settings form post from {request.remote_addr}")
            return redirect(target)

        updated = apply_settings_form(settings_store.get(), request.form)
        settings_store.save(updated, regenerate=is_checked(request.form, 'regenerate_token'))
        logger.info(f"Settings updated by operator {session['operator'].get('name')}")
        return redirect(add_query_arg(target, 'settings-updated', '1'))

    @app.route('/admin/sites', methods=['POST'])
    def admin_save_site():
        """Save one site's override form."""
        target = _admin_redirect_target()
        if not operator_is_admin(session) or not _csrf_valid():
            METRIC_AUTH_DENIED_TOTAL.labels(surface='site_form').inc()
            logger.warning(f"Ignoring unauthorized site form post from {request.remote_addr}")
            return redirect(target)

        accepted = site_meta_store.save_one(
            request.form.get('site_id'),
            site_override_from_form(request.form),
        )
        if accepted:
            return redirect(add_query_arg(target, 'site-updated', '1'))
        return redirect(target)

    logger.info("FleetOps API application created")
    return app

# =====================================================================
# GRACEFUL SHUTDOWN
# =====================================================================

def setup_signal_handlers(app: Flask) -> None:
    """Set up signal handlers for graceful shutdown."""

    def shutdown_handler(signum, frame):
        sig_name = 'SIGTERM' if signum == signal.SIGTERM else 'SIGINT'
        logger.warning(f"{sig_name} received. Initiating graceful shutdown...")

        if "VAULT_RENEWAL_STOP" in app.config:
            logger.info("Stopping Vault token renewal thread...")
            app.config["VAULT_RENEWAL_STOP"].set()
            if "VAULT_RENEWAL_THREAD" in app.config:
                app.config["VAULT_RENEWAL_THREAD"].join(timeout=5)

        if getattr(app, 'redis_pool', None) is not None:
            logger.info("Closing Redis connection pool...")
            app.redis_pool.disconnect()

        logger.info("Graceful shutdown complete. Exiting.")
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)
    logger.info("Signal handlers registered for graceful shutdown")


def main() -> None:
    setup_json_logging(service_name="fleetops-api", version=SERVICE_VERSION,
                       level=os.environ.get('LOG_LEVEL', 'INFO'))
    app = create_app()
    setup_signal_handlers(app)
    app.run(host='0.0.0.0', port=app.config["FLEETOPS_CONFIG"].PORT)


if __name__ == '__main__':
    main()
