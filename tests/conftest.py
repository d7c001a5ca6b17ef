# =====================================================================
# FleetOps Pytest Configuration and Fixtures
# =====================================================================
# Shared fixtures for all tests: an in-memory Redis stand-in with a
# controllable clock, pre-wired stores and the Flask test application.
# =====================================================================

import fnmatch
import json

import pytest
from prometheus_client import REGISTRY
from redis.exceptions import WatchError


# --- Prometheus Metrics Cleanup ---

@pytest.fixture(autouse=True, scope="function")
def cleanup_prometheus_metrics():
    """
    Unregister per-app Flask exporter metrics after each test.

    prometheus_flask_exporter registers its 'flask_*' collectors every time
    create_app() runs, which would otherwise fail with 'Duplicated timeseries
    in CollectorRegistry' on the next app. Module-level 'fleetops_*' metrics
    are created once at import and stay registered.
    """
    yield

    collectors_to_remove = []
    for collector in list(REGISTRY._collector_to_names.keys()):
        try:
            names = REGISTRY._collector_to_names.get(collector, set())
            if any(name.startswith('flask_') for name in names):
                collectors_to_remove.append(collector)
        except Exception:
            pass

    for collector in collectors_to_remove:
        try:
            REGISTRY.unregister(collector)
        except Exception:
            pass


# --- In-memory Redis ---

class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """
    Just enough of redis.Redis (decode_responses=True) for the stores.

    Key expiry follows `clock`, so TTL behaviour can be tested without sleeping.
    Set `fail_with` to an exception instance to make every call raise it.
    """

    def __init__(self, clock=None):
        self.clock = clock or FakeClock()
        self.data = {}
        self.expires = {}
        self.fail_with = None
        self.calls = []
        self.versions = {}
        self.on_multi = None

    def _check(self, name):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def _store(self, key, value):
        self.data[key] = value
        self.expires.pop(key, None)
        self.versions[key] = self.versions.get(key, 0) + 1

    def _expire_if_due(self, key):
        deadline = self.expires.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.data.pop(key, None)
            self.expires.pop(key, None)

    def ping(self):
        self._check('ping')
        return True

    def get(self, key):
        self._check('get')
        self._expire_if_due(key)
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    def set(self, key, value, ex=None, nx=False):
        self._check('set')
        self._expire_if_due(key)
        if nx and key in self.data:
            return None
        self._store(key, str(value))
        if ex is not None:
            self.expires[key] = self.clock() + int(ex)
        return True

    def setex(self, key, ttl, value):
        self._check('setex')
        self._store(key, str(value))
        self.expires[key] = self.clock() + int(ttl)
        return True

    def ttl(self, key):
        self._expire_if_due(key)
        if key not in self.data:
            return -2
        if key not in self.expires:
            return -1
        return int(self.expires[key] - self.clock())

    def delete(self, *keys):
        self._check('delete')
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
                self.versions[key] = self.versions.get(key, 0) + 1
            self.expires.pop(key, None)
        return removed

    def hset(self, key, field=None, value=None, mapping=None):
        self._check('hset')
        bucket = self.data.setdefault(key, {})
        self.versions[key] = self.versions.get(key, 0) + 1
        if field is not None:
            bucket[field] = str(value)
        for k, v in (mapping or {}).items():
            bucket[k] = str(v)
        return 1

    def hgetall(self, key):
        self._check('hgetall')
        value = self.data.get(key)
        return dict(value) if isinstance(value, dict) else {}

    def keys(self, pattern='*'):
        return [k for k in self.data if fnmatch.fnmatch(k, pattern)]

    def pipeline(self, transaction=True):
        self._check('pipeline')
        return FakePipeline(self)

    def get_json(self, key):
        """Test helper: decoded JSON value of a key (None if missing)."""
        raw = self.get(key)
        return json.loads(raw) if raw is not None else None


class FakePipeline:
    """
    WATCH / MULTI / EXEC over FakeRedis.

    Commands run immediately until multi(), then queue until execute().
    execute() raises WatchError if a watched key was written after watch().
    `FakeRedis.on_multi` runs once at multi(), to stage a competing write.
    """

    def __init__(self, redis_client):
        self.redis = redis_client
        self.watched = {}
        self.queued = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()
        return False

    def watch(self, *keys):
        for key in keys:
            self.watched[key] = self.redis.versions.get(key, 0)

    def unwatch(self):
        self.watched = {}

    def multi(self):
        self.queued = []
        if self.redis.on_multi is not None:
            hook, self.redis.on_multi = self.redis.on_multi, None
            hook()

    def get(self, key):
        return self.redis.get(key)

    def set(self, key, value, **kwargs):
        if self.queued is None:
            return self.redis.set(key, value, **kwargs)
        self.queued.append((key, value, kwargs))
        return self

    def execute(self):
        for key, version in self.watched.items():
            if self.redis.versions.get(key, 0) != version:
                self.reset()
                raise WatchError(f"Watched variable changed: {key}")
        results = [self.redis.set(key, value, **kwargs) for key, value, kwargs in (self.queued or [])]
        self.reset()
        return results

    def reset(self):
        self.watched = {}
        self.queued = None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


# --- Store Fixtures ---

@pytest.fixture
def settings_store(fake_redis):
    from services.settings_store import SettingsStore
    return SettingsStore(fake_redis, prefix="fleetops")


@pytest.fixture
def site_meta_store(fake_redis, settings_store):
    from services.site_meta_store import SiteMetaStore
    return SiteMetaStore(fake_redis, settings_store, prefix="fleetops")


@pytest.fixture
def snapshot_cache(fake_redis):
    from services.snapshot_cache import SnapshotCache
    return SnapshotCache(fake_redis, prefix="fleetops")


@pytest.fixture
def site_directory(fake_redis):
    from services.site_directory import SiteDirectory
    return SiteDirectory(fake_redis, prefix="fleetops")


@pytest.fixture
def aggregator(settings_store, site_meta_store, snapshot_cache, site_directory):
    from services.aggregator import FleetAggregator
    return FleetAggregator(settings_store, site_meta_store, snapshot_cache, site_directory)


# --- Flask Test Application ---

TEST_SECRETS = {
    "FLASK_SECRET_KEY": "test-secret-key",
    "OPERATOR_USERNAME": "operator",
    "OPERATOR_PASSWORD": "correct-horse",
    "REDIS_PASS_CURRENT": None,
    "REDIS_PASS_NEXT": None,
}


@pytest.fixture
def app(monkeypatch, fake_redis):
    """FleetOps API app with Vault and Redis replaced by in-memory doubles."""
    from services import api_service as api

    def fake_fetch_secrets(app):
        app.config['SECRETS'] = dict(TEST_SECRETS)

    def fake_create_redis_pool(app):
        app.redis_pool = None
        app.config['REDIS_CLIENT'] = fake_redis

    monkeypatch.setenv('FLEETOPS_TESTING', 'true')
    monkeypatch.setenv('SESSION_COOKIE_SECURE', 'false')
    monkeypatch.setattr(api, 'fetch_secrets', fake_fetch_secrets)
    monkeypatch.setattr(api, 'create_redis_pool', fake_create_redis_pool)

    application = api.create_app()
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def connector_token(app):
    return app.config['SETTINGS_STORE'].get()['connector']['api_token']


@pytest.fixture
def operator_client(client):
    """Test client with a logged-in operator; exposes the CSRF token as .csrf_token."""
    resp = client.post('/admin/login', json={
        'username': TEST_SECRETS['OPERATOR_USERNAME'],
        'password': TEST_SECRETS['OPERATOR_PASSWORD'],
    })
    assert resp.status_code == 200
    client.csrf_token = resp.get_json()['csrf_token']
    return client


# --- Pytest Configuration ---

def pytest_configure(config):
    """Pytest configuration hook"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (mock all external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (requires real services)"
    )
    config.addinivalue_line(
        "markers", "smoke: Smoke tests against a running deployment"
    )
