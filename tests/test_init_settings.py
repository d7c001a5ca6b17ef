#!/usr/bin/env python3
"""
Unit tests for scripts/init_settings.py
"""

import json

import pytest

from scripts.init_settings import initialize_settings

pytestmark = pytest.mark.unit

KEY = "fleetops:settings"


def test_seeds_empty_store(fake_redis):
    env = {
        'FLEETOPS_DEFAULT_REPORT_URL': 'https://reports.example.com',
        'FLEETOPS_MONITORING_API_KEY': 'mon-key',
    }

    created, skipped, updated = initialize_settings(fake_redis, 'fleetops', environ=env)

    stored = fake_redis.get_json(KEY)
    assert (created, skipped, updated) == (3, 0, 0)
    assert stored['defaults']['report_url'] == 'https://reports.example.com'
    assert stored['monitoring']['api_key'] == 'mon-key'
    assert stored['monitoring']['mode'] == 'status-page'
    assert len(stored['connector']['api_token']) == 32


def test_existing_values_skipped_without_force(fake_redis):
    fake_redis.set(KEY, json.dumps({
        'defaults': {'report_url': 'https://old.example.com'},
        'connector': {'api_token': 'T' * 32},
    }))

    created, skipped, updated = initialize_settings(
        fake_redis, 'fleetops', environ={'FLEETOPS_DEFAULT_REPORT_URL': 'https://new.example.com'}
    )

    assert (created, skipped, updated) == (0, 1, 0)
    assert fake_redis.get_json(KEY)['defaults']['report_url'] == 'https://old.example.com'


def test_force_overwrites(fake_redis):
    fake_redis.set(KEY, json.dumps({
        'defaults': {'report_url': 'https://old.example.com'},
        'connector': {'api_token': 'T' * 32},
    }))

    _, _, updated = initialize_settings(
        fake_redis, 'fleetops', force=True,
        environ={'FLEETOPS_DEFAULT_REPORT_URL': 'https://new.example.com'},
    )

    stored = fake_redis.get_json(KEY)
    assert updated == 1
    assert stored['defaults']['report_url'] == 'https://new.example.com'
    assert stored['connector']['api_token'] == 'T' * 32


def test_dry_run_writes_nothing(fake_redis):
    initialize_settings(
        fake_redis, 'fleetops', dry_run=True,
        environ={'FLEETOPS_DEFAULT_REPORT_URL': 'https://reports.example.com'},
    )

    assert fake_redis.get(KEY) is None


def test_connector_token_from_environment(fake_redis):
    initialize_settings(fake_redis, 'fleetops', environ={'FLEETOPS_CONNECTOR_TOKEN': 'E' * 32})
    assert fake_redis.get_json(KEY)['connector']['api_token'] == 'E' * 32
