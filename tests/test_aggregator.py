#!/usr/bin/env python3
"""
Unit tests for services/aggregator.py
"""

import pytest
from unittest.mock import MagicMock

from services.aggregator import FleetAggregator

pytestmark = pytest.mark.unit


def _add_site(site_meta_store, site_id, report_url='', prop=''):
    site_meta_store.save_one(site_id, {
        'report_url': report_url,
        'analytics_property': prop,
        'monitoring': {'mode': 'badges', 'status_page_slug': '', 'monitor_ids_raw': '1,2'},
    })


class TestListSitePayloads:

    def test_empty_fleet(self, aggregator):
        assert aggregator.list_site_payloads() == []

    def test_only_sites_with_overrides_listed(self, aggregator, site_meta_store, snapshot_cache):
        _add_site(site_meta_store, 3, prop='p3')
        # Snapshots alone do not make a site part of the listing
        snapshot_cache.put_kpis(9, {'clicks': 5})

        ids = [site['id'] for site in aggregator.list_site_payloads()]

        assert ids == [3]

    def test_payload_shape(self, aggregator, site_meta_store, site_directory, settings_store):
        settings = settings_store.get()
        settings['defaults']['report_url'] = 'https://reports.example.com/default'
        settings_store.save(settings)
        site_directory.register_site(3, 'Acme', 'https://acme.example.com')
        _add_site(site_meta_store, 3, report_url='https://reports.example.com/acme', prop='sc-domain:acme.example.com')

        payload = aggregator.list_site_payloads()[0]

        assert payload == {
            'id': 3,
            'name': 'Acme',
            'domain': 'https://acme.example.com',
            'report_url': 'https://reports.example.com/acme',
            'analytics_property': 'sc-domain:acme.example.com',
            'monitoring': {
                'mode': 'badges',
                'status_page_slug': '',
                'monitor_ids': ['1', '2'],
                'monitor_ids_raw': '1,2',
            },
            'default_report_url': 'https://reports.example.com/default',
        }

    def test_unknown_directory_entry_gives_empty_strings(self, aggregator, site_meta_store):
        _add_site(site_meta_store, 4)
        payload = aggregator.list_site_payloads()[0]
        assert payload['name'] == ''
        assert payload['domain'] == ''

    def test_directory_failure_degrades(self, site_meta_store, settings_store, snapshot_cache):
        _add_site(site_meta_store, 4)
        directory = MagicMock()
        directory.get_site_info.return_value = {'name': '', 'domain': ''}
        agg = FleetAggregator(settings_store, site_meta_store, snapshot_cache, directory)

        assert agg.list_site_payloads()[0]['name'] == ''
        directory.get_site_info.assert_called_once_with(4)


class TestComputeRollup:

    def test_empty_fleet_is_all_zero(self, aggregator):
        assert aggregator.compute_rollup() == {
            'clicks': 0.0, 'impressions': 0.0, 'ctr': 0.0, 'position': 0.0, 'site_count': 0,
        }

    def test_sums_and_averages(self, aggregator, site_meta_store, snapshot_cache):
        for site_id in (1, 2):
            _add_site(site_meta_store, site_id)
        snapshot_cache.put_kpis(1, {'clicks': 100, 'impressions': 1000, 'ctr': 0.10, 'position': 4.0})
        snapshot_cache.put_kpis(2, {'clicks': 50, 'impressions': 3000, 'ctr': 0.02, 'position': 8.0})

        rollup = aggregator.compute_rollup()

        assert rollup['clicks'] == 150.0
        assert rollup['impressions'] == 4000.0
        assert rollup['ctr'] == pytest.approx(0.06)
        assert rollup['position'] == pytest.approx(6.0)
        assert rollup['site_count'] == 2

    def test_ctr_divides_by_all_sites_position_by_reporting_sites(self, aggregator, site_meta_store, snapshot_cache):
        for site_id in (1, 2, 3, 4):
            _add_site(site_meta_store, site_id)
        snapshot_cache.put_kpis(1, {'clicks': 10, 'impressions': 100, 'ctr': 0.08, 'position': 3.0})
        snapshot_cache.put_kpis(2, {'clicks': 30, 'impressions': 300, 'ctr': 0.04, 'position': 5.0})

        rollup = aggregator.compute_rollup()

        # Sites 3 and 4 have no KPI data: they dilute CTR but not position
        assert rollup['site_count'] == 4
        assert rollup['ctr'] == pytest.approx(0.12 / 4)
        assert rollup['position'] == pytest.approx(4.0)
        assert rollup['clicks'] == 40.0

    def test_no_kpi_data_anywhere(self, aggregator, site_meta_store):
        _add_site(site_meta_store, 1)

        rollup = aggregator.compute_rollup()

        assert rollup['site_count'] == 1
        assert rollup['ctr'] == 0.0
        assert rollup['position'] == 0.0

    def test_sites_without_override_excluded(self, aggregator, site_meta_store, snapshot_cache):
        _add_site(site_meta_store, 1)
        snapshot_cache.put_kpis(1, {'clicks': 10})
        snapshot_cache.put_kpis(2, {'clicks': 999})

        assert aggregator.compute_rollup()['clicks'] == 10.0


class TestSiteOverview:

    def test_defaulted_site(self, aggregator, settings_store):
        settings = settings_store.get()
        settings['defaults']['report_url'] = 'https://reports.example.com/default'
        settings_store.save(settings)

        overview = aggregator.site_overview(7)

        assert overview['has_override'] is False
        assert overview['report_url'] == 'https://reports.example.com/default'
        assert overview['uses_default_report'] is True
        assert overview['uptime']['status'] == 'unknown'
        assert overview['kpis'] is None
        assert overview['display']['status'] == 'UNKNOWN'
        assert overview['display']['kpis'] is None

    def test_display_strings(self, aggregator, site_meta_store, snapshot_cache):
        _add_site(site_meta_store, 2, report_url='https://own.example.com')
        snapshot_cache.put_uptime(2, {'status': 'up', 'uptime_24h': 99.5, 'uptime_7d': 0.998})
        snapshot_cache.put_kpis(2, {'clicks': 12345, 'impressions': 1000000, 'ctr': 3.1, 'position': 7.457})

        overview = aggregator.site_overview(2)

        assert overview['has_override'] is True
        assert overview['uses_default_report'] is False
        assert overview['display']['status'] == 'UP'
        assert overview['display']['uptime_24h'] == '99.50%'
        assert overview['display']['uptime_7d'] == '99.80%'
        assert overview['display']['kpis'] == {
            'clicks': '12,345',
            'impressions': '1,000,000',
            'ctr': '3.10%',
            'position': '7.46',
        }
