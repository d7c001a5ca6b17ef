#!/usr/bin/env python3
"""
FleetOps - Fleet Aggregator

Joins stored site overrides with the site directory and the snapshot cache
to produce:

- the site listing served to reporting connectors
- the fleet-wide KPI rollup
- the operator overview for a single site

Rollup averaging rules:
- clicks / impressions: plain sums over sites with data
- ctr: sum divided by the number of listed sites, including sites without
  KPI data, so missing data pulls the average toward zero
- position: sum divided by the number of sites that reported a position

Both averages are 0.0 when their denominator is zero.

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import logging
from typing import Any, Dict, List, Optional

from services.formatting import format_number, format_percentage
from services.site_meta_store import parse_site_id

logger = logging.getLogger(__name__)


def _has_value(snapshot: Optional[Dict[str, Any]], field: str) -> bool:
    return snapshot is not None and snapshot.get(field) is not None


class FleetAggregator:
    """Read-only views over every site with a stored override."""

    def __init__(self, settings_store, site_meta_store, snapshot_cache, site_directory):
        self.settings_store = settings_store
        self.site_meta_store = site_meta_store
        self.snapshot_cache = snapshot_cache
        self.site_directory = site_directory

    def list_site_payloads(self) -> List[Dict[str, Any]]:
        """One payload per stored override, in store order."""
        default_report_url = self.settings_store.get()['defaults'].get('report_url', '')
        payloads = []

        for site_key, override in self.site_meta_store.get_all().items():
            site_id = parse_site_id(site_key)
            details = self.site_directory.get_site_info(site_id)
            payloads.append({
                'id': site_id,
                'name': details.get('name', ''),
                'domain': details.get('domain', ''),
                'report_url': override.get('report_url', ''),
                'analytics_property': override.get('analytics_property', ''),
                'monitoring': override.get('monitoring', {}),
                'default_report_url': default_report_url,
            })

        return payloads

    def compute_rollup(self) -> Dict[str, Any]:
        """Fleet KPI totals and averages across all listed sites."""
        sites = self.list_site_payloads()
        totals = {
            'clicks': 0.0,
            'impressions': 0.0,
            'ctr': 0.0,
            'position': 0.0,
            'site_count': len(sites),
        }
        with_position = 0

        for site in sites:
            kpis = self.snapshot_cache.get_kpis(site['id'])

            if _has_value(kpis, 'clicks'):
                totals['clicks'] += float(kpis['clicks'])
            if _has_value(kpis, 'impressions'):
                totals['impressions'] += float(kpis['impressions'])
            if _has_value(kpis, 'ctr'):
                totals['ctr'] += float(kpis['ctr'])
            if _has_value(kpis, 'position'):
                totals['position'] += float(kpis['position'])
                with_position += 1

        totals['ctr'] = totals['ctr'] / totals['site_count'] if totals['site_count'] else 0.0
        totals['position'] = totals['position'] / with_position if with_position else 0.0

        logger.debug(
            f"Rollup computed over {totals['site_count']} sites "
            f"({with_position} with position data)"
        )
        return totals

    def site_overview(self, site_id: int) -> Dict[str, Any]:
        """
        Everything an operator sees for one site: the override (or its
        synthesized default), the current snapshots and display strings.
        """
        settings = self.settings_store.get()
        override = self.site_meta_store.try_get(site_id)
        meta = override if override is not None else self.site_meta_store.get_one(site_id)
        uptime = self.snapshot_cache.get_uptime(site_id)
        kpis = self.snapshot_cache.get_kpis(site_id)
        default_report_url = settings['defaults'].get('report_url', '')
        own_report_url = (override or {}).get('report_url', '')

        display: Dict[str, Any] = {
            'status': str(uptime.get('status') or 'unknown').upper(),
            'uptime_24h': None,
            'uptime_7d': None,
            'kpis': None,
        }
        if uptime.get('uptime_24h') is not None:
            display['uptime_24h'] = format_percentage(uptime['uptime_24h'])
        if uptime.get('uptime_7d') is not None:
            display['uptime_7d'] = format_percentage(uptime['uptime_7d'])
        if _has_value(kpis, 'clicks'):
            display['kpis'] = {
                'clicks': format_number(kpis.get('clicks') or 0),
                'impressions': format_number(kpis.get('impressions') or 0),
                'ctr': format_percentage(kpis.get('ctr') or 0),
                'position': format_number(kpis.get('position') or 0, 2),
            }

        return {
            'id': site_id,
            'has_override': override is not None,
            'meta': meta,
            'uptime': uptime,
            'kpis': kpis,
            'report_url': own_report_url or default_report_url,
            'uses_default_report': not own_report_url and bool(default_report_url),
            'display': display,
        }
