#!/usr/bin/env python3
"""
Operator form handling: sanitize posted fields into settings / site override
records before they reach the stores (which accept whatever they are given).
"""

import re
from typing import Any, Dict, Mapping
from urllib.parse import urlsplit

from services.settings_store import DEFAULT_MONITORING_MODE, MONITORING_MODES

_TAG_RE = re.compile(r'<[^>]*>')
_CONTROL_RE = re.compile(r'[\x00-\x1f\x7f]+')
_SLUG_INVALID_RE = re.compile(r'[^a-z0-9_-]+')

_TRUTHY = ('1', 'true', 'yes', 'on')


def sanitize_text(value: Any) -> str:
    """Single-line plain text: tags and control characters removed, whitespace collapsed."""
    if value is None:
        return ''
    text = _TAG_RE.sub('', str(value))
    text = _CONTROL_RE.sub(' ', text)
    return ' '.join(text.split())


def sanitize_url(value: Any) -> str:
    """http(s) URLs only; anything else becomes ''."""
    text = sanitize_text(value).replace(' ', '%20')
    if not text:
        return ''
    parts = urlsplit(text)
    if parts.scheme.lower() not in ('http', 'https') or not parts.netloc:
        return ''
    return text


def sanitize_slug(value: Any) -> str:
    """Lowercase slug made of letters, digits, '-' and '_'."""
    text = sanitize_text(value).lower().replace(' ', '-')
    return _SLUG_INVALID_RE.sub('', text).strip('-')


def sanitize_mode(value: Any) -> str:
    """One of MONITORING_MODES, or '' for anything else."""
    mode = sanitize_text(value).lower()
    return mode if mode in MONITORING_MODES else ''


def is_checked(form: Mapping[str, Any], name: str) -> bool:
    return str(form.get(name, '')).strip().lower() in _TRUTHY


def apply_settings_form(current: Dict[str, Any], form: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge a posted settings form into the current settings record.

    Posted fields overwrite their settings unconditionally (absent fields
    become empty). The connector token changes only when a non-empty token
    is posted; the caller handles `regenerate_token`, which wins over it.
    """
    settings = dict(current)
    settings['monitoring'] = dict(current.get('monitoring', {}))
    settings['analytics'] = dict(current.get('analytics', {}))
    settings['defaults'] = dict(current.get('defaults', {}))
    settings['connector'] = dict(current.get('connector', {}))

    settings['monitoring']['base_url'] = sanitize_url(form.get('monitoring_base_url'))
    settings['monitoring']['mode'] = sanitize_mode(form.get('monitoring_mode')) or DEFAULT_MONITORING_MODE
    settings['monitoring']['api_key'] = sanitize_text(form.get('monitoring_api_key'))

    settings['analytics']['client_id'] = sanitize_text(form.get('analytics_client_id'))
    settings['analytics']['client_secret'] = sanitize_text(form.get('analytics_client_secret'))

    settings['defaults']['report_url'] = sanitize_url(form.get('default_report_url'))

    token = sanitize_text(form.get('connector_token'))
    if token:
        settings['connector']['api_token'] = token

    return settings


def site_override_from_form(form: Mapping[str, Any]) -> Dict[str, Any]:
    """Build a complete site override record from a posted site form."""
    return {
        'report_url': sanitize_url(form.get('report_url')),
        'analytics_property': sanitize_text(form.get('analytics_property')),
        'monitoring': {
            'mode': sanitize_mode(form.get('monitoring_mode')),
            'status_page_slug': sanitize_slug(form.get('status_page_slug')),
            'monitor_ids_raw': sanitize_text(form.get('monitor_ids')),
        },
    }
