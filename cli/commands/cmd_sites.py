"""
fleetopsctl sites - Manage per-site overrides and directory entries
"""

import json

from cli.context import open_stores
from services.admin_forms import sanitize_mode, sanitize_slug, sanitize_text, sanitize_url
from services.site_meta_store import parse_site_id


def register(subparsers):
    """Register the sites command with argparse."""
    parser = subparsers.add_parser(
        'sites',
        help='Manage site overrides',
        description='List, inspect, set and delete per-site overrides'
    )

    subcommands = parser.add_subparsers(dest='subcommand', help='Sites subcommand')

    subcommands.add_parser('list', help='List sites with a stored override')

    show_parser = subcommands.add_parser('show', help='Show one site (override or defaults)')
    show_parser.add_argument('site_id', help='Site id')

    set_parser = subcommands.add_parser('set', help='Replace the override for a site')
    set_parser.add_argument('site_id', help='Site id')
    set_parser.add_argument('--report-url', default='', help='Custom report URL')
    set_parser.add_argument('--analytics-property', default='', help='Search analytics property')
    set_parser.add_argument('--mode', default='', help='Monitoring mode (empty = global mode)')
    set_parser.add_argument('--slug', default='', help='Status page slug')
    set_parser.add_argument('--monitor-ids', default='', help='Comma-separated monitor ids')

    delete_parser = subcommands.add_parser('delete', help='Delete the override for a site')
    delete_parser.add_argument('site_id', help='Site id')

    register_parser = subcommands.add_parser('register', help='Publish site directory details')
    register_parser.add_argument('site_id', help='Site id')
    register_parser.add_argument('--name', required=True, help='Site name')
    register_parser.add_argument('--url', required=True, help='Site URL')


def execute(args) -> int:
    """Execute the sites command."""
    if not args.subcommand:
        print("Error: No subcommand specified")
        print("Usage: fleetopsctl sites <list|show|set|delete|register>")
        return 1

    stores = open_stores()
    if stores is None:
        return 1

    if args.subcommand == 'list':
        return list_sites(stores)
    elif args.subcommand == 'show':
        return show_site(stores, args.site_id)
    elif args.subcommand == 'set':
        return set_site(stores, args)
    elif args.subcommand == 'delete':
        return delete_site(stores, args.site_id)
    elif args.subcommand == 'register':
        return register_site(stores, args)

    return 0


def list_sites(stores) -> int:
    """List every site with a stored override."""
    sites = stores.aggregator.list_site_payloads()

    if not sites:
        print("No site overrides found")
        return 0

    print(f"{'ID':>6}  {'NAME':24s} {'MODE':12s} REPORT URL")
    print("-" * 70)
    for site in sites:
        mode = site['monitoring'].get('mode') or '(global)'
        report_url = site['report_url'] or f"(default) {site['default_report_url']}"
        print(f"{site['id']:>6}  {site['name'][:24]:24s} {mode:12s} {report_url}")

    print()
    print(f"Total: {len(sites)} sites")
    return 0


def show_site(stores, site_id: str) -> int:
    """Print the operator overview for one site."""
    site_num = parse_site_id(site_id)
    overview = stores.aggregator.site_overview(site_num)
    print(json.dumps(overview, indent=2, sort_keys=True))
    return 0


def set_site(stores, args) -> int:
    """Replace a site's override; the same sanitization as the admin form applies."""
    override = {
        'report_url': sanitize_url(args.report_url),
        'analytics_property': sanitize_text(args.analytics_property),
        'monitoring': {
            'mode': sanitize_mode(args.mode),
            'status_page_slug': sanitize_slug(args.slug),
            'monitor_ids_raw': sanitize_text(args.monitor_ids),
        },
    }

    if not stores.site_meta.save_one(args.site_id, override):
        print(f"Error: Invalid site id '{args.site_id}' (must be a positive integer)")
        return 1

    print(f"✓ Saved override for site {parse_site_id(args.site_id)}")
    return 0


def delete_site(stores, site_id: str) -> int:
    """Delete a site's override."""
    if not stores.site_meta.delete_one(site_id):
        print(f"Error: No override stored for site '{site_id}'")
        return 1

    print(f"✓ Deleted override for site {parse_site_id(site_id)}")
    return 0


def register_site(stores, args) -> int:
    """Publish name and URL for a site into the directory hash."""
    site_num = parse_site_id(args.site_id)
    if site_num <= 0:
        print(f"Error: Invalid site id '{args.site_id}' (must be a positive integer)")
        return 1

    stores.directory.register_site(site_num, sanitize_text(args.name), sanitize_url(args.url))
    print(f"✓ Registered directory entry for site {site_num}")
    return 0
