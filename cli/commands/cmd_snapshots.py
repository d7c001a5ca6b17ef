"""
fleetopsctl snapshots - Write and inspect cached uptime / KPI snapshots

This is the hand-operated side of the snapshot writer: collectors that poll
the monitoring and search-analytics providers store results the same way.
"""

import json

from cli.context import open_stores
from services.site_meta_store import parse_site_id


def register(subparsers):
    """Register the snapshots command with argparse."""
    parser = subparsers.add_parser(
        'snapshots',
        help='Manage cached snapshots',
        description='Store or inspect per-site uptime and KPI snapshots'
    )

    subcommands = parser.add_subparsers(dest='subcommand', help='Snapshots subcommand')

    uptime_parser = subcommands.add_parser('put-uptime', help='Store an uptime snapshot')
    uptime_parser.add_argument('site_id', help='Site id')
    uptime_parser.add_argument('--status', required=True, help='Status (up, down, paused, ...)')
    uptime_parser.add_argument('--uptime-24h', type=float, help='24h uptime (fraction or percent)')
    uptime_parser.add_argument('--uptime-7d', type=float, help='7d uptime (fraction or percent)')
    uptime_parser.add_argument('--ping-ms', type=float, help='Last response time in ms')
    uptime_parser.add_argument('--last-change', help='Timestamp of the last status change')
    uptime_parser.add_argument('--ttl', type=int, help='Cache lifetime in seconds')

    kpis_parser = subcommands.add_parser('put-kpis', help='Store a search KPI snapshot')
    kpis_parser.add_argument('site_id', help='Site id')
    kpis_parser.add_argument('--clicks', type=float, default=0.0)
    kpis_parser.add_argument('--impressions', type=float, default=0.0)
    kpis_parser.add_argument('--ctr', type=float, default=0.0, help='CTR (fraction or percent)')
    kpis_parser.add_argument('--position', type=float, default=0.0, help='Average position')
    kpis_parser.add_argument('--ttl', type=int, help='Cache lifetime in seconds')

    show_parser = subcommands.add_parser('show', help='Show cached snapshots for a site')
    show_parser.add_argument('site_id', help='Site id')


def execute(args) -> int:
    """Execute the snapshots command."""
    if not args.subcommand:
        print("Error: No subcommand specified")
        print("Usage: fleetopsctl snapshots <put-uptime|put-kpis|show>")
        return 1

    site_num = parse_site_id(args.site_id)
    if site_num <= 0:
        print(f"Error: Invalid site id '{args.site_id}' (must be a positive integer)")
        return 1

    stores = open_stores()
    if stores is None:
        return 1

    if args.subcommand == 'put-uptime':
        record = stores.snapshots.put_uptime(site_num, {
            'status': args.status,
            'uptime_24h': args.uptime_24h,
            'uptime_7d': args.uptime_7d,
            'ping_ms': args.ping_ms,
            'last_change': args.last_change,
        }, ttl=args.ttl)
        print(f"✓ Stored uptime snapshot for site {site_num}: {json.dumps(record)}")
        return 0
    elif args.subcommand == 'put-kpis':
        record = stores.snapshots.put_kpis(site_num, {
            'clicks': args.clicks,
            'impressions': args.impressions,
            'ctr': args.ctr,
            'position': args.position,
        }, ttl=args.ttl)
        print(f"✓ Stored KPI snapshot for site {site_num}: {json.dumps(record)}")
        return 0
    elif args.subcommand == 'show':
        print(json.dumps({
            'uptime': stores.snapshots.get_uptime(site_num),
            'kpis': stores.snapshots.get_kpis(site_num),
        }, indent=2))
        return 0

    return 0
