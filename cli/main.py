#!/usr/bin/env python3
"""
fleetopsctl - FleetOps operator CLI

Usage:
  fleetopsctl status
  fleetopsctl settings show [--reveal]
  fleetopsctl settings regenerate-token
  fleetopsctl sites list
  fleetopsctl sites show <site_id>
  fleetopsctl sites set <site_id> [--report-url URL] [--analytics-property P]
                                  [--mode MODE] [--slug SLUG] [--monitor-ids IDS]
  fleetopsctl sites delete <site_id>
  fleetopsctl sites register <site_id> --name NAME --url URL
  fleetopsctl snapshots put-uptime <site_id> --status up [--uptime-24h 99.9] ...
  fleetopsctl snapshots put-kpis <site_id> --clicks 120 --impressions 4000 ...
  fleetopsctl snapshots show <site_id>
  fleetopsctl rollup [--json]
"""

import argparse
import sys
from typing import List, Optional

from cli.commands import cmd_rollup, cmd_settings, cmd_sites, cmd_snapshots, cmd_status

COMMANDS = {
    'status': cmd_status,
    'settings': cmd_settings,
    'sites': cmd_sites,
    'snapshots': cmd_snapshots,
    'rollup': cmd_rollup,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fleetopsctl',
        description='FleetOps operator CLI'
    )
    subparsers = parser.add_subparsers(dest='command', help='Command')
    for module in COMMANDS.values():
        module.register(subparsers)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    return COMMANDS[args.command].execute(args)


if __name__ == '__main__':
    sys.exit(main())
