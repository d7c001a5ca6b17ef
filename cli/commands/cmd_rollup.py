"""
fleetopsctl rollup - Print the fleet-wide KPI rollup
"""

import json

from cli.context import open_stores
from services.formatting import format_number, format_percentage


def register(subparsers):
    """Register the rollup command."""
    parser = subparsers.add_parser(
        'rollup',
        help='Show fleet KPI rollup',
        description='Sum and average cached search KPIs across all listed sites'
    )
    parser.add_argument('--json', action='store_true', help='Print raw JSON')


def execute(args) -> int:
    """Execute the rollup command."""
    stores = open_stores()
    if stores is None:
        return 1

    rollup = stores.aggregator.compute_rollup()

    if args.json:
        print(json.dumps(rollup, indent=2))
        return 0

    print("=" * 70)
    print("FleetOps KPI Rollup")
    print("=" * 70)
    print()
    print(f"  Sites        {rollup['site_count']}")
    print(f"  Clicks       {format_number(rollup['clicks'])}")
    print(f"  Impressions  {format_number(rollup['impressions'])}")
    print(f"  Avg CTR      {format_percentage(rollup['ctr'])}")
    print(f"  Avg Position {format_number(rollup['position'], 2)}")
    return 0
