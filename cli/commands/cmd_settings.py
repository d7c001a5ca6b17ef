"""
fleetopsctl settings - View global settings and rotate the connector token
"""

from typing import Any, Dict

from cli.context import open_stores

# Values that are never printed unless --reveal is given
SECRET_FIELDS = {('monitoring', 'api_key'), ('analytics', 'client_secret'), ('connector', 'api_token')}


def register(subparsers):
    """Register the settings command with argparse."""
    parser = subparsers.add_parser(
        'settings',
        help='Manage global settings',
        description='View global FleetOps settings and rotate the connector token'
    )

    subcommands = parser.add_subparsers(dest='subcommand', help='Settings subcommand')

    show_parser = subcommands.add_parser('show', help='Show current settings')
    show_parser.add_argument('--reveal', action='store_true', help='Print secret values')

    subcommands.add_parser('regenerate-token', help='Generate a new connector token')


def execute(args) -> int:
    """Execute the settings command."""
    if not args.subcommand:
        print("Error: No subcommand specified")
        print("Usage: fleetopsctl settings <show|regenerate-token>")
        return 1

    stores = open_stores()
    if stores is None:
        return 1

    if args.subcommand == 'show':
        return show_settings(stores.settings.get(), args.reveal)
    elif args.subcommand == 'regenerate-token':
        token = stores.settings.regenerate_token()
        print("✓ Connector token regenerated")
        print(f"  api_token = {token}")
        print("Update every reporting connector with the new token.")
        return 0

    return 0


def mask(value: Any) -> str:
    text = str(value or '')
    if not text:
        return '(not set)'
    return text[:4] + '*' * max(len(text) - 4, 4)


def show_settings(settings: Dict[str, Dict[str, Any]], reveal: bool = False) -> int:
    """Print settings grouped by section."""
    print("=" * 70)
    print("FleetOps Global Settings")
    print("=" * 70)
    print()

    for section in sorted(settings):
        values = settings[section]
        print(f"[{section.upper()}]")
        if not isinstance(values, dict):
            print(f"  {values}")
            print()
            continue
        for key in sorted(values):
            value = values[key]
            if (section, key) in SECRET_FIELDS and not reveal:
                value = mask(value)
            print(f"  {key} = {value}")
        print()

    return 0
