"""
fleetopsctl status - Show status of the FleetOps API and its Redis store
"""

import socket
import requests
from typing import Tuple

from config.environment import REDIS_HOST, REDIS_PORT, get_api_url


def register(subparsers):
    """Register the status command."""
    subparsers.add_parser(
        'status',
        help='Show status of FleetOps services',
        description='Check health and connectivity of the FleetOps API and Redis'
    )


def execute(args) -> int:
    """Execute the status command."""
    print("=" * 70)
    print("FleetOps Service Status")
    print("=" * 70)
    print()

    services = {
        'Reporting API': f"{get_api_url()}/health",
        'Redis': f"{REDIS_HOST}:{REDIS_PORT}",
    }

    all_healthy = True

    for name, endpoint in services.items():
        status, msg = check_service(name, endpoint)
        print(f"  {status} {name:20s} - {msg}")

        if '✗' in status:
            all_healthy = False

    print()
    print("=" * 70)

    if all_healthy:
        print("✓ All services healthy")
        return 0
    else:
        print("⚠ Some services are down")
        return 1


def check_service(name: str, endpoint: str) -> Tuple[str, str]:
    """Check if a service is healthy."""
    try:
        if endpoint.startswith('http'):
            response = requests.get(endpoint, timeout=2)
            if response.status_code == 200:
                return "✓", "Healthy"
            else:
                return "✗", f"Unhealthy (HTTP {response.status_code})"
        elif ':' in endpoint:
            # Plain TCP reachability for Redis
            host, port = endpoint.rsplit(':', 1)
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(2)
            result = sock.connect_ex((host, int(port)))
            sock.close()

            if result == 0:
                return "✓", "Reachable"
            else:
                return "✗", "Not reachable"

    except Exception as e:
        return "✗", f"Error: {str(e)[:40]}"

    return "?", "Unknown"
