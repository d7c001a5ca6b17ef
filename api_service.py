#!/usr/bin/env python3
"""
Shim module delegating to services.api_service.
This file exists so `python api_service.py` and `from api_service import create_app` work from the repo root.
"""

import os

from services.api_service import create_app, setup_signal_handlers  # type: ignore
from services.logging_utils import setup_json_logging


if __name__ == '__main__':
    setup_json_logging(service_name="fleetops-api", version="1.0.0")
    app = create_app()
    setup_signal_handlers(app)
    port = int(os.environ.get('SERVER_PORT_API', 8095))
    app.run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_DEBUG', '').lower() == 'true')
