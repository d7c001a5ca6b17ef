#!/usr/bin/env python3
"""
FleetOps - Access Gate

Authorizes read requests with an ordered list of strategies. Each strategy
inspects the request and answers ALLOW, DENY or ABSTAIN; the first
definitive answer wins and a request nobody allows is denied.

Default order:
1. OperatorSessionStrategy - a logged-in operator with the admin capability
2. ConnectorTokenStrategy  - the shared connector token, sent either as the
   X-FleetOps-Connector-Token header or the `token` query parameter

Token checks use secrets.compare_digest, so response timing does not reveal
how close a guess was.

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import logging
import secrets as secrets_module
from typing import Any, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

ADMIN_CAPABILITY = 'manage_options'
CONNECTOR_TOKEN_HEADER = 'X-FleetOps-Connector-Token'
CONNECTOR_TOKEN_PARAM = 'token'


class Decision:
    """Enum-like class for strategy outcomes."""
    ALLOW = 'allow'
    DENY = 'deny'
    ABSTAIN = 'abstain'


def operator_is_admin(session: Optional[Mapping[str, Any]]) -> bool:
    """True if the session carries an operator with the admin capability."""
    if not session:
        return False
    operator = session.get('operator')
    if not isinstance(operator, Mapping):
        return False
    return ADMIN_CAPABILITY in (operator.get('capabilities') or ())


def tokens_match(expected: Optional[str], supplied: Optional[str]) -> bool:
    """Constant-time comparison; an empty expected token never matches."""
    if not expected or supplied is None:
        return False
    return secrets_module.compare_digest(
        str(expected).encode('utf-8'),
        str(supplied).encode('utf-8'),
    )


class OperatorSessionStrategy:
    """Allows interactive operators; abstains for everyone else."""

    name = 'operator_session'

    def check(self, request, session) -> str:
        return Decision.ALLOW if operator_is_admin(session) else Decision.ABSTAIN


class ConnectorTokenStrategy:
    """Allows callers presenting the configured connector token."""

    name = 'connector_token'

    def __init__(self, settings_store, header_name: str = CONNECTOR_TOKEN_HEADER,
                 query_param: str = CONNECTOR_TOKEN_PARAM):
        self.settings_store = settings_store
        self.header_name = header_name
        self.query_param = query_param

    def check(self, request, session) -> str:
        expected = self.settings_store.get()['connector'].get('api_token', '')
        if not expected:
            return Decision.ABSTAIN

        header_token = request.headers.get(self.header_name)
        query_token = request.args.get(self.query_param)

        # Evaluate both so timing does not depend on which one was sent.
        header_ok = tokens_match(expected, header_token)
        query_ok = tokens_match(expected, query_token)
        return Decision.ALLOW if (header_ok or query_ok) else Decision.ABSTAIN


class AccessGate:
    """Ordered strategy evaluation; the first ALLOW or DENY is final."""

    def __init__(self, strategies: Iterable[Any]):
        self.strategies: List[Any] = list(strategies)

    def authorize(self, request, session=None) -> bool:
        for strategy in self.strategies:
            decision = strategy.check(request, session)
            if decision == Decision.ALLOW:
                logger.debug(f"Access allowed by {strategy.name}")
                return True
            if decision == Decision.DENY:
                logger.debug(f"Access denied by {strategy.name}")
                return False
        return False
