# relay/__init__.py
"""
Relay core: request translation and forwarding.

The aiohttp host adapter lives in core.relay_manager.
"""

from relay.forwarder import AiohttpClient, ClientTransportError, Forwarder, RawExchange
from relay.models import (
    InboundRequest,
    InvalidRequest,
    Method,
    OutboundRequest,
    RelayFailure,
    RelayResult,
    UpstreamUnavailable,
)
from relay.translator import translate

__all__ = [
    'AiohttpClient',
    'ClientTransportError',
    'Forwarder',
    'InboundRequest',
    'InvalidRequest',
    'Method',
    'OutboundRequest',
    'RawExchange',
    'RelayFailure',
    'RelayResult',
    'UpstreamUnavailable',
    'translate',
]
