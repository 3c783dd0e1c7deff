# relay/translator.py
import logging
import re
from typing import Union
from urllib.parse import quote, urlsplit

from multidict import CIMultiDict, MultiDict

from relay.models import InboundRequest, InvalidRequest, Method, OutboundRequest

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_PARAM = 'endpoint'

# Headers never forwarded to the destination
STRIPPED_HEADERS = ('Host', 'Content-Length', 'Connection')

MULTIPART_CONTENT_TYPE = 'multipart/form-data'

_INVALID_URL_CHARS = re.compile(r'[\s\x00-\x1f\x7f]')


def normalize_header_name(name: str) -> str:
    """x_forwarded_for / X-FORWARDED-FOR -> X-Forwarded-For"""
    parts = name.replace('_', '-').split('-')
    return '-'.join(part.capitalize() for part in parts)


def is_valid_destination(url) -> bool:
    """Checks that the URL is absolute ASCII with a scheme and a host"""
    if not url or not isinstance(url, str):
        return False
    # Non-ASCII must arrive percent-encoded, it goes onto the request line verbatim
    if not url.isascii() or _INVALID_URL_CHARS.search(url):
        return False

    try:
        parsed = urlsplit(url)
        # Accessing port validates the port number
        parsed.port
    except ValueError:
        return False

    if not re.match(r'^[A-Za-z][A-Za-z0-9+.-]*$', parsed.scheme or ''):
        return False
    return bool(parsed.hostname)


def build_query_string(params) -> str:
    return '&'.join(
        f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
        for key, value in params
    )


def append_query(url: str, query: str) -> str:
    if not query:
        return url
    separator = '&' if '?' in url else '?'
    return f"{url}{separator}{query}"


def build_headers(inbound: InboundRequest) -> CIMultiDict:
    headers = CIMultiDict()
    for name, value in inbound.headers.items():
        key = normalize_header_name(name)
        if key in headers:
            # Repeated headers are joined the way a CGI host does
            headers[key] = f"{headers[key]}, {value}"
        else:
            headers[key] = value

    for name in STRIPPED_HEADERS:
        headers.popall(name, None)

    if inbound.content_type:
        headers['Content-Type'] = inbound.content_type

    previous = headers.get('X-Forwarded-For')
    headers['X-Forwarded-For'] = f"{inbound.caller_ip},{previous}" if previous else inbound.caller_ip

    return headers


def _reject(reason: str) -> InvalidRequest:
    logger.debug(f"Request rejected: {reason}")
    return InvalidRequest(reason)


def translate(inbound: InboundRequest,
              endpoint_param: str = DEFAULT_ENDPOINT_PARAM) -> Union[OutboundRequest, InvalidRequest]:
    """
    Turns the inbound request into a description of the outbound one

    Args:
        inbound: Request from the original caller
        endpoint_param: Name of the parameter holding the destination URL (not forwarded)

    Returns:
        OutboundRequest or InvalidRequest (no I/O is performed)
    """
    method_name = (inbound.method or '').upper()
    try:
        method = Method(method_name)
    except ValueError:
        return _reject(f"Unsupported method: {method_name or '<empty>'}")

    if not inbound.destination:
        return _reject("Destination URL is missing")

    if not is_valid_destination(inbound.destination):
        return _reject(f"Destination URL is invalid: {inbound.destination!r}")

    headers = build_headers(inbound)

    if method is Method.GET:
        params = [(k, v) for k, v in inbound.query.items() if k != endpoint_param]
        url = append_query(inbound.destination, build_query_string(params))
        return OutboundRequest(method=method, url=url, headers=headers)

    content_type = headers.get('Content-Type', '')
    if content_type.lower().startswith(MULTIPART_CONTENT_TYPE):
        fields = MultiDict([
            (k, v) for k, v in inbound.form.items()
            if k != endpoint_param and isinstance(v, str)
        ])
        # The client adds the boundary when it encodes the body
        headers['Content-Type'] = MULTIPART_CONTENT_TYPE
        return OutboundRequest(method=method, url=inbound.destination, headers=headers, body=fields)

    return OutboundRequest(method=method, url=inbound.destination, headers=headers, body=inbound.body)
