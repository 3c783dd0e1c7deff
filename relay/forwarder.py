# relay/forwarder.py
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, Union

from aiohttp import (
    ClientError,
    ClientSession,
    ClientTimeout,
    MultipartWriter,
    TCPConnector,
    hdrs,
)
from multidict import CIMultiDict, MultiDict
from yarl import URL

from relay.headers import classify_response_headers, split_header_block
from relay.models import OutboundRequest, RelayResult, UpstreamUnavailable
from relay.translator import MULTIPART_CONTENT_TYPE

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 120

HEADER_BODY_SEPARATOR = b"\r\n\r\n"

# Interim 100 Continue response that precedes the real one
_CONTINUE_PREAMBLE = re.compile(rb"^HTTP/1\.[01] 100[^\r\n]*\r\n\r\n")


@dataclass(frozen=True)
class RawExchange:
    """Raw exchange: request headers as sent and response bytes as received"""
    request_headers: str
    response: bytes


class ClientTransportError(Exception):
    """Outbound call did not complete (connect, timeout, DNS, TLS)"""

    def __init__(self, message: str, code: Optional[int] = None, error_type: str = "ClientError"):
        super().__init__(message)
        self.message = message
        self.code = code
        self.error_type = error_type


class HttpClient(Protocol):
    async def send(self, request: OutboundRequest, connect_timeout: float) -> RawExchange:
        ...


def build_multipart(fields: MultiDict) -> MultipartWriter:
    writer = MultipartWriter('form-data')
    for name, value in fields.items():
        part = writer.append(value)
        part.set_content_disposition('form-data', name=name)
    return writer


def format_request_headers(method: str, url: URL, headers) -> str:
    lines = [f"{method} {url.raw_path_qs} HTTP/1.1"]
    lines.extend(f"{name}: {value}" for name, value in headers.items())
    return "\r\n".join(lines)


def format_raw_response(version, status: int, reason: Optional[str], raw_headers, body: bytes) -> bytes:
    status_line = f"HTTP/{version.major}.{version.minor} {status} {reason or ''}".rstrip()
    head = [status_line.encode('latin-1')]
    head.extend(name + b": " + value for name, value in raw_headers)
    return b"\r\n".join(head) + HEADER_BODY_SEPARATOR + body


class AiohttpClient:
    """
    Outbound HTTP client on aiohttp

    Every call gets its own force_close session, so connections are never reused.
    Bodies are not decompressed (auto_decompress=False) and redirects are not followed.
    """

    # aiohttp would add these on its own
    SKIP_AUTO_HEADERS = (hdrs.USER_AGENT, hdrs.ACCEPT_ENCODING)

    def __init__(self, verify_ssl: bool = True):
        self.verify_ssl = verify_ssl

    async def send(self, request: OutboundRequest, connect_timeout: float) -> RawExchange:
        headers = CIMultiDict(request.headers)
        # The body is already fully buffered, aiohttp frames it with Content-Length
        headers.popall(hdrs.TRANSFER_ENCODING, None)
        data = request.body

        if request.is_multipart:
            data = build_multipart(request.body)
            content_type = headers.get(hdrs.CONTENT_TYPE, '').strip().lower()
            if content_type == MULTIPART_CONTENT_TYPE:
                # Bare multipart/form-data gets the boundary of the encoded body
                headers[hdrs.CONTENT_TYPE] = data.headers[hdrs.CONTENT_TYPE]

        connector = TCPConnector(force_close=True, ssl=self.verify_ssl)
        timeout = ClientTimeout(total=None, connect=connect_timeout)

        try:
            async with ClientSession(
                    connector=connector,
                    timeout=timeout,
                    auto_decompress=False,
                    skip_auto_headers=self.SKIP_AUTO_HEADERS
            ) as session:
                async with session.request(
                        method=request.method.value,
                        url=URL(request.url, encoded=True),
                        headers=headers,
                        data=data,
                        allow_redirects=False
                ) as response:
                    body = await response.read()

                    info = response.request_info
                    sent = format_request_headers(info.method, info.url, info.headers)
                    raw = format_raw_response(
                        response.version,
                        response.status,
                        response.reason,
                        response.raw_headers,
                        body
                    )
                    return RawExchange(request_headers=sent, response=raw)

        except (ClientError, asyncio.TimeoutError) as e:
            message = str(e) or repr(e)
            raise ClientTransportError(
                message,
                code=getattr(e, 'errno', None),
                error_type=type(e).__name__
            ) from e


def strip_continue(raw: bytes) -> bytes:
    """Removes one leading 'HTTP/1.1 100 Continue' block with its blank line"""
    match = _CONTINUE_PREAMBLE.match(raw)
    if match:
        return raw[match.end():]
    return raw


def split_response(raw: bytes) -> Tuple[bytes, bytes]:
    """Splits the response into header block and body at the first blank line"""
    head, separator, body = raw.partition(HEADER_BODY_SEPARATOR)
    if not separator:
        return raw, b""
    return head, body


def build_result(exchange: RawExchange) -> RelayResult:
    head, body = split_response(strip_continue(exchange.response))
    lines = split_header_block(head.decode('latin-1'))
    content_type, content_encoding = classify_response_headers(lines)

    return RelayResult(
        request_headers=exchange.request_headers.rstrip(),
        response_headers=lines,
        body=body,
        content_type=content_type,
        content_encoding=content_encoding
    )


class Forwarder:
    """Performs one outbound request and normalizes the response"""

    def __init__(self, client: Optional[HttpClient] = None, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.client = client or AiohttpClient()
        self.connect_timeout = connect_timeout

    async def forward(self, request: OutboundRequest) -> Union[RelayResult, UpstreamUnavailable]:
        try:
            exchange = await self.client.send(request, self.connect_timeout)
        except ClientTransportError as e:
            logger.error(
                f"❌ Destination unavailable\n"
                f"   URL: {request.url}\n"
                f"   Error [{e.error_type}, code={e.code}]: {e.message}"
            )
            return UpstreamUnavailable(code=e.code, message=e.message, error_type=e.error_type)

        result = build_result(exchange)
        logger.debug(f"Request headers sent:\n{result.request_headers}")
        return result
