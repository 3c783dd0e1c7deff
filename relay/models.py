# relay/models.py
import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from multidict import CIMultiDict, MultiDict


class Method(str, enum.Enum):
    GET = "GET"
    POST = "POST"


@dataclass
class InboundRequest:
    """Request received from the original caller (built by the host)"""
    method: str
    destination: Optional[str]
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    query: MultiDict = field(default_factory=MultiDict)
    body: bytes = b""
    form: MultiDict = field(default_factory=MultiDict)
    caller_ip: str = "Unknown"
    content_type: Optional[str] = None


@dataclass
class OutboundRequest:
    """Request the relay sends to the destination"""
    method: Method
    url: str
    headers: CIMultiDict
    body: Union[None, bytes, MultiDict] = None

    @property
    def is_multipart(self) -> bool:
        return isinstance(self.body, MultiDict)

    def header_lines(self):
        return [f"{name}: {value}" for name, value in self.headers.items()]


@dataclass(frozen=True)
class RelayResult:
    request_headers: str
    response_headers: Tuple[str, ...]
    body: bytes
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None

    @property
    def status_line(self) -> str:
        return self.response_headers[0] if self.response_headers else ""


@dataclass(frozen=True)
class InvalidRequest:
    """Caller error: unsupported method or bad endpoint"""
    reason: str


@dataclass(frozen=True)
class UpstreamUnavailable:
    """Destination unreachable (connect, timeout, DNS, TLS)"""
    code: Optional[int]
    message: str
    error_type: str = "ClientError"


RelayFailure = Union[InvalidRequest, UpstreamUnavailable]
