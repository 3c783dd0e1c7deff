"""Shared fakes for relay tests."""

from relay.forwarder import ClientTransportError, RawExchange

DEFAULT_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"Content-Length: 5\r\n"
    b"\r\n"
    b"hello"
)


class SpyClient:
    """HttpClient that records calls and returns a canned raw response."""

    def __init__(self, response: bytes = DEFAULT_RESPONSE, request_headers: str = "GET / HTTP/1.1\r\nHost: example.com\r\n\r\n"):
        self.response = response
        self.request_headers = request_headers
        self.calls = []

    async def send(self, request, connect_timeout):
        self.calls.append((request, connect_timeout))
        return RawExchange(request_headers=self.request_headers, response=self.response)


class RefusingClient:
    """HttpClient that always fails like a refused TCP connection."""

    def __init__(self):
        self.calls = []

    async def send(self, request, connect_timeout):
        self.calls.append((request, connect_timeout))
        raise ClientTransportError(
            "Cannot connect to host example.invalid:80 [Connection refused]",
            code=111,
            error_type="ClientConnectorError"
        )
