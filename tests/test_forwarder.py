"""
Tests for the Forwarder: raw response normalization and transport failures.
"""

import pytest
from multidict import CIMultiDict, MultiDict

from relay.forwarder import (
    DEFAULT_CONNECT_TIMEOUT,
    Forwarder,
    RawExchange,
    build_multipart,
    build_result,
    split_response,
    strip_continue,
)
from relay.models import Method, OutboundRequest, RelayResult, UpstreamUnavailable
from tests.helpers import RefusingClient, SpyClient


def make_outbound(**overrides):
    values = {
        "method": Method.GET,
        "url": "http://example.com/items?page=1",
        "headers": CIMultiDict([("Accept", "*/*"), ("X-Forwarded-For", "127.0.0.1")]),
    }
    values.update(overrides)
    return OutboundRequest(**values)


class TestRawResponse:
    def test_continue_preamble_is_stripped(self):
        raw = (
            b"HTTP/1.1 100 Continue\r\n\r\n"
            b"HTTP/1.1 201 Created\r\n"
            b"Location: /items/7\r\n"
            b"\r\n"
            b"created"
        )
        result = build_result(RawExchange("POST /items HTTP/1.1", raw))

        assert result.response_headers == ("HTTP/1.1 201 Created", "Location: /items/7")
        assert result.body == b"created"

    def test_only_one_continue_block_is_stripped(self):
        raw = b"HTTP/1.1 100 Continue\r\n\r\nHTTP/1.1 100 Continue\r\n\r\nHTTP/1.1 200 OK\r\n\r\n"
        assert strip_continue(raw) == b"HTTP/1.1 100 Continue\r\n\r\nHTTP/1.1 200 OK\r\n\r\n"

    def test_response_without_continue_is_untouched(self):
        raw = b"HTTP/1.1 200 OK\r\n\r\nbody"
        assert strip_continue(raw) == raw

    def test_body_is_split_at_first_blank_line(self):
        body = b"\x89PNG\r\n\r\n\x00\x01binary\r\n\r\ntail"
        head, rest = split_response(b"HTTP/1.1 200 OK\r\nContent-Type: image/png\r\n\r\n" + body)

        assert head == b"HTTP/1.1 200 OK\r\nContent-Type: image/png"
        assert rest == body

    def test_response_without_separator_has_empty_body(self):
        assert split_response(b"HTTP/1.1 204 No Content\r\n") == (b"HTTP/1.1 204 No Content\r\n", b"")

    def test_result_is_classified_and_trimmed(self):
        raw = (
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: Application/JSON; charset=utf-8\r\n"
            b"Content-Encoding: gzip\r\n"
            b"\r\n"
            b"\x1f\x8b"
        )
        result = build_result(RawExchange("GET / HTTP/1.1\r\nHost: example.com\r\n\r\n", raw))

        assert result.request_headers == "GET / HTTP/1.1\r\nHost: example.com"
        assert result.content_type == "application/json"
        assert result.content_encoding == "gzip"
        assert result.status_line == "HTTP/1.1 200 OK"
        assert result.body == b"\x1f\x8b"

    def test_result_is_immutable(self):
        result = build_result(RawExchange("", b"HTTP/1.1 200 OK\r\n\r\n"))
        with pytest.raises(AttributeError):
            result.body = b"changed"


class TestForwarder:
    @pytest.mark.asyncio
    async def test_successful_relay(self):
        client = SpyClient()
        forwarder = Forwarder(client=client)
        request = make_outbound()

        result = await forwarder.forward(request)

        assert isinstance(result, RelayResult)
        assert result.body == b"hello"
        assert result.content_type == "text/plain"
        assert client.calls == [(request, DEFAULT_CONNECT_TIMEOUT)]

    @pytest.mark.asyncio
    async def test_connect_timeout_is_passed_to_client(self):
        client = SpyClient()
        await Forwarder(client=client, connect_timeout=5).forward(make_outbound())
        assert client.calls[0][1] == 5

    @pytest.mark.asyncio
    async def test_non_2xx_response_is_not_a_failure(self):
        client = SpyClient(response=b"HTTP/1.1 503 Service Unavailable\r\nRetry-After: 10\r\n\r\ndown")
        result = await Forwarder(client=client).forward(make_outbound())

        assert isinstance(result, RelayResult)
        assert result.status_line == "HTTP/1.1 503 Service Unavailable"
        assert result.body == b"down"

    @pytest.mark.asyncio
    async def test_connection_refused_yields_upstream_unavailable(self):
        client = RefusingClient()
        result = await Forwarder(client=client).forward(make_outbound())

        assert isinstance(result, UpstreamUnavailable)
        assert result.code == 111
        assert "Connection refused" in result.message
        assert result.error_type == "ClientConnectorError"
        assert len(client.calls) == 1


def test_build_multipart_encodes_each_field():
    writer = build_multipart(MultiDict([("first", "1"), ("second", "2")]))

    assert writer.headers["Content-Type"].startswith("multipart/form-data; boundary=")
    assert len(writer) == 2
