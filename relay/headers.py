# relay/headers.py
import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

_TRANSFER_ENCODING = re.compile(r'^Transfer-Encoding', re.IGNORECASE)
_CONTENT_TYPE = re.compile(r'^Content-Type:', re.IGNORECASE)
_CONTENT_ENCODING = re.compile(r'^Content-Encoding:', re.IGNORECASE)
_STATUS_LINE = re.compile(r'^HTTP/\d(?:\.\d)?\s+(\d{3})(?:\s+(.*))?$')


def split_header_block(block: str) -> Tuple[str, ...]:
    """Splits a raw header block into lines (no CR/LF, no blank lines)"""
    lines = (line.rstrip('\r') for line in block.split('\n'))
    return tuple(line for line in lines if line.strip())


def _header_value(line: str) -> str:
    return line[line.index(':') + 1:].strip().lower()


def headers_to_emit(lines: Iterable[str]) -> List[str]:
    """
    Header lines to send back to the original caller

    Transfer-Encoding is skipped: the body is already fully read and its
    chunked framing is not kept. Everything else passes as is, in order.
    """
    return [line for line in lines if not _TRANSFER_ENCODING.match(line)]


def classify_response_headers(lines: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Extracts the response Content-Type and Content-Encoding

    Returns:
        (content_type, content_encoding): lowercased, Content-Type without
        the parameters after ';'. The last occurrence wins.
    """
    content_type = None
    content_encoding = None

    for line in lines:
        if _CONTENT_TYPE.match(line):
            content_type = _header_value(line).split(';', 1)[0].strip()
        elif _CONTENT_ENCODING.match(line):
            content_encoding = _header_value(line)

    return content_type, content_encoding


def parse_status_line(line: str) -> Optional[Tuple[int, str]]:
    """'HTTP/1.1 404 Not Found' -> (404, 'Not Found')"""
    match = _STATUS_LINE.match(line.strip())
    if not match:
        return None
    return int(match.group(1)), (match.group(2) or '').strip()


def split_header_line(line: str) -> Optional[Tuple[str, str]]:
    if ':' not in line:
        return None
    name, value = line.split(':', 1)
    name = name.strip()
    if not name:
        return None
    return name, value.strip()


def iter_emitted_headers(lines: Sequence[str]):
    """(name, value) pairs for the host; the status line is skipped"""
    for line in headers_to_emit(lines):
        if parse_status_line(line):
            continue
        pair = split_header_line(line)
        if pair is None:
            logger.debug(f"Skipping malformed response header line: {line!r}")
            continue
        yield pair
