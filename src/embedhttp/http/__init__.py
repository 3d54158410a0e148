"""
HTTP message model: headers, the incremental request parser, and the
Request / Response pair handed to handlers.
"""

from .headers import Headers
from .parser import (
    NEED_DATA,
    BodyChunk,
    HeaderField,
    HeadersEnd,
    MessageEnd,
    ParseError,
    ParserState,
    RequestLine,
    RequestParser,
)
from .request import Request, RequestBody
from .response import Response, ResponseState, format_http_date
from .status_codes import HTTPStatus, has_no_body, reason_phrase

__all__ = [
    "Headers",
    # Parsing
    "RequestParser",
    "ParserState",
    "NEED_DATA",
    "RequestLine",
    "HeaderField",
    "HeadersEnd",
    "BodyChunk",
    "MessageEnd",
    "ParseError",
    # Messages
    "Request",
    "RequestBody",
    "Response",
    "ResponseState",
    "format_http_date",
    # Status codes
    "HTTPStatus",
    "reason_phrase",
    "has_no_body",
]
