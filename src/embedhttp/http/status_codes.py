"""
=============================================================================
HTTP STATUS CODES
=============================================================================

Status codes the server core itself emits, plus the common ones handlers
reach for. Each member carries its reason phrase, so building a status
line is just:

    HTTP/1.1 {status.value} {status.phrase}
             ─────┬──────── ──────┬───────
                  │               └── "Switching Protocols", "Not Found", ...
                  └────────────────── 101, 404, ...

Handlers are free to use any integer in the 100-599 range; codes not
listed here get a generic phrase from their class (see reason_phrase()).

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes with their RFC 7231 reason phrases.

    IntEnum, so members compare equal to plain ints:

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    def __new__(cls, code: int, phrase: str):
        member = int.__new__(cls, code)
        member._value_ = code
        member.phrase = phrase
        return member

    # 1xx - the server core sends 100 itself, upgrade handlers send 101
    CONTINUE = 100, "Continue"
    SWITCHING_PROTOCOLS = 101, "Switching Protocols"

    # 2xx
    OK = 200, "OK"
    CREATED = 201, "Created"
    ACCEPTED = 202, "Accepted"
    NO_CONTENT = 204, "No Content"
    PARTIAL_CONTENT = 206, "Partial Content"

    # 3xx
    MOVED_PERMANENTLY = 301, "Moved Permanently"
    FOUND = 302, "Found"
    SEE_OTHER = 303, "See Other"
    NOT_MODIFIED = 304, "Not Modified"
    TEMPORARY_REDIRECT = 307, "Temporary Redirect"
    PERMANENT_REDIRECT = 308, "Permanent Redirect"

    # 4xx
    BAD_REQUEST = 400, "Bad Request"
    UNAUTHORIZED = 401, "Unauthorized"
    FORBIDDEN = 403, "Forbidden"
    NOT_FOUND = 404, "Not Found"
    METHOD_NOT_ALLOWED = 405, "Method Not Allowed"
    REQUEST_TIMEOUT = 408, "Request Timeout"
    CONFLICT = 409, "Conflict"
    LENGTH_REQUIRED = 411, "Length Required"
    PAYLOAD_TOO_LARGE = 413, "Payload Too Large"
    URI_TOO_LONG = 414, "URI Too Long"
    EXPECTATION_FAILED = 417, "Expectation Failed"
    UPGRADE_REQUIRED = 426, "Upgrade Required"
    TOO_MANY_REQUESTS = 429, "Too Many Requests"
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431, "Request Header Fields Too Large"

    # 5xx
    INTERNAL_SERVER_ERROR = 500, "Internal Server Error"
    NOT_IMPLEMENTED = 501, "Not Implemented"
    BAD_GATEWAY = 502, "Bad Gateway"
    SERVICE_UNAVAILABLE = 503, "Service Unavailable"
    HTTP_VERSION_NOT_SUPPORTED = 505, "HTTP Version Not Supported"

    @property
    def is_informational(self) -> bool:
        return 100 <= self < 200

    @property
    def is_error(self) -> bool:
        return self >= 400


# Fallback phrases by class, for codes a handler invents.
_CLASS_PHRASES = {
    1: "Informational",
    2: "Success",
    3: "Redirection",
    4: "Client Error",
    5: "Server Error",
}


def reason_phrase(code: int) -> str:
    """
    Get the reason phrase for any status code.

    Args:
        code: Integer status code (100-599).

    Returns:
        The registered phrase, or a generic one for unregistered codes.
    """
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return _CLASS_PHRASES.get(code // 100, "Unknown")


def has_no_body(code: int) -> bool:
    """1xx, 204 and 304 responses never carry a message body (RFC 7230 §3.3)."""
    return 100 <= code < 200 or code in (204, 304)
