"""
=============================================================================
ACCESS LOG
=============================================================================

One record per completed exchange, written to its own logger so it can be
routed separately from the server's diagnostic output:

    logging.getLogger("embedhttp.access").addHandler(file_handler)

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default, common-log style):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 127.0.0.1 - - [18/Oct/2026:10:55:36 +0000] "GET /a HTTP/1.1" 200 12 │
    │ 0.41ms conn=ab12cd34 keep-alive                                     │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"connection_id": "ab12cd34", "method": "GET", "target": "/a", ...} │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import json
import logging
import time
from dataclasses import asdict, dataclass


logger = logging.getLogger("embedhttp.access")


@dataclass
class RequestLog:
    """
    Structured access-log entry.

    connection_id:  Short id shared by every exchange on one connection
    sequence:       1 for the first exchange on the connection, then 2, ...
    client_ip:      Peer address
    method/target:  Request line
    http_version:   "HTTP/1.0" or "HTTP/1.1"
    status_code:    Status sent to the client
    body_bytes:     Response body bytes written by the handler
    duration_ms:    Request line received → response ended
    keep_alive:     Whether the connection stays open afterwards
    user_agent:     Client identifier, "-" if absent
    timestamp:      When the exchange finished
    """

    connection_id: str
    sequence: int
    client_ip: str
    method: str
    target: str
    http_version: str
    status_code: int
    body_bytes: int
    duration_ms: float
    keep_alive: bool
    user_agent: str
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.target} {self.http_version}" {self.status_code} '
            f'{self.body_bytes} {self.duration_ms:.2f}ms '
            f'conn={self.connection_id} {"keep-alive" if self.keep_alive else "close"}'
        )


def record_exchange(connection, started: float) -> RequestLog:
    """Build the log entry for the exchange that just completed on ``connection``."""
    request = connection.request
    response = connection.response
    return RequestLog(
        connection_id=connection.id,
        sequence=connection.requests_handled,
        client_ip=request.client_address[0] or "-",
        method=request.method,
        target=request.url,
        http_version=request.http_version,
        status_code=response.status_code,
        body_bytes=response.bytes_written,
        duration_ms=(time.time() - started) * 1000,
        keep_alive=response.keep_alive and not connection.pending_close,
        user_agent=request.get_header("user-agent", "-"),
        timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
    )


def log_exchange(entry: RequestLog, log_format: str = "text", level: int = logging.INFO) -> None:
    if not logger.isEnabledFor(level):
        return
    if log_format == "json":
        logger.log(level, json.dumps(entry.to_dict()))
    else:
        logger.log(level, entry.to_text())
