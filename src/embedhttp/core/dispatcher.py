"""
Hands completed request heads to the application handler.

The handler signature is ``handler(request, response)``. Returning from it
does NOT mean the exchange is done; the response reaching ENDED does. A
handler may return at once and finish the response later from another
thread (a worker pool, a timer, ...).
"""

import logging
from typing import Callable

from ..errors import MalformedRequest, PrematureDisconnect
from ..http.request import Request
from ..http.response import Response, ResponseState


logger = logging.getLogger(__name__)

Handler = Callable[[Request, Response], None]


class Dispatcher:
    """Calls the handler once per request head and contains its failures."""

    def __init__(self, handler: Handler):
        if not callable(handler):
            raise TypeError("handler must be callable")
        self.handler = handler

    def dispatch(self, request: Request, response: Response) -> None:
        request._active = True
        try:
            self.handler(request, response)
        except PrematureDisconnect:
            # The connection already tore itself down.
            logger.debug("Client went away during %s %s", request.method, request.url)
        except MalformedRequest as e:
            # Raised from body iteration; the connection already answered.
            logger.debug("Malformed body in %s %s: %s", request.method, request.url, e)
        except Exception:
            logger.exception("Handler error for %s %s", request.method, request.url)
            self._fail(response)

    @staticmethod
    def _fail(response: Response) -> None:
        if response.rewind():
            response.close_connection()
            response.send_text("Internal Server Error", 500)
        elif response.state is not ResponseState.ENDED:
            response.abort()
