"""
=============================================================================
DEMO SERVER CLI
=============================================================================

Runs the server core with a small demo handler, to poke at it with curl:

    python -m embedhttp                       # localhost:8080
    python -m embedhttp --port 3000 -l DEBUG
    python -m embedhttp --echo-upgrade        # also accept "Upgrade: echo"

    curl http://127.0.0.1:8080/                     → hello
    curl -d 'some body' http://127.0.0.1:8080/echo  → body streamed back (chunked)
    curl http://127.0.0.1:8080/later                → response ended from a timer thread

Every option can also come from the environment (see ServerConfig.from_env);
command-line arguments win.

=============================================================================
"""

import argparse
import sys
import threading

from . import __version__
from .config import ServerConfig
from .core.upgrade import FunctionUpgradeHandler
from .server import HTTPServer


def demo_handler(request, response):
    """
    GET /       plain text greeting
    /later      finished 100 ms later on another thread
    anything    the request body echoed back as it arrives
    """
    if request.path == "/":
        response.send_text(f"Hello from embedhttp {__version__}\n")
        return

    if request.path == "/later":
        def finish():
            response.send_json({"path": request.path, "delayed": True})
        threading.Timer(0.1, finish).start()
        return

    response.set_header("Content-Type", request.get_header("content-type", "application/octet-stream"))
    response.write_head(200)
    for chunk in request.body:
        response.write(chunk)
    response.end()


def echo_upgrade(request, head):
    """Switch to a raw echo protocol: every byte sent comes straight back."""
    transport = request.transport
    transport.sendall(
        b"HTTP/1.1 101 Switching Protocols\r\n"
        b"Upgrade: echo\r\n"
        b"Connection: Upgrade\r\n\r\n"
    )

    def pump():
        if head:
            transport.sendall(head)
        while True:
            data = transport.recv(4096)
            if not data or not transport.sendall(data):
                break
        transport.close()

    threading.Thread(target=pump, name="embedhttp-echo", daemon=True).start()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m embedhttp",
        description="Embeddable HTTP/1.x server core - demo server",
    )
    parser.add_argument("--host", "-H", default=None,
                        help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=None,
                        help="Port to listen on (default: 8080)")
    parser.add_argument("--log-level", "-l",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None,
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-format", choices=["text", "json"], default=None,
                        help="Access log format (default: text)")
    parser.add_argument("--no-keep-alive", action="store_true",
                        help="Close every connection after one response")
    parser.add_argument("--echo-upgrade", action="store_true",
                        help='Accept "Upgrade: echo" and echo raw bytes back')
    parser.add_argument("--version", "-v", action="version",
                        version=f"embedhttp {__version__}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = ServerConfig.from_env()
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format
    if args.no_keep_alive:
        config.keep_alive = False

    try:
        server = HTTPServer(demo_handler, config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.echo_upgrade:
        server.register_upgrade(FunctionUpgradeHandler(echo_upgrade, protocols=("echo",)))

    if not server.run():
        print(f"Error: could not listen on {config.host}:{config.port}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
