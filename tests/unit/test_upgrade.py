"""
Unit tests for upgrade handler selection.
"""

import pytest

from embedhttp.core.upgrade import FunctionUpgradeHandler, UpgradeCoordinator, UpgradeHandler
from embedhttp.http.request import Request


def upgrade_request(protocol="websocket", **headers) -> Request:
    request = Request()
    request.method = "GET"
    request.url = "/chat"
    request.headers.add("Upgrade", protocol)
    for name, value in headers.items():
        request.headers.add(name.replace("_", "-"), value)
    return request


class Recorder(UpgradeHandler):
    def __init__(self, protocols=(), accept=True):
        self.protocols = protocols
        self.accept = accept
        self.calls = []

    def accepts(self, request):
        return self.accept

    def upgrade(self, request, head):
        self.calls.append((request.upgrade, head))


class TestMatching:
    """Protocol token matching."""

    @pytest.mark.parametrize("offered,protocols,expected", [
        ("websocket", ("websocket",), True),
        ("WebSocket", ("websocket",), True),
        ("h2c, websocket", ("websocket",), True),
        ("websocket/13", ("websocket",), True),
        ("h2c", ("websocket",), False),
        ("anything", (), True),
    ])
    def test_matches(self, offered, protocols, expected):
        assert Recorder(protocols).matches(upgrade_request(offered)) is expected

    def test_abstract_upgrade_required(self):
        with pytest.raises(TypeError):
            UpgradeHandler()


class TestCoordinator:
    """First matching, accepting handler wins."""

    def test_first_accepting_handler_wins(self):
        refuses = Recorder(("websocket",), accept=False)
        other = Recorder(("h2c",))
        first = Recorder(("websocket",))
        second = Recorder(("websocket",))
        coordinator = UpgradeCoordinator([refuses, other, first, second])

        assert coordinator.try_upgrade(upgrade_request(), b"head-bytes") is True
        assert first.calls == [("websocket", b"head-bytes")]
        assert refuses.calls == other.calls == second.calls == []

    def test_no_handler(self):
        coordinator = UpgradeCoordinator([Recorder(("h2c",))])
        assert coordinator.try_upgrade(upgrade_request(), b"") is False
        assert UpgradeCoordinator().try_upgrade(upgrade_request(), b"") is False

    def test_register_appends(self):
        coordinator = UpgradeCoordinator()
        handler = Recorder()
        coordinator.register(handler)

        assert len(coordinator) == 1
        assert coordinator.handlers == [handler]

    def test_register_rejects_non_handlers(self):
        with pytest.raises(TypeError):
            UpgradeCoordinator().register(lambda request, head: None)

    def test_handler_errors_propagate(self):
        def broken(request, head):
            raise RuntimeError("boom")

        coordinator = UpgradeCoordinator([FunctionUpgradeHandler(broken)])
        with pytest.raises(RuntimeError):
            coordinator.try_upgrade(upgrade_request(), b"")

    def test_release_runs_before_handler(self):
        handed = object()
        order = []

        def release():
            order.append("release")
            return handed

        def handler(request, head):
            order.append(("handler", request.transport is handed))

        request = upgrade_request()
        coordinator = UpgradeCoordinator([FunctionUpgradeHandler(handler)])

        assert coordinator.try_upgrade(request, b"", release=release) is True
        assert order == ["release", ("handler", True)]
        assert request.transport is None

    def test_nothing_to_release(self):
        handler = Recorder()
        coordinator = UpgradeCoordinator([handler])

        assert coordinator.try_upgrade(upgrade_request(), b"", release=lambda: None) is False
        assert handler.calls == []

    def test_release_untouched_without_handler(self):
        released = []
        coordinator = UpgradeCoordinator([Recorder(("h2c",))])

        assert coordinator.try_upgrade(
            upgrade_request(), b"", release=lambda: released.append(1)) is False
        assert released == []


class TestFunctionUpgradeHandler:
    """Plain callables as upgrade handlers."""

    def test_calls_function(self):
        calls = []
        handler = FunctionUpgradeHandler(lambda r, h: calls.append(h), protocols=["echo"])

        assert handler.protocols == ("echo",)
        handler.upgrade(upgrade_request("echo"), b"abc")
        assert calls == [b"abc"]

    def test_accepts_predicate(self):
        handler = FunctionUpgradeHandler(
            lambda r, h: None,
            accepts=lambda r: r.get_header("sec-websocket-key") is not None,
        )

        assert not handler.accepts(upgrade_request())
        assert handler.accepts(upgrade_request(Sec_WebSocket_Key="dGhlIHNhbXBsZQ=="))
