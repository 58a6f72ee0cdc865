"""Tests for port probing."""

import errno
import socket
from types import SimpleNamespace

import pytest

from devserver.server import ports
from devserver.server.ports import NoPortAvailable, find_available, probe_port


class FakeProbe:
    """Probe that reports a fixed set of ports as in use and records calls."""

    def __init__(self, occupied=()):
        self.occupied = set(occupied)
        self.calls = []

    def __call__(self, port, host):
        self.calls.append(port)
        return port not in self.occupied


def fake_socket_module(socket_class):
    return SimpleNamespace(socket=socket_class, AF_INET=socket.AF_INET, SOCK_STREAM=socket.SOCK_STREAM)


class TestFindAvailable:
    """Test the retry loop."""

    @pytest.mark.parametrize("k", [0, 1, 5, 19])
    def test_returns_first_free_port(self, k):
        """Ports [start, start+k) busy -> start+k after k+1 probes."""
        probe = FakeProbe(occupied=range(9000, 9000 + k))
        assert find_available(9000, probe=probe) == 9000 + k
        assert len(probe.calls) == k + 1
        assert probe.calls == list(range(9000, 9000 + k + 1))

    def test_exhaustion(self):
        probe = FakeProbe(occupied=range(9000, 9020))
        with pytest.raises(NoPortAvailable) as exc_info:
            find_available(9000, probe=probe)

        err = exc_info.value
        assert err.start_port == 9000
        assert err.end_port == 9019
        assert err.attempts == 20
        assert "9000" in str(err) and "9019" in str(err)
        assert len(probe.calls) == 20

    def test_custom_attempt_ceiling(self):
        probe = FakeProbe(occupied=range(9000, 9005))
        with pytest.raises(NoPortAvailable):
            find_available(9000, max_attempts=3, probe=probe)
        assert len(probe.calls) == 3

    def test_stops_at_highest_port(self):
        probe = FakeProbe(occupied=range(65530, 65536))
        with pytest.raises(NoPortAvailable) as exc_info:
            find_available(65530, probe=probe)
        assert exc_info.value.end_port == 65535
        assert max(probe.calls) == 65535

    def test_other_errors_are_not_retried(self):
        calls = []

        def denied(port, host):
            calls.append(port)
            raise PermissionError(errno.EACCES, "Permission denied")

        with pytest.raises(PermissionError):
            find_available(80, probe=denied)
        assert calls == [80]


class TestProbePort:
    """Test probing against real sockets."""

    def test_busy_port(self):
        holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        holder.bind(("0.0.0.0", 0))
        holder.listen(1)
        port = holder.getsockname()[1]
        try:
            assert probe_port(port) is False
            assert find_available(port) != port
        finally:
            holder.close()

    def test_free_port_is_released(self):
        holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        holder.bind(("0.0.0.0", 0))
        port = holder.getsockname()[1]
        holder.close()

        assert probe_port(port) is True
        # The probe released the port again
        assert probe_port(port) is True

    def test_bind_error_propagates(self, monkeypatch):
        class DeniedSocket:
            def __init__(self, *args):
                self.closed = False

            def bind(self, address):
                raise OSError(errno.EACCES, "Permission denied")

            def listen(self, backlog):
                pass

            def close(self):
                self.closed = True

        monkeypatch.setattr(ports, "socket", fake_socket_module(DeniedSocket))
        with pytest.raises(OSError) as exc_info:
            probe_port(80)
        assert exc_info.value.errno == errno.EACCES

    def test_in_use_error_is_reported_as_busy(self, monkeypatch):
        class BusySocket:
            def __init__(self, *args):
                pass

            def bind(self, address):
                raise OSError(errno.EADDRINUSE, "Address already in use")

            def close(self):
                pass

        monkeypatch.setattr(ports, "socket", fake_socket_module(BusySocket))
        assert probe_port(8080) is False
