"""Tests for local port allocation."""

import errno
import socket
from unittest.mock import patch

import pytest

from mcp_oauth_bridge.errors import PortBindError
from mcp_oauth_bridge.ports import LOOPBACK_HOST, find_available_port


class TestFindAvailablePort:
    """Tests for find_available_port."""

    def test_any_port(self):
        """Test that an OS-assigned port is returned without a preference."""
        port = find_available_port()
        assert 0 < port <= 65535

    def test_preferred_port_when_free(self):
        """Test that a free preferred port is returned as is."""
        free_port = find_available_port()
        assert find_available_port(free_port) == free_port

    def test_preferred_port_in_use(self):
        """Test fallback to another port when the preferred one is taken."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind((LOOPBACK_HOST, 0))
            busy.listen(1)
            taken = busy.getsockname()[1]

            port = find_available_port(taken)

        assert port != taken
        assert port != 0

    def test_other_bind_error_raises(self):
        """Test that errors other than EADDRINUSE raise PortBindError."""
        with patch(
            "mcp_oauth_bridge.ports._probe",
            side_effect=OSError(errno.EACCES, "Permission denied"),
        ):
            with pytest.raises(PortBindError, match="Unable to bind port 80"):
                find_available_port(80)

    def test_in_use_retries_with_zero(self):
        """Test that EADDRINUSE triggers exactly one retry on port 0."""
        with patch(
            "mcp_oauth_bridge.ports._probe",
            side_effect=[OSError(errno.EADDRINUSE, "in use"), 40123],
        ) as probe:
            assert find_available_port(3334) == 40123

        assert [c.args for c in probe.call_args_list] == [(3334,), (0,)]
