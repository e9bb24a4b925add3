"""Unit tests for free host port discovery."""

import socket
from unittest.mock import patch

import pytest

from dbservices.core.exceptions import InvalidInputError
from dbservices.core.ports import MAX_PORT, check_port_available, find_available_port


class TestFindAvailablePort:
    def test_returns_start_when_free(self):
        with patch("dbservices.core.ports.check_port_available", return_value=True):
            assert find_available_port(5050) == 5050

    def test_skips_ports_in_use(self):
        busy = {5050, 5051}
        with patch(
            "dbservices.core.ports.check_port_available", side_effect=lambda p: p not in busy
        ):
            assert find_available_port(5050) == 5052

    def test_skips_excluded_ports(self):
        with patch("dbservices.core.ports.check_port_available", return_value=True):
            assert find_available_port(5432, exclude={5432, 5433}) == 5434

    @pytest.mark.parametrize("start", [0, -1, MAX_PORT + 1])
    def test_rejects_out_of_range_start(self, start):
        with pytest.raises(InvalidInputError):
            find_available_port(start)

    def test_exhaustion(self):
        with (
            patch("dbservices.core.ports.check_port_available", return_value=False),
            pytest.raises(InvalidInputError, match="No available ports"),
        ):
            find_available_port(MAX_PORT - 2)


class TestCheckPortAvailable:
    def test_listening_port_is_unavailable(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen()
            port = server.getsockname()[1]

            assert check_port_available(port) is False
