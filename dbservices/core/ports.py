"""Free host port discovery.

Used when an admin console or database needs a host port that nothing is
listening on yet.
"""

import socket

from dbservices.core.exceptions import InvalidInputError

MAX_PORT = 65535


def check_port_available(port: int) -> bool:
    """Check if a port is available for binding.

    Checks both IPv4 and IPv6 localhost to detect processes bound to either.

    Args:
        port: Port number to check

    Returns:
        True if port is available on both IPv4 and IPv6, False if in use
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        if s.connect_ex(("127.0.0.1", port)) == 0:
            return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as s:
            if s.connect_ex(("::1", port)) == 0:
                return False
    except OSError:
        pass  # IPv6 not available
    return True


def find_available_port(start: int, exclude: set[int] | None = None) -> int:
    """Find the next available port starting from a given port.

    Args:
        start: Starting port number
        exclude: Set of ports to skip (already assigned elsewhere)

    Returns:
        First available port >= start that is not in exclude set

    Raises:
        InvalidInputError: If start is outside 1..65535 or no port is free up to 65535
    """
    if not 1 <= start <= MAX_PORT:
        raise InvalidInputError(
            f"Port must be between 1 and {MAX_PORT}", field="port", value=start
        )
    if exclude is None:
        exclude = set()
    port = start
    while port in exclude or not check_port_available(port):
        port += 1
        if port > MAX_PORT:
            raise InvalidInputError(
                f"No available ports found starting from {start}", field="port", value=start
            )
    return port
