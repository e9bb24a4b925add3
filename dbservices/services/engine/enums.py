"""Enums shared by the container engine adapter and its consumers."""

from enum import StrEnum, auto


class ProviderStatus(StrEnum):
    """Reachability of a provider connection.

    - STARTED: engine API answered the last ping
    - STOPPED: engine API did not answer the last ping
    - UNKNOWN: not probed yet
    """

    STARTED = auto()
    STOPPED = auto()
    UNKNOWN = auto()


class ProviderEventKind(StrEnum):
    """Provider connection transitions surfaced to subscribers."""

    REGISTERED = auto()
    UNREGISTERED = auto()
    STARTED = auto()
    STOPPED = auto()
