"""Core infrastructure components."""

from dbservices.core.config import EngineConnectionSettings, Settings, get_settings
from dbservices.core.logging import (
    get_logger,
    get_request_id,
    set_request_id,
    setup_logging,
)

__all__ = [
    "EngineConnectionSettings",
    "Settings",
    "get_logger",
    "get_request_id",
    "get_settings",
    "set_request_id",
    "setup_logging",
]
