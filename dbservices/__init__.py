"""Discovery, tracking and provisioning of database service containers."""

__version__ = "0.1.0"
