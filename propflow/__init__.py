"""Property-management back office: eviction notices, contractor escrow, rent automation."""

__version__ = "0.1.0"
