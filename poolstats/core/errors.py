"""
Error types raised by the ingestion run.
Fatal errors abort the run with a non-zero exit; per-address failures are only recorded.
"""


class PoolStatsError(Exception):
    """Base exception for all ingestion failures."""


class ConfigError(PoolStatsError):
    """Raised for invalid runtime configuration."""


class SnapshotUnavailable(PoolStatsError):
    """Raised when the snapshot file is missing or cannot be read."""


class SnapshotMalformed(PoolStatsError):
    """Raised when the snapshot content is not a valid pool stats document."""


class ConnectionFailure(PoolStatsError):
    """Raised when the storage backend cannot be reached."""


class PerAddressWriteFailure(PoolStatsError):
    """Cause recorded for an address whose transaction was rolled back."""

    def __init__(self, address: str, cause: str):
        super().__init__(f"{address}: {cause}")
        self.address = address
        self.cause = cause
