"""
Exception hierarchy for the replication pipeline.
"""


class CouchhouseError(Exception):
    """Base exception for couchhouse errors."""
    pass


class ConfigurationError(CouchhouseError):
    """Required configuration is missing or invalid."""
    pass


class CheckpointError(CouchhouseError):
    """Error saving a checkpoint."""
    pass


class SinkWriteError(CouchhouseError):
    """The sink rejected or failed to accept a batch."""
    pass


class SourceError(CouchhouseError):
    """The change feed failed mid-stream."""
    pass
