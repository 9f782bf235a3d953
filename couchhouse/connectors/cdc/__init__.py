"""
Change feed replication: sources, batching, sink writes and checkpoints.
"""

from .errors import (
    CouchhouseError, ConfigurationError, CheckpointError, SinkWriteError, SourceError
)
from .models import BEGINNING_SEQ, Batch, ChangeEvent, ChangeSource, Checkpoint
from .batcher import Batcher, project_document
from .checkpoint_store import (
    CheckpointStore, FileCheckpointStore, SqlCheckpointStore, checkpoint_key
)
from .sink_writer import SinkWriter
from .cloudant_changes import CloudantChangesSource
from .mongo_changestream import MongoChangeStreamSource

__all__ = [
    "CouchhouseError",
    "ConfigurationError",
    "CheckpointError",
    "SinkWriteError",
    "SourceError",
    "BEGINNING_SEQ",
    "Batch",
    "ChangeEvent",
    "ChangeSource",
    "Checkpoint",
    "Batcher",
    "project_document",
    "CheckpointStore",
    "FileCheckpointStore",
    "SqlCheckpointStore",
    "checkpoint_key",
    "SinkWriter",
    "CloudantChangesSource",
    "MongoChangeStreamSource",
]
