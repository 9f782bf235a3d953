from .models import JobStatus, ReplicationResult
from .replication import ReplicationPipeline

__all__ = [
    "JobStatus",
    "ReplicationResult",
    "ReplicationPipeline",
]
