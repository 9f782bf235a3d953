"""
Replication job models.
"""

from typing import Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field
from enum import Enum


class JobStatus(str, Enum):
    """Job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReplicationResult(BaseModel):
    """Outcome of one pipeline run."""
    feed: str = Field(..., description="Feed identity")
    status: JobStatus = Field(..., description="Terminal status")
    since: str = Field(..., description="Sequence token the run resumed after")
    last_seq: Optional[str] = Field(None, description="Last checkpointed sequence token")
    batches_written: int = Field(default=0, description="Batches written and checkpointed")
    documents_written: int = Field(default=0, description="Documents written")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = Field(None, description="Completion time")
    error: Optional[str] = Field(None, description="Error message for failed runs")
