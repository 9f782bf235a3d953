"""
Change event and checkpoint models shared by the pipeline stages.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

# Sequence token meaning "from the start of the feed"
BEGINNING_SEQ = "0"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One change notification from a change feed.

    Attributes:
        seq: Opaque sequence token, non-decreasing within one resumption
        document: Document body as delivered by the source
        id: Source-assigned document identifier
        deleted: Whether the change is a deletion
    """
    seq: str
    document: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    deleted: bool = False


# A batch is an ordered, non-empty list of events
Batch = List[ChangeEvent]


@dataclass(frozen=True)
class Checkpoint:
    """Last durably written sequence token for a feed."""
    feed: str
    last_seq: str


class ChangeSource(Protocol):
    """Producer of an ordered, resumable change feed."""

    def open(self, feed: str, since: str, include_docs: bool = True) -> Iterable[ChangeEvent]:
        ...

    def close(self) -> None:
        ...
