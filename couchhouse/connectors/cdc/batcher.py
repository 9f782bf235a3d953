"""
Groups a stream of change events into fixed-size batches.

Every batch holds exactly ``batch_size`` events except possibly the last one
emitted before the input ends, which holds whatever remains. Batches are never
empty and events are never reordered, duplicated or dropped.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional
from dataclasses import replace
import logging

from .models import Batch, ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

ID_FIELD = "_id"
CANONICAL_ID_FIELD = "id"
DROPPED_FIELDS = ("_rev",)


def project_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rename the source identifier to ``id`` and strip revision metadata.

    Returns a new dict; the input is not modified.

    Example:
        >>> project_document({"_id": "a", "_rev": "1-x", "n": 1})
        {'n': 1, 'id': 'a'}
    """
    projected = {
        key: value
        for key, value in document.items()
        if key != ID_FIELD and key not in DROPPED_FIELDS
    }
    if ID_FIELD in document:
        projected[CANONICAL_ID_FIELD] = document[ID_FIELD]
    return projected


class Batcher:
    """
    Accumulates projected change events and hands them off in batches.

    The buffer belongs to the batcher alone. Each emitted batch is a fresh list
    that the caller owns from then on.

    Thread Safety: NOT thread-safe. Use from a single producer thread.

    Example:
        >>> batcher = Batcher(batch_size=100)
        >>> for batch in batcher.batches(source.open(feed, since)):
        ...     writer.write(batch)
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        if not isinstance(batch_size, int) or batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self._buffer: List[ChangeEvent] = []

    def __len__(self) -> int:
        return len(self._buffer)

    def add(self, event: ChangeEvent) -> Optional[Batch]:
        """
        Buffer one event.

        Returns:
            A full batch once the buffer reaches ``batch_size``, otherwise None
        """
        self._buffer.append(replace(event, document=project_document(event.document)))
        if len(self._buffer) < self.batch_size:
            return None

        batch = self._buffer[:self.batch_size]
        self._buffer = self._buffer[self.batch_size:]
        return batch

    def flush(self) -> Optional[Batch]:
        """Hand off whatever is buffered as a final batch, or None if empty."""
        if not self._buffer:
            return None
        batch, self._buffer = self._buffer, []
        logger.debug(
            f"Flushing final batch of {len(batch)} events",
            extra={"batch_size": len(batch)}
        )
        return batch

    def batches(self, events: Iterable[ChangeEvent]) -> Iterator[Batch]:
        """
        Lazily turn an event stream into batches.

        The remainder is flushed when ``events`` is exhausted, whether the
        source closed, caught up or was stopped.
        """
        for event in events:
            batch = self.add(event)
            if batch is not None:
                yield batch

        final = self.flush()
        if final is not None:
            yield final
